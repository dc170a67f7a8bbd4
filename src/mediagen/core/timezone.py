"""UTC timezone enforcement.

Sets the TZ environment variable to UTC and provides the naive-UTC clock used
for every persisted timestamp, so comparisons such as ``run_at <= now`` behave
the same on PostgreSQL and SQLite.
"""

import os
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current UTC time without tzinfo (database storage form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
