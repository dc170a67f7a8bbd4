"""Signed URL generation for Cloud Storage objects."""

import asyncio
import re
from datetime import timedelta
from typing import Any, Optional

import structlog
from google.cloud import storage

from mediagen.services.exceptions import InvalidStorageUriError, SigningError

logger = structlog.get_logger(__name__)

_GCS_URI_PATTERN = re.compile(r"^gs://([^/]+)/(.+)$")


def parse_gcs_uri(gcs_uri: str) -> tuple[str, str]:
    """Split ``gs://<bucket>/<path>`` into bucket name and object path.

    Raises:
        InvalidStorageUriError: Identifier has any other shape
    """
    match = _GCS_URI_PATTERN.match(gcs_uri or "")
    if not match:
        raise InvalidStorageUriError(f"Invalid Google Cloud Storage URI format: {gcs_uri!r}")
    return match.group(1), match.group(2)


class GCSUrlSigner:
    """Produces time-limited V4 GET URLs for gs:// identifiers."""

    def __init__(self, expiration_hours: int = 24, client: Optional[Any] = None):
        """Initialize signer.

        Args:
            expiration_hours: Validity window of every signed URL
            client: google.cloud.storage.Client (created lazily when omitted)
        """
        self.expiration = timedelta(hours=expiration_hours)
        self._client = client

    async def sign(self, gcs_uri: str) -> str:
        """Return a signed URL for a storage-native identifier.

        Raises:
            InvalidStorageUriError: Identifier is not a gs:// URI
            SigningError: The storage SDK failed to sign
        """
        bucket_name, path = parse_gcs_uri(gcs_uri)

        try:
            return await asyncio.to_thread(self._generate, bucket_name, path)
        except Exception as e:
            raise SigningError(f"Failed to generate signed URL for {gcs_uri}: {e}") from e

    def _generate(self, bucket_name: str, path: str) -> str:
        if self._client is None:
            self._client = storage.Client()
        blob = self._client.bucket(bucket_name).blob(path)
        return blob.generate_signed_url(
            version="v4", method="GET", expiration=self.expiration
        )
