"""Google Cloud access tokens for the Vertex AI REST surface."""

import asyncio
from typing import Optional

import google.auth
import google.auth.transport.requests
import structlog
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError

from mediagen.services.exceptions import GatewayPermanentError

logger = structlog.get_logger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class AccessTokenProvider:
    """Hands out bearer tokens from application default credentials.

    Credentials are loaded on first use and refreshed only when expired. The
    google-auth SDK is synchronous, so loading and refreshing run in a worker thread.
    """

    def __init__(self, project_id: str, credentials: Optional[Credentials] = None):
        self.project_id = project_id
        self._credentials = credentials
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid access token.

        Raises:
            GatewayPermanentError: Credentials could not be loaded or refreshed
        """
        async with self._lock:
            try:
                if self._credentials is None:
                    self._credentials = await asyncio.to_thread(self._load_credentials)
                if not self._credentials.valid:
                    await asyncio.to_thread(
                        self._credentials.refresh, google.auth.transport.requests.Request()
                    )
            except GoogleAuthError as e:
                logger.error(
                    "vertex_ai.auth.failed",
                    project_id=self.project_id,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )
                raise GatewayPermanentError(
                    f"Failed to authenticate with Google Cloud: {e}"
                ) from e

            token = self._credentials.token
            if not token:
                raise GatewayPermanentError("No token returned from Google authentication")
            return token

    def _load_credentials(self) -> Credentials:
        credentials, _ = google.auth.default(
            scopes=[CLOUD_PLATFORM_SCOPE], quota_project_id=self.project_id or None
        )
        return credentials
