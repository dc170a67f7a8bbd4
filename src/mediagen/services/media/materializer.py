"""Signed URL materialization for result views.

Stored results keep their storage-native identifier (gs://...). At response
time each such identifier is swapped for a time-limited signed URL and the
original is kept in the metadata under ``originalGcsUri``. Inputs are never
modified; a new list of new views is returned.
"""

from typing import Protocol, Sequence

import structlog

from mediagen.services.media.schemas import MediaResultView

logger = structlog.get_logger(__name__)

STORAGE_URI_PREFIX = "gs://"
ORIGINAL_URI_KEY = "originalGcsUri"


class UrlSigner(Protocol):
    async def sign(self, gcs_uri: str) -> str: ...


def is_storage_native(url: str) -> bool:
    return url.startswith(STORAGE_URI_PREFIX)


async def materialize_results(
    results: Sequence[MediaResultView],
    signer: UrlSigner,
    strict: bool = False,
) -> list[MediaResultView]:
    """Return copies of ``results`` with storage identifiers replaced by signed URLs.

    Args:
        results: Views to materialize (left untouched)
        signer: Collaborator producing signed URLs
        strict: When True the first signing failure propagates (generation
            path); otherwise the failing entry keeps its identifier (read path)

    Returns:
        New list, same length and order as ``results``
    """
    materialized: list[MediaResultView] = []

    for result in results:
        if not is_storage_native(result.result_url):
            materialized.append(result.model_copy(deep=True))
            continue

        try:
            signed_url = await signer.sign(result.result_url)
        except Exception as e:
            logger.warning(
                "media.signing.failed",
                result_id=str(result.id),
                gcs_uri=result.result_url,
                strict=strict,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            if strict:
                raise
            materialized.append(result.model_copy(deep=True))
            continue

        materialized.append(
            result.model_copy(
                update={
                    "result_url": signed_url,
                    "metadata": {**result.metadata, ORIGINAL_URI_KEY: result.result_url},
                }
            )
        )

    return materialized
