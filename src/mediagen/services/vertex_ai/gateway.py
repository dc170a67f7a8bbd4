"""Vertex AI gateway: Imagen, Veo, Lyria and Text-to-Speech over REST."""

import asyncio
import base64
import re
import uuid
from typing import Any, Optional, Protocol

import httpx
import structlog
from google.cloud import storage

from mediagen.core.config import Settings
from mediagen.services.exceptions import (
    GatewayError,
    GatewayPermanentError,
    GatewayTransientError,
)
from mediagen.services.vertex_ai.types import (
    IMAGEN_CAPABILITY_MODEL_ID,
    ModelType,
    OperationStatus,
    PredictionResponse,
    SpeechResult,
)

logger = structlog.get_logger(__name__)

TTS_SYNTHESIZE_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_OPERATION_MODEL_PATTERN = re.compile(
    r"^(projects/[^/]+/locations/[^/]+/publishers/[^/]+/models/[^/]+)/operations/"
)


class TokenProvider(Protocol):
    async def get_token(self) -> str: ...


def classify_response(response: httpx.Response, model_type: ModelType) -> None:
    """Raise the matching gateway error for a non-2xx response.

    Classification rules:
        - 429, 500, 502, 503, 504 -> GatewayTransientError
        - Any other 4xx/5xx -> GatewayPermanentError
    """
    if response.is_success:
        return

    status = response.status_code
    message = f"Vertex AI {model_type.value} request failed ({status}): {response.text}"
    if status in TRANSIENT_STATUS_CODES:
        raise GatewayTransientError(message, status_code=status, model_type=model_type.value)
    raise GatewayPermanentError(message, status_code=status, model_type=model_type.value)


class VertexAIGateway:
    """Client for the generative models used by the media service.

    Every call either returns a parsed response or raises a GatewayError
    subclass naming the model type. Storage identifiers are returned as-is;
    signing is left to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        token_provider: TokenProvider,
        storage_client: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gateway.

        Args:
            settings: Application settings (project, location, model ids, storage prefix)
            token_provider: Source of OAuth bearer tokens
            storage_client: google.cloud.storage.Client used for speech uploads
                (created lazily when omitted)
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.settings = settings
        self.token_provider = token_provider
        self._storage_client = storage_client
        self._transport = transport
        self.base_url = (
            f"https://{settings.vertex_ai_location}-aiplatform.googleapis.com/v1"
        )

    def model_endpoint(self, model_id: str, method: str) -> str:
        return (
            f"{self.base_url}/projects/{self.settings.vertex_ai_project_id}"
            f"/locations/{self.settings.vertex_ai_location}"
            f"/publishers/google/models/{model_id}:{method}"
        )

    async def generate_image(
        self,
        prompt: str,
        sample_count: int = 1,
        aspect_ratio: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        model_id: Optional[str] = None,
        reference_images: Optional[list[dict[str, Any]]] = None,
        seed: Optional[int] = None,
    ) -> PredictionResponse:
        """Generate images with Imagen.

        The capability model is used when reference images are supplied and no
        model is forced.
        """
        if model_id:
            selected_model = model_id
        elif reference_images:
            selected_model = IMAGEN_CAPABILITY_MODEL_ID
        else:
            selected_model = self.settings.vertex_ai_imagen_model_id

        instance: dict[str, Any] = {"prompt": prompt}
        if reference_images:
            instance["referenceImages"] = reference_images

        parameters = _compact(
            {
                "sampleCount": sample_count,
                "aspectRatio": aspect_ratio,
                "negativePrompt": negative_prompt,
                "seed": seed,
                "storageUri": self.settings.vertex_ai_storage_uri,
            }
        )

        logger.debug(
            "vertex_ai.image.requested", model_id=selected_model, sample_count=sample_count
        )
        data = await self._post(
            self.model_endpoint(selected_model, "predict"),
            {"instances": [instance], "parameters": parameters},
            ModelType.IMAGE,
        )
        return PredictionResponse.model_validate(data)

    async def upscale_image(
        self,
        gcs_uri: str,
        upscale_factor: str = "x2",
        model_id: Optional[str] = None,
    ) -> PredictionResponse:
        """Upscale a stored image (empty prompt, source image by gs:// URI)."""
        selected_model = model_id or self.settings.vertex_ai_upscale_model_id
        payload = {
            "instances": [{"prompt": "", "image": {"gcsUri": gcs_uri}}],
            "parameters": {
                "sampleCount": 1,
                "mode": "upscale",
                "upscaleConfig": {"upscaleFactor": upscale_factor or "x2"},
                "storageUri": self.settings.vertex_ai_storage_uri,
            },
        }

        logger.debug("vertex_ai.upscale.requested", model_id=selected_model, source=gcs_uri)
        data = await self._post(
            self.model_endpoint(selected_model, "predict"), payload, ModelType.IMAGE
        )
        return PredictionResponse.model_validate(data)

    async def generate_music(
        self,
        prompt: str,
        duration_seconds: int = 1,
        sample_count: int = 1,
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> PredictionResponse:
        """Generate music with Lyria."""
        instance = _compact({"prompt": prompt, "negativePrompt": negative_prompt, "seed": seed})
        parameters = {
            "sampleCount": sample_count,
            "duration": duration_seconds or 1,
            "storageUri": self.settings.vertex_ai_storage_uri,
        }

        data = await self._post(
            self.model_endpoint(self.settings.vertex_ai_lyria_model_id, "predict"),
            {"instances": [instance], "parameters": parameters},
            ModelType.MUSIC,
        )
        return PredictionResponse.model_validate(data)

    async def initiate_video_generation(
        self,
        prompt: str,
        sample_count: int = 1,
        duration_seconds: int = 1,
        aspect_ratio: Optional[str] = None,
        enhance_prompt: Optional[bool] = None,
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
        model_id: Optional[str] = None,
        reference_image: Optional[dict[str, Any]] = None,
    ) -> str:
        """Start a Veo long-running operation.

        Returns:
            Operation handle (``projects/.../operations/<id>``)

        Raises:
            GatewayPermanentError: Upstream accepted the call but returned no operation name
        """
        selected_model = model_id or self.settings.vertex_ai_veo_model_id

        instance: dict[str, Any] = {"prompt": prompt}
        if reference_image:
            instance["image"] = reference_image

        parameters = _compact(
            {
                "sampleCount": sample_count,
                "durationSeconds": duration_seconds,
                "aspectRatio": aspect_ratio,
                "enhancePrompt": enhance_prompt,
                "negativePrompt": negative_prompt,
                "seed": seed,
                "storageUri": self.settings.vertex_ai_storage_uri,
            }
        )

        data = await self._post(
            self.model_endpoint(selected_model, "predictLongRunning"),
            {"instances": [instance], "parameters": parameters},
            ModelType.VIDEO,
        )

        operation_name = data.get("name")
        if not operation_name:
            raise GatewayPermanentError(
                "No operation name returned from Veo API", model_type=ModelType.VIDEO.value
            )

        logger.info(
            "vertex_ai.video.initiated", operation_name=operation_name, model_id=selected_model
        )
        return operation_name

    async def check_operation_status(self, operation_name: str) -> OperationStatus:
        """Fetch the current state of a Veo operation.

        The status call goes to the model that owns the operation; the
        configured Veo model is used when the handle does not name one.
        """
        match = _OPERATION_MODEL_PATTERN.match(operation_name)
        if match:
            endpoint = f"{self.base_url}/{match.group(1)}:fetchPredictOperation"
        else:
            endpoint = self.model_endpoint(
                self.settings.vertex_ai_veo_model_id, "fetchPredictOperation"
            )

        data = await self._post(endpoint, {"operationName": operation_name}, ModelType.VIDEO)
        return OperationStatus.from_api(operation_name, data)

    async def synthesize_speech(
        self,
        text: str,
        voice: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> SpeechResult:
        """Synthesize MP3 speech and store it under ``audio/`` in the media bucket.

        Returns:
            SpeechResult with the gs:// identifier and object path (never a signed URL)
        """
        payload = {
            "input": {"text": text},
            "voice": {
                "languageCode": language_code or self.settings.tts_language_code,
                "name": voice or self.settings.tts_default_voice,
            },
            "audioConfig": {"audioEncoding": "MP3"},
        }
        data = await self._post(TTS_SYNTHESIZE_URL, payload, ModelType.SPEECH)

        audio_content = data.get("audioContent")
        if not audio_content:
            raise GatewayPermanentError(
                "No audio content returned from the API", model_type=ModelType.SPEECH.value
            )

        path = f"audio/{uuid.uuid4()}.mp3"
        bucket_name = self.settings.storage_bucket_name
        try:
            await asyncio.to_thread(
                self._upload, bucket_name, path, base64.b64decode(audio_content), "audio/mp3"
            )
        except Exception as e:
            raise GatewayTransientError(
                f"Failed to store audio file: {e}", model_type=ModelType.SPEECH.value
            ) from e

        return SpeechResult(storage_uri=f"gs://{bucket_name}/{path}", path=path)

    def _upload(self, bucket_name: str, path: str, content: bytes, content_type: str) -> None:
        if self._storage_client is None:
            self._storage_client = storage.Client(
                project=self.settings.vertex_ai_project_id or None
            )
        blob = self._storage_client.bucket(bucket_name).blob(path)
        blob.upload_from_string(content, content_type=content_type)

    async def _post(
        self, url: str, payload: dict[str, Any], model_type: ModelType
    ) -> dict[str, Any]:
        """POST JSON with a bearer token and return the decoded body.

        Raises:
            GatewayTransientError: Timeout, connection failure, 429 or 5xx
            GatewayPermanentError: Other 4xx, or a body that is not a JSON object
        """
        token = await self.token_provider.get_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        timeout = self.settings.vertex_ai_timeout_seconds

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise GatewayTransientError(
                f"Request timeout after {timeout}s: {e}", model_type=model_type.value
            ) from e
        except httpx.HTTPError as e:
            raise GatewayTransientError(f"Network error: {e}", model_type=model_type.value) from e

        try:
            classify_response(response, model_type)
        except GatewayError as e:
            logger.warning(
                "vertex_ai.request.failed",
                model_type=model_type.value,
                status_code=e.status_code,
                error_type=type(e).__name__,
            )
            raise

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayPermanentError(
                f"Malformed response from Vertex AI: {e}",
                status_code=response.status_code,
                model_type=model_type.value,
            ) from e

        if not isinstance(data, dict):
            raise GatewayPermanentError(
                "Malformed response from Vertex AI: expected a JSON object",
                status_code=response.status_code,
                model_type=model_type.value,
            )
        return data


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}
