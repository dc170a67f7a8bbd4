"""Media orchestration service.

Owns every GenerationRequest transition. Synchronous generations (image,
upscale, music, audio) follow one template:

1. Check the project exists, create the record in PENDING (own transaction)
2. Mark it PROCESSING, then call the gateway (no transaction held)
3. Store one result per usable prediction, mark SUCCEEDED and sign the
   results strictly, all in one transaction
4. On any failure: mark FAILED with the error message and re-raise

Signing happens before the SUCCEEDED commit, so a signing failure rolls back
the result rows and the record ends in FAILED rather than leaving a terminal
state. Read paths sign leniently. Every transition reads its row FOR UPDATE.
"""

import math
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import SQLAlchemyError

from mediagen.core.config import Settings
from mediagen.models.media_generation import (
    InvalidStateTransition,
    MediaGeneration,
    MediaType,
    RequestStatus,
)
from mediagen.models.media_job import MediaJobType
from mediagen.models.media_result import MediaResult
from mediagen.services.exceptions import (
    MediaGenerationNotFoundError,
    NoResultsError,
    PersistenceError,
    ProjectNotFoundError,
)
from mediagen.services.media.jobs import InitiateVideoJob, JobQueue
from mediagen.services.media.materializer import UrlSigner, materialize_results
from mediagen.services.media.schemas import (
    AudioGenerationRequest,
    GenerationRequest,
    ImageGenerationRequest,
    ImageUpscaleRequest,
    MediaGenerationResponse,
    MediaHistoryQuery,
    MediaResultView,
    MusicGenerationRequest,
    PaginatedMediaResponse,
    PaginationMeta,
    ReferenceImage,
    VideoGenerationAccepted,
    VideoGenerationRequest,
)
from mediagen.services.vertex_ai.gateway import VertexAIGateway
from mediagen.services.vertex_ai.types import OperationStatus, Prediction

logger = structlog.get_logger(__name__)

DEFAULT_IMAGE_MIME_TYPE = "image/png"
DEFAULT_AUDIO_MIME_TYPE = "audio/mp3"
DEFAULT_VIDEO_MIME_TYPE = "video/mp4"

# (position, storage identifier, metadata)
ResultItem = tuple[int, str, dict[str, Any]]


class MediaService:
    """Aggregate root for media generation requests and their results."""

    def __init__(
        self,
        uow_factory,
        gateway: VertexAIGateway,
        signer: UrlSigner,
        job_queue: JobQueue,
        settings: Settings,
    ):
        self.uow_factory = uow_factory
        self.gateway = gateway
        self.signer = signer
        self.job_queue = job_queue
        self.settings = settings

    async def generate(
        self, owner_id: str, request: GenerationRequest
    ) -> MediaGenerationResponse | VideoGenerationAccepted:
        """Dispatch a generation request by its media type."""
        if isinstance(request, ImageGenerationRequest):
            return await self.generate_image(owner_id, request)
        if isinstance(request, ImageUpscaleRequest):
            return await self.upscale_image(owner_id, request)
        if isinstance(request, MusicGenerationRequest):
            return await self.generate_music(owner_id, request)
        if isinstance(request, AudioGenerationRequest):
            return await self.generate_audio(owner_id, request)
        if isinstance(request, VideoGenerationRequest):
            operation_id = await self.generate_video_async(owner_id, request)
            return VideoGenerationAccepted(operation_id=operation_id)
        raise TypeError(f"Unsupported generation request: {type(request).__name__}")

    # Synchronous generations

    async def generate_image(
        self, owner_id: str, request: ImageGenerationRequest
    ) -> MediaGenerationResponse:
        async def produce() -> list[ResultItem]:
            response = await self.gateway.generate_image(
                prompt=request.prompt,
                sample_count=request.sample_count,
                aspect_ratio=_value(request.aspect_ratio),
                negative_prompt=request.negative_prompt,
                model_id=_value(request.model),
                reference_images=[ref.to_vertex() for ref in request.reference_images or []]
                or None,
                seed=request.seed,
            )
            return _prediction_items(response.predictions, DEFAULT_IMAGE_MIME_TYPE, request.prompt)

        return await self._generate_sync(owner_id, request, MediaType.IMAGE, produce)

    async def upscale_image(
        self, owner_id: str, request: ImageUpscaleRequest
    ) -> MediaGenerationResponse:
        async def produce() -> list[ResultItem]:
            response = await self.gateway.upscale_image(
                gcs_uri=request.gcs_uri,
                upscale_factor=request.upscale_factor.value,
                model_id=_value(request.model),
            )
            return _prediction_items(
                response.predictions,
                DEFAULT_IMAGE_MIME_TYPE,
                request.prompt,
                extra={"upscaleFactor": request.upscale_factor.value},
            )

        return await self._generate_sync(owner_id, request, MediaType.IMAGE, produce)

    async def generate_music(
        self, owner_id: str, request: MusicGenerationRequest
    ) -> MediaGenerationResponse:
        async def produce() -> list[ResultItem]:
            response = await self.gateway.generate_music(
                prompt=request.prompt,
                duration_seconds=request.duration_seconds,
                sample_count=1,
                negative_prompt=request.negative_prompt,
                seed=request.seed,
            )
            return _prediction_items(
                response.predictions,
                DEFAULT_AUDIO_MIME_TYPE,
                request.prompt,
                extra={"durationSeconds": request.duration_seconds, "genre": _value(request.genre)},
            )

        return await self._generate_sync(owner_id, request, MediaType.MUSIC, produce)

    async def generate_audio(
        self, owner_id: str, request: AudioGenerationRequest
    ) -> MediaGenerationResponse:
        async def produce() -> list[ResultItem]:
            speech = await self.gateway.synthesize_speech(
                text=request.prompt,
                voice=request.audio_style or self.settings.tts_default_voice,
            )
            metadata = _compact(
                {
                    "index": 0,
                    "mimeType": DEFAULT_AUDIO_MIME_TYPE,
                    "prompt": request.prompt,
                    "durationSeconds": request.duration_seconds,
                    "voice": request.audio_style,
                    "filePath": speech.path,
                }
            )
            return [(0, speech.storage_uri, metadata)]

        return await self._generate_sync(owner_id, request, MediaType.AUDIO, produce)

    async def _generate_sync(
        self,
        owner_id: str,
        request: Any,
        media_type: MediaType,
        produce: Callable[[], Awaitable[list[ResultItem]]],
    ) -> MediaGenerationResponse:
        async with await self.uow_factory() as uow:
            await self._require_project(uow, request.project_id)
            generation = await uow.generations.add(
                MediaGeneration(
                    owner_id=owner_id,
                    project_id=request.project_id,
                    media_type=media_type,
                    prompt=request.prompt,
                    parameters=request.parameters_snapshot(),
                    status=RequestStatus.PENDING,
                )
            )
            generation_id = generation.id

        logger.info(
            "media.generation.started",
            generation_id=str(generation_id),
            media_type=media_type.value,
            owner_id=owner_id,
        )

        try:
            async with await self.uow_factory() as uow:
                generation = await uow.generations.get_by_id(generation_id, for_update=True)
                if generation is None:
                    raise MediaGenerationNotFoundError(f"Media generation {generation_id} vanished")
                generation.mark_processing()
                await uow.generations.save(generation)

            items = await produce()

            async with await self.uow_factory() as uow:
                generation = await uow.generations.get_by_id(generation_id, for_update=True)
                if generation is None:
                    raise MediaGenerationNotFoundError(f"Media generation {generation_id} vanished")

                stored = await self._store_results(uow, generation, items)
                if stored == 0:
                    raise NoResultsError()

                generation.mark_succeeded()
                await uow.generations.save(generation)

                results = await uow.results.get_by_generation(generation_id)
                views = await materialize_results(
                    [MediaResultView.from_result(r) for r in results], self.signer, strict=True
                )
                response = MediaGenerationResponse.build(generation, views)

        except Exception as e:
            logger.error(
                "media.generation.failed",
                generation_id=str(generation_id),
                media_type=media_type.value,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await self._fail_generation(generation_id, _error_message(e))
            raise

        logger.info(
            "media.generation.succeeded",
            generation_id=str(generation_id),
            media_type=media_type.value,
            result_count=len(response.results),
        )
        return response

    # Asynchronous video

    async def generate_video_async(self, owner_id: str, request: VideoGenerationRequest) -> str:
        """Queue an initiate job and return the fresh operation id immediately."""
        async with await self.uow_factory() as uow:
            await self._require_project(uow, request.project_id)

        operation_id = str(uuid4())
        await self.job_queue.enqueue(
            MediaJobType.INITIATE_VIDEO_GENERATION,
            InitiateVideoJob(
                owner_id=owner_id,
                project_id=request.project_id,
                prompt=request.prompt,
                operation_id=operation_id,
                parameters=request.parameters_snapshot(),
            ),
        )
        logger.info("media.video.accepted", operation_id=operation_id, owner_id=owner_id)
        return operation_id

    async def initiate_video_generation(
        self,
        owner_id: str,
        project_id: UUID,
        prompt: str,
        parameters: dict[str, Any],
        operation_id: str,
    ) -> str:
        """Create the PROCESSING record and start the Veo operation.

        Safe to re-run for the same ``operation_id``: an already recorded
        operation name is returned without calling the gateway again.

        Returns:
            Gateway operation handle

        Raises:
            ProjectNotFoundError: Project does not exist
            InvalidStateTransition: The record for this operation id already failed
            GatewayError: Initiate call failed (record is marked FAILED first)
        """
        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_operation_id(owner_id, operation_id)

            if generation is not None:
                if generation.operation_name:
                    logger.info(
                        "video.initiate.already_started",
                        operation_id=operation_id,
                        operation_name=generation.operation_name,
                    )
                    return generation.operation_name
                if generation.is_terminal:
                    raise InvalidStateTransition(
                        f"Video generation {operation_id} is already {generation.status.value}"
                    )
            else:
                await self._require_project(uow, project_id)
                generation = await uow.generations.add(
                    MediaGeneration(
                        owner_id=owner_id,
                        project_id=project_id,
                        media_type=MediaType.VIDEO,
                        prompt=prompt,
                        parameters=dict(parameters),
                        status=RequestStatus.PROCESSING,
                        operation_id=operation_id,
                    )
                )
            generation_id = generation.id

        try:
            operation_name = await self.gateway.initiate_video_generation(
                **_video_gateway_args(prompt, parameters)
            )
        except Exception as e:
            logger.error(
                "video.initiate.failed",
                generation_id=str(generation_id),
                operation_id=operation_id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await self._fail_generation(generation_id, _error_message(e))
            raise

        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_id(generation_id, for_update=True)
            if generation is None:
                raise MediaGenerationNotFoundError(f"Media generation {generation_id} vanished")
            generation.record_operation_name(operation_name)
            await uow.generations.save(generation)

        logger.info(
            "video.initiate.succeeded",
            generation_id=str(generation_id),
            operation_id=operation_id,
            operation_name=operation_name,
        )
        return operation_name

    async def check_video_generation_status(self, operation_name: str) -> OperationStatus:
        logger.debug("video.status.checking", operation_name=operation_name)
        return await self.gateway.check_operation_status(operation_name)

    async def handle_completed_video_generation(
        self, owner_id: str, operation_name: str, predictions: list[Prediction]
    ) -> None:
        """Store the finished videos and close the record.

        A missing record is logged and ignored. A record that is already
        terminal is left untouched. Storage failures and empty result sets
        mark the record FAILED.
        """
        generation_id: Optional[UUID] = None
        try:
            async with await self.uow_factory() as uow:
                generation = await uow.generations.get_by_operation_name(
                    owner_id, operation_name, for_update=True
                )
                if generation is None:
                    logger.warning(
                        "video.completion.record_not_found", operation_name=operation_name
                    )
                    return
                if generation.is_terminal:
                    logger.info(
                        "video.completion.already_terminal",
                        generation_id=str(generation.id),
                        status=generation.status.value,
                    )
                    return

                generation_id = generation.id
                items = _prediction_items(predictions, DEFAULT_VIDEO_MIME_TYPE, generation.prompt)
                stored = await self._store_results(uow, generation, items)
                if stored == 0:
                    raise NoResultsError()

                generation.mark_succeeded()
                await uow.generations.save(generation)

        except Exception as e:
            if generation_id is None:
                raise
            logger.error(
                "video.completion.failed",
                generation_id=str(generation_id),
                operation_name=operation_name,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await self._fail_generation(generation_id, _error_message(e))
            return

        logger.info(
            "video.completion.succeeded",
            generation_id=str(generation_id),
            operation_name=operation_name,
            result_count=stored,
        )

    async def mark_video_generation_failed(
        self, owner_id: str, operation_name: str, error_message: str
    ) -> bool:
        """Mark the record behind an operation FAILED.

        Returns:
            True if the record transitioned, False if missing or already terminal
        """
        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_operation_name(
                owner_id, operation_name, for_update=True
            )
            if generation is None:
                logger.warning("video.failure.record_not_found", operation_name=operation_name)
                return False
            if generation.is_terminal:
                return False

            generation.mark_failed(error_message)
            await uow.generations.save(generation)

        logger.info(
            "video.failure.recorded",
            generation_id=str(generation.id),
            operation_name=operation_name,
        )
        return True

    # Reads

    async def get_video_generation_results(
        self, owner_id: str, operation_id: str
    ) -> MediaGenerationResponse:
        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_operation_id(owner_id, operation_id)
            if generation is None:
                raise MediaGenerationNotFoundError("Media generation not found")
            results = await uow.results.get_by_generation(generation.id)

        return await self._present(generation, results)

    async def get_media_request_by_id(
        self, owner_id: str, generation_id: UUID
    ) -> MediaGenerationResponse:
        async with await self.uow_factory() as uow:
            generation = await uow.generations.get_by_id(generation_id, owner_id=owner_id)
            if generation is None:
                raise MediaGenerationNotFoundError("Media request not found")
            results = await uow.results.get_by_generation(generation.id)

        return await self._present(generation, results)

    async def get_media_history(
        self, owner_id: str, query: MediaHistoryQuery
    ) -> PaginatedMediaResponse:
        """List the owner's generations newest first, with paging metadata."""
        filters = {
            "media_type": query.media_type,
            "status": query.status,
            "project_id": query.project_id,
            "search": query.search,
        }

        async with await self.uow_factory() as uow:
            generations = await uow.generations.search(
                owner_id, offset=query.offset, limit=query.limit, **filters
            )
            total = await uow.generations.count(owner_id, **filters)
            results_by_generation = await uow.results.get_by_generations(
                [generation.id for generation in generations]
            )

        data = []
        for generation in generations:
            data.append(
                await self._present(generation, results_by_generation.get(generation.id, []))
            )

        return PaginatedMediaResponse(
            data=data,
            meta=PaginationMeta(
                total_items=total,
                item_count=len(data),
                items_per_page=query.limit,
                total_pages=math.ceil(total / query.limit),
                current_page=query.page,
            ),
        )

    # Helpers

    async def _present(
        self, generation: MediaGeneration, results: list[MediaResult]
    ) -> MediaGenerationResponse:
        views = await materialize_results(
            [MediaResultView.from_result(r) for r in results], self.signer, strict=False
        )
        return MediaGenerationResponse.build(generation, views)

    async def _require_project(self, uow, project_id: UUID) -> None:
        if await uow.projects.get_by_id(project_id) is None:
            raise ProjectNotFoundError(project_id)

    async def _store_results(
        self, uow, generation: MediaGeneration, items: list[ResultItem]
    ) -> int:
        """Add one result row per item, skipping positions already stored.

        Returns:
            Number of results now stored for the given items
        """
        stored = 0
        for position, gcs_uri, metadata in items:
            if await uow.results.exists(generation.id, position):
                stored += 1
                continue
            try:
                await uow.results.add(
                    MediaResult(
                        media_generation_id=generation.id,
                        position=position,
                        result_url=gcs_uri,
                        result_metadata=metadata,
                    )
                )
            except SQLAlchemyError as e:
                logger.error(
                    "media.result.persist_failed",
                    generation_id=str(generation.id),
                    gcs_uri=gcs_uri,
                    error_message=str(e),
                )
                raise PersistenceError(f"Failed to create media result: {e}") from e
            stored += 1
        return stored

    async def _fail_generation(self, generation_id: UUID, error_message: str) -> None:
        """Mark a record FAILED unless it is already terminal.

        Errors while recording the failure are logged so the original error
        reaches the caller.
        """
        try:
            async with await self.uow_factory() as uow:
                generation = await uow.generations.get_by_id(generation_id, for_update=True)
                if generation is None or generation.is_terminal:
                    return
                generation.mark_failed(error_message)
                await uow.generations.save(generation)
        except Exception as e:
            logger.error(
                "media.generation.fail_update_failed",
                generation_id=str(generation_id),
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )


def _prediction_items(
    predictions: list[Prediction],
    default_mime_type: str,
    prompt: str,
    extra: Optional[dict[str, Any]] = None,
) -> list[ResultItem]:
    items: list[ResultItem] = []
    for index, prediction in enumerate(predictions):
        if not prediction.gcs_uri:
            continue
        metadata = {
            "index": index,
            "mimeType": prediction.mime_type or default_mime_type,
            "prompt": prediction.prompt or prompt,
            **_compact(extra or {}),
        }
        items.append((index, prediction.gcs_uri, metadata))
    return items


def _video_gateway_args(prompt: str, parameters: dict[str, Any]) -> dict[str, Any]:
    reference_image = parameters.get("reference_image")
    return {
        "prompt": prompt,
        "sample_count": parameters.get("sample_count") or 1,
        "duration_seconds": parameters.get("duration_seconds") or 1,
        "aspect_ratio": parameters.get("aspect_ratio"),
        "enhance_prompt": parameters.get("enhance_prompt"),
        "negative_prompt": parameters.get("negative_prompt"),
        "seed": parameters.get("seed"),
        "model_id": parameters.get("model"),
        "reference_image": (
            ReferenceImage.model_validate(reference_image).to_vertex() if reference_image else None
        ),
    }


def _value(member: Any) -> Any:
    return member.value if member is not None else None


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _error_message(error: Exception) -> str:
    return str(error) or type(error).__name__
