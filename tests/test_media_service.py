"""MediaService orchestration tests.

Tests cover:
- Synchronous image/upscale/music/audio generation end to end
- Result rows keep storage-native identifiers; responses carry signed URLs
- Every failure path leaves the record FAILED with an error message
- Video initiate idempotency and completion handling
- Read paths sign leniently
"""

from uuid import uuid4

import pytest
from conftest import OWNER_ID, SIGNED_PREFIX, gcs_predictions
from sqlalchemy.exc import SQLAlchemyError

from mediagen.models.media_generation import (
    InvalidStateTransition,
    MediaGeneration,
    MediaType,
    RequestStatus,
)
from mediagen.models.media_job import MediaJobType
from mediagen.models.media_result import MediaResult
from mediagen.repositories.media_result import MediaResultRepository
from mediagen.services.exceptions import (
    GatewayPermanentError,
    MediaGenerationNotFoundError,
    NoResultsError,
    PersistenceError,
    ProjectNotFoundError,
    SigningError,
)
from mediagen.services.media.materializer import ORIGINAL_URI_KEY
from mediagen.services.media.schemas import (
    AudioGenerationRequest,
    ImageGenerationRequest,
    ImageUpscaleRequest,
    MediaHistoryQuery,
    MusicGenerationRequest,
    VideoGenerationAccepted,
    VideoGenerationRequest,
)
from mediagen.services.vertex_ai.types import Prediction, PredictionResponse

SAMPLE_URIS = [f"gs://gen-bucket/sample_{i}.png" for i in range(4)]


async def only_generation(uow_factory) -> MediaGeneration:
    async with await uow_factory() as uow:
        generations = await uow.generations.search(OWNER_ID, limit=100)
    assert len(generations) == 1
    return generations[0]


async def stored_results(uow_factory, generation_id) -> list[MediaResult]:
    async with await uow_factory() as uow:
        return await uow.results.get_by_generation(generation_id)


# ====================
# Synchronous generation
# ====================


@pytest.mark.asyncio
async def test_generate_image_stores_identifiers_and_returns_signed_urls(
    media_service, fake_gateway, uow_factory, project
):
    """Four predictions become four stored gs:// rows and four signed response URLs."""
    fake_gateway.predictions = gcs_predictions(*SAMPLE_URIS)
    request = ImageGenerationRequest(
        project_id=project.id, prompt="A beautiful sunset", sample_count=4, aspect_ratio="16:9"
    )

    response = await media_service.generate_image(OWNER_ID, request)

    assert response.status == RequestStatus.SUCCEEDED
    assert response.media_type == MediaType.IMAGE
    assert len(response.results) == 4
    assert all(not r.result_url.startswith("gs://") for r in response.results)
    assert all(r.result_url.startswith(SIGNED_PREFIX) for r in response.results)
    assert [r.metadata[ORIGINAL_URI_KEY] for r in response.results] == SAMPLE_URIS

    rows = await stored_results(uow_factory, response.id)
    assert [r.result_url for r in rows] == SAMPLE_URIS
    assert rows[2].result_metadata == {
        "index": 2,
        "mimeType": "image/png",
        "prompt": "A beautiful sunset",
    }

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.SUCCEEDED
    assert generation.parameters == {"aspect_ratio": "16:9", "sample_count": 4}

    [call] = fake_gateway.calls_to("generate_image")
    assert call["sample_count"] == 4
    assert call["aspect_ratio"] == "16:9"
    assert call["reference_images"] is None


@pytest.mark.asyncio
async def test_generate_image_skips_predictions_without_identifier(
    media_service, fake_gateway, uow_factory, project
):
    fake_gateway.predictions = [
        Prediction(gcs_uri="gs://gen-bucket/sample_0.png"),
        Prediction(rai_filtered_reason="filtered"),
        Prediction(gcs_uri="gs://gen-bucket/sample_2.png"),
    ]

    response = await media_service.generate_image(
        OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Two birds", sample_count=3)
    )

    assert len(response.results) == 2
    rows = await stored_results(uow_factory, response.id)
    assert [r.position for r in rows] == [0, 2]


@pytest.mark.asyncio
async def test_zero_predictions_marks_failed(media_service, fake_gateway, uow_factory, project):
    fake_gateway.predictions = []

    with pytest.raises(NoResultsError):
        await media_service.generate_image(
            OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Nothing")
        )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert generation.error_message == "No valid results returned from AI service"


@pytest.mark.asyncio
async def test_zero_predictions_marks_music_failed(
    media_service, fake_gateway, uow_factory, project
):
    fake_gateway.predictions = [Prediction(rai_filtered_reason="blocked")]

    with pytest.raises(NoResultsError):
        await media_service.generate_music(
            OWNER_ID, MusicGenerationRequest(project_id=project.id, prompt="Loud drums")
        )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert generation.error_message


@pytest.mark.asyncio
async def test_missing_project_creates_no_record(media_service, fake_gateway, uow_factory):
    with pytest.raises(ProjectNotFoundError):
        await media_service.generate_image(
            OWNER_ID, ImageGenerationRequest(project_id=uuid4(), prompt="Orphan")
        )

    assert fake_gateway.calls == []
    async with await uow_factory() as uow:
        assert await uow.generations.count(OWNER_ID) == 0


@pytest.mark.asyncio
async def test_gateway_failure_marks_failed_and_propagates(
    media_service, fake_gateway, uow_factory, project
):
    fake_gateway.error = GatewayPermanentError(
        "Vertex AI image request failed (400): invalid prompt",
        status_code=400,
        model_type="image",
    )

    with pytest.raises(GatewayPermanentError):
        await media_service.generate_image(
            OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Bad")
        )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert "invalid prompt" in generation.error_message


@pytest.mark.asyncio
async def test_strict_signing_failure_marks_failed_without_results(
    media_service, fake_gateway, fake_signer, uow_factory, project
):
    """A signing error on the generation path rolls back results and fails the record."""
    fake_gateway.predictions = gcs_predictions(*SAMPLE_URIS[:2])
    fake_signer.failing = {SAMPLE_URIS[1]}

    with pytest.raises(SigningError):
        await media_service.generate_image(
            OWNER_ID,
            ImageGenerationRequest(project_id=project.id, prompt="Sunset", sample_count=2),
        )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert await stored_results(uow_factory, generation.id) == []


@pytest.mark.asyncio
async def test_result_persistence_failure_marks_failed_and_raises(
    media_service, fake_gateway, uow_factory, project, monkeypatch
):
    fake_gateway.predictions = gcs_predictions(*SAMPLE_URIS[:2])
    add_result = MediaResultRepository.add
    attempts = []

    async def fail_second_add(self, result):
        attempts.append(result.position)
        if len(attempts) == 2:
            raise SQLAlchemyError("disk I/O error")
        return await add_result(self, result)

    monkeypatch.setattr(MediaResultRepository, "add", fail_second_add)

    with pytest.raises(PersistenceError, match="Failed to create media result"):
        await media_service.generate_image(
            OWNER_ID,
            ImageGenerationRequest(project_id=project.id, prompt="Two birds", sample_count=2),
        )

    generation = await only_generation(uow_factory)
    assert attempts == [0, 1]
    assert generation.status == RequestStatus.FAILED
    assert "disk I/O error" in generation.error_message
    # The first row was rolled back with the rest of the transaction
    assert await stored_results(uow_factory, generation.id) == []


@pytest.mark.asyncio
async def test_record_is_processing_while_gateway_runs(
    media_service, fake_gateway, uow_factory, project, monkeypatch
):
    seen = []

    async def generate_image(**kwargs):
        seen.append((await only_generation(uow_factory)).status)
        return PredictionResponse(predictions=gcs_predictions(SAMPLE_URIS[0]))

    monkeypatch.setattr(fake_gateway, "generate_image", generate_image)

    await media_service.generate_image(
        OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Sunset")
    )

    assert seen == [RequestStatus.PROCESSING]
    assert (await only_generation(uow_factory)).status == RequestStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_upscale_image_records_image_generation(
    media_service, fake_gateway, uow_factory, project
):
    fake_gateway.predictions = gcs_predictions("gs://gen-bucket/upscaled.png")
    request = ImageUpscaleRequest(
        project_id=project.id,
        prompt="Upscale the sunset",
        gcs_uri="gs://gen-bucket/sample_0.png",
        upscale_factor="x4",
    )

    response = await media_service.upscale_image(OWNER_ID, request)

    assert response.media_type == MediaType.IMAGE
    assert response.results[0].metadata["upscaleFactor"] == "x4"
    [call] = fake_gateway.calls_to("upscale_image")
    assert call == {
        "gcs_uri": "gs://gen-bucket/sample_0.png",
        "upscale_factor": "x4",
        "model_id": None,
    }


@pytest.mark.asyncio
async def test_generate_music(media_service, fake_gateway, uow_factory, project):
    fake_gateway.predictions = [Prediction(gcs_uri="gs://gen-bucket/track.wav")]
    request = MusicGenerationRequest(
        project_id=project.id, prompt="Lo-fi beats", duration_seconds=6, genre="JAZZ"
    )

    response = await media_service.generate_music(OWNER_ID, request)

    assert response.media_type == MediaType.MUSIC
    [result] = response.results
    assert result.metadata["mimeType"] == "audio/mp3"
    assert result.metadata["durationSeconds"] == 6
    assert result.metadata["genre"] == "JAZZ"
    assert fake_gateway.calls_to("generate_music")[0]["duration_seconds"] == 6


@pytest.mark.asyncio
async def test_generate_audio_stores_storage_identifier(
    media_service, fake_gateway, uow_factory, project, settings
):
    request = AudioGenerationRequest(project_id=project.id, prompt="Welcome to the show")

    response = await media_service.generate_audio(OWNER_ID, request)

    assert response.media_type == MediaType.AUDIO
    [result] = response.results
    assert result.result_url == SIGNED_PREFIX + "media-assets/audio/speech.mp3"
    assert result.metadata["filePath"] == "audio/speech.mp3"

    rows = await stored_results(uow_factory, response.id)
    assert rows[0].result_url == "gs://media-assets/audio/speech.mp3"
    [call] = fake_gateway.calls_to("synthesize_speech")
    assert call["voice"] == settings.tts_default_voice


@pytest.mark.asyncio
async def test_generate_dispatches_video_to_queue(media_service, uow_factory, project):
    accepted = await media_service.generate(
        OWNER_ID, VideoGenerationRequest(project_id=project.id, prompt="A fox in snow")
    )

    assert isinstance(accepted, VideoGenerationAccepted)
    async with await uow_factory() as uow:
        jobs = await uow.jobs.list_by_type(MediaJobType.INITIATE_VIDEO_GENERATION)
    assert jobs[0].payload["operation_id"] == accepted.operation_id


# ====================
# Video lifecycle
# ====================


@pytest.mark.asyncio
async def test_generate_video_async_requires_project(media_service, uow_factory):
    with pytest.raises(ProjectNotFoundError):
        await media_service.generate_video_async(
            OWNER_ID, VideoGenerationRequest(project_id=uuid4(), prompt="Nowhere")
        )

    async with await uow_factory() as uow:
        assert await uow.jobs.list_by_type(MediaJobType.INITIATE_VIDEO_GENERATION) == []


@pytest.mark.asyncio
async def test_initiate_video_generation_is_idempotent(
    media_service, fake_gateway, uow_factory, project
):
    parameters = {"duration_seconds": 5, "aspect_ratio": "9:16", "enhance_prompt": True}

    first = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox in snow", parameters, "op-local-1"
    )
    second = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox in snow", parameters, "op-local-1"
    )

    assert first == second == fake_gateway.operation_name
    [call] = fake_gateway.calls_to("initiate_video_generation")
    assert call["duration_seconds"] == 5
    assert call["aspect_ratio"] == "9:16"

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.PROCESSING
    assert generation.operation_id == "op-local-1"
    assert generation.operation_name == fake_gateway.operation_name
    assert generation.parameters["operation_name"] == fake_gateway.operation_name


@pytest.mark.asyncio
async def test_initiate_failure_marks_failed_and_blocks_rerun(
    media_service, fake_gateway, uow_factory, project
):
    fake_gateway.error = GatewayPermanentError("No operation name returned from Veo API")

    with pytest.raises(GatewayPermanentError):
        await media_service.initiate_video_generation(
            OWNER_ID, project.id, "A fox", {}, "op-local-2"
        )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert generation.error_message == "No operation name returned from Veo API"

    fake_gateway.error = None
    with pytest.raises(InvalidStateTransition):
        await media_service.initiate_video_generation(
            OWNER_ID, project.id, "A fox", {}, "op-local-2"
        )


@pytest.mark.asyncio
async def test_handle_completed_video_generation(
    media_service, fake_gateway, uow_factory, project
):
    name = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox", {}, "op-local-3"
    )
    predictions = [Prediction(gcs_uri="gs://gen-bucket/video.mp4")]

    await media_service.handle_completed_video_generation(OWNER_ID, name, predictions)
    # Redelivery must not duplicate rows or fail the record
    await media_service.handle_completed_video_generation(OWNER_ID, name, predictions)

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.SUCCEEDED
    rows = await stored_results(uow_factory, generation.id)
    assert [r.result_url for r in rows] == ["gs://gen-bucket/video.mp4"]
    assert rows[0].result_metadata["mimeType"] == "video/mp4"


@pytest.mark.asyncio
async def test_handle_completed_without_videos_marks_failed(
    media_service, uow_factory, project
):
    name = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox", {}, "op-local-4"
    )

    await media_service.handle_completed_video_generation(OWNER_ID, name, [])

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert generation.error_message == "No valid results returned from AI service"


@pytest.mark.asyncio
async def test_completion_persistence_failure_marks_failed_without_raising(
    media_service, uow_factory, project, monkeypatch
):
    name = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox", {}, "op-local-5"
    )

    async def failing_add(self, result):
        raise SQLAlchemyError("connection reset")

    monkeypatch.setattr(MediaResultRepository, "add", failing_add)

    await media_service.handle_completed_video_generation(
        OWNER_ID, name, [Prediction(gcs_uri="gs://gen-bucket/video.mp4")]
    )

    generation = await only_generation(uow_factory)
    assert generation.status == RequestStatus.FAILED
    assert "Failed to create media result" in generation.error_message
    assert "connection reset" in generation.error_message
    assert await stored_results(uow_factory, generation.id) == []


@pytest.mark.asyncio
async def test_mark_video_generation_failed(media_service, uow_factory, project):
    name = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox", {}, "op-local-5"
    )

    assert await media_service.mark_video_generation_failed(OWNER_ID, name, "boom") is True
    assert await media_service.mark_video_generation_failed(OWNER_ID, name, "again") is False
    assert await media_service.mark_video_generation_failed(OWNER_ID, "unknown", "x") is False

    generation = await only_generation(uow_factory)
    assert generation.error_message == "boom"


# ====================
# Reads
# ====================


@pytest.mark.asyncio
async def test_get_video_generation_results(media_service, project):
    name = await media_service.initiate_video_generation(
        OWNER_ID, project.id, "A fox", {}, "op-local-6"
    )
    await media_service.handle_completed_video_generation(
        OWNER_ID, name, [Prediction(gcs_uri="gs://gen-bucket/video.mp4")]
    )

    response = await media_service.get_video_generation_results(OWNER_ID, "op-local-6")

    assert response.status == RequestStatus.SUCCEEDED
    assert response.results[0].result_url == SIGNED_PREFIX + "gen-bucket/video.mp4"

    with pytest.raises(MediaGenerationNotFoundError):
        await media_service.get_video_generation_results("someone-else", "op-local-6")


@pytest.mark.asyncio
async def test_get_media_request_by_id_scoped_to_owner(media_service, fake_gateway, project):
    fake_gateway.predictions = gcs_predictions(SAMPLE_URIS[0])
    created = await media_service.generate_image(
        OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Sunset")
    )

    fetched = await media_service.get_media_request_by_id(OWNER_ID, created.id)
    assert fetched.id == created.id
    assert len(fetched.results) == 1

    with pytest.raises(MediaGenerationNotFoundError):
        await media_service.get_media_request_by_id("someone-else", created.id)


@pytest.mark.asyncio
async def test_history_read_keeps_identifier_when_signing_fails(
    media_service, fake_gateway, fake_signer, project
):
    """One failing signature does not fail the read; the other record is signed."""
    fake_gateway.predictions = gcs_predictions("gs://gen-bucket/first.png")
    await media_service.generate_image(
        OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="First")
    )
    fake_gateway.predictions = gcs_predictions("gs://gen-bucket/second.png")
    await media_service.generate_image(
        OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt="Second")
    )
    fake_signer.failing = {"gs://gen-bucket/first.png"}

    history = await media_service.get_media_history(OWNER_ID, MediaHistoryQuery())

    assert history.meta.total_items == 2
    urls = {item.prompt: item.results[0].result_url for item in history.data}
    assert urls["First"] == "gs://gen-bucket/first.png"
    assert urls["Second"] == SIGNED_PREFIX + "gen-bucket/second.png"


@pytest.mark.asyncio
async def test_history_pagination_meta(media_service, fake_gateway, project):
    fake_gateway.predictions = gcs_predictions(SAMPLE_URIS[0])
    for i in range(5):
        await media_service.generate_image(
            OWNER_ID, ImageGenerationRequest(project_id=project.id, prompt=f"Prompt {i}")
        )

    page = await media_service.get_media_history(OWNER_ID, MediaHistoryQuery(page=3, limit=2))

    assert page.meta.total_items == 5
    assert page.meta.total_pages == 3
    assert page.meta.current_page == 3
    assert page.meta.item_count == 1
    assert page.meta.items_per_page == 2

    filtered = await media_service.get_media_history(
        OWNER_ID, MediaHistoryQuery(search="  prompt 4 ")
    )
    assert [item.prompt for item in filtered.data] == ["Prompt 4"]


@pytest.mark.asyncio
async def test_history_empty(media_service):
    page = await media_service.get_media_history(OWNER_ID, MediaHistoryQuery())

    assert page.data == []
    assert page.meta.total_items == 0
    assert page.meta.total_pages == 0
