"""Media generation API endpoints.

- POST /api/media/image - Generate images (synchronous)
- POST /api/media/image/upscale - Upscale a stored image (synchronous)
- POST /api/media/music - Generate music (synchronous)
- POST /api/media/audio - Synthesize speech (synchronous)
- POST /api/media/video - Queue a video generation (202 with operation id)
- GET /api/media/video/{operation_id} - Video generation status and results
- GET /api/media/{generation_id} - One generation request
- GET /api/media - Paginated generation history
- POST /api/media - Generate any media type, selected by the body's media_type
"""

from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from mediagen.api.dependencies import get_media_service, require_user_id
from mediagen.models.media_generation import MediaType, RequestStatus
from mediagen.services.media.schemas import (
    AudioGenerationRequest,
    GenerationRequestBody,
    ImageGenerationRequest,
    ImageUpscaleRequest,
    MediaGenerationResponse,
    MediaHistoryQuery,
    MusicGenerationRequest,
    PaginatedMediaResponse,
    VideoGenerationAccepted,
    VideoGenerationRequest,
)
from mediagen.services.media.service import MediaService

router = APIRouter(prefix="/api/media", tags=["media"])


@router.post("/image", response_model=MediaGenerationResponse)
async def generate_image(
    request: ImageGenerationRequest,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.generate_image(user_id, request)


@router.post("/image/upscale", response_model=MediaGenerationResponse)
async def upscale_image(
    request: ImageUpscaleRequest,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.upscale_image(user_id, request)


@router.post("/music", response_model=MediaGenerationResponse)
async def generate_music(
    request: MusicGenerationRequest,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.generate_music(user_id, request)


@router.post("/audio", response_model=MediaGenerationResponse)
async def generate_audio(
    request: AudioGenerationRequest,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.generate_audio(user_id, request)


@router.post(
    "/video", response_model=VideoGenerationAccepted, status_code=status.HTTP_202_ACCEPTED
)
async def generate_video(
    request: VideoGenerationRequest,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> VideoGenerationAccepted:
    """Queue a video generation; poll GET /api/media/video/{operation_id} for the outcome."""
    operation_id = await service.generate_video_async(user_id, request)
    return VideoGenerationAccepted(operation_id=operation_id)


@router.get("/video/{operation_id}", response_model=MediaGenerationResponse)
async def get_video_generation(
    operation_id: str,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.get_video_generation_results(user_id, operation_id)


@router.get("/{generation_id}", response_model=MediaGenerationResponse)
async def get_media_request(
    generation_id: UUID,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> MediaGenerationResponse:
    return await service.get_media_request_by_id(user_id, generation_id)


@router.get("", response_model=PaginatedMediaResponse)
async def get_media_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    media_type: Optional[MediaType] = Query(default=None),
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    project_id: Optional[UUID] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> PaginatedMediaResponse:
    query = MediaHistoryQuery(
        page=page,
        limit=limit,
        media_type=media_type,
        status=status_filter,
        project_id=project_id,
        search=search,
    )
    return await service.get_media_history(user_id, query)


@router.post("", response_model=Union[MediaGenerationResponse, VideoGenerationAccepted])
async def create_media_generation(
    body: GenerationRequestBody,
    response: Response,
    user_id: str = Depends(require_user_id),
    service: MediaService = Depends(get_media_service),
) -> Union[MediaGenerationResponse, VideoGenerationAccepted]:
    """Run the generation named by ``media_type``; video requests answer 202."""
    result = await service.generate(user_id, body.root)
    if isinstance(result, VideoGenerationAccepted):
        response.status_code = status.HTTP_202_ACCEPTED
    return result
