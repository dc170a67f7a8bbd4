"""Request and response models for media generation.

Generation requests form a tagged union keyed by ``media_type``. Shared fields
live on ``MediaGenerationBase``; each variant carries only its own parameters.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, RootModel, field_validator, model_validator

from mediagen.models.media_generation import MediaGeneration, MediaType, RequestStatus
from mediagen.models.media_result import MediaResult

SHARED_FIELDS = frozenset({"media_type", "project_id", "prompt"})


class ImageAspectRatio(str, Enum):
    ONE_TO_ONE = "1:1"
    SIXTEEN_TO_NINE = "16:9"
    NINE_TO_SIXTEEN = "9:16"
    THREE_TO_FOUR = "3:4"
    FOUR_TO_THREE = "4:3"


class VideoAspectRatio(str, Enum):
    SIXTEEN_TO_NINE = "16:9"
    NINE_TO_SIXTEEN = "9:16"


class ImageGenerationModel(str, Enum):
    IMAGEN_3 = "imagen-3.0-generate-002"
    IMAGEN_3_FAST = "imagen-3.0-fast-generate-001"
    IMAGEN_3_CAPABILITY = "imagen-3.0-capability-001"
    IMAGE_GENERATION_002 = "imagegeneration@002"


class UpscaleFactor(str, Enum):
    X2 = "x2"
    X4 = "x4"


class MusicGenre(str, Enum):
    POP = "POP"
    ROCK = "ROCK"
    JAZZ = "JAZZ"
    CLASSICAL = "CLASSICAL"
    ELECTRONIC = "ELECTRONIC"
    HIP_HOP = "HIP_HOP"
    AMBIENT = "AMBIENT"


class ReferenceImage(BaseModel):
    """Image supplied by storage identifier or inline base64 bytes."""

    gcs_uri: Optional[str] = Field(default=None, description="gs:// identifier of the image")
    bytes_base64_encoded: Optional[str] = Field(default=None, description="Inline image bytes")
    mime_type: Optional[str] = Field(default=None, description="Image mime type")

    @model_validator(mode="after")
    def require_source(self) -> "ReferenceImage":
        if not self.gcs_uri and not self.bytes_base64_encoded:
            raise ValueError("reference image needs gcs_uri or bytes_base64_encoded")
        return self

    def to_vertex(self) -> dict[str, Any]:
        """Render in the shape Vertex AI expects."""
        payload: dict[str, Any] = {}
        if self.gcs_uri:
            payload["gcsUri"] = self.gcs_uri
        if self.bytes_base64_encoded:
            payload["bytesBase64Encoded"] = self.bytes_base64_encoded
        if self.mime_type:
            payload["mimeType"] = self.mime_type
        return payload


class ReferenceData(BaseModel):
    reference_id: int
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_image: ReferenceImage

    def to_vertex(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "referenceId": self.reference_id,
            "referenceImage": self.reference_image.to_vertex(),
        }
        if self.reference_type:
            payload["referenceType"] = self.reference_type
        if self.description:
            payload["description"] = self.description
        return payload


class MediaGenerationBase(BaseModel):
    """Fields every generation request carries."""

    project_id: UUID = Field(..., description="Project the generation belongs to")
    prompt: str = Field(..., min_length=1, description="Text prompt")
    negative_prompt: Optional[str] = Field(default=None, description="What to avoid")

    def parameters_snapshot(self) -> dict[str, Any]:
        """Request-specific fields as plain JSON values (None fields dropped)."""
        return self.model_dump(mode="json", exclude=set(SHARED_FIELDS), exclude_none=True)


class ImageGenerationRequest(MediaGenerationBase):
    media_type: Literal["IMAGE"] = "IMAGE"
    aspect_ratio: Optional[ImageAspectRatio] = None
    sample_count: int = Field(default=1, ge=1, le=4)
    model: Optional[ImageGenerationModel] = None
    seed: Optional[int] = Field(default=None, ge=1)
    reference_images: Optional[list[ReferenceData]] = None


class ImageUpscaleRequest(MediaGenerationBase):
    """Upscale an existing stored image; recorded as an IMAGE generation."""

    media_type: Literal["IMAGE_UPSCALE"] = "IMAGE_UPSCALE"
    gcs_uri: str = Field(..., pattern=r"^gs://[^/]+/.+$", description="Source image")
    upscale_factor: UpscaleFactor = UpscaleFactor.X2
    model: Optional[ImageGenerationModel] = None


class VideoGenerationRequest(MediaGenerationBase):
    media_type: Literal["VIDEO"] = "VIDEO"
    duration_seconds: int = Field(default=1, ge=1, le=8)
    aspect_ratio: Optional[VideoAspectRatio] = None
    enhance_prompt: bool = True
    sample_count: int = Field(default=1, ge=1, le=4)
    model: Optional[str] = None
    seed: Optional[int] = Field(default=None, ge=1)
    reference_image: Optional[ReferenceImage] = None


class MusicGenerationRequest(MediaGenerationBase):
    media_type: Literal["MUSIC"] = "MUSIC"
    duration_seconds: int = Field(default=1, ge=1, le=8)
    genre: Optional[MusicGenre] = None
    instrument: Optional[str] = None
    tempo: float = Field(default=0.5, ge=0.1, le=1.0)
    seed: Optional[int] = Field(default=None, ge=1)


class AudioGenerationRequest(MediaGenerationBase):
    media_type: Literal["AUDIO"] = "AUDIO"
    duration_seconds: int = Field(default=1, ge=1, le=300)
    audio_style: Optional[str] = Field(default=None, description="Text-to-Speech voice name")
    seed: Optional[int] = Field(default=None, ge=1)


GenerationRequest = Annotated[
    Union[
        ImageGenerationRequest,
        ImageUpscaleRequest,
        VideoGenerationRequest,
        MusicGenerationRequest,
        AudioGenerationRequest,
    ],
    Field(discriminator="media_type"),
]


class GenerationRequestBody(RootModel[GenerationRequest]):
    """Request body for POST /api/media; ``media_type`` picks the variant."""


class MediaResultView(BaseModel):
    """One result as returned to clients (result_url may be signed)."""

    id: UUID
    result_url: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_result(cls, result: MediaResult) -> "MediaResultView":
        return cls(
            id=result.id,
            result_url=result.result_url,
            metadata=dict(result.result_metadata or {}),
            created_at=result.created_at,
        )


class MediaGenerationResponse(BaseModel):
    id: UUID
    project_id: UUID
    media_type: MediaType
    prompt: str
    status: RequestStatus
    parameters: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    operation_id: Optional[str] = None
    results: list[MediaResultView] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def build(
        cls, generation: MediaGeneration, results: list[MediaResultView]
    ) -> "MediaGenerationResponse":
        return cls(
            id=generation.id,
            project_id=generation.project_id,
            media_type=generation.media_type,
            prompt=generation.prompt,
            status=generation.status,
            parameters=dict(generation.parameters or {}),
            error_message=generation.error_message,
            operation_id=generation.operation_id,
            results=results,
            created_at=generation.created_at,
        )


class VideoGenerationAccepted(BaseModel):
    operation_id: str = Field(..., description="Poll GET /api/media/video/{operation_id}")


class MediaHistoryQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    media_type: Optional[MediaType] = None
    status: Optional[RequestStatus] = None
    project_id: Optional[UUID] = None
    search: Optional[str] = None

    @field_validator("search")
    @classmethod
    def strip_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginationMeta(BaseModel):
    total_items: int
    item_count: int
    items_per_page: int
    total_pages: int
    current_page: int


class PaginatedMediaResponse(BaseModel):
    data: list[MediaGenerationResponse]
    meta: PaginationMeta
