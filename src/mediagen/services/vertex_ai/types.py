"""Response shapes returned by the Vertex AI gateway."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

IMAGEN_CAPABILITY_MODEL_ID = "imagen-3.0-capability-001"


class ModelType(str, Enum):
    """Model family a gateway call targets (carried on GatewayError)."""

    IMAGE = "image"
    VIDEO = "video"
    MUSIC = "music"
    SPEECH = "speech"


class Prediction(BaseModel):
    """One generated artifact as reported by a model.

    ``gcs_uri`` is the storage-native identifier (gs://...); it may be missing
    when the model filtered the sample out.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    gcs_uri: Optional[str] = Field(default=None, alias="gcsUri")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    prompt: Optional[str] = None
    rai_filtered_reason: Optional[str] = Field(default=None, alias="raiFilteredReason")


class PredictionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    predictions: list[Prediction] = Field(default_factory=list)


class OperationError(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[int] = None
    message: str = "Unknown operation error"


class OperationStatus(BaseModel):
    """Snapshot of a long-running video operation.

    Attributes:
        name: Operation handle that was polled
        done: True once the operation reached a terminal state upstream
        predictions: Produced videos (only meaningful when done without error)
        error: Populated when the operation finished with an error
    """

    name: str
    done: bool = False
    predictions: list[Prediction] = Field(default_factory=list)
    error: Optional[OperationError] = None

    @classmethod
    def from_api(cls, name: str, data: dict[str, Any]) -> "OperationStatus":
        """Build from a ``fetchPredictOperation`` body.

        Veo reports finished videos under ``response.videos``; ``response.predictions``
        is accepted as well.
        """
        response = data.get("response") or {}
        items = response.get("videos") or response.get("predictions") or []
        error = data.get("error")
        return cls(
            name=name,
            done=bool(data.get("done", False)),
            predictions=[Prediction.model_validate(item) for item in items],
            error=OperationError.model_validate(error) if error else None,
        )


class SpeechResult(BaseModel):
    """Synthesized speech stored in Cloud Storage."""

    storage_uri: str
    path: str
