"""Core data models for SingleShot.

This module defines the records that flow through the analysis pipeline:
the raw files handed to ingestion, the encoded payloads it produces, the
structured analysis returned by Gemini, and the per-file lifecycle record
kept by the item store. All models use Pydantic v2 for validation and
serialization.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


# =============================================================================
# Exceptions
# =============================================================================


class InvalidTransitionError(Exception):
    """Raised when an item is moved outside pending -> analyzing -> terminal."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MediaKind(str, Enum):
    """Kind of media an item holds.

    Attributes:
        IMAGE: Still photographs, including camera RAW formats.
        VIDEO: Video clips of any container format.
    """

    IMAGE = "image"
    VIDEO = "video"


class AnalysisStatus(str, Enum):
    """Lifecycle state of an analysis item.

    Items move ``PENDING -> ANALYZING -> SUCCESS | ERROR``. In practice an item
    is created directly in ``ANALYZING``. Both ``SUCCESS`` and ``ERROR`` are
    terminal.
    """

    PENDING = "pending"
    ANALYZING = "analyzing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition is possible from this state."""
        return self in (AnalysisStatus.SUCCESS, AnalysisStatus.ERROR)


# MIME types a renderer can display without conversion
PREVIEWABLE_MIME_PREFIXES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "video/mp4",
    "video/webm",
)


def is_previewable_mime(mime_type: str) -> bool:
    """Check if a MIME type can be rendered natively as a preview."""
    return mime_type.startswith(PREVIEWABLE_MIME_PREFIXES)


# =============================================================================
# Analysis Result Models
# =============================================================================


class TechnicalParams(BaseModel):
    """Estimated camera settings for a shot.

    All five values are free-text guesses produced by the model
    (e.g. ``"35mm"``, ``"f/1.8"``) and all five are required.
    """

    model_config = ConfigDict(populate_by_name=True)

    focal_length: str = Field(alias="focalLength")
    aperture: str
    iso: str
    shutter_speed: str = Field(alias="shutterSpeed")
    camera_type: str = Field(alias="cameraType")


class Subject(BaseModel):
    """A subject identified in the frame."""

    name: str
    description: str
    features: str


class VisualDetail(BaseModel):
    """Long-form visual analysis.

    Attributes:
        visual_description: Dense single-paragraph description (max ~700 words).
        visual_anchors: Short grounding phrases such as ``"rust texture"``.
        subjects: Subjects found in the frame, in the order reported.
    """

    visual_description: str
    visual_anchors: list[str]
    subjects: list[Subject]


class AnalysisResult(BaseModel):
    """Structured output of one successful analysis call.

    Field aliases match the JSON keys requested from Gemini; Python code
    uses the snake_case attribute names. Every field is required so a
    response missing any of them fails validation instead of producing a
    partially populated result.

    Attributes:
        title: Commercial title, at most ten words.
        keywords: 20-30 descriptive tags.
        lens: Lens character, bokeh and optical imperfections.
        atmosphere: Lighting physics and air quality.
        angle: Camera position and movement.
        geometry: Compositional structure.
        location: Environment estimate, possibly empty.
        technical_params: Estimated camera settings.
        visual_detail: Long-form description, anchors and subjects.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str
    keywords: list[str]
    lens: str
    atmosphere: str
    angle: str
    geometry: str
    location: str
    technical_params: TechnicalParams = Field(alias="technicalParams")
    visual_detail: VisualDetail

    def to_wire_dict(self) -> dict[str, Any]:
        """Serialize using the JSON key names of the response schema."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Ingestion Models
# =============================================================================


class MediaFile(BaseModel):
    """A raw file handed to ingestion.

    Attributes:
        data: The file contents.
        mime_type: MIME type reported by the source, empty if unknown.
        filename: Original file name, used for display and extension lookup.
    """

    data: bytes = Field(repr=False)
    mime_type: str = ""
    filename: str


class MediaPayload(BaseModel):
    """Encoded representation of one accepted file.

    ``encoded_payload`` and ``preview_ref`` hold the same data URL: it is
    sent to the analysis client and can be rendered directly for formats
    that support it.
    """

    model_config = ConfigDict(frozen=True)

    encoded_payload: str = Field(repr=False)
    preview_ref: str = Field(repr=False)
    kind: MediaKind
    mime_type: str
    filename: str


# =============================================================================
# Lifecycle Model
# =============================================================================


class AnalysisItem(BaseModel):
    """Lifecycle record for one submitted file.

    Identity and descriptive fields are frozen at creation. The lifecycle
    state is read-only from outside: ``status``, ``result`` and
    ``error_message`` change only through the ``mark_*`` methods, which
    allow ``pending -> analyzing -> success | error`` and nothing else.
    ``result`` and ``error_message`` are mutually exclusive and each is set
    once by the single terminal transition.

    Attributes:
        id: Unique identifier (UUID string).
        kind: Image or video.
        mime_type: Resolved MIME type.
        filename: Original file name.
        preview_ref: Data URL usable as a preview.
        created_at: When the item was created.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), frozen=True)
    kind: MediaKind = Field(frozen=True)
    mime_type: str = Field(frozen=True)
    filename: str = Field(frozen=True)
    preview_ref: str = Field(frozen=True, repr=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), frozen=True
    )

    _status: AnalysisStatus = PrivateAttr(default=AnalysisStatus.PENDING)
    _result: AnalysisResult | None = PrivateAttr(default=None)
    _error_message: str | None = PrivateAttr(default=None)

    @classmethod
    def from_payload(cls, payload: MediaPayload) -> "AnalysisItem":
        """Create an item for an ingested payload, already analyzing.

        Args:
            payload: Output of media ingestion.

        Returns:
            New item in the ``ANALYZING`` state.
        """
        item = cls(
            kind=payload.kind,
            mime_type=payload.mime_type,
            filename=payload.filename,
            preview_ref=payload.preview_ref,
        )
        item.mark_analyzing()
        return item

    @property
    def status(self) -> AnalysisStatus:
        """Current lifecycle state."""
        return self._status

    @property
    def result(self) -> AnalysisResult | None:
        """Structured analysis, set on success."""
        return self._result

    @property
    def error_message(self) -> str | None:
        """Human-readable failure, set on error."""
        return self._error_message

    @property
    def is_terminal(self) -> bool:
        """Check if the item has finished, successfully or not."""
        return self._status.is_terminal

    @property
    def is_previewable(self) -> bool:
        """Check if the preview can be rendered natively."""
        return is_previewable_mime(self.mime_type)

    @property
    def format_label(self) -> str:
        """Short label for non-previewable formats (e.g. ``X-CANON-CR2``)."""
        _, _, subtype = self.mime_type.partition("/")
        return subtype.upper() if subtype else "RAW"

    def mark_analyzing(self) -> None:
        """Move a pending item to analyzing."""
        self._require(AnalysisStatus.PENDING, "start analysis")
        self._status = AnalysisStatus.ANALYZING

    def mark_success(self, result: AnalysisResult) -> None:
        """Record a successful analysis.

        Raises:
            InvalidTransitionError: If the item is not analyzing.
        """
        self._require(AnalysisStatus.ANALYZING, "succeed")
        self._result = result
        self._status = AnalysisStatus.SUCCESS

    def mark_error(self, message: str) -> None:
        """Record a failed analysis.

        Raises:
            InvalidTransitionError: If the item is not analyzing.
        """
        self._require(AnalysisStatus.ANALYZING, "fail")
        self._error_message = message or "Analysis failed"
        self._status = AnalysisStatus.ERROR

    def _require(self, expected: AnalysisStatus, action: str) -> None:
        if self._status != expected:
            raise InvalidTransitionError(
                f"Item {self.id} cannot {action} from {self._status.value}"
            )
