"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. The browser
client speaks camelCase JSON, so every model accepts and emits camelCase
while Python code uses snake_case attributes.

HOW: Each endpoint has its own request/response model. Caption models
convert to and from the core dataclasses so validation stays here and
the core never sees raw JSON.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Wire names are camelCase aliases; populate_by_name allows snake_case too
- Unknown caption styles are accepted and coerced to bottom-centered
- Responses are serialized by alias (FastAPI's default)
"""

from __future__ import annotations

from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from caption_studio.core.ir import (
    DEFAULT_CAPTION_STYLE,
    CaptionSegment,
    CaptionStyle,
    RenderRequest,
    WordInfo,
    infer_has_timing,
)

_CAMEL = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Captions
# ---------------------------------------------------------------------------


class WordModel(BaseModel):
    """One timed word."""

    word: str = Field(description="The recognised word, with punctuation.")
    start_time: float = Field(alias="startTime", ge=0, description="Start in seconds.")
    end_time: float = Field(alias="endTime", ge=0, description="End in seconds.")

    model_config = _CAMEL

    def to_word_info(self) -> WordInfo:
        return WordInfo(word=self.word, start_time=self.start_time, end_time=self.end_time)


class CaptionSegmentModel(BaseModel):
    """One caption segment as exchanged with the client.

    RULES:
    - text must be non-empty
    - words may be omitted (treated as empty)
    - hasTiming may be omitted; it is inferred from the times and words
    - endTime must not precede startTime
    """

    text: str = Field(min_length=1, description="Caption text shown on screen.")
    start_time: float = Field(alias="startTime", ge=0, description="Start in seconds.")
    end_time: float = Field(alias="endTime", ge=0, description="End in seconds.")
    words: List[WordModel] = Field(
        default_factory=list,
        description="Words covered by the caption, for karaoke highlighting.",
    )
    has_timing: Optional[bool] = Field(
        default=None,
        alias="hasTiming",
        description="False for a transcript without word timing; inferred when omitted.",
    )

    model_config = _CAMEL

    @model_validator(mode="after")
    def _check_range(self) -> CaptionSegmentModel:
        if self.end_time < self.start_time:
            raise ValueError("endTime must not be before startTime")
        return self

    def to_segment(self) -> CaptionSegment:
        words = [w.to_word_info() for w in self.words]
        has_timing = self.has_timing
        if has_timing is None:
            has_timing = infer_has_timing(self.start_time, self.end_time, words)
        return CaptionSegment(
            text=self.text,
            start_time=self.start_time,
            end_time=self.end_time,
            words=words,
            has_timing=has_timing,
        )

    @classmethod
    def from_segment(cls, segment: CaptionSegment) -> CaptionSegmentModel:
        return cls.model_validate(segment.to_dict())


# Unknown styles become bottom-centered instead of a 422.
StyleField = Annotated[CaptionStyle, BeforeValidator(CaptionStyle.parse)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RenderRequestModel(BaseModel):
    """Body of POST /api/render."""

    video_path: str = Field(
        alias="videoPath",
        min_length=1,
        description="Signed/public URL or gs:// URI of the source video.",
    )
    captions: List[CaptionSegmentModel] = Field(description="Caption segments to burn in.")
    style: StyleField = Field(
        default=DEFAULT_CAPTION_STYLE,
        description="Caption style: bottom-centered, top-bar or karaoke.",
    )

    model_config = _CAMEL

    def to_request(self) -> RenderRequest:
        return RenderRequest(
            video_path=self.video_path,
            captions=[c.to_segment() for c in self.captions],
            style=self.style,
        )


class GenerateUploadUrlRequest(BaseModel):
    """Body of POST /api/generate-upload-url."""

    file_name: str = Field(alias="fileName", min_length=1, description="Original file name.")
    content_type: str = Field(
        default="video/mp4",
        alias="contentType",
        description="MIME type the client will send with the PUT.",
    )

    model_config = _CAMEL


class ProcessVideoRequest(BaseModel):
    """Body of POST /api/process-video, sent after a direct upload."""

    gcs_file_name: str = Field(alias="gcsFileName", min_length=1, description="Object name in the bucket.")
    public_url: str = Field(alias="publicUrl", min_length=1, description="Read URL returned with the upload URL.")

    model_config = _CAMEL


class PreviewRequest(BaseModel):
    """Body of POST /api/preview."""

    captions: List[CaptionSegmentModel] = Field(description="Caption segments.")
    style: StyleField = Field(default=DEFAULT_CAPTION_STYLE, description="Caption style.")
    time: float = Field(ge=0, description="Playback position in seconds.")

    model_config = _CAMEL


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UploadResponse(BaseModel):
    """Captions generated for a stored video."""

    success: bool = Field(default=True, description="Always true on 200.")
    video_path: str = Field(alias="videoPath", description="Signed read URL of the stored video.")
    captions: List[CaptionSegmentModel] = Field(description="Generated caption segments.")

    model_config = {**_CAMEL, "json_schema_extra": {
        "examples": [
            {
                "success": True,
                "videoPath": "https://storage.googleapis.com/captiongenerator/videos/1700000000000-clip.mp4",
                "captions": [
                    {
                        "text": "The quick brown fox",
                        "startTime": 0.0,
                        "endTime": 1.2,
                        "words": [
                            {"word": "The", "startTime": 0.0, "endTime": 0.2},
                            {"word": "quick", "startTime": 0.3, "endTime": 0.5},
                            {"word": "brown", "startTime": 0.6, "endTime": 0.8},
                            {"word": "fox", "startTime": 0.9, "endTime": 1.2},
                        ],
                        "hasTiming": True,
                    }
                ],
            }
        ]
    }}


class GenerateUploadUrlResponse(BaseModel):
    upload_url: str = Field(alias="uploadUrl", description="Signed PUT URL, valid for 15 minutes.")
    file_name: str = Field(alias="fileName", description="Object name to pass to /api/process-video.")
    public_url: str = Field(alias="publicUrl", description="Signed read URL, valid for 7 days.")

    model_config = _CAMEL


class RenderCreatedResponse(BaseModel):
    """Returned when a render is accepted."""

    render_id: str = Field(alias="renderId", description="Id for polling status and progress.")
    status: str = Field(description="Initial status (always 'pending').")

    model_config = _CAMEL


class RenderJobResponse(BaseModel):
    """Render job status.

    RULES:
    - outputPath is only set when status is 'completed'
    - error / kind are only set when status is 'failed'
    """

    render_id: str = Field(alias="renderId", description="Render id.")
    status: str = Field(description="Current render status.")
    progress: int = Field(description="Last published progress, 0–100.")
    style: str = Field(description="Caption style used.")
    created_at: float = Field(alias="createdAt", description="Creation time (Unix epoch seconds).")
    output_path: Optional[str] = Field(default=None, alias="outputPath", description="URL of the rendered video.")
    error: Optional[str] = Field(default=None, description="Error details.")
    kind: Optional[str] = Field(default=None, description="Error kind.")

    model_config = _CAMEL


class ProgressResponse(BaseModel):
    progress: int = Field(description="Render progress, 0–100; 0 when unknown.")


class CaptionFrameModel(BaseModel):
    layout: str = Field(description="bottom-box, top-bar or karaoke.")
    text: str = Field(description="Caption text.")
    words: List[str] = Field(default_factory=list, description="Karaoke words.")
    highlighted: Optional[int] = Field(default=None, description="Index of the highlighted word.")


class PreviewResponse(BaseModel):
    caption: Optional[CaptionFrameModel] = Field(
        default=None,
        description="What is shown at the requested time, or null for a gap.",
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    timestamp: str = Field(description="ISO 8601 time of the check.")
    uptime: float = Field(description="Seconds since the process started.")
    environment: str = Field(description="Deployment environment name.")
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    services: Dict[str, bool] = Field(description="Availability of googleCloud, credentials and ffmpeg.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - error is a short summary, details the underlying cause
    - kind is a stable machine-readable code
    """

    error: str = Field(description="Human-readable error summary.")
    kind: str = Field(description="Machine-readable error kind.")
    details: Optional[str] = Field(default=None, description="Underlying cause.")
