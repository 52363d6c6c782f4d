"""Tests for the caption dataclasses and their API models.

WHY: The browser client, the CLI, and the renderer exchange captions as
camelCase JSON. Style parsing must be total and hasTiming must survive
the round trip, or untimed transcripts would be drawn at 0 s.

HOW: Dataclass wire helpers and the pydantic models are tested side by
side since both define the same contract.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from caption_studio.core.ir import (
    DEFAULT_CAPTION_STYLE,
    CaptionSegment,
    CaptionStyle,
    ProgressData,
    WordInfo,
    infer_has_timing,
)
from caption_studio.server.models import (
    CaptionSegmentModel,
    PreviewRequest,
    RenderRequestModel,
)


# ---------------------------------------------------------------------------
# CaptionStyle
# ---------------------------------------------------------------------------


class TestCaptionStyle:
    @pytest.mark.parametrize("value,expected", [
        ("bottom-centered", CaptionStyle.BOTTOM_CENTERED),
        ("top-bar", CaptionStyle.TOP_BAR),
        ("karaoke", CaptionStyle.KARAOKE),
        (" Karaoke ", CaptionStyle.KARAOKE),
    ])
    def test_known_values(self, value, expected):
        assert CaptionStyle.parse(value) is expected

    @pytest.mark.parametrize("value", ["neon", "", None, 3, "bottom"])
    def test_unknown_values_fall_back(self, value):
        assert CaptionStyle.parse(value) is CaptionStyle.BOTTOM_CENTERED

    def test_enum_passes_through(self):
        assert CaptionStyle.parse(CaptionStyle.TOP_BAR) is CaptionStyle.TOP_BAR

    def test_default_is_bottom_centered(self):
        assert DEFAULT_CAPTION_STYLE is CaptionStyle.BOTTOM_CENTERED


# ---------------------------------------------------------------------------
# Dataclass wire form
# ---------------------------------------------------------------------------


class TestCaptionSegmentWire:
    def test_to_dict_is_camel_case(self, fox_segments):
        data = fox_segments[1].to_dict()
        assert data["text"] == "Then it slept."
        assert data["startTime"] == 4.0
        assert data["endTime"] == 5.0
        assert data["hasTiming"] is True
        assert data["words"][0] == {"word": "Then", "startTime": 4.0, "endTime": 4.2}

    def test_from_dict_reads_to_dict(self, fox_segments):
        segment = fox_segments[0]
        assert CaptionSegment.from_dict(segment.to_dict()) == segment

    def test_missing_words_default_to_empty(self):
        segment = CaptionSegment.from_dict({"text": "hi", "startTime": 1, "endTime": 2})
        assert segment.words == []
        assert segment.has_timing is True

    def test_zero_zero_without_words_is_untimed(self):
        segment = CaptionSegment.from_dict({"text": "flat", "startTime": 0, "endTime": 0})
        assert segment.has_timing is False

    def test_explicit_has_timing_wins(self):
        segment = CaptionSegment.from_dict(
            {"text": "flat", "startTime": 0, "endTime": 0, "hasTiming": True}
        )
        assert segment.has_timing is True

    def test_infer_has_timing(self):
        assert infer_has_timing(0, 0, []) is False
        assert infer_has_timing(0, 0, [WordInfo("a", 0, 0)]) is True
        assert infer_has_timing(0, 0.5, []) is True


class TestProgressData:
    def test_round_trip(self):
        data = ProgressData(progress=42, timestamp=1700000000000)
        assert ProgressData.from_dict(data.to_dict()) == data

    def test_missing_field_raises(self):
        with pytest.raises(KeyError):
            ProgressData.from_dict({"progress": 1})


# ---------------------------------------------------------------------------
# API models
# ---------------------------------------------------------------------------


class TestCaptionSegmentModel:
    def test_accepts_camel_case(self):
        model = CaptionSegmentModel.model_validate({
            "text": "hi there",
            "startTime": 0.5,
            "endTime": 1.0,
            "words": [{"word": "hi", "startTime": 0.5, "endTime": 0.7}],
        })
        segment = model.to_segment()
        assert segment.start_time == 0.5
        assert segment.words == [WordInfo("hi", 0.5, 0.7)]
        assert segment.has_timing is True

    def test_serializes_by_alias(self, fox_segments):
        model = CaptionSegmentModel.from_segment(fox_segments[1])
        data = model.model_dump(by_alias=True)
        assert set(data) == {"text", "startTime", "endTime", "words", "hasTiming"}
        assert data["hasTiming"] is True

    def test_untimed_inferred(self):
        model = CaptionSegmentModel.model_validate({"text": "x", "startTime": 0, "endTime": 0})
        assert model.to_segment().has_timing is False

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            CaptionSegmentModel.model_validate({"text": "x", "startTime": 2, "endTime": 1})

    def test_negative_time_rejected(self):
        with pytest.raises(ValidationError):
            CaptionSegmentModel.model_validate({"text": "x", "startTime": -1, "endTime": 1})

    def test_empty_text_rejected(self):
        with pytest.raises(ValidationError):
            CaptionSegmentModel.model_validate({"text": "", "startTime": 0, "endTime": 1})


class TestRequestModels:
    def test_render_request_unknown_style_coerced(self, fox_segments):
        model = RenderRequestModel.model_validate({
            "videoPath": "https://example.com/v.mp4",
            "captions": [s.to_dict() for s in fox_segments],
            "style": "sparkles",
        })
        request = model.to_request()
        assert request.style is CaptionStyle.BOTTOM_CENTERED
        assert request.captions == fox_segments

    def test_render_request_style_defaults(self):
        model = RenderRequestModel.model_validate({"videoPath": "gs://b/v.mp4", "captions": []})
        assert model.style is CaptionStyle.BOTTOM_CENTERED

    def test_render_request_requires_video_path(self):
        with pytest.raises(ValidationError):
            RenderRequestModel.model_validate({"captions": []})

    def test_preview_request_parses_style(self):
        model = PreviewRequest.model_validate({"captions": [], "style": "karaoke", "time": 1.5})
        assert model.style is CaptionStyle.KARAOKE

    def test_preview_request_rejects_negative_time(self):
        with pytest.raises(ValidationError):
            PreviewRequest.model_validate({"captions": [], "time": -0.1})
