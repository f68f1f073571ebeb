"""
Tests for request schemas and the typed scene/element model.
"""

import pytest
from pydantic import ValidationError

from adrender.render.elements import (
    AudioPlaceholderElement,
    CtaElement,
    CtaKind,
    FrameListEntry,
    ImageElement,
    RenderTarget,
    Scene,
    ShapeElement,
    ShapeKind,
    TextAlign,
    TextElement,
    VideoPlaceholderElement,
    parse_content,
    parse_element,
    parse_scene,
    total_duration,
)
from adrender.schemas.render import ElementSpec, RenderRequest, SceneSpec


class TestSchemas:
    """Tests for request validation."""

    def test_camel_case_aliases(self):
        """Test the authoring UI's camelCase payload is accepted."""
        request = RenderRequest.model_validate(
            {
                "projectId": "p1",
                "scenes": [
                    {
                        "imageUrl": "https://cdn.example.com/a.jpg",
                        "videoUrl": "https://cdn.example.com/a.mp4",
                        "animationStatus": "ready",
                        "elements": [{"type": "text", "zIndex": 3, "assetUrl": "x"}],
                    }
                ],
            }
        )
        scene = request.scenes[0]
        assert request.project_id == "p1"
        assert scene.background_url == "https://cdn.example.com/a.jpg"
        assert scene.video_url == "https://cdn.example.com/a.mp4"
        assert scene.animation_status == "ready"
        assert scene.elements[0].z_index == 3
        assert scene.elements[0].asset_url == "x"

    def test_defaults(self):
        request = RenderRequest(project_id="p1", scenes=[SceneSpec()])
        assert request.format == "9:16"
        assert request.quality == "high"
        assert request.scenes[0].duration == 3.0

    @pytest.mark.parametrize("raw,expected", [(None, 3.0), (0, 0.1), (0.05, 0.1), (120, 60.0), ("2.5", 2.5)])
    def test_duration_clamped(self, raw, expected):
        """Test scene durations are clamped to 0.1-60 seconds."""
        assert SceneSpec(duration=raw).duration == expected

    def test_opacity_clamped(self):
        assert ElementSpec(type="text", opacity=1.5).opacity == 1.0
        assert ElementSpec(type="text", opacity=-1).opacity == 0.0

    def test_project_id_required(self):
        with pytest.raises(ValidationError):
            RenderRequest.model_validate({"scenes": []})

    def test_invalid_quality_rejected(self):
        with pytest.raises(ValidationError):
            RenderRequest(project_id="p", scenes=[], quality="ultra")


class TestParseContent:
    """Tests for content payload decoding."""

    def test_json_object(self):
        assert parse_content('{"text": "Hi", "ctaType": "tag"}') == {"text": "Hi", "ctaType": "tag"}

    def test_plain_text(self):
        assert parse_content("Big Sale") == {"text": "Big Sale"}

    def test_broken_json_is_text(self):
        assert parse_content("{not json") == {"text": "{not json"}

    def test_dict_and_none(self):
        assert parse_content({"a": 1}) == {"a": 1}
        assert parse_content(None) == {}


class TestParseElement:
    """Tests for converting authored elements to typed variants."""

    def test_text_style_precedence(self):
        """Test content style wins over payload and element style."""
        spec = ElementSpec(
            type="text",
            content={
                "text": "Hello",
                "fontFamily": "Lato",
                "style": {
                    "fontWeight": "bold",
                    "fontStyle": "italic",
                    "textDecoration": "underline line-through",
                    "textAlign": "right",
                    "fontSize": "64px",
                    "color": "#ff0",
                },
            },
            style={"fontFamily": "Ignored"},
        )
        element = parse_element(spec)
        assert isinstance(element, TextElement)
        assert element.text == "Hello"
        assert element.style.font_family == "Lato"
        assert element.style.font_weight == "bold"
        assert element.style.font_size == "64px"
        assert element.style.text_align is TextAlign.RIGHT
        assert element.style.italic and element.style.underline and element.style.strikethrough
        assert element.style.color == "#ff0"

    def test_text_defaults(self):
        element = parse_element(ElementSpec(id="t1", type="text"))
        assert element.text == "Text Element"
        assert element.style.font_family == "Roboto"
        assert element.geometry.width == 20 and element.geometry.height == 20

    def test_shape(self):
        element = parse_element(
            ElementSpec(type="shape", content='{"shapeType": "circle"}', style={"backgroundColor": "red"})
        )
        assert isinstance(element, ShapeElement)
        assert element.shape is ShapeKind.CIRCLE
        assert element.color == "red"

    def test_unknown_shape_is_rectangle(self):
        assert parse_element(ElementSpec(type="shape", content='{"shapeType": "hexagon"}')).shape is ShapeKind.RECTANGLE

    def test_cta(self):
        element = parse_element(
            ElementSpec(
                type="cta",
                content={"text": "Buy", "ctaType": "tag"},
                style={"borderWidth": "4px", "borderColor": "white", "boxShadow": "2px 2px 4px black"},
            )
        )
        assert isinstance(element, CtaElement)
        assert element.cta_kind is CtaKind.TAG
        assert element.border_width == 4
        assert element.box_shadow == "2px 2px 4px black"
        assert element.style.font_weight == "700"
        assert element.background_color == "#10B981"

    def test_image_url_priority(self):
        """Test direct URL beats asset URL beats content URL."""
        spec = ElementSpec(type="logo", content={"url": "c"}, asset_url="b")
        element = parse_element(spec)
        assert isinstance(element, ImageElement)
        assert element.is_logo and element.label == "Logo"
        assert element.media_url == "b"
        spec.url = "a"
        assert parse_element(spec).media_url == "a"
        assert parse_element(ElementSpec(type="image", content={"src": "s"})).media_url == "s"

    def test_keep_proportions(self):
        assert parse_element(ElementSpec(type="image")).keep_proportions is True
        assert parse_element(ElementSpec(type="image", content={"keepProportions": False})).keep_proportions is False
        assert parse_element(ElementSpec(type="image", keep_proportions=False)).keep_proportions is False

    def test_placeholders(self):
        assert isinstance(parse_element(ElementSpec(type="video")), VideoPlaceholderElement)
        assert isinstance(parse_element(ElementSpec(type="audio")), AudioPlaceholderElement)

    def test_unknown_type_skipped(self):
        assert parse_element(ElementSpec(type="sticker")) is None


class TestScene:
    """Tests for scene parsing and animation selection."""

    def test_elements_sorted_by_z_index_stably(self):
        spec = SceneSpec(
            elements=[
                ElementSpec(id="a", type="text", z_index=2),
                ElementSpec(id="b", type="text", z_index=1),
                ElementSpec(id="c", type="text", z_index=2),
                ElementSpec(id="d", type="sticker"),
            ]
        )
        scene = parse_scene(spec, 0)
        assert [e.id for e in scene.elements] == ["b", "a", "c"]

    @pytest.mark.parametrize(
        "video_url,animate,status,expected",
        [
            ("clip.mp4", True, "ready", True),
            ("clip.mp4", True, None, True),
            ("clip.mp4", True, "none", False),
            ("clip.mp4", False, "ready", False),
            (None, True, "ready", False),
            ("", True, "ready", False),
        ],
    )
    def test_use_animated_version(self, video_url, animate, status, expected):
        """Test a clip is used only when present, opted in and not disabled."""
        scene = Scene(index=0, order=0, duration=3, video_url=video_url, animate=animate, animation_status=status)
        assert scene.use_animated_version is expected


class TestFrameList:
    def test_minimum_duration(self):
        assert FrameListEntry("a.jpg", 0.0).duration == 0.1

    def test_total_duration(self):
        entries = [FrameListEntry("a.jpg", 2.5), FrameListEntry("b.mp4", 3.0)]
        assert total_duration(entries) == pytest.approx(5.5)


class TestRenderTarget:
    def test_known(self):
        target = RenderTarget.create("16:9", "low")
        assert (target.width, target.height, target.bitrate, target.fps) == (1920, 1088, "3M", 24)

    def test_unknown_falls_back(self):
        target = RenderTarget.create("21:9", "ultra")
        assert target.format == "9:16"
        assert target.quality == "high"
        assert target.dimensions.width == 1088
