"""
Tests for typed filter nodes and filter-graph serialization.
"""

import pytest

from adrender.render.filters import (
    MAX_LINE_STAMPS,
    DrawBox,
    DrawLine,
    DrawText,
    Filter,
    ImageOverlay,
    PendingOverlay,
    PixelBox,
    PixelFormat,
    ScaleToFit,
    TextAnchor,
    build_overlay_graph,
    escape_filtergraph,
    escape_option_value,
    format_number,
    serialize_chain,
)


class TestEscaping:
    """Tests for the two escaping levels."""

    def test_option_value_level(self):
        """Test quotes, colons and backslashes are escaped in option values."""
        assert escape_option_value("a:b") == "a\\:b"
        assert escape_option_value("it's") == "it\\'s"
        assert escape_option_value("c:\\x") == "c\\:\\\\x"

    def test_filtergraph_level(self):
        """Test graph separators are escaped in the graph description."""
        assert escape_filtergraph("a,b;c[d]") == "a\\,b\\;c\\[d\\]"

    def test_both_levels_for_colon(self):
        """Test a colon survives both levels as an escaped backslash."""
        assert Filter("drawtext", (("text", "12:30"),)).serialize() == "drawtext=text=12\\\\:30"

    def test_format_number(self):
        assert format_number(5) == "5"
        assert format_number(5.0) == "5"
        assert format_number(1.23456) == "1.235"
        assert format_number(0.5) == "0.5"


class TestFilter:
    """Tests for raw Filter serialization."""

    def test_no_options(self):
        assert Filter("null").serialize() == "null"

    def test_positional_and_named(self):
        """Test positional options precede named ones in declaration order."""
        f = Filter("scale", ((None, 1088), (None, 1920), ("flags", "lanczos")))
        assert f.serialize() == "scale=1088:1920:flags=lanczos"


class TestNormalizationNodes:
    def test_scale_to_fit(self):
        """Test letterboxing scales down then pads centered on black."""
        chain = serialize_chain([ScaleToFit(1088, 1920)])
        assert chain == (
            "scale=1088:1920:force_original_aspect_ratio=decrease,"
            "pad=1088:1920:(ow-iw)/2:(oh-ih)/2:color=black"
        )

    def test_pixel_format(self):
        assert serialize_chain([PixelFormat()]) == "format=pix_fmts=yuv420p"


class TestDrawBox:
    """Tests for DrawBox."""

    def test_filled(self):
        """Test a filled box normalizes its color."""
        assert serialize_chain([DrawBox(10, 20, 30, 40, "#f00")]) == (
            "drawbox=x=10:y=20:w=30:h=40:color=0xFF0000:t=fill"
        )

    def test_alpha_color_survives_escaping(self):
        """Test '@' needs no escaping in colors."""
        out = serialize_chain([DrawBox(0, 0, 5, 5, "black@0.3", thickness=2)])
        assert "color=0x000000@0.3:t=2" in out

    def test_empty_box_emits_nothing(self):
        """Test zero-size boxes produce no filter."""
        assert DrawBox(0, 0, 0, 10, "white").filters() == []
        assert DrawBox(0, 0, 10, -1, "white").filters() == []


class TestDrawLine:
    """Tests for DrawLine."""

    def test_horizontal_is_single_box(self):
        """Test axis-aligned lines become one box."""
        filters = DrawLine(10, 50, 110, 50, "white", thickness=4).filters()
        assert len(filters) == 1
        assert filters[0].serialize() == "drawbox=x=8:y=48:w=104:h=4:color=0xFFFFFF:t=fill"

    def test_vertical_is_single_box(self):
        filters = DrawLine(20, 100, 20, 10, "white", thickness=2).filters()
        assert len(filters) == 1
        assert "x=19:y=9:w=2:h=92" in filters[0].serialize()

    def test_diagonal_stamps_cover_endpoints(self):
        """Test diagonal lines are stamped from start to end."""
        filters = DrawLine(0, 0, 100, 100, "red", thickness=10).filters()
        assert len(filters) > 2
        assert filters[0].serialize().startswith("drawbox=x=-5:y=-5:w=10:h=10")
        assert filters[-1].serialize().startswith("drawbox=x=95:y=95:w=10:h=10")

    def test_stamp_count_is_bounded(self):
        """Test very long thin lines do not explode the filter graph."""
        filters = DrawLine(0, 0, 10000, 9000, "red", thickness=1).filters()
        assert len(filters) == MAX_LINE_STAMPS + 1


class TestDrawText:
    """Tests for DrawText."""

    def _text(self, **kwargs):
        defaults = dict(
            text="Hello",
            font_path="/fonts/Roboto-Regular.ttf",
            font_size=48,
            color="white",
            x=540,
            y=100,
        )
        defaults.update(kwargs)
        return DrawText(**defaults)

    def test_centered(self):
        """Test centered text offsets x by half the rendered width."""
        out = self._text().filters()[0].serialize()
        assert out == (
            "drawtext=fontfile=/fonts/Roboto-Regular.ttf:text=Hello:expansion=none"
            ":fontsize=48:fontcolor=0xFFFFFF:x=540-text_w/2:y=100"
        )

    def test_anchors(self):
        """Test left and right anchors."""
        assert "x=540:" in self._text(anchor=TextAnchor.LEFT).filters()[0].serialize()
        assert "x=540-text_w:" in self._text(anchor=TextAnchor.RIGHT).filters()[0].serialize()

    def test_special_characters_are_escaped(self):
        """Test user text cannot break out of the filter graph."""
        out = self._text(text="50% off: it's [new], really;").filters()[0].serialize()
        assert "text=50% off\\\\: it\\\\\\'s \\[new\\]\\, really\\;" in out
        assert "expansion=none" in out

    def test_decorations(self):
        """Test underline and strikethrough add bars under and through the text."""
        filters = self._text(underline=True, strikethrough=True, estimated_width=200, x=500).filters()
        assert len(filters) == 3
        underline, strike = filters[1].serialize(), filters[2].serialize()
        assert underline.startswith("drawbox=x=400:y=146:w=200:h=3")
        assert strike.startswith("drawbox=x=400:y=126:w=200:h=3")

    def test_no_decorations_without_width(self):
        assert len(self._text(underline=True).filters()) == 1


class TestOverlayGraph:
    """Tests for build_overlay_graph."""

    def test_draw_only(self):
        """Test draw-only fragments form a single chain."""
        graph, inputs = build_overlay_graph([], [DrawBox(0, 0, 10, 10, "red")])
        assert graph == "[0:v]drawbox=x=0:y=0:w=10:h=10:color=0xFF0000:t=fill[vout]"
        assert inputs == []

    def test_empty_becomes_null(self):
        graph, _ = build_overlay_graph([], [])
        assert graph == "[0:v]null[vout]"

    def test_overlay_preserves_paint_order(self):
        """Test boxes before an image stay below it and boxes after stay above."""
        below = DrawBox(0, 0, 10, 10, "red")
        above = DrawBox(5, 5, 10, 10, "blue")
        image = ImageOverlay("/tmp/logo.png", PixelBox(100, 200, 50, 40), opacity=0.5)
        graph, inputs = build_overlay_graph([], [below, image, above], tail=[PixelFormat()])

        assert inputs == ["/tmp/logo.png"]
        statements = graph.split(";")
        assert statements == [
            "[0:v]drawbox=x=0:y=0:w=10:h=10:color=0xFF0000:t=fill[v0]",
            "[1:v]scale=50:40,format=pix_fmts=rgba,colorchannelmixer=aa=0.5[ov1]",
            "[v0][ov1]overlay=x=100:y=200[v1]",
            "[v1]drawbox=x=5:y=5:w=10:h=10:color=0x0000FF:t=fill,format=pix_fmts=yuv420p[vout]",
        ]

    def test_consecutive_images(self):
        """Test every image becomes its own input in fragment order."""
        a = ImageOverlay("/a.png", PixelBox(0, 0, 10, 10))
        b = ImageOverlay("/b.png", PixelBox(0, 0, 10, 10))
        graph, inputs = build_overlay_graph([], [a, b])
        assert inputs == ["/a.png", "/b.png"]
        assert "[v0][ov2]overlay" in graph
        assert graph.endswith("[v1]null[vout]")

    def test_unresolved_overlay_rejected(self):
        """Test pending overlays must be resolved before serialization."""
        pending = PendingOverlay("logo-1", PixelBox(0, 0, 10, 10), urls=("https://x/logo.png",))
        with pytest.raises(ValueError):
            build_overlay_graph([], [pending])

    def test_pending_media_url_priority(self):
        pending = PendingOverlay("logo-1", PixelBox(0, 0, 1, 1), urls=(None, "", "b", "c"))
        assert pending.media_url == "b"
