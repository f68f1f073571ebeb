"""
Tests for the coordinate transformer.
"""

import itertools

import pytest

from adrender.constants.formats import VIDEO_DIMENSIONS
from adrender.render.coordinates import clamp_box, element_box, to_pixels, transform
from adrender.render.elements import Geometry
from adrender.render.filters import PixelBox


class TestTransform:
    """Tests for percent-space format adjustments."""

    def test_baseline_is_identity(self):
        """Test the vertical baseline format passes geometry through."""
        g = Geometry(x=12.5, y=80, width=40, height=10)
        assert transform(g, "9:16") == g

    def test_unknown_format_is_identity(self):
        """Test unknown formats leave geometry unchanged."""
        g = Geometry(x=10, y=10, width=10, height=10)
        assert transform(g, "21:9") == g

    @pytest.mark.parametrize(
        "x,expected_x",
        [(10, 10), (20, 20), (50, 45), (70, 60), (90, 80)],
    )
    def test_landscape_x(self, x, expected_x):
        """Test horizontal bands of the 16:9 adjustment."""
        assert transform(Geometry(x=x, y=50), "16:9").x == pytest.approx(expected_x)

    @pytest.mark.parametrize(
        "y,expected_y",
        [(0, 5), (20, 25), (50, 40), (70, 50), (95, 75)],
    )
    def test_landscape_y(self, y, expected_y):
        """Test vertical bands of the 16:9 adjustment."""
        assert transform(Geometry(x=50, y=y), "16:9").y == pytest.approx(expected_y)

    def test_landscape_size(self):
        """Test 16:9 narrows width (minimum 20) and grows height."""
        out = transform(Geometry(width=50, height=10), "16:9")
        assert out.width == pytest.approx(40)
        assert out.height == pytest.approx(11)
        assert transform(Geometry(width=10, height=10), "16:9").width == pytest.approx(20)

    def test_square(self):
        """Test 1:1 pulls low elements up and shrinks boxes."""
        out = transform(Geometry(x=30, y=85, width=50, height=20), "1:1")
        assert out.x == pytest.approx(30)
        assert out.y == pytest.approx(75)
        assert out.width == pytest.approx(45)
        assert out.height == pytest.approx(19)
        assert transform(Geometry(y=72), "1:1").y == pytest.approx(62)
        assert transform(Geometry(y=40), "1:1").y == pytest.approx(40)

    def test_portrait(self):
        """Test 4:5 scales y and size slightly."""
        out = transform(Geometry(x=30, y=80, width=50, height=50), "4:5")
        assert out.x == pytest.approx(30)
        assert out.y == pytest.approx(76)
        assert out.width == pytest.approx(47.5)
        assert out.height == pytest.approx(49)

    def test_pure(self):
        """Test repeated calls give identical results."""
        g = Geometry(x=75, y=75, width=30, height=30)
        assert transform(g, "16:9") == transform(g, "16:9")


class TestToPixels:
    """Tests for percent to pixel conversion."""

    def test_basic_conversion(self):
        """Test percent values map onto the canvas."""
        box = to_pixels(Geometry(x=10, y=50, width=50, height=10), 1088, 1920)
        assert box == PixelBox(x=109, y=960, width=544, height=192)

    def test_overflow_is_clamped(self):
        """Test boxes extending past the edge are cut at the canvas."""
        box = to_pixels(Geometry(x=90, y=95, width=50, height=50), 1000, 1000)
        assert box == PixelBox(x=900, y=950, width=100, height=50)

    def test_negative_and_huge_values(self):
        """Test out-of-range percentages are clamped to 0-100."""
        box = to_pixels(Geometry(x=-20, y=150, width=300, height=-5), 1000, 500)
        assert box == PixelBox(x=0, y=500, width=1000, height=0)

    def test_boxes_always_inside_canvas(self):
        """Test every format keeps every box within its canvas."""
        values = [-10, 0, 19, 20, 21, 50, 69, 70, 95, 100, 120]
        sizes = [0, 10, 50, 100, 150]
        for fmt, (w, h) in VIDEO_DIMENSIONS.items():
            for x, y, gw, gh in itertools.product(values, values, sizes, sizes):
                box = element_box(Geometry(x=x, y=y, width=gw, height=gh), fmt, w, h)
                assert 0 <= box.x <= w
                assert 0 <= box.y <= h
                assert box.width >= 0 and box.height >= 0
                assert box.x + box.width <= w
                assert box.y + box.height <= h


class TestClampBox:
    def test_expanded_box_is_clipped(self):
        """Test a border expanded past the edge is clipped."""
        assert clamp_box(PixelBox(-5, 10, 50, 1000), 100, 200) == PixelBox(0, 10, 45, 190)

    def test_fully_outside_box_is_empty(self):
        box = clamp_box(PixelBox(150, 150, 20, 20), 100, 100)
        assert box.width == 0 and box.height == 0
