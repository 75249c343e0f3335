"""Tests for the RenderBuffer.

This module tests:
- Pixel access and clearing
- Tile merging by copy and by running-average accumulation
- 8-bit export with and without gamma
- PNG output
"""

import numpy as np
import pytest


class TestRenderBufferBasics:
    """Construction and pixel access."""

    def test_new_buffer_is_transparent_black(self):
        """Test that a new buffer is all zeros with no frames."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(8, 4)
        assert buffer.pixels.shape == (4, 8, 4)
        assert buffer.pixels.dtype == np.float32
        assert not buffer.pixels.any()
        assert buffer.frames == 0

    def test_negative_size_rejected(self):
        """Test that a negative size raises."""
        from forged.core import RenderBuffer

        with pytest.raises(ValueError, match="non-negative"):
            RenderBuffer(-1, 4)

    def test_set_and_at(self):
        """Test that set and at address pixels by (x, y)."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(4, 3)
        buffer.set(3, 1, (1.0, 0.5, 0.25, 1.0))

        assert buffer.at(3, 1) == (1.0, 0.5, 0.25, 1.0)
        np.testing.assert_array_equal(buffer.pixels[1, 3], [1.0, 0.5, 0.25, 1.0])
        assert buffer.at(0, 0) == (0.0, 0.0, 0.0, 0.0)

    def test_clear(self):
        """Test that clear resets pixels and the frame counter."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(2, 2)
        buffer.set(0, 0, (1.0, 1.0, 1.0, 1.0))
        buffer.frames = 3
        buffer.clear()
        assert not buffer.pixels.any()
        assert buffer.frames == 0


class TestRenderBufferMerge:
    """copy_from and accum_from."""

    def test_copy_from_places_tile(self):
        """Test that a tile lands at its offset."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(6, 6)
        tile = RenderBuffer(2, 2)
        tile.pixels[...] = 1.0
        buffer.copy_from(2, 4, tile)

        assert buffer.pixels[4:6, 2:4].min() == 1.0
        assert buffer.pixels.sum() == pytest.approx(16.0)

    def test_copy_from_clips_at_edges(self):
        """Test that pixels of a tile outside the buffer are dropped."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(5, 5)
        tile = RenderBuffer(4, 4)
        tile.pixels[...] = 2.0
        buffer.copy_from(3, 3, tile)

        assert buffer.pixels[3:, 3:].min() == 2.0
        assert buffer.pixels.sum() == pytest.approx(2.0 * 4 * 4)

    def test_accum_running_average(self):
        """Test that accumulating samples 1..4 gives their mean."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(2, 2)
        for n, value in enumerate([1.0, 2.0, 3.0, 4.0], start=1):
            tile = RenderBuffer(2, 2)
            tile.pixels[...] = value
            buffer.accum_from(0, 0, tile, n)

        np.testing.assert_allclose(buffer.pixels, 2.5, rtol=1e-6)

    def test_accum_first_iteration_is_copy(self):
        """Test that iteration 1 replaces whatever was there."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(1, 1)
        buffer.set(0, 0, (9.0, 9.0, 9.0, 9.0))
        tile = RenderBuffer(1, 1)
        tile.set(0, 0, (0.5, 0.5, 0.5, 1.0))
        buffer.accum_from(0, 0, tile, 1)
        assert buffer.at(0, 0) == (0.5, 0.5, 0.5, 1.0)

    def test_accum_rejects_iteration_zero(self):
        """Test that iteration 0 is rejected."""
        from forged.core import RenderBuffer

        with pytest.raises(ValueError, match="iteration"):
            RenderBuffer(1, 1).accum_from(0, 0, RenderBuffer(1, 1), 0)


class TestRenderBufferExport:
    """8-bit conversion and PNG output."""

    def test_u8_layout(self):
        """Test the row-major RGBA byte layout."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(2, 1)
        buffer.set(1, 0, (1.0, 0.0, 0.0, 1.0))
        np.testing.assert_array_equal(buffer.to_u8_vec(), [0, 0, 0, 0, 255, 0, 0, 255])

    def test_u8_round_trip_within_one_step(self):
        """Test that bytes divided by 255 are within 1/255 of the floats."""
        from forged.core import RenderBuffer

        rng = np.random.default_rng(11)
        buffer = RenderBuffer(8, 8)
        buffer.pixels[...] = rng.random((8, 8, 4))

        restored = buffer.to_u8_vec().astype(np.float64) / 255.0
        np.testing.assert_allclose(restored, buffer.pixels.reshape(-1), atol=1.0 / 255.0 + 1e-6)

    def test_u8_saturates(self):
        """Test that out-of-range values saturate."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(1, 1)
        buffer.set(0, 0, (2.0, -1.0, 0.5, 1.0))
        np.testing.assert_array_equal(buffer.to_u8_vec(), [255, 0, 127, 255])

    def test_gamma_leaves_alpha(self):
        """Test that gamma export brightens color but not alpha."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(1, 1)
        buffer.set(0, 0, (0.25, 0.25, 0.25, 0.25))
        r, _, _, a = buffer.to_u8_vec_gamma()
        assert r == int(0.25**0.4545 * 255.0)
        assert a == int(0.25 * 255.0)

    def test_save_writes_rgba_png(self, tmp_path):
        """Test PNG output through Pillow."""
        from PIL import Image

        from forged.core import RenderBuffer

        buffer = RenderBuffer(4, 2)
        buffer.set(0, 0, (1.0, 0.0, 0.0, 1.0))
        path = tmp_path / "out.png"
        buffer.save(path)

        with Image.open(path) as image:
            assert image.mode == "RGBA"
            assert image.size == (4, 2)
            assert image.getpixel((0, 0)) == (255, 0, 0, 255)

    def test_save_srgb_and_film_write_rgb(self, tmp_path):
        """Test that the tone mapped exports write RGB images."""
        from PIL import Image

        from forged.core import RenderBuffer

        buffer = RenderBuffer(3, 3)
        buffer.pixels[...] = 0.5
        for name, save in (("srgb.png", buffer.save_srgb), ("film.png", buffer.save_film)):
            save(tmp_path / name)
            with Image.open(tmp_path / name) as image:
                assert image.mode == "RGB"

    def test_snapshot_is_a_copy(self):
        """Test that a snapshot does not track later changes."""
        from forged.core import RenderBuffer

        buffer = RenderBuffer(2, 2)
        snap = buffer.snapshot()
        buffer.set(0, 0, (1.0, 1.0, 1.0, 1.0))
        assert not snap.any()
