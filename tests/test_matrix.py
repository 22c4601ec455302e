# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for spcn.matrix (pixel block <-> channel-by-pixel matrix)."""

import numpy as np
import pytest

from spcn.exceptions import DegenerateImageError
from spcn.matrix import image_to_matrix, matrix_to_image, resolve_dtype

# ---------------------------------------------------------------------------
# image_to_matrix
# ---------------------------------------------------------------------------


class TestImageToMatrix:
    """Tests for building V from a pixel block."""

    def test_shape_3d(self, he_block):
        """A (4, 4, 3) block should give a (3, 16) matrix."""
        assert image_to_matrix(he_block).shape == (3, 16)

    def test_shape_2d(self, rng):
        """An (N, C) pixel list should be transposed to (C, N)."""
        pixels = rng.uniform(0.0, 255.0, size=(10, 4))
        result = image_to_matrix(pixels)
        assert result.shape == (4, 10)
        np.testing.assert_array_equal(result, pixels.T)

    def test_row_major_order(self):
        """Column n should be the n-th pixel in row-major order."""
        image = np.arange(2 * 3 * 3, dtype=np.float64).reshape(2, 3, 3)
        result = image_to_matrix(image)
        np.testing.assert_array_equal(result[:, 0], image[0, 0])
        np.testing.assert_array_equal(result[:, 1], image[0, 1])
        np.testing.assert_array_equal(result[:, 3], image[1, 0])

    def test_result_is_a_copy(self, he_block):
        """Mutating V must not touch the source block."""
        original = he_block.copy()
        result = image_to_matrix(he_block)
        result[:] = 0.0
        np.testing.assert_array_equal(he_block, original)

    def test_single_pixel_is_a_copy(self):
        """A one-pixel block is copied too, not returned as a view."""
        pixel = np.array([[240.0, 235.0, 245.0]])
        result = image_to_matrix(pixel)
        assert result.shape == (3, 1)
        assert not np.shares_memory(result, pixel)
        result[:] = 0.0
        np.testing.assert_array_equal(pixel, [[240.0, 235.0, 245.0]])

    def test_uint8_promoted_to_f64(self, he_image_uint8):
        """Integer input should be promoted to float64."""
        assert image_to_matrix(he_image_uint8).dtype == np.float64

    def test_f32_preserved(self, he_block):
        """float32 input should stay float32."""
        assert image_to_matrix(he_block.astype(np.float32)).dtype == np.float32

    def test_f16_promoted_to_f32(self, he_block):
        """float16 input should be promoted to float32."""
        assert image_to_matrix(he_block.astype(np.float16)).dtype == np.float32

    def test_too_few_channels_raises(self):
        """Fewer than 3 channels is a degenerate input."""
        with pytest.raises(DegenerateImageError, match="at least 3 channels"):
            image_to_matrix(np.ones((4, 4, 2)))

    def test_empty_raises(self):
        """A block with no pixels should raise ValueError."""
        with pytest.raises(ValueError, match="no pixels"):
            image_to_matrix(np.ones((0, 4, 3)))

    def test_negative_raises(self, he_block):
        """Negative channel values should be rejected."""
        he_block[0, 0, 0] = -1.0
        with pytest.raises(ValueError, match="negative"):
            image_to_matrix(he_block)

    def test_non_finite_raises(self, he_block):
        """NaN channel values should be rejected."""
        he_block[1, 1, 1] = np.nan
        with pytest.raises(ValueError, match="non-finite"):
            image_to_matrix(he_block)

    def test_invalid_ndim_raises(self):
        """A 1D array is not a pixel block."""
        with pytest.raises(ValueError, match=r"\(H, W, C\)"):
            image_to_matrix(np.ones(3))


# ---------------------------------------------------------------------------
# matrix_to_image
# ---------------------------------------------------------------------------


class TestMatrixToImage:
    """Tests for laying a matrix back out as an image."""

    def test_inverse_of_image_to_matrix(self, he_block):
        """matrix_to_image should undo image_to_matrix."""
        result = matrix_to_image(image_to_matrix(he_block), he_block.shape)
        np.testing.assert_array_equal(result, he_block)

    def test_size_mismatch_raises(self, he_block):
        """A shape that cannot hold the matrix should raise."""
        with pytest.raises(ValueError, match="cannot lay out"):
            matrix_to_image(image_to_matrix(he_block), (5, 5, 3))


# ---------------------------------------------------------------------------
# resolve_dtype
# ---------------------------------------------------------------------------


class TestResolveDtype:
    """Tests for the dtype promotion policy."""

    @pytest.mark.parametrize(
        ("dtype", "expected"),
        [
            (np.float64, np.float64),
            (np.float32, np.float32),
            (np.float16, np.float32),
            (np.uint8, np.float64),
            (np.int32, np.float64),
            (np.bool_, np.float64),
        ],
    )
    def test_promotion(self, dtype, expected):
        """Each input dtype should map to the documented float dtype."""
        assert resolve_dtype(np.zeros(3, dtype=dtype)).dtype == expected

    def test_float64_not_copied(self):
        """float64 input should be returned as-is."""
        arr = np.zeros(3)
        assert resolve_dtype(arr) is arr
