# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for spcn.color_matrix."""

import numpy as np
import pytest

from spcn.color_matrix import (
    image_to_matrix,
    matrix_to_image,
    od_to_rgb,
    rgb_to_od,
    validate_pixel_lengths,
)
from spcn.exceptions import PixelLengthError

# ---------------------------------------------------------------------------
# validate_pixel_lengths
# ---------------------------------------------------------------------------


class TestValidatePixelLengths:
    """Tests for the pixel type checks."""

    @pytest.mark.parametrize("length", [3, 4, 7])
    def test_accepts_three_or_more(self, length):
        """Pixel lengths of three or more colors are supported."""
        validate_pixel_lengths(length)
        validate_pixel_lengths(length, length)

    @pytest.mark.parametrize("length", [0, 1, 2])
    def test_rejects_short_pixels(self, length):
        """Fewer than three colors is a PixelLengthError."""
        with pytest.raises(PixelLengthError, match=">= 3"):
            validate_pixel_lengths(length)

    def test_rejects_mismatched_output(self):
        """Output length must equal input length."""
        with pytest.raises(PixelLengthError, match="must equal"):
            validate_pixel_lengths(3, 4)

    def test_is_a_value_error(self):
        """PixelLengthError can be caught as ValueError."""
        with pytest.raises(ValueError):
            validate_pixel_lengths(2)


# ---------------------------------------------------------------------------
# image_to_matrix / matrix_to_image
# ---------------------------------------------------------------------------


class TestImageToMatrix:
    """Tests for the color matrix builder."""

    def test_shape(self, he_image):
        """A (rows, cols, C) image becomes a (C, rows * cols) matrix."""
        result = image_to_matrix(he_image)
        assert result.shape == (3, 32 * 32)
        assert result.dtype == np.float64

    def test_columns_are_pixels_in_row_major_order(self):
        """Column k holds the k-th pixel in C order."""
        image = np.arange(2 * 3 * 4).reshape(2, 3, 4)
        result = image_to_matrix(image)
        np.testing.assert_array_equal(result[:, 0], image[0, 0])
        np.testing.assert_array_equal(result[:, 4], image[1, 1])

    def test_empty_region(self):
        """A region with no pixels yields a zero-column matrix."""
        result = image_to_matrix(np.zeros((0, 5, 3)))
        assert result.shape == (3, 0)

    def test_pixel_list(self, rng):
        """A flat (N, C) pixel list is accepted."""
        pixels = rng.uniform(0.0, 255.0, size=(10, 4))
        result = image_to_matrix(pixels)
        np.testing.assert_array_equal(result, pixels.T)

    def test_negative_values_raise(self):
        """Negative intensities are rejected."""
        with pytest.raises(ValueError, match="non-negative"):
            image_to_matrix(np.full((2, 2, 3), -1.0))

    @pytest.mark.parametrize("value", [np.nan, np.inf])
    def test_non_finite_values_raise(self, value):
        """NaN and infinite intensities are rejected."""
        image = np.full((2, 2, 3), 100.0)
        image[1, 0, 2] = value
        with pytest.raises(ValueError, match="finite"):
            image_to_matrix(image)

    def test_scalar_raises(self):
        """A 0-D array has no channel axis."""
        with pytest.raises(ValueError, match="channel axis"):
            image_to_matrix(np.float64(3.0))


class TestMatrixToImage:
    """Tests for writing a color matrix back into image layout."""

    def test_inverse_of_image_to_matrix(self, he_image):
        """matrix_to_image undoes image_to_matrix."""
        matrix = image_to_matrix(he_image)
        result = matrix_to_image(matrix, he_image.shape)
        np.testing.assert_array_equal(result, he_image)

    def test_integer_dtype_rounds_and_clips(self):
        """Integer outputs are rounded and clipped to the dtype range."""
        matrix = np.array([[-3.0, 10.4, 300.0], [0.6, 254.5, 255.2], [1.0, 2.0, 3.0]])
        result = matrix_to_image(matrix, (3, 3), np.uint8)
        assert result.dtype == np.uint8
        np.testing.assert_array_equal(result[0], [0, 1, 1])
        np.testing.assert_array_equal(result[2], [255, 255, 3])

    def test_empty(self):
        """An empty matrix becomes an empty image."""
        result = matrix_to_image(np.zeros((3, 0)), (0, 4, 3), np.uint8)
        assert result.shape == (0, 4, 3)


# ---------------------------------------------------------------------------
# Optical density
# ---------------------------------------------------------------------------


class TestOpticalDensity:
    """Tests for rgb_to_od and od_to_rgb."""

    def test_unstained_has_zero_density(self):
        """The unstained color itself has zero optical density."""
        unstained = np.array([250.0, 240.0, 245.0])
        result = rgb_to_od(unstained[:, None], unstained)
        np.testing.assert_allclose(result, 0.0, atol=1e-12)

    def test_brighter_than_unstained_is_clipped(self):
        """Pixels brighter than the background get zero density, not negative."""
        result = rgb_to_od(np.array([[255.0], [255.0], [255.0]]), [200.0, 200.0, 200.0])
        assert np.all(result == 0.0)

    def test_zero_intensity_is_finite(self):
        """Black pixels do not produce infinities."""
        result = rgb_to_od(np.zeros((3, 2)), [255.0, 255.0, 255.0])
        assert np.all(np.isfinite(result))

    def test_round_trip(self, rng):
        """od_to_rgb inverts rgb_to_od for pixels darker than the background."""
        unstained = np.array([255.0, 250.0, 252.0])
        matrix = rng.uniform(1.0, 240.0, size=(3, 50))
        result = od_to_rgb(rgb_to_od(matrix, unstained), unstained)
        np.testing.assert_allclose(result, matrix, rtol=1e-10)
