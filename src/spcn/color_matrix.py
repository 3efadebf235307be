# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Conversions between pixel arrays and color matrices.

Every later step of the normalization consumes a dense color matrix **V**
with one row per color channel and one column per pixel.  This module
builds that matrix from any array whose last axis is the channel axis,
writes it back into image layout, and converts intensities to and from
optical density relative to an unstained (background) color via the
Lambert-Beer law::

    OD = log(unstained) - log(I)
    I  = unstained * exp(-OD)
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.config import EPSILON, MINIMUM_PIXEL_LENGTH
from spcn.exceptions import PixelLengthError

# ---------------------------------------------------------------------------
# Pixel type checks
# ---------------------------------------------------------------------------


def validate_pixel_lengths(input_length: int, output_length: int | None = None) -> None:
    """Check that a pair of pixel types can be normalized.

    :param input_length: Number of colors of an input pixel.
    :type input_length: int
    :param output_length: Number of colors of an output pixel.  ``None``
        means the same as *input_length*.
    :type output_length: int | None
    :raises PixelLengthError: If *input_length* is below three, or if
        *output_length* differs from *input_length*.
    """
    if input_length < MINIMUM_PIXEL_LENGTH:
        msg = (
            f"input pixel length (#colors) must be >= {MINIMUM_PIXEL_LENGTH}, "
            f"got {input_length}"
        )
        raise PixelLengthError(msg)
    if output_length is not None and output_length != input_length:
        msg = (
            "output pixel length (#colors) must equal the input pixel length, "
            f"got {output_length} != {input_length}"
        )
        raise PixelLengthError(msg)


# ---------------------------------------------------------------------------
# Image <-> matrix
# ---------------------------------------------------------------------------


def image_to_matrix(pixels: ArrayLike) -> NDArray[np.float64]:
    """Convert a block of pixels into a color matrix.

    :param pixels: Array of shape ``(..., C)``.  All leading axes are
        flattened in C order, so a ``(rows, cols, C)`` image yields its
        pixels in row-major order.
    :type pixels: ArrayLike
    :return: ``(C, N)`` float64 matrix, one column per pixel.  A region
        without pixels yields a ``(C, 0)`` matrix.
    :rtype: NDArray[np.float64]
    :raises ValueError: If *pixels* has no channel axis or holds negative
        or non-finite values.
    """
    arr = np.asarray(pixels)
    if arr.ndim < 1:
        msg = f"pixels must have a channel axis, got {arr.ndim}D"
        raise ValueError(msg)

    num_colors = arr.shape[-1]
    matrix = arr.reshape(-1, num_colors).T.astype(np.float64)
    if not np.all(np.isfinite(matrix)):
        msg = "pixel intensities must be finite"
        raise ValueError(msg)
    if matrix.size and matrix.min() < 0.0:
        msg = "pixel intensities must be non-negative"
        raise ValueError(msg)
    return matrix


def matrix_to_image(
    matrix: ArrayLike,
    shape: tuple[int, ...],
    dtype: np.dtype | type = np.float64,
) -> np.ndarray:
    """Write a color matrix back into image layout.

    This is the inverse of :func:`image_to_matrix`.  Integer dtypes are
    rounded and clipped to the representable range of the dtype so that
    reconstructed values never wrap around.

    :param matrix: ``(C, N)`` color matrix.
    :type matrix: ArrayLike
    :param shape: Target shape ``(..., C)``; its size must be ``C * N``.
    :type shape: tuple[int, ...]
    :param dtype: Output dtype.
    :type dtype: numpy.dtype | type
    :return: Array of the given shape and dtype.
    :rtype: numpy.ndarray
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    dtype = np.dtype(dtype)
    image = matrix.T.reshape(shape)
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        image = np.clip(np.rint(image), info.min, info.max)
    return image.astype(dtype)


# ---------------------------------------------------------------------------
# Intensity <-> optical density
# ---------------------------------------------------------------------------


def rgb_to_od(matrix: ArrayLike, unstained: ArrayLike) -> NDArray[np.float64]:
    """Convert an intensity color matrix to optical density.

    Intensities at or below ``EPSILON`` are raised to ``EPSILON`` before the
    logarithm, and pixels brighter than the unstained color are clipped to
    zero density.

    :param matrix: ``(C, N)`` intensity matrix.
    :type matrix: ArrayLike
    :param unstained: ``(C,)`` unstained (background) color.
    :type unstained: ArrayLike
    :return: ``(C, N)`` non-negative optical density matrix.
    :rtype: NDArray[np.float64]
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    log_unstained = np.log(np.maximum(np.asarray(unstained, dtype=np.float64), EPSILON))
    od = log_unstained[:, None] - np.log(np.maximum(matrix, EPSILON))
    return np.maximum(od, 0.0)


def od_to_rgb(od: ArrayLike, unstained: ArrayLike) -> NDArray[np.float64]:
    """Convert an optical density matrix back to intensities.

    :param od: ``(C, N)`` optical density matrix.
    :type od: ArrayLike
    :param unstained: ``(C,)`` unstained (background) color.
    :type unstained: ArrayLike
    :return: ``(C, N)`` intensity matrix, bounded above by *unstained* for
        non-negative densities.
    :rtype: NDArray[np.float64]
    """
    od = np.asarray(od, dtype=np.float64)
    unstained = np.asarray(unstained, dtype=np.float64)
    return unstained[:, None] * np.exp(-od)
