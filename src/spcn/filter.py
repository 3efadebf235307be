# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Whole-image normalization on a thread pool.

:class:`StructurePreservingColorNormalizationFilter` owns the two-phase
run: it builds the reference profile once, splits the image into disjoint
square regions, normalizes every region on a
:class:`concurrent.futures.ThreadPoolExecutor` and writes each result into
its own slice of the output.

Typical usage::

    from spcn import NormalizationConfig, StructurePreservingColorNormalizationFilter

    spcn_filter = StructurePreservingColorNormalizationFilter(
        input_length=3, config=NormalizationConfig(region_size=512)
    )
    spcn_filter.fit(im_reference)   # optional; defaults to the image itself
    im_normalized = spcn_filter.transform(im_source)
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from numpy.typing import ArrayLike

from spcn.color_matrix import validate_pixel_lengths
from spcn.config import NUMBER_OF_STAINS, NormalizationConfig
from spcn.normalization import (
    ReferenceProfile,
    build_reference_profile,
    concentration_scale_between,
    process_region,
)

logger = logging.getLogger(__name__)


def iter_regions(
    spatial_shape: tuple[int, ...], region_size: int
) -> Iterator[tuple[slice, ...]]:
    """Yield disjoint regions that tile an array of the given spatial shape.

    :param spatial_shape: Shape of the image without its channel axis.
    :type spatial_shape: tuple[int, ...]
    :param region_size: Edge length of each region; regions at the far
        edges are clipped to the image.
    :type region_size: int
    :return: Iterator of slice tuples, in C order.
    :rtype: Iterator[tuple[slice, ...]]
    """
    if region_size < 1:
        msg = f"region_size must be positive, got {region_size}"
        raise ValueError(msg)
    starts = [range(0, extent, region_size) for extent in spatial_shape]
    for corner in itertools.product(*starts):
        yield tuple(
            slice(start, min(start + region_size, extent))
            for start, extent in zip(corner, spatial_shape)
        )


class StructurePreservingColorNormalizationFilter:
    """Normalize the stain colors of an image to a reference palette.

    The pixel types are checked when the filter is constructed, so an
    unsupported configuration never reaches the pixel loop.

    :param input_length: Number of colors of an input pixel (at least 3).
    :type input_length: int
    :param output_length: Number of colors of an output pixel.  Must equal
        *input_length*; ``None`` means the same.
    :type output_length: int | None
    :param config: Run settings.  Defaults to :class:`NormalizationConfig`.
    :type config: NormalizationConfig | None
    :raises PixelLengthError: If the pixel lengths are unsupported.
    """

    number_of_stains = NUMBER_OF_STAINS

    def __init__(
        self,
        input_length: int = 3,
        output_length: int | None = None,
        config: NormalizationConfig | None = None,
    ) -> None:
        validate_pixel_lengths(input_length, output_length)
        self.input_length = input_length
        self.output_length = input_length if output_length is None else output_length
        self.config = config if config is not None else NormalizationConfig()
        self.reference_profile: ReferenceProfile | None = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(input_length={self.input_length}, "
            f"output_length={self.output_length}, config={self.config!r})"
        )

    def _check_image(self, image: np.ndarray) -> None:
        if image.ndim < 2 or image.shape[-1] != self.input_length:
            msg = (
                f"image must have shape (..., {self.input_length}), got {image.shape}"
            )
            raise ValueError(msg)

    def fit(self, reference_image: ArrayLike) -> StructurePreservingColorNormalizationFilter:
        """Compute the reference profile from an external reference image.

        :param reference_image: Array of shape ``(..., input_length)``.
        :type reference_image: ArrayLike
        :return: ``self``.
        :rtype: StructurePreservingColorNormalizationFilter
        """
        reference_image = np.asarray(reference_image)
        self._check_image(reference_image)
        self.reference_profile = build_reference_profile(
            reference_image,
            method=self.config.method,
            percentile=self.config.percentile,
        )
        return self

    def transform(self, image: ArrayLike) -> np.ndarray:
        """Normalize an image.

        Without a fitted reference the image is normalized against its own
        profile.  With one, the concentrations of every region are also
        scaled so that the image's robust maximum concentration of each
        stain matches the reference's.
        Regions whose own seed collapses (a single stain, or no background)
        are seeded from the image's own profile in either case.

        :param image: Array of shape ``(..., input_length)``.
        :type image: ArrayLike
        :return: The normalized image, same shape and dtype as *image*.
        :rtype: numpy.ndarray
        :raises ValueError: If the image's pixel length is wrong.
        """
        image = np.asarray(image)
        self._check_image(image)
        if image.size == 0:
            return np.empty(image.shape, dtype=image.dtype)

        source_profile = build_reference_profile(
            image, method=self.config.method, percentile=self.config.percentile
        )
        if self.reference_profile is None:
            reference_profile = source_profile
            concentration_scale = None
        else:
            reference_profile = self.reference_profile
            concentration_scale = concentration_scale_between(
                source_profile, reference_profile
            )
            logger.debug("Concentration scale: %s", concentration_scale)

        output = np.empty(image.shape, dtype=image.dtype)
        regions = list(iter_regions(image.shape[:-1], self.config.region_size))
        logger.info(
            "Normalizing %d regions of %s with %s workers",
            len(regions),
            image.shape,
            self.config.max_workers or "default",
        )
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(
                    process_region,
                    image[region],
                    reference_profile,
                    self.config.method,
                    concentration_scale,
                    source_profile,
                ): region
                for region in regions
            }
            try:
                for future in as_completed(futures):
                    output[futures[future]] = future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise
        return output
