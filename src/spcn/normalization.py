# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Structure-preserving color normalization.

The normalization runs in two phases:

1. :func:`build_reference_profile` factors a whole image once, on a single
   thread, into a :class:`ReferenceProfile`: its stain colors **W**, its
   concentrations **H** and its unstained (background) color.
2. :func:`process_region` factors one region of the image to normalize and
   recombines the region's own concentrations (its tissue structure) with
   the reference stain colors (the target palette)::

       log(out) = log(reference_unstained) - reference_W @ local_H

   Regions share nothing but the read-only profile, so they may be
   processed concurrently and in any order.

Typical usage::

    import numpy as np
    from spcn.normalization import build_reference_profile, process_region

    profile = build_reference_profile(im_reference)
    tile = im_source[0:256, 0:256]
    normalized_tile = process_region(tile, profile)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.color_matrix import image_to_matrix, matrix_to_image, od_to_rgb, rgb_to_od
from spcn.config import EPSILON, NUMBER_OF_STAINS, UNSTAINED_OD_TOLERANCE
from spcn.distinguishers import classify_distinguishers, find_distinguishers
from spcn.nmf import (
    distinguishers_to_stain_colors,
    is_degenerate_stain_matrix,
    nmf_seeds,
    solve_nmf,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ReferenceProfile:
    """The target palette of a normalization run.

    All arrays are copied on construction and marked read-only, so one
    profile can be shared by any number of worker threads.

    :param stain_colors: ``(C, 2)`` unit-length stain colors in optical
        density; column 0 is Hematoxylin, column 1 is Eosin.
    :param concentrations: ``(2, N)`` stain concentrations of the reference
        image.
    :param unstained: ``(C,)`` background color of the reference image.
    :param max_concentrations: ``(2,)`` robust maximum (a high percentile)
        of each row of *concentrations*.
    """

    stain_colors: NDArray[np.float64]
    concentrations: NDArray[np.float64]
    unstained: NDArray[np.float64]
    max_concentrations: NDArray[np.float64]

    def __post_init__(self) -> None:
        for name in ("stain_colors", "concentrations", "unstained", "max_concentrations"):
            arr = np.array(getattr(self, name), dtype=np.float64)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

        num_colors = self.unstained.shape[0]
        if self.stain_colors.shape != (num_colors, NUMBER_OF_STAINS):
            msg = (
                f"stain_colors must have shape ({num_colors}, {NUMBER_OF_STAINS}), "
                f"got {self.stain_colors.shape}"
            )
            raise ValueError(msg)
        if self.concentrations.ndim != 2 or self.concentrations.shape[0] != NUMBER_OF_STAINS:
            msg = (
                f"concentrations must have shape ({NUMBER_OF_STAINS}, N), "
                f"got {self.concentrations.shape}"
            )
            raise ValueError(msg)
        if self.max_concentrations.shape != (NUMBER_OF_STAINS,):
            msg = (
                f"max_concentrations must have shape ({NUMBER_OF_STAINS},), "
                f"got {self.max_concentrations.shape}"
            )
            raise ValueError(msg)

    @property
    def num_colors(self) -> int:
        """Pixel length (number of colors) the profile was built for."""
        return int(self.unstained.shape[0])


def _is_stained(color: np.ndarray, background: np.ndarray) -> bool:
    density = rgb_to_od(np.asarray(color, dtype=np.float64)[:, None], background)
    return bool(np.linalg.norm(density) > UNSTAINED_OD_TOLERANCE)


def image_to_nmf(
    pixels: ArrayLike,
    method: str = "euclid",
    fallback: ReferenceProfile | None = None,
) -> tuple[
    NDArray[np.float64], NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]
]:
    """Factor a block of pixels into stain colors and concentrations.

    Runs the color matrix builder, the distinguisher search, the role
    classification, the seeding and the chosen NMF solver.

    :param pixels: Array of shape ``(..., C)``.
    :type pixels: ArrayLike
    :param method: NMF solver, ``"euclid"`` or ``"kl"``.
    :type method: str
    :param fallback: Profile whose stain colors and unstained color seed the
        factorization when the block's own seed has collapsed: its
        distinguishers do not yield two distinct stains (a uniform block or
        one holding a single stain), or its unstained color is a stained
        pixel (a block without background).  Without a fallback a
        degenerate seed is used as is.
    :type fallback: ReferenceProfile | None
    :return: ``(matrix_od, matrix_w, matrix_h, unstained)``.  For a block
        without pixels **V** and **H** have zero columns and **W** and the
        unstained color are zero.
    :rtype: tuple[NDArray[np.float64], ...]
    """
    matrix_v = image_to_matrix(pixels)
    num_colors, num_pixels = matrix_v.shape
    if num_pixels == 0:
        return (
            matrix_v,
            np.zeros((num_colors, NUMBER_OF_STAINS)),
            np.zeros((NUMBER_OF_STAINS, 0)),
            np.zeros(num_colors),
        )

    distinguishers = find_distinguishers(matrix_v)
    roles = classify_distinguishers(distinguishers)
    stain_colors, unstained = distinguishers_to_stain_colors(distinguishers, roles)
    degenerate = is_degenerate_stain_matrix(stain_colors)
    if fallback is not None and (
        degenerate or _is_stained(unstained, fallback.unstained)
    ):
        logger.debug("Collapsed stain seeds; seeding from the fallback profile")
        stain_colors, unstained = fallback.stain_colors, fallback.unstained
    elif degenerate:
        logger.warning("Could not find two distinct stains among %d pixels", num_pixels)

    matrix_od, matrix_w, matrix_h = nmf_seeds(matrix_v, stain_colors, unstained)
    solve_nmf(matrix_od, matrix_w, matrix_h, method=method)
    return matrix_od, matrix_w, matrix_h, np.array(unstained, dtype=np.float64)


def build_reference_profile(
    whole_image: ArrayLike,
    method: str = "euclid",
    percentile: float = 99.0,
) -> ReferenceProfile:
    """Factor a whole image into the profile that regions are normalized to.

    Call once, before any region is processed.

    :param whole_image: Array of shape ``(..., C)`` with ``C >= 3``.
    :type whole_image: ArrayLike
    :param method: NMF solver, ``"euclid"`` or ``"kl"``.
    :type method: str
    :param percentile: Percentile (0-100) of each stain's concentrations
        stored as :attr:`ReferenceProfile.max_concentrations`.
    :type percentile: float
    :return: The immutable reference profile.
    :rtype: ReferenceProfile
    :raises ValueError: If the image has no pixels.
    """
    whole_image = np.asarray(whole_image)
    _, matrix_w, matrix_h, unstained = image_to_nmf(whole_image, method=method)
    if matrix_h.shape[1] == 0:
        msg = "cannot build a reference profile from an image without pixels"
        raise ValueError(msg)

    max_concentrations = np.percentile(matrix_h, percentile, axis=1)
    logger.info(
        "Built reference profile from %d pixels (unstained color %s)",
        matrix_h.shape[1],
        np.round(unstained, 3).tolist(),
    )
    return ReferenceProfile(
        stain_colors=matrix_w,
        concentrations=matrix_h,
        unstained=unstained,
        max_concentrations=max_concentrations,
    )


def nmf_to_image(
    local_h: ArrayLike,
    reference_profile: ReferenceProfile,
    concentration_scale: ArrayLike | None = None,
) -> NDArray[np.float64]:
    """Recombine local concentrations with the reference palette.

    :param local_h: ``(2, N)`` concentrations of the region being
        normalized.
    :type local_h: ArrayLike
    :param reference_profile: The target palette.
    :type reference_profile: ReferenceProfile
    :param concentration_scale: Optional ``(2,)`` per-stain factor applied
        to *local_h*, for matching concentration ranges between a source
        image and a reference image.  Defaults to ones.
    :type concentration_scale: ArrayLike | None
    :return: ``(C, N)`` intensity matrix of the normalized pixels.
    :rtype: NDArray[np.float64]
    """
    local_h = np.asarray(local_h, dtype=np.float64)
    if concentration_scale is not None:
        scale = np.asarray(concentration_scale, dtype=np.float64).reshape(-1)
        if scale.shape != (NUMBER_OF_STAINS,):
            msg = (
                f"concentration_scale must have {NUMBER_OF_STAINS} entries, "
                f"got {scale.shape[0]}"
            )
            raise ValueError(msg)
        local_h = local_h * scale[:, None]
    matrix_od = reference_profile.stain_colors @ local_h
    return od_to_rgb(matrix_od, reference_profile.unstained)


def process_region(
    region_pixels: ArrayLike,
    reference_profile: ReferenceProfile,
    method: str = "euclid",
    concentration_scale: ArrayLike | None = None,
    fallback: ReferenceProfile | None = None,
) -> np.ndarray:
    """Normalize one region of an image against a reference profile.

    Safe to call concurrently for disjoint regions sharing one profile.

    :param region_pixels: Array of shape ``(..., C)``, where ``C`` equals
        :attr:`ReferenceProfile.num_colors`.
    :type region_pixels: ArrayLike
    :param reference_profile: Profile from :func:`build_reference_profile`.
    :type reference_profile: ReferenceProfile
    :param method: NMF solver, ``"euclid"`` or ``"kl"``.
    :type method: str
    :param concentration_scale: Optional per-stain factor, see
        :func:`nmf_to_image`.
    :type concentration_scale: ArrayLike | None
    :param fallback: Profile of the image the region comes from, used to
        seed regions whose own seed has collapsed (see
        :func:`image_to_nmf`).  Its palette measures the region's
        concentrations, so it must be the source image's profile, not an
        external reference's.  Defaults to *reference_profile*, which is
        right when an image is normalized against itself.
    :type fallback: ReferenceProfile | None
    :return: The normalized region, with the shape and dtype of the input.
        A region without pixels yields an empty array.
    :rtype: numpy.ndarray
    :raises ValueError: If the region's pixel length differs from the
        profile's.
    """
    region = np.asarray(region_pixels)
    if region.ndim < 1 or region.shape[-1] != reference_profile.num_colors:
        msg = (
            f"region pixels must have {reference_profile.num_colors} colors, "
            f"got shape {region.shape}"
        )
        raise ValueError(msg)
    if region.size == 0:
        return np.empty(region.shape, dtype=region.dtype)

    if fallback is None:
        fallback = reference_profile
    _, _, matrix_h, _ = image_to_nmf(region, method=method, fallback=fallback)
    output = nmf_to_image(matrix_h, reference_profile, concentration_scale)
    return matrix_to_image(output, region.shape, region.dtype)


def concentration_scale_between(
    source_profile: ReferenceProfile,
    reference_profile: ReferenceProfile,
) -> NDArray[np.float64]:
    """Per-stain factor mapping source concentrations onto the reference range.

    :return: ``reference.max_concentrations / source.max_concentrations``,
        with the denominator floored at ``EPSILON``.
    :rtype: NDArray[np.float64]
    """
    return reference_profile.max_concentrations / np.maximum(
        source_profile.max_concentrations, EPSILON
    )
