# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Structure-preserving color normalization of histology images.

Stain colors are separated by non-negative matrix factorization of optical
density, and every region of an image is rebuilt from its own stain
concentrations and a reference image's stain colors.
"""

import logging

from spcn.__about__ import __version__
from spcn.color_matrix import (
    image_to_matrix,
    matrix_to_image,
    od_to_rgb,
    rgb_to_od,
    validate_pixel_lengths,
)
from spcn.config import (
    EPSILON,
    EPSILON2,
    LAMBDA,
    NUMBER_OF_ITERATIONS,
    NUMBER_OF_STAINS,
    NormalizationConfig,
)
from spcn.distinguishers import (
    StainRoles,
    classify_distinguishers,
    find_distinguisher_indices,
    find_distinguishers,
)
from spcn.exceptions import ClassificationAmbiguousWarning, PixelLengthError
from spcn.filter import StructurePreservingColorNormalizationFilter, iter_regions
from spcn.nmf import (
    distinguishers_to_nmf_seeds,
    solve_nmf,
    virtanen_euclid,
    virtanen_kl_divergence,
)
from spcn.normalization import (
    ReferenceProfile,
    build_reference_profile,
    image_to_nmf,
    nmf_to_image,
    process_region,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "EPSILON",
    "EPSILON2",
    "LAMBDA",
    "NUMBER_OF_ITERATIONS",
    "NUMBER_OF_STAINS",
    "ClassificationAmbiguousWarning",
    "NormalizationConfig",
    "PixelLengthError",
    "ReferenceProfile",
    "StainRoles",
    "StructurePreservingColorNormalizationFilter",
    "__version__",
    "build_reference_profile",
    "classify_distinguishers",
    "distinguishers_to_nmf_seeds",
    "find_distinguisher_indices",
    "find_distinguishers",
    "image_to_matrix",
    "image_to_nmf",
    "iter_regions",
    "matrix_to_image",
    "nmf_to_image",
    "od_to_rgb",
    "process_region",
    "rgb_to_od",
    "solve_nmf",
    "validate_pixel_lengths",
    "virtanen_euclid",
    "virtanen_kl_divergence",
]
