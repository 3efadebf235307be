# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Numeric constants and run configuration.

The constants below are fixed properties of the algorithm and are not
meant to be tuned per run:

- ``EPSILON`` is the floor applied to every entry of the stain color
  matrix **W** and the concentration matrix **H**, and the smallest
  intensity that is passed to a logarithm.
- ``EPSILON2`` is the smallest squared vector magnitude that is not
  treated as degenerate.
- ``NUMBER_OF_ITERATIONS`` is the exact number of multiplicative updates
  performed by either NMF solver; there is no convergence test.
- ``LAMBDA`` is the weight of the L1 sparsity penalty on **H** used by the
  Euclidean solver.
- ``NUMBER_OF_STAINS`` is fixed at two (Hematoxylin and Eosin).
- ``STAIN_COSINE_LIMIT`` is the largest cosine between the two seeded
  stain colors of a region; above it the stains have collapsed onto one
  direction, as in a region holding a single stain.
- ``UNSTAINED_OD_TOLERANCE`` is the largest optical density a region's
  unstained color may have relative to the profile's background before it
  is treated as a stained pixel, as in a region without background.

:class:`NormalizationConfig` holds the settings that only affect how a run
is orchestrated (solver choice, region partitioning, thread count).
"""

from __future__ import annotations

from dataclasses import dataclass

EPSILON: float = 1e-6
EPSILON2: float = EPSILON * EPSILON
NUMBER_OF_ITERATIONS: int = 300
LAMBDA: float = 0.02
NUMBER_OF_STAINS: int = 2
STAIN_COSINE_LIMIT: float = 0.98
UNSTAINED_OD_TOLERANCE: float = 0.1

# Smallest pixel length (number of colors) the algorithm accepts.
MINIMUM_PIXEL_LENGTH: int = 3

NMF_METHODS = ("euclid", "kl")


@dataclass(frozen=True)
class NormalizationConfig:
    """Settings for one normalization run.

    :param method: NMF solver, ``"euclid"`` (Euclidean error with a sparsity
        penalty) or ``"kl"`` (Kullback-Leibler divergence).
    :type method: str
    :param region_size: Edge length, in pixels, of the square regions the
        image is split into for parallel processing.
    :type region_size: int
    :param max_workers: Number of worker threads.  ``None`` lets
        :class:`concurrent.futures.ThreadPoolExecutor` choose.
    :type max_workers: int | None
    :param percentile: Percentile (0-100) of each stain's concentrations
        used as its robust maximum when matching intensities between a
        source image and an external reference.
    :type percentile: float
    :raises ValueError: If any setting is out of range.
    """

    method: str = "euclid"
    region_size: int = 256
    max_workers: int | None = None
    percentile: float = 99.0

    def __post_init__(self) -> None:
        if self.method not in NMF_METHODS:
            msg = f"method must be one of {NMF_METHODS}, got {self.method!r}"
            raise ValueError(msg)
        if self.region_size < 1:
            msg = f"region_size must be positive, got {self.region_size}"
            raise ValueError(msg)
        if self.max_workers is not None and self.max_workers < 1:
            msg = f"max_workers must be positive or None, got {self.max_workers}"
            raise ValueError(msg)
        if not 0.0 < self.percentile <= 100.0:
            msg = f"percentile must be in (0, 100], got {self.percentile}"
            raise ValueError(msg)
