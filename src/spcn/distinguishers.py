# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Extreme colors of a pixel cloud and their stain roles.

A *distinguisher* is a pixel whose color lies at a corner of the observed
color cloud.  For an H&E image three are searched for: the background
(unstained) color and the purest Hematoxylin and Eosin colors.

The search works on the pixel colors projected onto the unit sphere.  The
first distinguisher is the pixel farthest from the centroid of the cloud.
The cloud is then recentered on that pixel, and each further distinguisher
is the pixel with the largest residual once the directions to the already
accepted distinguishers have been projected out.  Every step picks a
vertex of the convex hull of the cloud, so the result does not depend on
how many pixels fall inside the hull.

Typical usage::

    from spcn.color_matrix import image_to_matrix
    from spcn.distinguishers import classify_distinguishers, find_distinguishers

    matrix_v = image_to_matrix(im_rgb)
    distinguishers = find_distinguishers(matrix_v)
    roles = classify_distinguishers(distinguishers)
    background = distinguishers[:, roles.unstained]
"""

from __future__ import annotations

import logging
import warnings
from typing import NamedTuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.config import EPSILON, EPSILON2, NUMBER_OF_STAINS
from spcn.exceptions import ClassificationAmbiguousWarning

logger = logging.getLogger(__name__)


class StainRoles(NamedTuple):
    """Column indices of the distinguisher matrix, by semantic role."""

    unstained: int
    hematoxylin: int
    eosin: int


# ---------------------------------------------------------------------------
# Distinguisher search
# ---------------------------------------------------------------------------


def _recenter_matrix(norm_v: np.ndarray, column: int) -> np.ndarray:
    """Translate the cloud so that *column* sits at the origin."""
    return norm_v - norm_v[:, [column]]


def _project_matrix(kernel: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Remove from *matrix* its components along the orthonormal *kernel*."""
    if kernel.shape[1] == 0:
        return matrix
    return matrix - kernel @ (kernel.T @ matrix)


def _matrix_to_one_distinguisher(projected: np.ndarray) -> tuple[int, float]:
    """Return the column with the largest squared magnitude, and that value."""
    magnitudes2 = np.einsum("ij,ij->j", projected, projected)
    column = int(np.argmax(magnitudes2))
    return column, float(magnitudes2[column])


def find_distinguisher_indices(matrix_v: ArrayLike) -> list[int]:
    """Locate the pixels that bound the color cloud.

    :param matrix_v: ``(C, N)`` color matrix.
    :type matrix_v: ArrayLike
    :return: ``NUMBER_OF_STAINS + 1`` column indices into *matrix_v*, in
        discovery order.  When the cloud is degenerate (e.g. a uniform
        region) the first index is repeated.  Empty if no pixel has a
        squared magnitude of at least ``EPSILON2``.
    :rtype: list[int]
    """
    matrix_v = np.asarray(matrix_v, dtype=np.float64)
    magnitudes2 = np.einsum("ij,ij->j", matrix_v, matrix_v)
    candidates = np.flatnonzero(magnitudes2 >= EPSILON2)
    if candidates.size == 0:
        return []

    norm_v = matrix_v[:, candidates] / np.sqrt(magnitudes2[candidates])

    # The pixel farthest from the centroid is a hull vertex.
    centroid = norm_v.mean(axis=1, keepdims=True)
    first, _ = _matrix_to_one_distinguisher(norm_v - centroid)
    chosen = [first]

    recentered = _recenter_matrix(norm_v, first)
    kernel = np.zeros((norm_v.shape[0], 0))
    while len(chosen) < NUMBER_OF_STAINS + 1:
        projected = _project_matrix(kernel, recentered)
        column, residual2 = _matrix_to_one_distinguisher(projected)
        if residual2 < EPSILON2:
            # Nothing left outside the span of the accepted distinguishers.
            chosen.append(first)
            continue
        chosen.append(column)
        direction = projected[:, column] / np.sqrt(residual2)
        kernel = np.column_stack([kernel, direction])

    indices = [int(candidates[column]) for column in chosen]
    logger.debug("Distinguisher pixels: %s", indices)
    return indices


def find_distinguishers(matrix_v: ArrayLike) -> NDArray[np.float64]:
    """Find the extreme colors of a color matrix.

    :param matrix_v: ``(C, N)`` color matrix.
    :type matrix_v: ArrayLike
    :return: ``(C, NUMBER_OF_STAINS + 1)`` matrix whose columns are the
        distinguishing pixel colors, taken unchanged from *matrix_v*.  All
        zeros if *matrix_v* holds no pixel brighter than ``EPSILON``.
    :rtype: NDArray[np.float64]

    Example::

        import numpy as np
        from spcn.distinguishers import find_distinguishers

        white, stain_a, stain_b = [255.0, 255.0, 255.0], [77, 51, 153], [230, 102, 179]
        matrix_v = np.array([white, white, stain_a, stain_b], dtype=float).T
        find_distinguishers(matrix_v)  # columns stain_a, white, stain_b
    """
    matrix_v = np.asarray(matrix_v, dtype=np.float64)
    indices = find_distinguisher_indices(matrix_v)
    if not indices:
        return np.zeros((matrix_v.shape[0], NUMBER_OF_STAINS + 1))
    return matrix_v[:, indices]


# ---------------------------------------------------------------------------
# Role classification
# ---------------------------------------------------------------------------


def _pick_max(scores: np.ndarray, candidates: list[int], what: str) -> int:
    """Index in *candidates* with the largest score; ties go to the lowest index."""
    best = max(scores[i] for i in candidates)
    tied = [i for i in candidates if best - scores[i] < EPSILON]
    if len(tied) > 1:
        warnings.warn(
            f"{what} is ambiguous: distinguishers {tied} are equal within "
            f"{EPSILON}; using distinguisher {tied[0]}",
            ClassificationAmbiguousWarning,
            stacklevel=3,
        )
    return tied[0]


def classify_distinguishers(distinguishers: ArrayLike) -> StainRoles:
    """Assign the unstained, Hematoxylin and Eosin roles to distinguishers.

    The brightest distinguisher (largest Euclidean magnitude) is the
    unstained background.  Of the other two, the one with more red than
    blue relative to its brightness is Eosin (pink) and the remaining one is
    Hematoxylin (blue-purple).  Channel 0 is read as red and channel 2 as
    blue.

    The assignment does not depend on the column order of
    *distinguishers*, except when two candidates tie within ``EPSILON``:
    then a :class:`~spcn.exceptions.ClassificationAmbiguousWarning` is
    issued and the lowest column index wins.

    :param distinguishers: ``(C, NUMBER_OF_STAINS + 1)`` matrix, as
        returned by :func:`find_distinguishers`.
    :type distinguishers: ArrayLike
    :return: Column indices of each role.
    :rtype: StainRoles
    :raises ValueError: If the matrix does not have ``NUMBER_OF_STAINS + 1``
        columns or has fewer than three rows.
    """
    distinguishers = np.asarray(distinguishers, dtype=np.float64)
    if distinguishers.ndim != 2 or distinguishers.shape[1] != NUMBER_OF_STAINS + 1:
        msg = (
            f"distinguishers must have shape (C, {NUMBER_OF_STAINS + 1}), "
            f"got {distinguishers.shape}"
        )
        raise ValueError(msg)
    if distinguishers.shape[0] < 3:
        msg = f"distinguishers need at least 3 colors, got {distinguishers.shape[0]}"
        raise ValueError(msg)

    columns = list(range(distinguishers.shape[1]))
    magnitudes = np.linalg.norm(distinguishers, axis=0)
    unstained = _pick_max(magnitudes, columns, "unstained color")

    first, second = (i for i in columns if i != unstained)
    brightness = np.maximum(distinguishers.sum(axis=0), EPSILON)
    redness = (distinguishers[0] - distinguishers[2]) / brightness
    if abs(redness[first] - redness[second]) < EPSILON:
        warnings.warn(
            f"stain assignment is ambiguous: distinguishers {[first, second]} "
            f"are equal within {EPSILON}; using distinguisher {first} "
            "as Hematoxylin",
            ClassificationAmbiguousWarning,
            stacklevel=2,
        )
        hematoxylin, eosin = first, second
    elif redness[second] > redness[first]:
        hematoxylin, eosin = first, second
    else:
        hematoxylin, eosin = second, first

    roles = StainRoles(unstained=unstained, hematoxylin=hematoxylin, eosin=eosin)
    logger.debug("Stain roles: %s", roles)
    return roles
