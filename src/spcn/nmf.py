# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Non-negative matrix factorization of optical density.

The optical density matrix **V** (``C x N``) is factored as ``V ≈ W H``
where **W** (``C x 2``) holds one unit-length stain color per column and
**H** (``2 x N``) holds the concentration of each stain at each pixel.

The factorization is seeded from the classified distinguishers and then
refined with the multiplicative update rules of Virtanen, either for the
Euclidean error with an L1 sparsity penalty on **H** (as in Vahadane et
al.'s sparse NMF) or for the generalized Kullback-Leibler divergence.
Both solvers run exactly ``NUMBER_OF_ITERATIONS`` updates; the residual is
never checked, so the cost of a solve depends only on the matrix sizes.

A zero entry can never become non-zero under a multiplicative update, so
after every update all entries of **W** and **H** are floored at
``EPSILON``.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.color_matrix import rgb_to_od
from spcn.config import (
    EPSILON,
    EPSILON2,
    LAMBDA,
    NMF_METHODS,
    NUMBER_OF_ITERATIONS,
    STAIN_COSINE_LIMIT,
)
from spcn.distinguishers import StainRoles, classify_distinguishers

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Seeds
# ---------------------------------------------------------------------------


def distinguishers_to_stain_colors(
    distinguishers: ArrayLike,
    roles: StainRoles,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Derive raw stain colors and the unstained color from distinguishers.

    Each stain color is the optical density of its distinguisher relative
    to the unstained distinguisher, ``log(unstained) - log(distinguisher)``,
    clamped at zero.  Columns are not normalized.

    :param distinguishers: ``(C, 3)`` distinguisher matrix.
    :type distinguishers: ArrayLike
    :param roles: Role indices from :func:`classify_distinguishers`.
    :type roles: StainRoles
    :return: ``(stain_colors, unstained)`` with shapes ``(C, 2)`` and
        ``(C,)``.  Column 0 is Hematoxylin, column 1 is Eosin.
    :rtype: tuple[NDArray[np.float64], NDArray[np.float64]]
    """
    distinguishers = np.asarray(distinguishers, dtype=np.float64)
    unstained = distinguishers[:, roles.unstained].copy()
    stains = distinguishers[:, [roles.hematoxylin, roles.eosin]]
    stain_colors = rgb_to_od(stains, unstained)
    return stain_colors, unstained


def is_degenerate_stain_matrix(stain_colors: ArrayLike) -> bool:
    """Return ``True`` when the raw stain colors cannot seed two stains.

    That is when either stain color is (nearly) the zero vector, or when
    both point the same way (cosine above ``STAIN_COSINE_LIMIT``).
    """
    stain_colors = np.asarray(stain_colors, dtype=np.float64)
    magnitudes2 = np.einsum("ij,ij->j", stain_colors, stain_colors)
    if np.any(magnitudes2 < EPSILON2):
        return True
    cosine = stain_colors[:, 0] @ stain_colors[:, 1] / np.sqrt(magnitudes2.prod())
    return bool(cosine > STAIN_COSINE_LIMIT)


def nmf_seeds(
    matrix_v: ArrayLike,
    stain_colors: ArrayLike,
    unstained: ArrayLike,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Build the optical density matrix and the initial **W** and **H**.

    :param matrix_v: ``(C, N)`` intensity color matrix.
    :type matrix_v: ArrayLike
    :param stain_colors: ``(C, 2)`` stain colors in optical density.
    :type stain_colors: ArrayLike
    :param unstained: ``(C,)`` unstained color the densities are relative to.
    :type unstained: ArrayLike
    :return: ``(matrix_od, matrix_w, matrix_h)``.  **W** has unit-length
        columns; **H** is the least-squares projection of the density onto
        **W**.  Both are floored at ``EPSILON``.
    :rtype: tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]
    """
    matrix_od = rgb_to_od(matrix_v, unstained)

    matrix_w = np.array(stain_colors, dtype=np.float64)
    matrix_w /= np.maximum(np.linalg.norm(matrix_w, axis=0), EPSILON)
    np.maximum(matrix_w, EPSILON, out=matrix_w)

    matrix_h = np.linalg.pinv(matrix_w) @ matrix_od
    np.maximum(matrix_h, EPSILON, out=matrix_h)
    return matrix_od, matrix_w, matrix_h


def distinguishers_to_nmf_seeds(
    distinguishers: ArrayLike,
    matrix_v: ArrayLike,
    roles: StainRoles | None = None,
) -> tuple[
    NDArray[np.float64], NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]
]:
    """Seed the factorization of *matrix_v* from its distinguishers.

    :param distinguishers: ``(C, 3)`` distinguisher matrix.
    :type distinguishers: ArrayLike
    :param matrix_v: ``(C, N)`` intensity color matrix.
    :type matrix_v: ArrayLike
    :param roles: Role indices.  Classified from *distinguishers* when
        omitted.
    :type roles: StainRoles | None
    :return: ``(matrix_od, matrix_w, matrix_h, unstained)``.
    :rtype: tuple[NDArray[np.float64], ...]
    """
    if roles is None:
        roles = classify_distinguishers(distinguishers)
    stain_colors, unstained = distinguishers_to_stain_colors(distinguishers, roles)
    matrix_od, matrix_w, matrix_h = nmf_seeds(matrix_v, stain_colors, unstained)
    return matrix_od, matrix_w, matrix_h, unstained


# ---------------------------------------------------------------------------
# Solvers
# ---------------------------------------------------------------------------


def _check_factors(matrix_v: np.ndarray, matrix_w: np.ndarray, matrix_h: np.ndarray) -> None:
    if matrix_w.ndim != 2 or matrix_h.ndim != 2 or matrix_v.ndim != 2:
        msg = "matrix_v, matrix_w and matrix_h must all be 2D"
        raise ValueError(msg)
    if matrix_w.shape[0] != matrix_v.shape[0] or matrix_h.shape[1] != matrix_v.shape[1]:
        msg = (
            f"factors {matrix_w.shape} x {matrix_h.shape} do not match "
            f"matrix_v {matrix_v.shape}"
        )
        raise ValueError(msg)
    if matrix_w.shape[1] != matrix_h.shape[0]:
        msg = f"inner dimensions differ: {matrix_w.shape} x {matrix_h.shape}"
        raise ValueError(msg)
    for name, arr in (("matrix_w", matrix_w), ("matrix_h", matrix_h)):
        if arr.dtype != np.float64 or not arr.flags.writeable:
            msg = f"{name} must be a writeable float64 array to be updated in place"
            raise ValueError(msg)


def _rescale_and_floor(matrix_w: np.ndarray, matrix_h: np.ndarray) -> None:
    """Give **W** unit columns without changing ``W H``, then floor both."""
    norms = np.maximum(np.linalg.norm(matrix_w, axis=0), EPSILON)
    matrix_w /= norms
    matrix_h *= norms[:, None]
    np.maximum(matrix_w, EPSILON, out=matrix_w)
    np.maximum(matrix_h, EPSILON, out=matrix_h)


def virtanen_euclid(
    matrix_v: ArrayLike,
    matrix_w: np.ndarray,
    matrix_h: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Minimize ``||V - W H||^2 + LAMBDA * sum(H)`` by multiplicative updates.

    Updates, applied ``NUMBER_OF_ITERATIONS`` times::

        H <- H * (Wᵀ V) / (Wᵀ W H + LAMBDA)
        W <- W * (V Hᵀ) / (W H Hᵀ)

    :param matrix_v: ``(C, N)`` non-negative matrix to factor.
    :type matrix_v: ArrayLike
    :param matrix_w: ``(C, K)`` float64 seed, updated in place.
    :type matrix_w: numpy.ndarray
    :param matrix_h: ``(K, N)`` float64 seed, updated in place.
    :type matrix_h: numpy.ndarray
    :return: *matrix_w* and *matrix_h*.
    :rtype: tuple[numpy.ndarray, numpy.ndarray]
    :raises ValueError: If the shapes are inconsistent or a factor cannot be
        updated in place.
    """
    matrix_v = np.asarray(matrix_v, dtype=np.float64)
    _check_factors(matrix_v, matrix_w, matrix_h)
    if matrix_v.shape[1] == 0:
        return matrix_w, matrix_h

    for _ in range(NUMBER_OF_ITERATIONS):
        matrix_h *= (matrix_w.T @ matrix_v) / (matrix_w.T @ matrix_w @ matrix_h + LAMBDA)
        np.maximum(matrix_h, EPSILON, out=matrix_h)
        matrix_w *= (matrix_v @ matrix_h.T) / (matrix_w @ (matrix_h @ matrix_h.T))
        _rescale_and_floor(matrix_w, matrix_h)
    return matrix_w, matrix_h


def virtanen_kl_divergence(
    matrix_v: ArrayLike,
    matrix_w: np.ndarray,
    matrix_h: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Minimize the generalized KL divergence ``D(V || W H)``.

    Updates, applied ``NUMBER_OF_ITERATIONS`` times::

        H <- H * (Wᵀ (V / W H)) / (Wᵀ 1)
        W <- W * ((V / W H) Hᵀ) / (1 Hᵀ)

    Arguments and return value are as for :func:`virtanen_euclid`.
    """
    matrix_v = np.asarray(matrix_v, dtype=np.float64)
    _check_factors(matrix_v, matrix_w, matrix_h)
    if matrix_v.shape[1] == 0:
        return matrix_w, matrix_h

    for _ in range(NUMBER_OF_ITERATIONS):
        ratio = matrix_v / (matrix_w @ matrix_h)
        matrix_h *= (matrix_w.T @ ratio) / matrix_w.sum(axis=0)[:, None]
        np.maximum(matrix_h, EPSILON, out=matrix_h)
        ratio = matrix_v / (matrix_w @ matrix_h)
        matrix_w *= (ratio @ matrix_h.T) / matrix_h.sum(axis=1)[None, :]
        _rescale_and_floor(matrix_w, matrix_h)
    return matrix_w, matrix_h


_SOLVERS = {
    "euclid": virtanen_euclid,
    "kl": virtanen_kl_divergence,
}


def solve_nmf(
    matrix_v: ArrayLike,
    matrix_w: np.ndarray,
    matrix_h: np.ndarray,
    method: str = "euclid",
) -> tuple[np.ndarray, np.ndarray]:
    """Refine seeded factors with the named solver.

    :param method: ``"euclid"`` for :func:`virtanen_euclid` or ``"kl"`` for
        :func:`virtanen_kl_divergence`.
    :type method: str
    :return: The updated *matrix_w* and *matrix_h*.
    :rtype: tuple[numpy.ndarray, numpy.ndarray]
    :raises ValueError: If *method* is not a known solver.
    """
    try:
        solver = _SOLVERS[method]
    except KeyError:
        msg = f"method must be one of {NMF_METHODS}, got {method!r}"
        raise ValueError(msg) from None
    logger.debug("Solving NMF (%s) for %d pixels", method, np.shape(matrix_v)[1])
    return solver(matrix_v, matrix_w, matrix_h)
