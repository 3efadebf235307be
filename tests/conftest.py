# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Shared pytest fixtures and configuration for spcn tests."""

import numpy as np
import pytest

# Optical density directions of Hematoxylin and Eosin.
HEMATOXYLIN_OD = np.array([0.65, 0.70, 0.29])
EOSIN_OD = np.array([0.07, 0.99, 0.11])

WHITE = np.array([255.0, 255.0, 255.0])
STAIN_A = np.array([77.0, 51.0, 153.0])
STAIN_B = np.array([230.0, 102.0, 179.0])


def synthesize_he(
    rng,
    rows,
    cols,
    h_od=HEMATOXYLIN_OD,
    e_od=EOSIN_OD,
    unstained=WHITE,
    mix=(0.25, 0.375, 0.375),
):
    """Build an image whose pixels are background, pure H or pure E.

    Pixels follow the Lambert-Beer law ``I = unstained * exp(-c * s)`` for a
    unit stain direction ``s`` and a concentration ``c`` in ``[0.2, 1.0)``.
    *mix* holds the probabilities of background, H and E pixels.

    :return: ``(rows, cols, 3)`` float64 image
    :rtype: numpy.ndarray
    """
    n = rows * cols
    kind = rng.choice(3, size=n, p=list(mix))
    conc = rng.uniform(0.2, 1.0, n)
    h = h_od / np.linalg.norm(h_od)
    e = e_od / np.linalg.norm(e_od)
    od = np.zeros((n, 3))
    od[kind == 1] = conc[kind == 1, None] * h
    od[kind == 2] = conc[kind == 2, None] * e
    return (unstained * np.exp(-od)).reshape(rows, cols, 3)


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducible tests.

    :return: numpy random generator with fixed seed
    :rtype: numpy.random.Generator
    """
    return np.random.default_rng(42)


# ---------------------------------------------------------------------------
# Synthetic H&E images
# ---------------------------------------------------------------------------


@pytest.fixture
def he_image(rng):
    """Provide a 32x32 synthetic H&E image (float64, values in [0, 255]).

    :return: synthetic RGB image
    :rtype: numpy.ndarray
    """
    return synthesize_he(rng, 32, 32)


@pytest.fixture
def he_image_other_palette(rng):
    """Provide a 32x32 H&E-like image stained with a different palette.

    Both stain directions and the background differ from :func:`he_image`.

    :return: synthetic RGB image
    :rtype: numpy.ndarray
    """
    return synthesize_he(
        rng,
        32,
        32,
        h_od=np.array([0.55, 0.76, 0.35]),
        e_od=np.array([0.15, 0.95, 0.28]),
        unstained=np.array([245.0, 240.0, 250.0]),
    )


@pytest.fixture
def four_pixel_region():
    """Provide the 2x2 region {white, white, stain A, stain B}.

    :return: ``(2, 2, 3)`` float64 region
    :rtype: numpy.ndarray
    """
    return np.array([[WHITE, WHITE], [STAIN_A, STAIN_B]])


@pytest.fixture
def he_profile(he_image):
    """Provide the reference profile of :func:`he_image`.

    :return: reference profile
    :rtype: spcn.normalization.ReferenceProfile
    """
    from spcn.normalization import build_reference_profile

    return build_reference_profile(he_image)
