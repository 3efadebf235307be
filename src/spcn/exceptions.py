# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Exception and warning types raised by :mod:`spcn`."""

from __future__ import annotations


class PixelLengthError(ValueError):
    """Raised when a pixel type cannot be normalized.

    The input pixel must carry at least three color channels and the output
    pixel must carry exactly as many channels as the input.  The check is
    made when a filter is constructed, before any pixel is processed.
    """


class ClassificationAmbiguousWarning(RuntimeWarning):
    """Two distinguishers could not be told apart within ``EPSILON``.

    The classification still succeeds; the tie is broken in favor of the
    lowest distinguisher index.
    """
