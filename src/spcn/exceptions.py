# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Exception types raised by the normalisation pipeline.

Both derive from :class:`ValueError` so callers that already guard the
pipeline with ``except ValueError`` keep working.
"""


class DegenerateImageError(ValueError):
    """The pixel block cannot yield a stain decomposition.

    Raised when the block has fewer than three colour channels, or when its
    colours are too uniform for every distinguisher slot to be filled.
    """


class DimensionMismatchError(ValueError):
    """Matrix shapes are inconsistent (e.g. a basis built for another channel count)."""
