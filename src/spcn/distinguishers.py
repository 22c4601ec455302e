# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Geometric search for the purest colours in a pixel block.

The observed colours of an H&E block form a point cloud that lies (up to
noise) inside a simplex whose vertices are the colours of unstained
background, pure hematoxylin and pure eosin. The vertices are found by a
successive-projection search:

1. the pixel farthest from the centroid is a vertex;
2. the pixel farthest from that vertex is another;
3. each further vertex is the pixel farthest from the affine hull of the
   vertices found so far.

Each step works on a recentred copy of the matrix and a projector
("kernel") onto the orthogonal complement of the directions already used,
so successive picks are linearly independent.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.exceptions import DegenerateImageError
from spcn.logging import get_logger
from spcn.matrix import FloatArray, resolve_dtype

logger = get_logger("distinguishers")


def recenter_matrix(matrix: ArrayLike, anchor: ArrayLike) -> FloatArray:
    """Re-express every column of *matrix* relative to *anchor*.

    :param matrix: ``(C, N)`` matrix of pixel colours
    :type matrix: ArrayLike
    :param anchor: length-``C`` vector that becomes the new origin
    :type anchor: ArrayLike
    :return: ``matrix - anchor`` broadcast over columns
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    """
    matrix = resolve_dtype(np.asarray(matrix))
    anchor = np.asarray(anchor, dtype=matrix.dtype)
    if anchor.shape != (matrix.shape[0],):
        msg = f"anchor must have shape ({matrix.shape[0]},), got {anchor.shape}"
        raise ValueError(msg)
    return matrix - anchor[:, np.newaxis]


def project_matrix(kernel: ArrayLike, matrix: ArrayLike, index: int) -> FloatArray:
    """Remove the direction of column *index* from the projector *kernel*.

    *kernel* is an orthogonal projector (initially the identity). The
    returned projector additionally annihilates ``kernel @ matrix[:, index]``,
    so it maps onto the orthogonal complement of every direction picked so
    far.

    :param kernel: ``(C, C)`` orthogonal projector
    :type kernel: ArrayLike
    :param matrix: recentred ``(C, N)`` working matrix
    :type matrix: ArrayLike
    :param index: column whose direction is removed
    :type index: int
    :return: the updated ``(C, C)`` projector
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises DegenerateImageError: if the chosen column is already in the
        span of the removed directions.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    kernel = np.asarray(kernel, dtype=matrix.dtype)
    direction = kernel @ matrix[:, index]
    magnitude2 = float(direction @ direction)
    if magnitude2 <= 0.0:
        msg = f"column {index} has no component outside the current subspace"
        raise DegenerateImageError(msg)
    unit = direction / np.sqrt(magnitude2)
    return kernel - np.outer(unit, unit)


def matrix_to_one_distinguisher(
    kernel: ArrayLike,
    matrix: ArrayLike,
    epsilon2: float = 1e-12,
) -> int:
    """Return the column of *matrix* farthest from the origin after projection.

    :param kernel: ``(C, C)`` projector applied to each column first
    :type kernel: ArrayLike
    :param matrix: recentred ``(C, N)`` working matrix
    :type matrix: ArrayLike
    :param epsilon2: squared magnitude at or below which a column counts
        as zero
    :type epsilon2: float
    :return: index of the column of largest projected squared norm
    :rtype: int
    :raises DegenerateImageError: if no column exceeds *epsilon2*.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    kernel = np.asarray(kernel, dtype=matrix.dtype)
    projected = kernel @ matrix
    magnitudes = np.einsum("ij,ij->j", projected, projected)
    index = int(np.argmax(magnitudes))
    if not magnitudes[index] > epsilon2:
        msg = (
            "pixel colours are too uniform to find a distinguishing colour "
            f"(largest squared magnitude {magnitudes[index]:.3g} <= {epsilon2:.3g})"
        )
        raise DegenerateImageError(msg)
    return index


def matrix_to_distinguishers(
    matrix: ArrayLike,
    number_of_stains: int = 2,
    epsilon2: float = 1e-12,
) -> tuple[FloatArray, list[int]]:
    """Find ``number_of_stains + 1`` extreme colours of a pixel matrix.

    :param matrix: ``(C, N)`` non-negative pixel matrix
        (see :func:`spcn.matrix.image_to_matrix`)
    :type matrix: ArrayLike
    :param number_of_stains: number of stains besides the background
    :type number_of_stains: int
    :param epsilon2: squared-magnitude floor for a usable direction
    :type epsilon2: float
    :return: ``(distinguishers, indices)`` where ``distinguishers`` is a
        ``(C, number_of_stains + 1)`` matrix whose columns are pixel colours
        in discovery order and ``indices`` are their pixel positions.
    :rtype: tuple[NDArray, list[int]]
    :raises DegenerateImageError: if the colour cloud does not span enough
        independent directions.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    if matrix.ndim != 2:
        msg = f"matrix must be 2D (C, N), got {matrix.ndim}D"
        raise ValueError(msg)

    kernel: NDArray = np.eye(matrix.shape[0], dtype=matrix.dtype)
    working = recenter_matrix(matrix, matrix.mean(axis=1))
    indices: list[int] = []
    for slot in range(number_of_stains + 1):
        if slot == 1:
            working = recenter_matrix(matrix, matrix[:, indices[0]])
        elif slot > 1:
            kernel = project_matrix(kernel, working, indices[-1])
        try:
            indices.append(matrix_to_one_distinguisher(kernel, working, epsilon2))
        except DegenerateImageError as exc:
            msg = f"distinguisher {slot + 1} of {number_of_stains + 1}: {exc}"
            raise DegenerateImageError(msg) from exc

    logger.debug("Distinguisher pixel indices: %s", indices)
    return matrix[:, indices].copy(), indices
