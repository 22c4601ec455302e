# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Turn distinguishers into labelled colours and an initial factorisation."""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import ArrayLike

from spcn.exceptions import DimensionMismatchError
from spcn.logging import get_logger
from spcn.matrix import FloatArray, resolve_dtype

logger = get_logger("seeds")

# Canonical column order of every basis matrix W (and row order of H).
UNSTAINED = 0
HEMATOXYLIN = 1
EOSIN = 2

# Channel positions used to tell hematoxylin (blue/purple) from eosin (pink).
RED = 0
BLUE = 2


def distinguishers_to_colors(
    distinguishers: ArrayLike,
    pixel_space: Literal["intensity", "optical_density"] = "intensity",
) -> tuple[int, int, int]:
    """Label the three distinguishers as unstained, hematoxylin and eosin.

    The unstained background is the brightest distinguisher: largest
    channel sum for intensities, smallest for optical densities. Of the
    other two, hematoxylin is the bluer one. In intensity space that is the
    larger ``(blue - red) / sum``; in optical-density space, where a blue
    stain absorbs red light, it is the larger ``(red - blue) / sum``.

    :param distinguishers: ``(C, 3)`` matrix, one colour per column in any
        order
    :type distinguishers: ArrayLike
    :param pixel_space: how the channel values are to be read
    :type pixel_space: str
    :return: column indices ``(unstained, hematoxylin, eosin)``
    :rtype: tuple[int, int, int]
    :raises DimensionMismatchError: if there are not exactly 3 columns or
        fewer than 3 channels.
    """
    colors = np.asarray(distinguishers, dtype=np.float64)
    if colors.ndim != 2 or colors.shape[1] != 3 or colors.shape[0] < 3:
        msg = f"distinguishers must have shape (C >= 3, 3), got {colors.shape}"
        raise DimensionMismatchError(msg)
    if pixel_space not in ("intensity", "optical_density"):
        msg = f"unknown pixel_space {pixel_space!r}"
        raise ValueError(msg)

    sums = colors.sum(axis=0)
    if pixel_space == "intensity":
        unstained = int(np.argmax(sums))
        contrast = colors[BLUE] - colors[RED]
    else:
        unstained = int(np.argmin(sums))
        contrast = colors[RED] - colors[BLUE]
    blueness = contrast / np.maximum(sums, np.finfo(np.float64).tiny)

    first, second = (k for k in range(3) if k != unstained)
    if blueness[second] > blueness[first]:
        hematoxylin, eosin = second, first
    else:
        hematoxylin, eosin = first, second

    logger.debug(
        "Roles: unstained=%d hematoxylin=%d eosin=%d", unstained, hematoxylin, eosin
    )
    return unstained, hematoxylin, eosin


def distinguishers_to_nmf_seeds(
    distinguishers: ArrayLike,
    matrix: ArrayLike,
    roles: tuple[int, int, int],
    epsilon: float = 1e-6,
) -> tuple[FloatArray, FloatArray, FloatArray]:
    """Build initial NMF factors from labelled distinguishers.

    ``W`` holds the distinguishers in canonical order (unstained,
    hematoxylin, eosin). Each pixel ``v`` is written as the unstained colour
    ``u`` plus a combination of the stain offsets,
    ``v ≈ u + (h - u) a + (e - u) b``, solved by least squares; the seed
    concentrations are then ``[1 - a - b, a, b]`` so that ``W @ H`` reproduces
    every pixel inside the simplex exactly. Entries are floored at
    *epsilon*, since a multiplicative update can never move an exact zero.

    :param distinguishers: ``(C, 3)`` distinguisher colours
    :type distinguishers: ArrayLike
    :param matrix: ``(C, N)`` pixel matrix
    :type matrix: ArrayLike
    :param roles: ``(unstained, hematoxylin, eosin)`` column indices, as
        returned by :func:`distinguishers_to_colors`
    :type roles: tuple[int, int, int]
    :param epsilon: floor for seed concentrations
    :type epsilon: float
    :return: ``(W, H, unstained)`` with shapes ``(C, 3)``, ``(3, N)`` and
        ``(C,)``
    :rtype: tuple[NDArray, NDArray, NDArray]
    :raises DimensionMismatchError: if the channel counts differ.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    colors = np.asarray(distinguishers, dtype=matrix.dtype)
    if colors.ndim != 2 or colors.shape[0] != matrix.shape[0]:
        msg = (
            f"distinguishers shape {colors.shape} does not match "
            f"{matrix.shape[0]} channels"
        )
        raise DimensionMismatchError(msg)
    if sorted(roles) != list(range(colors.shape[1])):
        msg = f"roles must be a permutation of the distinguisher columns, got {roles}"
        raise ValueError(msg)

    basis = colors[:, list(roles)].copy()
    unstained = basis[:, UNSTAINED].copy()
    offsets = basis[:, UNSTAINED + 1 :] - unstained[:, np.newaxis]
    coefficients = np.linalg.lstsq(
        offsets, matrix - unstained[:, np.newaxis], rcond=None
    )[0]
    concentrations = np.vstack(
        [1.0 - coefficients.sum(axis=0, keepdims=True), coefficients]
    )
    return basis, np.maximum(concentrations, epsilon), unstained


def basis_to_nmf_seed(
    matrix: ArrayLike,
    basis: ArrayLike,
    epsilon: float = 1e-6,
) -> FloatArray:
    """Seed concentrations for a fixed, externally supplied basis.

    Solves ``W @ H ≈ V`` by least squares and floors the result at
    *epsilon*.

    :param matrix: ``(C, N)`` pixel matrix
    :type matrix: ArrayLike
    :param basis: ``(C, K)`` basis
    :type basis: ArrayLike
    :param epsilon: floor for seed concentrations
    :type epsilon: float
    :return: ``(K, N)`` seed concentrations
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises DimensionMismatchError: if the channel counts differ.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    basis = np.asarray(basis, dtype=matrix.dtype)
    if basis.ndim != 2 or basis.shape[0] != matrix.shape[0]:
        msg = f"basis shape {basis.shape} does not match {matrix.shape[0]} channels"
        raise DimensionMismatchError(msg)
    concentrations = np.linalg.lstsq(basis, matrix, rcond=None)[0]
    return np.maximum(concentrations, epsilon)
