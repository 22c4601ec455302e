# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Conversion between pixel blocks and channel-by-pixel matrices.

The input array's dtype controls the precision of the whole pipeline:

- ``float64`` → kept as-is
- ``float32`` → kept as-is
- ``float16`` → promoted to float32
- integer types → promoted to float64
"""

from __future__ import annotations

from typing import Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.exceptions import DegenerateImageError

# Type alias for the supported return types.
FloatArray = Union[NDArray[np.float32], NDArray[np.float64]]

MINIMUM_CHANNELS = 3


def resolve_dtype(arr: np.ndarray) -> np.ndarray:
    """Coerce *arr* to a supported float dtype, preserving precision.

    - float64 → kept as-is
    - float32 → kept as-is
    - float16 → promoted to float32
    - integer / other → promoted to float64

    :param arr: input array (any dtype)
    :type arr: numpy.ndarray
    :return: array guaranteed to be float32 or float64
    :rtype: numpy.ndarray
    """
    if arr.dtype == np.float64:
        return arr
    if arr.dtype == np.float32:
        return arr
    if arr.dtype == np.float16:
        return arr.astype(np.float32)
    return arr.astype(np.float64)


def image_to_matrix(image: ArrayLike) -> FloatArray:
    """Flatten a pixel block into a ``(C, N)`` channel-by-pixel matrix.

    Column *n* of the result is the channel vector of the *n*-th pixel in
    row-major order, so a ``(H, W, C)`` block yields ``N = H * W`` columns
    and an ``(N, C)`` pixel list is simply transposed. The result is a fresh
    copy; the caller's array is never aliased.

    :param image: pixel block with shape ``(H, W, C)`` or ``(N, C)``.
        Values must be finite and non-negative (raw intensities or optical
        densities).
    :type image: ArrayLike
    :return: matrix ``V`` with shape ``(C, N)``
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: if the block is empty, has the wrong number of
        dimensions, or holds negative or non-finite values.
    :raises DegenerateImageError: if the block has fewer than 3 channels.
    """
    image = resolve_dtype(np.asarray(image))
    if image.ndim not in (2, 3):
        msg = f"image must have shape (H, W, C) or (N, C), got {image.shape}"
        raise ValueError(msg)

    channels = image.shape[-1]
    if channels < MINIMUM_CHANNELS:
        msg = f"image needs at least {MINIMUM_CHANNELS} channels, got {channels}"
        raise DegenerateImageError(msg)

    pixels = image.reshape(-1, channels)
    if pixels.shape[0] == 0:
        msg = "image block contains no pixels"
        raise ValueError(msg)
    if not np.all(np.isfinite(pixels)):
        msg = "image contains non-finite values"
        raise ValueError(msg)
    if np.any(pixels < 0):
        msg = "image contains negative values"
        raise ValueError(msg)

    return pixels.T.copy()


def matrix_to_image(matrix: ArrayLike, shape: tuple[int, ...]) -> FloatArray:
    """Lay a ``(C, N)`` matrix back out as a pixel block of *shape*.

    :param matrix: channel-by-pixel matrix
    :type matrix: ArrayLike
    :param shape: target shape whose last axis is ``C`` and whose other
        axes multiply to ``N``
    :type shape: tuple[int, ...]
    :return: array of the requested shape
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: if the sizes do not agree.
    """
    matrix = resolve_dtype(np.asarray(matrix))
    if matrix.ndim != 2:
        msg = f"matrix must be 2D, got {matrix.ndim}D"
        raise ValueError(msg)
    channels, pixels = matrix.shape
    if shape[-1] != channels or int(np.prod(shape[:-1])) != pixels:
        msg = f"cannot lay out a {matrix.shape} matrix as an image of shape {shape}"
        raise ValueError(msg)
    return matrix.T.reshape(shape)
