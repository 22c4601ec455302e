# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Recolour stain concentrations with a reference palette."""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.exceptions import DimensionMismatchError
from spcn.matrix import resolve_dtype
from spcn.seeds import UNSTAINED


def _clip_bounds(
    dtype: np.dtype, value_range: tuple[float, float] | None
) -> tuple[float, float]:
    """Return the ``(low, high)`` clip for pixels written into *dtype*."""
    low, high = (0.0, np.inf) if value_range is None else value_range
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        low = max(low, float(info.min))
        high = min(high, float(info.max))
    return low, high


def nmfs_to_image(
    input_basis: ArrayLike,
    input_concentrations: ArrayLike,
    reference_basis: ArrayLike,
    reference_unstained: ArrayLike,
    out: NDArray | None = None,
    value_range: tuple[float, float] | None = None,
    rescale_concentrations: bool = False,
    epsilon: float = 1e-6,
) -> NDArray:
    """Synthesise pixels from source concentrations and a reference palette.

    Pixel *n* of the output is ``W_ref @ H[:, n]`` where ``W_ref`` is the
    reference basis with its unstained column replaced by
    *reference_unstained*: the reference background weighted by the
    pixel's unstained concentration plus each reference stain colour
    weighted by that stain's concentration. The spatial structure therefore
    comes entirely from *input_concentrations*, the colours entirely from
    the reference.

    With ``rescale_concentrations`` each stain row of ``H`` is first scaled
    by ``|W_in[:, k]| / |W_ref[:, k]|``, which keeps the amount of each stain
    when the two palettes differ in magnitude.

    Values are clipped to *value_range* when given, otherwise to
    ``[0, inf)``; integer *out* arrays are further clipped to their dtype's
    range and rounded.

    :param input_basis: ``(C, K)`` basis of the block being normalised
    :type input_basis: ArrayLike
    :param input_concentrations: ``(K, N)`` concentrations of that block
    :type input_concentrations: ArrayLike
    :param reference_basis: ``(C, K)`` reference basis
    :type reference_basis: ArrayLike
    :param reference_unstained: length-``C`` reference background colour
    :type reference_unstained: ArrayLike
    :param out: optional writable array with a trailing axis of ``C``
        channels and ``N`` pixels in total; filled in place in the column
        order of *input_concentrations*
    :type out: numpy.ndarray | None
    :param value_range: optional ``(low, high)`` clip
    :type value_range: tuple[float, float] | None
    :param rescale_concentrations: preserve per-stain density across palettes
    :type rescale_concentrations: bool
    :param epsilon: floor for the reference column norms when rescaling
    :type epsilon: float
    :return: *out* when given, otherwise a new ``(N, C)`` float array
    :rtype: numpy.ndarray
    :raises DimensionMismatchError: if channel, stain or pixel counts
        disagree.
    """
    concentrations = resolve_dtype(np.asarray(input_concentrations))
    dtype = concentrations.dtype
    input_basis = np.asarray(input_basis, dtype=dtype)
    palette = np.array(reference_basis, dtype=dtype)
    reference_unstained = np.asarray(reference_unstained, dtype=dtype)

    if concentrations.ndim != 2:
        msg = f"input_concentrations must be 2D (K, N), got {concentrations.ndim}D"
        raise DimensionMismatchError(msg)
    stains, pixels = concentrations.shape
    if palette.ndim != 2 or palette.shape[1] != stains:
        msg = f"reference_basis {palette.shape} does not match {stains} stain rows"
        raise DimensionMismatchError(msg)
    if input_basis.shape != palette.shape:
        msg = (
            f"input_basis {input_basis.shape} and reference_basis "
            f"{palette.shape} have different shapes"
        )
        raise DimensionMismatchError(msg)
    channels = palette.shape[0]
    if reference_unstained.shape != (channels,):
        msg = (
            f"reference_unstained must have shape ({channels},), "
            f"got {reference_unstained.shape}"
        )
        raise DimensionMismatchError(msg)

    if rescale_concentrations:
        scale = np.linalg.norm(input_basis, axis=0) / np.maximum(
            np.linalg.norm(palette, axis=0), epsilon
        )
        scale[UNSTAINED] = 1.0
        concentrations = concentrations * scale[:, np.newaxis]

    palette[:, UNSTAINED] = reference_unstained
    result = (palette @ concentrations).T

    if out is None:
        low, high = _clip_bounds(result.dtype, value_range)
        return np.clip(result, low, high)

    if out.shape[-1] != channels or out.size != channels * pixels:
        msg = f"out shape {out.shape} cannot hold {pixels} pixels of {channels} channels"
        raise DimensionMismatchError(msg)
    low, high = _clip_bounds(out.dtype, value_range)
    result = np.clip(result, low, high)
    if np.issubdtype(out.dtype, np.integer):
        result = np.rint(result)
    out[...] = result.reshape(out.shape)
    return out


def reconstruct_image(
    input_basis: ArrayLike,
    input_concentrations: ArrayLike,
    reference_basis: ArrayLike,
    reference_unstained: ArrayLike,
    shape: tuple[int, ...],
    dtype: np.dtype | type = np.float64,
    **kwargs,
) -> NDArray:
    """Allocate an image of *shape* and *dtype* and fill it with :func:`nmfs_to_image`."""
    out = np.empty(shape, dtype=dtype)
    return nmfs_to_image(
        input_basis,
        input_concentrations,
        reference_basis,
        reference_unstained,
        out=out,
        **kwargs,
    )

