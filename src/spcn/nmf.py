# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Sparse non-negative matrix factorisation by multiplicative updates.

Both solvers refine a factorisation ``V ≈ W @ H`` where ``V`` is the
``(C, N)`` pixel matrix, ``W`` the ``(C, K)`` colour basis and ``H`` the
``(K, N)`` stain concentrations, with an L1 (Lasso) penalty ``lambda * sum(H)``
that favours pixels dominated by a single stain. The update rules are those
of Lee & Seung as extended with a sparsity term by Virtanen (2007):

- Euclidean: minimise ``0.5 * ||V - WH||² + lambda * sum(H)``
- KL: minimise ``sum(V log(V / WH) - V + WH) + lambda * sum(H)``

Every round updates ``H`` and then, if requested, ``W``. After each ``W``
update the columns of ``W`` are rescaled back to their seed norms and the
matching rows of ``H`` take the inverse factor, so ``W @ H`` is unchanged
and the penalty cannot be lowered by inflating ``W`` while shrinking ``H``.
The basis therefore stays on the same scale as its seed, which is what a
reference palette built from unrefined distinguishers assumes.

There is no early stopping; the round count is the only bound. Denominators are floored at
``epsilon``, which keeps the updates finite when a row or column of the
factors is nearly zero. Starting from non-negative factors the updates can
only produce non-negative factors.
"""

from __future__ import annotations

import logging
from typing import Literal

import numpy as np
from numpy.typing import ArrayLike

from spcn.config import NormalizationSettings, get_settings
from spcn.exceptions import DimensionMismatchError
from spcn.logging import get_logger
from spcn.matrix import FloatArray, resolve_dtype

logger = get_logger("nmf")


def _check_factors(
    matrix: ArrayLike, basis: ArrayLike, concentrations: ArrayLike
) -> tuple[FloatArray, FloatArray, FloatArray]:
    """Coerce the three matrices to one float dtype and validate their shapes."""
    matrix = resolve_dtype(np.asarray(matrix))
    basis = np.array(basis, dtype=matrix.dtype)
    concentrations = np.array(concentrations, dtype=matrix.dtype)

    if matrix.ndim != 2 or basis.ndim != 2 or concentrations.ndim != 2:
        msg = "V, W and H must all be 2D"
        raise DimensionMismatchError(msg)
    if (
        basis.shape[0] != matrix.shape[0]
        or concentrations.shape[1] != matrix.shape[1]
        or basis.shape[1] != concentrations.shape[0]
    ):
        msg = (
            f"incompatible shapes V{matrix.shape}, W{basis.shape}, "
            f"H{concentrations.shape}"
        )
        raise DimensionMismatchError(msg)
    for name, factor in (("V", matrix), ("W", basis), ("H", concentrations)):
        if np.any(factor < 0) or not np.all(np.isfinite(factor)):
            msg = f"{name} must be finite and non-negative"
            raise ValueError(msg)
    return matrix, basis, concentrations


def _restore_column_norms(
    basis: FloatArray,
    concentrations: FloatArray,
    seed_norms: FloatArray,
    epsilon: float,
) -> None:
    """Scale the columns of *basis* back to *seed_norms* in place, moving the
    factor into the rows of *concentrations*. All-zero seed columns are left alone.
    """
    norms = np.maximum(np.linalg.norm(basis, axis=0), epsilon)
    factor = np.where(seed_norms > 0, seed_norms / norms, 1.0)
    basis *= factor
    concentrations /= factor[:, np.newaxis]


def virtanen_euclid(
    matrix: ArrayLike,
    basis: ArrayLike,
    concentrations: ArrayLike,
    number_of_iterations: int = 300,
    lasso_lambda: float = 0.02,
    epsilon: float = 1e-6,
    update_basis: bool = True,
) -> tuple[FloatArray, FloatArray]:
    """Refine ``(W, H)`` under the Euclidean objective with an L1 penalty on H.

    :param matrix: ``(C, N)`` pixel matrix ``V``
    :type matrix: ArrayLike
    :param basis: ``(C, K)`` seed basis ``W``
    :type basis: ArrayLike
    :param concentrations: ``(K, N)`` seed concentrations ``H``
    :type concentrations: ArrayLike
    :param number_of_iterations: number of update rounds
    :type number_of_iterations: int
    :param lasso_lambda: weight of the L1 penalty on ``H``
    :type lasso_lambda: float
    :param epsilon: floor for every denominator
    :type epsilon: float
    :param update_basis: refine ``W`` as well as ``H``; each column of the
        refined ``W`` keeps the norm of its seed column
    :type update_basis: bool
    :return: the refined ``(W, H)``; the inputs are left untouched
    :rtype: tuple[NDArray, NDArray]
    :raises DimensionMismatchError: if the shapes are incompatible.
    :raises ValueError: if any factor is negative or non-finite.
    """
    matrix, basis, concentrations = _check_factors(matrix, basis, concentrations)
    seed_norms = np.linalg.norm(basis, axis=0)

    for _ in range(number_of_iterations):
        numerator = basis.T @ matrix
        denominator = (basis.T @ basis) @ concentrations + lasso_lambda
        concentrations *= numerator / np.maximum(denominator, epsilon)
        if update_basis:
            numerator = matrix @ concentrations.T
            denominator = basis @ (concentrations @ concentrations.T)
            basis *= numerator / np.maximum(denominator, epsilon)
            _restore_column_norms(basis, concentrations, seed_norms, epsilon)

    return basis, concentrations


def virtanen_kl_divergence(
    matrix: ArrayLike,
    basis: ArrayLike,
    concentrations: ArrayLike,
    number_of_iterations: int = 300,
    lasso_lambda: float = 0.02,
    epsilon: float = 1e-6,
    update_basis: bool = True,
) -> tuple[FloatArray, FloatArray]:
    """Refine ``(W, H)`` under the generalised KL divergence with an L1 penalty on H.

    Parameters and return value are as for :func:`virtanen_euclid`.
    """
    matrix, basis, concentrations = _check_factors(matrix, basis, concentrations)
    seed_norms = np.linalg.norm(basis, axis=0)

    for _ in range(number_of_iterations):
        ratio = matrix / np.maximum(basis @ concentrations, epsilon)
        denominator = basis.sum(axis=0)[:, np.newaxis] + lasso_lambda
        concentrations *= (basis.T @ ratio) / np.maximum(denominator, epsilon)
        if update_basis:
            ratio = matrix / np.maximum(basis @ concentrations, epsilon)
            denominator = concentrations.sum(axis=1)[np.newaxis, :]
            basis *= (ratio @ concentrations.T) / np.maximum(denominator, epsilon)
            _restore_column_norms(basis, concentrations, seed_norms, epsilon)

    return basis, concentrations


def nmf_objective(
    matrix: ArrayLike,
    basis: ArrayLike,
    concentrations: ArrayLike,
    divergence: Literal["euclidean", "kl"] = "euclidean",
    lasso_lambda: float = 0.02,
    epsilon: float = 1e-6,
) -> float:
    """Return the penalised objective minimised by the matching solver."""
    matrix, basis, concentrations = _check_factors(matrix, basis, concentrations)
    product = basis @ concentrations
    penalty = lasso_lambda * float(concentrations.sum())
    if divergence == "euclidean":
        residual = matrix - product
        return 0.5 * float(np.einsum("ij,ij->", residual, residual)) + penalty
    if divergence == "kl":
        product = np.maximum(product, epsilon)
        positive = matrix > 0
        log_term = np.zeros_like(matrix)
        log_term[positive] = matrix[positive] * np.log(
            matrix[positive] / product[positive]
        )
        return float((log_term - matrix + product).sum()) + penalty
    msg = f"unknown divergence {divergence!r}"
    raise ValueError(msg)


def solve_nmf(
    matrix: ArrayLike,
    basis: ArrayLike,
    concentrations: ArrayLike,
    settings: NormalizationSettings | None = None,
    update_basis: bool = True,
) -> tuple[FloatArray, FloatArray]:
    """Run the solver selected by ``settings.divergence``.

    :param matrix: ``(C, N)`` pixel matrix
    :type matrix: ArrayLike
    :param basis: ``(C, K)`` seed basis
    :type basis: ArrayLike
    :param concentrations: ``(K, N)`` seed concentrations
    :type concentrations: ArrayLike
    :param settings: tunables; defaults to :func:`spcn.config.get_settings`
    :type settings: NormalizationSettings | None
    :param update_basis: refine the basis as well as the concentrations
    :type update_basis: bool
    :return: the refined ``(W, H)``
    :rtype: tuple[NDArray, NDArray]
    """
    settings = settings or get_settings()
    solver = virtanen_kl_divergence if settings.divergence == "kl" else virtanen_euclid
    basis, concentrations = solver(
        matrix,
        basis,
        concentrations,
        number_of_iterations=settings.number_of_iterations,
        lasso_lambda=settings.lasso_lambda,
        epsilon=settings.epsilon,
        update_basis=update_basis,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "%s NMF objective after %d rounds: %.6g",
            settings.divergence,
            settings.number_of_iterations,
            nmf_objective(
                matrix,
                basis,
                concentrations,
                settings.divergence,
                settings.lasso_lambda,
                settings.epsilon,
            ),
        )
    return basis, concentrations
