# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Structure-preserving colour normalisation of whole images.

Typical usage::

    from spcn import StructurePreservingColorNormalizer

    normalizer = StructurePreservingColorNormalizer()
    normalizer.fit(reference_rgb)
    normalized = normalizer.transform(source_rgb, block_shape=(512, 512))

The reference image is decomposed once into :class:`ReferenceStatistics`
(its stain basis and unstained colour). Every source image is decomposed
into its own concentrations, which are then recoloured with the reference
basis. When a ``block_shape`` is given, blocks are recoloured on a thread
pool (and, against a fixed reference basis, their concentrations are solved
there too); the reference statistics are complete before the pool starts
and are only ever read by the workers.
"""

from __future__ import annotations

import hashlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import ArrayLike, NDArray

from spcn.config import NormalizationSettings, get_settings
from spcn.distinguishers import matrix_to_distinguishers
from spcn.exceptions import DimensionMismatchError
from spcn.logging import get_logger
from spcn.matrix import FloatArray, image_to_matrix
from spcn.nmf import solve_nmf
from spcn.reconstruct import nmfs_to_image
from spcn.seeds import (
    UNSTAINED,
    basis_to_nmf_seed,
    distinguishers_to_colors,
    distinguishers_to_nmf_seeds,
)

logger = get_logger("normalizer")


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Decomposition:
    """Stain decomposition of one pixel block.

    Attributes:
        basis: ``(C, 3)`` colour basis W, columns ordered unstained,
            hematoxylin, eosin.
        concentrations: ``(3, N)`` stain concentrations H, one column per
            pixel in row-major order.
        unstained: length-``C`` background colour (the unstained column of
            the solved basis).
        distinguisher_indices: pixel positions of the distinguishers, in
            discovery order.
    """

    basis: NDArray
    concentrations: NDArray
    unstained: NDArray
    distinguisher_indices: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        for name in ("basis", "concentrations", "unstained"):
            object.__setattr__(self, name, _read_only(getattr(self, name)))

    @property
    def number_of_channels(self) -> int:
        return self.basis.shape[0]


@dataclass(frozen=True)
class ReferenceStatistics:
    """Immutable palette of a reference image, shared read-only by block workers.

    Attributes:
        basis: ``(C, 3)`` reference colour basis.
        unstained: length-``C`` reference background colour.
        fingerprint: digest of the reference pixels the statistics came from.
    """

    basis: NDArray
    unstained: NDArray
    fingerprint: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "basis", _read_only(self.basis))
        object.__setattr__(self, "unstained", _read_only(self.unstained))

    @classmethod
    def from_decomposition(
        cls, decomposition: Decomposition, fingerprint: str = ""
    ) -> "ReferenceStatistics":
        return cls(
            basis=decomposition.basis,
            unstained=decomposition.unstained,
            fingerprint=fingerprint,
        )


def image_to_nmf(
    image: ArrayLike,
    settings: NormalizationSettings | None = None,
    update_basis: bool = True,
) -> Decomposition:
    """Decompose a pixel block into stain basis and concentrations.

    Builds the pixel matrix, finds the distinguishers, labels them, seeds
    the factorisation and refines it with the configured solver.

    :param image: block with shape ``(H, W, C)`` or ``(N, C)``
    :type image: ArrayLike
    :param settings: tunables; defaults to :func:`spcn.config.get_settings`
    :type settings: NormalizationSettings | None
    :param update_basis: refine the basis as well as the concentrations
    :type update_basis: bool
    :return: the block's decomposition
    :rtype: Decomposition
    :raises DegenerateImageError: if the block has fewer than 3 channels or
        too little colour variation.
    """
    settings = settings or get_settings()
    matrix = image_to_matrix(image)
    distinguishers, indices = matrix_to_distinguishers(
        matrix, settings.number_of_stains, settings.epsilon2
    )
    roles = distinguishers_to_colors(distinguishers, settings.pixel_space)
    basis, concentrations, _ = distinguishers_to_nmf_seeds(
        distinguishers, matrix, roles, settings.epsilon
    )
    basis, concentrations = solve_nmf(
        matrix, basis, concentrations, settings, update_basis=update_basis
    )
    return Decomposition(
        basis=basis,
        concentrations=concentrations,
        unstained=basis[:, UNSTAINED],
        distinguisher_indices=tuple(indices),
    )


def fit_concentrations(
    image: ArrayLike,
    basis: ArrayLike,
    settings: NormalizationSettings | None = None,
) -> FloatArray:
    """Solve the concentrations of a block against a fixed basis.

    :param image: block with shape ``(H, W, C)`` or ``(N, C)``
    :type image: ArrayLike
    :param basis: ``(C, 3)`` basis held fixed during the solve
    :type basis: ArrayLike
    :param settings: tunables; defaults to :func:`spcn.config.get_settings`
    :type settings: NormalizationSettings | None
    :return: ``(3, N)`` concentrations
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises DimensionMismatchError: if the basis has a different channel
        count from the block.
    """
    settings = settings or get_settings()
    matrix = image_to_matrix(image)
    seed = basis_to_nmf_seed(matrix, basis, settings.epsilon)
    _, concentrations = solve_nmf(matrix, basis, seed, settings, update_basis=False)
    return concentrations


def _fingerprint(image: np.ndarray) -> str:
    digest = hashlib.sha1(np.ascontiguousarray(image).tobytes())
    digest.update(str((image.shape, image.dtype.str)).encode())
    return digest.hexdigest()


def _block_slices(
    spatial_shape: tuple[int, ...], block_shape: tuple[int, ...]
) -> list[tuple[slice, ...]]:
    """Split *spatial_shape* into rectangular blocks of at most *block_shape*."""
    if len(block_shape) != len(spatial_shape) or any(b < 1 for b in block_shape):
        msg = f"block_shape {block_shape} does not fit image shape {spatial_shape}"
        raise ValueError(msg)
    grids = [
        [slice(start, min(start + step, size)) for start in range(0, size, step)]
        for size, step in zip(spatial_shape, block_shape)
    ]
    slices: list[tuple[slice, ...]] = [()]
    for axis in grids:
        slices = [prefix + (s,) for prefix in slices for s in axis]
    return slices


class StructurePreservingColorNormalizer:
    """Normalise H&E images to the stain palette of a reference image.

    Attributes:
        settings: tunables used for every decomposition.
        reference_: statistics of the fitted reference, or ``None``.
    """

    def __init__(self, settings: NormalizationSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self.reference_: ReferenceStatistics | None = None

    def fit(self, reference_image: ArrayLike) -> "StructurePreservingColorNormalizer":
        """Compute the reference statistics.

        Refitting with an image whose pixels are unchanged keeps the cached
        statistics.

        :param reference_image: reference block, ``(H, W, C)`` or ``(N, C)``
        :type reference_image: ArrayLike
        :return: ``self``
        :rtype: StructurePreservingColorNormalizer
        """
        reference_image = np.asarray(reference_image)
        fingerprint = _fingerprint(reference_image)
        if self.reference_ is not None and self.reference_.fingerprint == fingerprint:
            logger.debug("Reference unchanged; reusing cached statistics")
            return self

        decomposition = image_to_nmf(
            reference_image,
            self.settings,
            update_basis=self.settings.refine_reference_basis,
        )
        self.reference_ = ReferenceStatistics.from_decomposition(
            decomposition, fingerprint
        )
        logger.info(
            "Fitted reference palette from %d pixels",
            decomposition.concentrations.shape[1],
        )
        return self

    def decompose(self, image: ArrayLike) -> Decomposition:
        """Decompose a source image according to ``settings.source_basis``."""
        reference = self._require_reference()
        if self.settings.source_basis == "reference":
            basis = reference.basis
            concentrations = fit_concentrations(image, basis, self.settings)
            return Decomposition(
                basis=basis,
                concentrations=concentrations,
                unstained=basis[:, UNSTAINED],
            )
        return image_to_nmf(
            image, self.settings, update_basis=self.settings.refine_source_basis
        )

    def transform(
        self,
        image: ArrayLike,
        block_shape: tuple[int, ...] | None = None,
        max_workers: int | None = None,
    ) -> NDArray:
        """Recolour *image* with the reference palette.

        :param image: source image, ``(H, W, C)`` or ``(N, C)``
        :type image: ArrayLike
        :param block_shape: optional spatial block size; when given, blocks
            are recoloured in parallel. With ``source_basis="reference"`` each
            block's concentrations are solved separately against the
            reference basis; otherwise each block takes its slice of the
            image-level solve
        :type block_shape: tuple[int, ...] | None
        :param max_workers: thread-pool size for block processing
        :type max_workers: int | None
        :return: normalised image with the shape and dtype of *image*
        :rtype: numpy.ndarray
        :raises ValueError: if the normalizer has not been fitted.
        :raises DimensionMismatchError: if *image* has a different channel
            count from the reference.
        """
        reference = self._require_reference()
        image = np.asarray(image)
        if image.ndim not in (2, 3):
            msg = f"image must have shape (H, W, C) or (N, C), got {image.shape}"
            raise ValueError(msg)
        if image.shape[-1] != reference.basis.shape[0]:
            msg = (
                f"image has {image.shape[-1]} channels but the reference has "
                f"{reference.basis.shape[0]}"
            )
            raise DimensionMismatchError(msg)

        out = np.empty_like(image)
        if block_shape is None:
            source = self.decompose(image)
            self._reconstruct(source.basis, source.concentrations, out)
            return out

        slices = _block_slices(image.shape[:-1], tuple(block_shape))
        if self.settings.source_basis == "reference":
            basis = reference.basis
            solved = None
        else:
            # The image-level solve already yields every pixel's concentrations.
            source = self.decompose(image)
            basis = source.basis
            solved = source.concentrations.reshape(
                (source.concentrations.shape[0],) + image.shape[:-1]
            )
        logger.info("Normalising %d blocks of shape %s", len(slices), block_shape)

        def work(region: tuple[slice, ...]) -> None:
            if solved is None:
                concentrations = fit_concentrations(
                    image[region], basis, self.settings
                )
            else:
                block = solved[(slice(None),) + region]
                concentrations = block.reshape(block.shape[0], -1)
            self._reconstruct(basis, concentrations, out[region])

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # list() re-raises the first worker exception here.
            list(executor.map(work, slices))
        return out

    def _reconstruct(
        self, basis: NDArray, concentrations: NDArray, out: NDArray
    ) -> NDArray:
        reference = self._require_reference()
        return nmfs_to_image(
            basis,
            concentrations,
            reference.basis,
            reference.unstained,
            out=out,
            value_range=self.settings.value_range,
            rescale_concentrations=self.settings.rescale_concentrations,
            epsilon=self.settings.epsilon,
        )

    def _require_reference(self) -> ReferenceStatistics:
        if self.reference_ is None:
            msg = "StructurePreservingColorNormalizer must be fitted before use."
            raise ValueError(msg)
        return self.reference_


def normalize_image(
    image: ArrayLike,
    reference_image: ArrayLike,
    settings: NormalizationSettings | None = None,
    **kwargs,
) -> NDArray:
    """Normalise *image* to the palette of *reference_image* in one call.

    Extra keyword arguments are passed to
    :meth:`StructurePreservingColorNormalizer.transform`.
    """
    normalizer = StructurePreservingColorNormalizer(settings).fit(reference_image)
    return normalizer.transform(image, **kwargs)
