# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Structure-preserving colour normalisation for H&E histology images."""

from spcn.config import NormalizationSettings, get_settings
from spcn.distinguishers import (
    matrix_to_distinguishers,
    matrix_to_one_distinguisher,
    project_matrix,
    recenter_matrix,
)
from spcn.exceptions import DegenerateImageError, DimensionMismatchError
from spcn.matrix import image_to_matrix, matrix_to_image
from spcn.nmf import nmf_objective, solve_nmf, virtanen_euclid, virtanen_kl_divergence
from spcn.normalizer import (
    Decomposition,
    ReferenceStatistics,
    StructurePreservingColorNormalizer,
    fit_concentrations,
    image_to_nmf,
    normalize_image,
)
from spcn.reconstruct import nmfs_to_image, reconstruct_image
from spcn.seeds import (
    EOSIN,
    HEMATOXYLIN,
    UNSTAINED,
    basis_to_nmf_seed,
    distinguishers_to_colors,
    distinguishers_to_nmf_seeds,
)

__version__ = "0.1.0"

__all__ = [
    "EOSIN",
    "HEMATOXYLIN",
    "UNSTAINED",
    "Decomposition",
    "DegenerateImageError",
    "DimensionMismatchError",
    "NormalizationSettings",
    "ReferenceStatistics",
    "StructurePreservingColorNormalizer",
    "basis_to_nmf_seed",
    "distinguishers_to_colors",
    "distinguishers_to_nmf_seeds",
    "fit_concentrations",
    "get_settings",
    "image_to_matrix",
    "image_to_nmf",
    "matrix_to_distinguishers",
    "matrix_to_image",
    "matrix_to_one_distinguisher",
    "nmf_objective",
    "nmfs_to_image",
    "normalize_image",
    "project_matrix",
    "recenter_matrix",
    "reconstruct_image",
    "solve_nmf",
    "virtanen_euclid",
    "virtanen_kl_divergence",
]
