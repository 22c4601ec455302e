# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tunables for the structure-preserving colour normalisation pipeline.

Every field can be overridden from the environment with the ``SPCN_``
prefix, for example ``SPCN_DIVERGENCE=kl`` or ``SPCN_NUMBER_OF_ITERATIONS=50``.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional, Tuple

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NormalizationSettings(BaseSettings):
    """Configuration for decomposition and reconstruction.

    Attributes:
        number_of_stains: Number of stains besides the unstained background.
            Only H&E (two stains) is supported.
        number_of_iterations: Fixed number of multiplicative-update rounds.
        lasso_lambda: Weight of the L1 penalty on the concentrations.
        epsilon: Floor applied to every update denominator.
        divergence: Objective minimised by the NMF solver.
        pixel_space: Whether pixel values are intensities (bright background)
            or optical densities (dark background). Only affects which
            distinguisher is labelled unstained / hematoxylin / eosin.
        refine_reference_basis: Refine W when decomposing the reference image.
        refine_source_basis: Refine W when decomposing an image to normalise.
        source_basis: ``"independent"`` solves the source basis from the
            source image; ``"reference"`` fixes it to the reference basis and
            only refines the concentrations.
        rescale_concentrations: Scale stain concentrations by the ratio of
            source to reference basis column norms before recolouring.
        value_range: Optional ``(low, high)`` clip applied to output pixels.
    """

    model_config = SettingsConfigDict(env_prefix="SPCN_", frozen=True, extra="ignore")

    number_of_stains: Literal[2] = Field(default=2)
    number_of_iterations: int = Field(default=300, ge=1)
    lasso_lambda: float = Field(default=0.02, ge=0.0)
    epsilon: float = Field(default=1e-6, gt=0.0)
    divergence: Literal["euclidean", "kl"] = Field(default="euclidean")
    pixel_space: Literal["intensity", "optical_density"] = Field(default="intensity")
    refine_reference_basis: bool = Field(default=False)
    refine_source_basis: bool = Field(default=True)
    source_basis: Literal["independent", "reference"] = Field(default="independent")
    rescale_concentrations: bool = Field(default=False)
    value_range: Optional[Tuple[float, float]] = Field(default=None)

    @model_validator(mode="after")
    def _check_value_range(self) -> "NormalizationSettings":
        if self.value_range is not None and self.value_range[0] >= self.value_range[1]:
            msg = f"value_range must be increasing, got {self.value_range}"
            raise ValueError(msg)
        return self

    @property
    def epsilon2(self) -> float:
        """Squared-magnitude floor below which a vector counts as zero."""
        return self.epsilon * self.epsilon

    @property
    def number_of_colors(self) -> int:
        """Number of basis columns: the stains plus the unstained background."""
        return self.number_of_stains + 1


@lru_cache(maxsize=1)
def get_settings() -> NormalizationSettings:
    """Return the process-wide default settings (read once from the environment)."""
    return NormalizationSettings()
