# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for spcn.seeds (role labelling and NMF seeding)."""

import itertools

import numpy as np
import pytest

from conftest import mix, mixing_weights
from spcn.distinguishers import matrix_to_distinguishers
from spcn.exceptions import DimensionMismatchError
from spcn.matrix import image_to_matrix
from spcn.seeds import (
    EOSIN,
    HEMATOXYLIN,
    UNSTAINED,
    basis_to_nmf_seed,
    distinguishers_to_colors,
    distinguishers_to_nmf_seeds,
)

# ---------------------------------------------------------------------------
# distinguishers_to_colors
# ---------------------------------------------------------------------------


class TestDistinguishersToColors:
    """Tests for labelling distinguishers as unstained / H / E."""

    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    def test_any_column_order(self, source_palette, order):
        """Roles should be recovered whatever order the columns come in."""
        shuffled = source_palette[:, list(order)]
        roles = distinguishers_to_colors(shuffled)
        assert [order[r] for r in roles] == [UNSTAINED, HEMATOXYLIN, EOSIN]

    def test_reference_palette(self, reference_palette):
        """The reference palette is already in canonical order."""
        assert distinguishers_to_colors(reference_palette) == (0, 1, 2)

    def test_noise_free_trials(self, rng, source_palette, reference_palette):
        """Distinguishers found in exact mixtures are always labelled correctly."""
        for trial in range(20):
            palette = source_palette if trial % 2 else reference_palette
            image = mix(palette, mixing_weights(rng, 100), (10, 10, 3))
            distinguishers, _ = matrix_to_distinguishers(image_to_matrix(image))
            roles = distinguishers_to_colors(distinguishers)
            np.testing.assert_allclose(distinguishers[:, list(roles)], palette)

    def test_optical_density(self, source_palette):
        """In optical-density space the least dense column is unstained."""
        density = -np.log(source_palette / 256.0)
        roles = distinguishers_to_colors(density, pixel_space="optical_density")
        assert roles == (UNSTAINED, HEMATOXYLIN, EOSIN)

    def test_wrong_shape_raises(self):
        """A basis without exactly 3 columns should raise."""
        with pytest.raises(DimensionMismatchError, match="C >= 3, 3"):
            distinguishers_to_colors(np.ones((3, 4)))

    def test_unknown_space_raises(self, source_palette):
        """An unknown pixel space should raise ValueError."""
        with pytest.raises(ValueError, match="pixel_space"):
            distinguishers_to_colors(source_palette, pixel_space="lab")


# ---------------------------------------------------------------------------
# distinguishers_to_nmf_seeds
# ---------------------------------------------------------------------------


class TestDistinguishersToNmfSeeds:
    """Tests for the initial (W, H) built from distinguishers."""

    def test_shapes(self, he_block):
        """W is (C, 3), H is (3, N), unstained is (C,)."""
        matrix = image_to_matrix(he_block)
        distinguishers, _ = matrix_to_distinguishers(matrix)
        roles = distinguishers_to_colors(distinguishers)
        basis, concentrations, unstained = distinguishers_to_nmf_seeds(
            distinguishers, matrix, roles
        )
        assert basis.shape == (3, 3)
        assert concentrations.shape == (3, 16)
        assert unstained.shape == (3,)

    def test_canonical_order(self, source_palette, he_block):
        """W columns should be unstained, H, E regardless of discovery order."""
        matrix = image_to_matrix(he_block)
        shuffled = source_palette[:, [2, 0, 1]]
        basis, _, unstained = distinguishers_to_nmf_seeds(shuffled, matrix, (1, 2, 0))
        np.testing.assert_array_equal(basis, source_palette)
        np.testing.assert_array_equal(unstained, source_palette[:, UNSTAINED])

    def test_recovers_weights(self, source_palette, he_block, he_weights):
        """On an exact mixture the seed H should equal the mixing weights."""
        matrix = image_to_matrix(he_block)
        _, concentrations, _ = distinguishers_to_nmf_seeds(
            source_palette, matrix, (0, 1, 2)
        )
        np.testing.assert_allclose(concentrations, he_weights, atol=1e-5)

    def test_floored_at_epsilon(self, source_palette, he_block):
        """No seed concentration should be below epsilon."""
        matrix = image_to_matrix(he_block)
        _, concentrations, _ = distinguishers_to_nmf_seeds(
            source_palette, matrix, (0, 1, 2), epsilon=1e-3
        )
        assert concentrations.min() >= 1e-3

    def test_channel_mismatch_raises(self, he_block):
        """Distinguishers with a different channel count should raise."""
        matrix = image_to_matrix(he_block)
        with pytest.raises(DimensionMismatchError):
            distinguishers_to_nmf_seeds(np.ones((4, 3)), matrix, (0, 1, 2))

    def test_bad_roles_raise(self, source_palette, he_block):
        """Roles that are not a permutation should raise ValueError."""
        matrix = image_to_matrix(he_block)
        with pytest.raises(ValueError, match="permutation"):
            distinguishers_to_nmf_seeds(source_palette, matrix, (0, 0, 1))


# ---------------------------------------------------------------------------
# basis_to_nmf_seed
# ---------------------------------------------------------------------------


class TestBasisToNmfSeed:
    """Tests for seeding H against a fixed basis."""

    def test_recovers_weights(self, source_palette, he_block, he_weights):
        """With the true basis the seed should equal the mixing weights."""
        result = basis_to_nmf_seed(image_to_matrix(he_block), source_palette)
        np.testing.assert_allclose(result, he_weights, atol=1e-5)

    def test_non_negative(self, rng, source_palette):
        """Pixels outside the simplex should still give non-negative seeds."""
        matrix = rng.uniform(0.0, 255.0, size=(3, 50))
        assert basis_to_nmf_seed(matrix, source_palette).min() > 0.0

    def test_channel_mismatch_raises(self, he_block):
        """A basis for another channel count should raise."""
        with pytest.raises(DimensionMismatchError):
            basis_to_nmf_seed(image_to_matrix(he_block), np.ones((4, 3)))
