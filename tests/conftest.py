# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Shared pytest fixtures and configuration for spcn tests."""

import numpy as np
import pytest

# Pure colours (RGB intensities) of a synthetic source and reference stain set.
# Columns: unstained, hematoxylin, eosin.
SOURCE_PALETTE = np.array(
    [
        [240.0, 70.0, 230.0],
        [235.0, 50.0, 110.0],
        [245.0, 160.0, 190.0],
    ]
)
REFERENCE_PALETTE = np.array(
    [
        [250.0, 90.0, 220.0],
        [250.0, 40.0, 90.0],
        [250.0, 140.0, 170.0],
    ]
)


def mix(palette, weights, shape):
    """Lay out ``palette @ weights`` as an image of *shape*."""
    return (palette @ weights).T.reshape(shape)


def mixing_weights(rng, n_pixels, alpha=1.0):
    """Return ``(3, n_pixels)`` barycentric weights whose first 3 pixels are pure."""
    weights = rng.dirichlet([alpha] * 3, size=n_pixels).T
    weights[:, :3] = np.eye(3)
    return weights


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducible tests.

    :return: numpy random generator with fixed seed
    :rtype: numpy.random.Generator
    """
    return np.random.default_rng(42)


@pytest.fixture
def source_palette():
    """Provide the ``(3, 3)`` source palette (columns unstained, H, E)."""
    return SOURCE_PALETTE.copy()


@pytest.fixture
def reference_palette():
    """Provide the ``(3, 3)`` reference palette (columns unstained, H, E)."""
    return REFERENCE_PALETTE.copy()


# ---------------------------------------------------------------------------
# Synthetic H&E blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def he_weights(rng):
    """Provide ``(3, 16)`` mixing weights for a 4x4 block.

    Pixels 0, 1 and 2 are pure unstained, hematoxylin and eosin; the rest
    are random convex mixtures.

    :return: mixing weights, one column per pixel
    :rtype: numpy.ndarray
    """
    return mixing_weights(rng, 16)


@pytest.fixture
def he_block(source_palette, he_weights):
    """Provide a 4x4x3 float64 block mixed exactly from the source palette.

    :return: synthetic H&E block
    :rtype: numpy.ndarray
    """
    return mix(source_palette, he_weights, (4, 4, 3))


@pytest.fixture
def he_image_weights(rng):
    """Provide ``(3, 1024)`` mixing weights for a 32x32 image.

    Sparse (alpha < 1) so most pixels are dominated by a single stain.

    :return: mixing weights, one column per pixel
    :rtype: numpy.ndarray
    """
    return mixing_weights(rng, 32 * 32, alpha=0.5)


@pytest.fixture
def he_image(source_palette, he_image_weights):
    """Provide a 32x32x3 float64 image mixed exactly from the source palette.

    :return: synthetic H&E image
    :rtype: numpy.ndarray
    """
    return mix(source_palette, he_image_weights, (32, 32, 3))


@pytest.fixture
def he_image_uint8(he_image):
    """Provide the 32x32 synthetic image rounded to uint8.

    :return: synthetic H&E image (uint8)
    :rtype: numpy.ndarray
    """
    return np.rint(he_image).astype(np.uint8)


@pytest.fixture
def reference_image(reference_palette, rng):
    """Provide a 32x32x3 float64 image mixed from the reference palette.

    :return: synthetic reference image
    :rtype: numpy.ndarray
    """
    return mix(reference_palette, mixing_weights(rng, 32 * 32, alpha=0.5), (32, 32, 3))
