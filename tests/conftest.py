"""Shared fixtures: a small synthetic face database with bright landmark blobs."""

import numpy as np
import pytest

from ShapeSpace import ShapeBounds
from TrainingData import AlgorithmParameters

BASE_SHAPE = np.array([[22.0, 26.0], [42.0, 26.0], [32.0, 35.0], [25.0, 44.0], [39.0, 44.0]])


def make_faces(num=50, size=64, seed=0):
    """Images with a gaussian blob on every landmark and jittered face rects."""
    rnd = np.random.RandomState(seed)
    yy, xx = np.mgrid[0:size, 0:size]
    images, shapes, rects = [], [], []
    for _ in range(num):
        center = BASE_SHAPE.mean(0)
        shape = (BASE_SHAPE - center) * rnd.uniform(0.9, 1.1) + center + rnd.uniform(-3, 3, 2)
        shape += rnd.normal(0, 0.5, shape.shape)
        img = np.full((size, size), 20.0, dtype=np.float32)
        for x, y in shape:
            img += 200.0 * np.exp(-((xx - x) ** 2 + (yy - y) ** 2) / (2 * 3.0 ** 2))
        rect = ShapeBounds(shape) + rnd.uniform(-3, 3, 2)
        images.append(img)
        shapes.append(shape)
        rects.append(rect)
    return images, shapes, rects


@pytest.fixture
def faces():
    return make_faces()


@pytest.fixture
def small_params():
    return AlgorithmParameters(
        num_cascades=3,
        num_trees=10,
        max_tree_depth=3,
        num_random_pixel_coordinates=100,
        num_random_split_tests_per_node=20,
        exponential_lambda=10.0,
        learning_rate=0.3,
    )
