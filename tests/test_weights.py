import numpy as np
import pytest

from synapse import (Input, Dense, Output, Convolution, Focus, Sigmoid, Tanh, ReLU, WeightProvider,
                     Uniform, Normal, Zero, Glorot, Custom, AllocationError, Network, validate)

pytestmark = pytest.mark.unit


def _arch():
    return validate([Input(16), Convolution((4, 4, 1), (2, 2), 3, 1, 0, ReLU),
                     Focus(Dense(5, Tanh)), Output(2, Sigmoid, use_bias=False)])


def test_shapes():
    weights, biases = WeightProvider(seed=0)(_arch())
    assert [W.shape for W in weights] == [(3, 4), (5, 27), (2, 5)]
    assert [b.shape if b is not None else None for b in biases] == [(3,), (5,), None]
    assert all(not b.any() for b in biases if b is not None)


def test_same_seed_same_weights():
    a, _ = WeightProvider(Normal(), seed=42)(_arch())
    b, _ = WeightProvider(Normal(), seed=42)(_arch())
    c, _ = WeightProvider(Normal(), seed=43)(_arch())
    for x, y in zip(a, b):
        np.testing.assert_array_equal(x, y)
    assert not all(np.array_equal(x, z) for x, z in zip(a, c))


def test_uniform_bounds():
    weights, _ = WeightProvider(Uniform(-0.1, 0.2), seed=0)(_arch())
    for W in weights:
        assert W.min() >= -0.1 and W.max() <= 0.2


def test_glorot_limit():
    weights, _ = WeightProvider(Glorot(), seed=0)(validate([Input(30), Output(10, Sigmoid)]))
    limit = np.sqrt(6.0 / 40)
    assert np.abs(weights[0]).max() <= limit


def test_zero_and_custom():
    zero, _ = WeightProvider(Zero())(_arch())
    assert all(not W.any() for W in zero)
    ones, _ = WeightProvider(Custom(lambda rng: 1.0))(_arch())
    assert all((W == 1.0).all() for W in ones)


def test_non_positive_dimensions():
    with pytest.raises(AllocationError):
        WeightProvider()(validate([Input(3), Dense(0, Tanh), Output(1, Sigmoid)]))
    with pytest.raises(AllocationError):
        Network.build([Input(0), Output(1, Sigmoid)])
