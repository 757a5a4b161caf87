import json

import numpy as np
import pytest

from synapse import (Network, Input, Dense, Output, Convolution, Focus, Settings, Tanh, Sigmoid, ReLU,
                     WeightProvider, Normal, io)

pytestmark = pytest.mark.unit


def test_save_and_load(tmp_path):
    layers = [Input(16), Convolution((4, 4, 1), (2, 2), 2, 1, 0, ReLU), Focus(Dense(3, Tanh)),
              Output(2, Sigmoid, use_bias=False)]
    net = Network.build(layers, Settings(verbose=False), weights=WeightProvider(Normal(), seed=4),
                        identifier='saved')
    path = tmp_path / 'net.hdf5'
    io.save(net, str(path))
    meta = json.loads((tmp_path / 'net.json').read_text())
    assert meta['identifier'] == 'saved'

    loaded = io.load(str(path), Settings(verbose=False))
    assert loaded.identifier == 'saved'
    assert loaded.layers == net.layers
    x = np.random.default_rng(0).normal(size=(3, 16))
    np.testing.assert_array_equal(loaded.evaluate(x), net.evaluate(x))
    for W, V in zip(loaded.weights, net.weights):
        np.testing.assert_array_equal(W, V)
    assert loaded.biases[2] is None


def test_hdf5_helpers(tmp_path):
    path = str(tmp_path / 'w.hdf5')
    io.save_weights_hdf5(path, {'a': np.eye(2), 'b': np.arange(3.0)})
    data = io.load_weights_hdf5(path)
    np.testing.assert_array_equal(data['a'], np.eye(2))
    np.testing.assert_array_equal(data['b'], np.arange(3.0))
