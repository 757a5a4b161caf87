"""Shared fixtures for the synapse test-suite."""
import socket

import numpy as np
import pytest

from synapse import Network, Input, Dense, Output, Settings, Tanh, Sigmoid, WeightProvider, Glorot


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast, single-module tests")
    config.addinivalue_line("markers", "integration: tests that train networks or open sockets")


@pytest.fixture
def xor_data():
    xs = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float64)
    ys = np.array([[0], [1], [1], [0]], dtype=np.float64)
    return xs, ys


@pytest.fixture
def quiet():
    """Settings factory with verbose output and thread fan-out turned off."""
    def make(**overrides):
        values = dict(verbose=False, parallelism=1)
        values.update(overrides)
        return Settings(**values)
    return make


@pytest.fixture
def xor_net(quiet):
    """Factory for a seeded 2-16-1 network."""
    def make(training=None, seed=1, **settings):
        return Network.build(
            [Input(2), Dense(16, Tanh), Output(1, Sigmoid)],
            quiet(**settings),
            weights=WeightProvider(Glorot(), seed=seed),
            training=training,
        )
    return make


@pytest.fixture
def free_port():
    """A local port nothing listens on."""
    with socket.socket() as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]
