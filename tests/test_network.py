import logging

import numpy as np
import pytest

from synapse import (Network, Input, Dense, Output, Focus, Settings, Sigmoid, Tanh, WeightProvider, Glorot,
                     ShapeError, NotSoundError, SupervisedTraining, SequentialTraining, L2)

pytestmark = pytest.mark.unit


def _net(settings=None, seed=3, **kwargs):
    return Network.build([Input(2), Dense(3, Tanh), Output(1, Sigmoid)],
                         settings or Settings(verbose=False),
                         weights=WeightProvider(Glorot(), seed=seed), **kwargs)


def test_build_rejects_unsound_layers():
    with pytest.raises(NotSoundError):
        Network.build([Dense(2, Tanh), Output(1, Sigmoid)])


def test_defaults():
    net = _net()
    assert net.identifier.startswith('synapse-')
    assert isinstance(net.training, SupervisedTraining)
    assert net.parameter_count() == 2 * 3 + 3 + 3 * 1 + 1


def test_evaluate_is_deterministic():
    a, b = _net(), _net()
    x = np.array([0.3, -0.7])
    np.testing.assert_array_equal(a.evaluate(x), b.evaluate(x))
    np.testing.assert_array_equal(a.evaluate(x), a(x))


def test_evaluate_single_and_batch():
    net = _net()
    xs = np.array([[0.0, 1.0], [1.0, 0.0], [0.5, 0.5]])
    batch = net.evaluate(xs)
    assert batch.shape == (3, 1)
    assert net.evaluate(xs[1]).shape == (1,)
    np.testing.assert_allclose(net.evaluate(xs[1]), batch[1])
    assert ((batch > 0) & (batch < 1)).all()


def test_evaluate_wrong_size():
    with pytest.raises(ShapeError):
        _net().evaluate([1.0, 2.0, 3.0])
    with pytest.raises(ShapeError):
        _net().evaluate([[0.0, 1.0], [1.0]])
    with pytest.raises(ShapeError):
        _net().evaluate_mean([[0.0, 1.0], [1.0]])
    with pytest.raises(ShapeError):
        _net().evaluate(['a', 'b'])


def test_evaluate_stops_at_focus():
    net = Network.build([Input(4), Focus(Dense(2, Tanh)), Output(4, Sigmoid)], Settings(verbose=False))
    out = net.evaluate(np.ones(4))
    assert out.shape == (2,)
    expected = np.tanh(net.weights[0] @ np.ones(4) + net.biases[0])
    np.testing.assert_allclose(out, expected)


def test_evaluate_mean():
    net = _net()
    xs = [[0.0, 1.0], [1.0, 0.0]]
    np.testing.assert_allclose(net.evaluate_mean(xs), net.evaluate(np.array(xs)).mean(axis=0))


def test_update_with_regularization():
    net = _net(Settings(verbose=False, regularization=L2(0.5)))
    before_w, before_b = net.snapshot()
    zeros_w = [np.zeros_like(W) for W in before_w]
    ones_b = [np.ones_like(b) for b in before_b]
    net.update(zeros_w, ones_b, 1.0)
    for W, old in zip(net.weights, before_w):
        np.testing.assert_allclose(W, 0.5 * old)
    for b, old in zip(net.biases, before_b):
        np.testing.assert_allclose(b, old - 1.0)
    assert net.penalty() == pytest.approx(sum(0.25 * float(np.sum(W * W)) for W in net.weights))


def test_update_rejects_bad_gradient():
    net = _net()
    with pytest.raises(ShapeError):
        net.update([np.zeros((2, 2)), np.zeros((1, 3))], [None, None], 0.1)


def test_snapshot_is_a_copy():
    net = _net()
    weights, _ = net.snapshot()
    weights[0][:] = 99.0
    assert not (net.weights[0] == 99.0).any()


def test_assign():
    net = _net()
    weights = [np.ones((3, 2)), np.ones((1, 3))]
    biases = [np.zeros(3), np.zeros(1)]
    net.assign(weights, biases)
    np.testing.assert_array_equal(net.weights[0], weights[0])
    with pytest.raises(ShapeError):
        net.assign([np.ones((2, 3)), np.ones((1, 3))], biases)
    with pytest.raises(ShapeError):
        net.assign(weights, [None, np.zeros(1)])


def test_str_and_summary():
    net = _net(identifier='xor')
    text = str(net)
    assert text.count('\n---\n') == 2
    summary = net.summary()
    assert summary.startswith('Network xor:')
    assert 'Total params: 13' in summary


def test_shapes():
    net = _net()
    assert net.shapes() == [(3, 2), (1, 3)]
    assert net.bias_shapes() == [(3,), (1,)]


def test_banner_and_pretty_print(caplog):
    seen = []

    def renderer(layers):
        seen.append(layers)
        return 'TOPOLOGY'

    with caplog.at_level(logging.INFO, logger='synapse'):
        _net(Settings(verbose=True, pretty_print=True), identifier='hello', renderer=renderer)
    assert len(seen) == 1
    assert 'hello' in caplog.text
    assert 'TOPOLOGY' in caplog.text


def test_partitions_warning(caplog):
    settings = Settings(verbose=False, partitions={1})
    with caplog.at_level(logging.WARNING, logger='synapse'):
        _net(settings)
    assert "doesn't support partitions" in caplog.text
    caplog.clear()
    with caplog.at_level(logging.WARNING, logger='synapse'):
        _net(settings, training=SequentialTraining)
    assert "partitions" not in caplog.text
