import numpy as np
import pytest

from synapse import Settings, SequentialTraining, TrainingState, SettingsNotSupportedError, partition
from synapse.settings import segments

pytestmark = pytest.mark.unit


def test_partition_helper():
    assert partition(3, 3) == frozenset({2, 5, 8})
    assert partition(1, 2) == frozenset({0, 1})


@pytest.mark.parametrize("n, partitions, expected", [
    (10, None, [(0, 10)]),
    (10, set(), [(0, 10)]),
    (10, {2, 5}, [(0, 3), (3, 6), (6, 10)]),
    (6, {5}, [(0, 6)]),
    (6, {0}, [(0, 1), (1, 6)]),
    (9, partition(3, 3), [(0, 3), (3, 6), (6, 9)]),
])
def test_segments(n, partitions, expected):
    assert segments(n, partitions) == expected


@pytest.mark.parametrize("partitions", [{10}, {-1}, {3, 12}])
def test_out_of_range_boundaries(partitions):
    with pytest.raises(SettingsNotSupportedError):
        segments(10, partitions)


def test_settings_freeze_partitions():
    settings = Settings(verbose=False, partitions=[1, 3, 3])
    assert settings.partitions == frozenset({1, 3})


def test_sequential_training_steps_per_segment(xor_net, xor_data):
    xs, ys = xor_data
    whole = xor_net(precision=0.0, iterations=3, learning_rate=0.5)
    split = xor_net(training=SequentialTraining, precision=0.0, iterations=3, learning_rate=0.5,
                    partitions=partition(2, 2))
    unsplit = xor_net(training=SequentialTraining, precision=0.0, iterations=3, learning_rate=0.5)

    a = whole.train(xs, ys)
    b = split.train(xs, ys)
    c = unsplit.train(xs, ys)
    assert b.state is TrainingState.MAX_ITERATIONS_REACHED
    assert b.iterations == 3
    # a single segment is plain batch training
    assert a.errors == pytest.approx(c.errors)
    assert not all(np.allclose(W, V) for W, V in zip(whole.weights, split.weights))


def test_sequential_training_rejects_bad_boundaries(xor_net, xor_data):
    net = xor_net(training=SequentialTraining, partitions={7})
    with pytest.raises(SettingsNotSupportedError):
        net.train(*xor_data)
