"""Example usage of synapse: learn XOR, locally and on two local executors.

Auto thread configuration occurs when importing synapse (sets BLAS threads to cpu cores).
"""
import logging
import numpy as np
from synapse import (Network, Input, Dense, Output, Settings, Tanh, Sigmoid, Node,
                     WeightProvider, Glorot, DistributedTraining, io)
from synapse.distributed import Executor

XS = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float64)
YS = np.array([[0], [1], [1], [0]], dtype=np.float64)


def build_xor(training=None, **settings):
    """2-16-1 network with a tanh hidden layer."""
    return Network.build(
        [Input(2), Dense(16, Tanh), Output(1, Sigmoid)],
        Settings(learning_rate=2.0, precision=1e-3, iterations=2000, parallelism=1, **settings),
        weights=WeightProvider(Glorot(), seed=1),
        training=training,
    )


def main():
    logging.basicConfig(level=logging.INFO)

    net = build_xor(pretty_print=True)
    result = net.train(XS, YS)
    print(f"Local: {result.state.value} after {result.iterations} iterations, error {result.error:.5f}")
    print(net.summary())
    for x in XS:
        print(x, '->', net.evaluate(x))

    io.save(net, 'xor.hdf5')
    loaded = io.load('xor.hdf5', Settings(verbose=False))
    print('Reloaded prediction:', loaded.evaluate(XS).ravel())

    # Two executors, one half of the data each
    with Executor(Node('127.0.0.1', 0), XS[:2], YS[:2]) as a, Executor(Node('127.0.0.1', 0), XS[2:], YS[2:]) as b:
        dist = build_xor(training=DistributedTraining, coordinator=Node('127.0.0.1', 2552))
        run = dist.train({a.node, b.node})
        result = run.result()
        print(f"Distributed: {result.state.value} after {result.iterations} rounds, error {result.error:.5f}")


if __name__ == '__main__':
    main()
