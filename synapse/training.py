"""Training strategies.

Every strategy runs the same loop: take a snapshot of the weights, compute
the error and gradients against it (possibly spread over
``settings.parallelism`` threads), stop when the error is below
``settings.precision`` or ``settings.iterations`` updates have been made,
otherwise apply ``W <- W - rate * (gradient + regularization)``.
"""
from __future__ import annotations
import enum
import logging
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from tqdm import tqdm

from . import numerics
from .settings import segments
from .exceptions import ShapeError

logger = logging.getLogger(__name__)


class TrainingState(enum.Enum):
    INITIALIZED = 'initialized'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def terminal(self) -> bool:
        return self not in (TrainingState.INITIALIZED, TrainingState.ITERATING)


@dataclass
class TrainingResult:
    state: TrainingState
    iterations: int
    error: float
    errors: List[float] = field(default_factory=list)


class Training:
    """Base class of all strategies. ``feed_forward`` strategies have no use
    for ``settings.partitions``."""
    feed_forward = True

    def __init__(self, network):
        self.network = network
        self.state = TrainingState.INITIALIZED

    @property
    def settings(self):
        return self.network.settings

    def check_settings(self) -> None:
        if self.feed_forward and self.settings.partitions is not None:
            logger.warning("%s doesn't support partitions. This setting has no effect.",
                           type(self).__name__)

    def train(self, *args):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Gradient computation

    def gradient_fn(self):
        """Function computing ``(error_sum, grads_w, grads_b)`` of a batch."""
        approximation = self.settings.approximation
        if approximation is None:
            return numerics.gradients

        def approximate(layers, weights, biases, x, t):
            weights = [W.copy() for W in weights]
            biases = [b.copy() if b is not None else None for b in biases]
            return numerics.approximate(layers, weights, biases, x, t, approximation.epsilon)
        return approximate

    def compute(self, pool: Optional[ThreadPoolExecutor], workers: int, weights, biases, X, T):
        """Mean error and mean gradients over all samples.

        Chunks of samples are processed concurrently and summed in chunk
        order before dividing by the sample count.
        """
        fn = self.gradient_fn()
        layers = self.network.layers
        n = X.shape[0]
        if pool is None or n < 2:
            parts = [fn(layers, weights, biases, X, T)]
        else:
            chunks = np.array_split(np.arange(n), min(n, workers))
            parts = list(pool.map(lambda idx: fn(layers, weights, biases, X[idx], T[idx]), chunks))
        err = sum(p[0] for p in parts)
        grads_w = [sum(p[1][k] for p in parts) / n for k in range(len(weights))]
        grads_b = [sum(p[2][k] for p in parts) / n if biases[k] is not None else None
                   for k in range(len(biases))]
        return err / n, grads_w, grads_b

    def error(self, weights, biases, X, T) -> float:
        out = numerics.forward(self.network.layers, weights, biases, X).activations[-1]
        return numerics.error_sum(out, T) / X.shape[0]

    # ------------------------------------------------------------------
    # Loop

    def run(self, X: np.ndarray, T: np.ndarray, parts: Optional[List[Tuple[int, int]]] = None) -> TrainingResult:
        net = self.network
        settings = self.settings
        errors: List[float] = []
        iteration = 0
        error = float('inf')
        workers = min(settings.parallelism, X.shape[0])
        pool = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        pbar = tqdm(total=settings.iterations, desc=net.identifier, disable=not settings.verbose)
        self.state = TrainingState.ITERATING
        try:
            while True:
                weights, biases = net.snapshot()
                if parts is None:
                    error, grads_w, grads_b = self.compute(pool, workers, weights, biases, X, T)
                else:
                    error = self.error(weights, biases, X, T)
                if not np.isfinite(error):
                    logger.error("%s: error became %s at iteration %d.", net.identifier, error, iteration)
                    self.state = TrainingState.FAILED
                    break
                errors.append(error)
                if settings.error_func_output is not None:
                    settings.error_func_output.write(error)
                pbar.set_postfix(error=error)
                if error <= settings.precision:
                    self.state = TrainingState.CONVERGED
                    break
                if iteration == settings.iterations:
                    self.state = TrainingState.MAX_ITERATIONS_REACHED
                    break
                rate = settings.rate(iteration)
                if parts is None:
                    net.update(grads_w, grads_b, rate)
                else:
                    for start, stop in parts:
                        weights, biases = net.snapshot()
                        _, grads_w, grads_b = self.compute(pool, workers, weights, biases, X[start:stop], T[start:stop])
                        net.update(grads_w, grads_b, rate)
                iteration += 1
                pbar.update(1)
        except Exception:
            self.state = TrainingState.FAILED
            raise
        finally:
            pbar.close()
            if pool is not None:
                pool.shutdown()
        if settings.verbose:
            logger.info("%s: %s after %d iterations, error %.6g.", net.identifier,
                        self.state.value, iteration, error)
        return TrainingResult(self.state, iteration, error, errors)


class SupervisedTraining(Training):

    def train(self, xs, ys) -> TrainingResult:
        """Train against input vectors ``xs`` and their targets ``ys``."""
        X, T = self.prepare(xs, ys)
        return self.run(X, T)

    def prepare(self, xs, ys):
        layers = self.network.layers
        X = numerics.as_batch(xs, layers[0].neurons, 'Input')
        T = numerics.as_batch(ys, layers[-1].neurons, 'Target')
        if X.shape[0] != T.shape[0]:
            raise ShapeError(f"Got {X.shape[0]} inputs but {T.shape[0]} targets.")
        if X.shape[0] == 0:
            raise ShapeError("Nothing to train on.")
        return X, T


class UnsupervisedTraining(Training):
    """Trains the network to reconstruct its own input (autoencoder)."""

    def train(self, xs) -> TrainingResult:
        layers = self.network.layers
        if layers[0].neurons != layers[-1].neurons:
            raise ShapeError(f"Reconstruction needs as many outputs as inputs, "
                             f"got {layers[-1].neurons} and {layers[0].neurons}.")
        X = numerics.as_batch(xs, layers[0].neurons, 'Input')
        if X.shape[0] == 0:
            raise ShapeError("Nothing to train on.")
        return self.run(X, X)


class SequentialTraining(SupervisedTraining):
    """Supervised training over a sequential stream cut by ``settings.partitions``.

    Every segment contributes its own gradient step in each iteration,
    in sequence order.
    """
    feed_forward = False

    def train(self, xs, ys) -> TrainingResult:
        X, T = self.prepare(xs, ys)
        return self.run(X, T, segments(X.shape[0], self.settings.partitions))


class DistributedTraining(Training):
    """Trains against remote executors instead of local data."""

    def train(self, nodes):
        """Start training on ``nodes`` and return immediately.

        Returns:
            A :class:`synapse.distributed.DistributedRun` to follow or cancel
            the run.
        """
        from .distributed.coordinator import Coordinator
        return Coordinator(self, nodes).start()
