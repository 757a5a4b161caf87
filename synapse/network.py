"""Network class: validated layers, settings and weights."""
from __future__ import annotations
import logging
import threading
import uuid
import numpy as np
from typing import Callable, List, Optional, Sequence, Tuple, Type

from .architecture import Architecture, validate
from .layers import Layer, Convolution, unwrap
from .settings import Settings
from .weights import WeightProvider, junction_shape, bias_shape
from . import numerics
from .exceptions import ShapeError

logger = logging.getLogger(__name__)


def render_topology(layers: Sequence[Layer]) -> str:
    lines = []
    for i, layer in enumerate(layers):
        inner = unwrap(layer)
        act = inner.activator.name if inner.activator is not None else ''
        extra = ''
        if isinstance(inner, Convolution):
            extra = f" {inner.dim_in} -> {inner.dim_out} field={inner.field} stride={inner.stride} padding={inner.padding}"
        lines.append(f"{i:>3}  {layer.symbol:<24} neurons={layer.neurons:<8} {act}{extra}".rstrip())
    return '\n'.join(lines)


class Network:
    """A trainable network.

    Use :meth:`build` to obtain one; it validates the layers before any
    weight is allocated. Weights are mutated in place by the training
    strategy and only read by :meth:`evaluate`.
    """

    def __init__(self, architecture: Architecture, settings: Settings,
                 weights: List[np.ndarray], biases: List[Optional[np.ndarray]],
                 training=None, identifier: Optional[str] = None,
                 renderer: Optional[Callable[[Sequence[Layer]], str]] = None):
        self.architecture = architecture
        self.settings = settings
        self.weights = weights
        self.biases = biases
        self.identifier = identifier or f"synapse-{uuid.uuid4().hex[:8]}"
        self._lock = threading.RLock()
        self.training = training(self) if training is not None else None
        self.check_settings()
        self._say_hi(renderer or render_topology)

    @classmethod
    def build(cls, layers: Sequence[Layer], settings: Optional[Settings] = None,
              weights: Optional[WeightProvider] = None, training: Optional[Type] = None,
              identifier: Optional[str] = None,
              renderer: Optional[Callable[[Sequence[Layer]], str]] = None) -> 'Network':
        """Validate ``layers``, allocate weights and wrap everything in a network.

        Args:
            layers: Ordered layer sequence, Input first and Output last
            settings: Network settings, defaults to ``Settings()``
            weights: Weight provider, defaults to Glorot uniform initialisation
            training: Training strategy class, defaults to SupervisedTraining
            identifier: Name of the network, random if omitted
            renderer: Topology pretty-printer used when ``settings.pretty_print``

        Raises:
            NotSoundError: If the architecture is not sound
            AllocationError: If a junction has non-positive dimensions
        """
        architecture = validate(layers)
        provider = weights or WeightProvider()
        w, b = provider(architecture)
        if training is None:
            from .training import SupervisedTraining
            training = SupervisedTraining
        return cls(architecture, settings or Settings(), w, b, training=training,
                   identifier=identifier, renderer=renderer)

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return self.architecture.layers

    def check_settings(self) -> None:
        if self.training is not None:
            self.training.check_settings()

    def _say_hi(self, renderer) -> None:
        if self.settings.verbose:
            logger.info("Network %s: %s, %d weights", self.identifier,
                        ' :: '.join(f"{l.symbol}({l.neurons})" for l in self.layers),
                        self.parameter_count())
        if self.settings.pretty_print:
            logger.info("\n%s", renderer(self.layers))

    def evaluate(self, x) -> np.ndarray:
        """Forward ``x`` (one vector or a batch of row vectors) through the
        network. Returns the Focus activation if the network has one."""
        X = numerics.as_batch(x, self.layers[0].neurons)
        single = np.ndim(x) == 1
        stop = self.architecture.focus
        layers = self.layers if stop is None else self.layers[:stop + 1]
        with self._lock:
            n = len(layers) - 1
            out = numerics.forward(layers, self.weights[:n], self.biases[:n], X).activations[-1]
        return out[0] if single else out

    __call__ = evaluate

    def evaluate_mean(self, xs) -> np.ndarray:
        """Mean output vector over the input sequence ``xs``."""
        return self.evaluate(numerics.as_batch(xs, self.layers[0].neurons)).mean(axis=0)

    def snapshot(self) -> Tuple[List[np.ndarray], List[Optional[np.ndarray]]]:
        with self._lock:
            return ([W.copy() for W in self.weights],
                    [b.copy() if b is not None else None for b in self.biases])

    def update(self, grads_w, grads_b, rate: float) -> None:
        """``W <- W - rate * (gradient + regularization(W))`` for every junction."""
        reg = self.settings.regularization
        with self._lock:
            for W, g in zip(self.weights, grads_w):
                if g.shape != W.shape:
                    raise ShapeError(f"Gradient of shape {g.shape} doesn't fit weights of shape {W.shape}.")
                if reg is not None:
                    g = g + reg.term(W)
                W -= rate * g
            for b, g in zip(self.biases, grads_b):
                if b is not None and g is not None:
                    b -= rate * g

    def assign(self, weights, biases) -> None:
        """Overwrite the current weights in place."""
        with self._lock:
            for k, (W, new) in enumerate(zip(self.weights, weights)):
                if np.shape(new) != W.shape:
                    raise ShapeError(f"Weights {k} have shape {np.shape(new)}, expected {W.shape}.")
                np.copyto(W, new)
            for k, (b, new) in enumerate(zip(self.biases, biases)):
                if b is not None:
                    if new is None or np.shape(new) != b.shape:
                        raise ShapeError(f"Bias {k} has shape {np.shape(new)}, expected {b.shape}.")
                    np.copyto(b, new)

    def penalty(self) -> float:
        reg = self.settings.regularization
        if reg is None:
            return 0.0
        with self._lock:
            return sum(reg.penalty(W) for W in self.weights)

    def parameter_count(self) -> int:
        return int(sum(W.size for W in self.weights) + sum(b.size for b in self.biases if b is not None))

    def shapes(self) -> List[Tuple[int, ...]]:
        return [junction_shape(p, l) for p, l in self.architecture.junctions]

    def bias_shapes(self) -> List[Optional[Tuple[int, ...]]]:
        return [bias_shape(l) if l.use_bias else None for l in self.layers[1:]]

    def train(self, *args, **kwargs):
        """Train with the strategy chosen at construction."""
        return self.training.train(*args, **kwargs)

    def summary(self) -> str:
        lines = [f"Network {self.identifier}:"]
        for i, (layer, W) in enumerate(zip(self.layers[1:], self.weights), start=1):
            b = self.biases[i - 1]
            params = W.size + (b.size if b is not None else 0)
            lines.append(f"{layer.symbol}: weights={W.shape} params={params}")
        lines.append(f"Total params: {self.parameter_count()}")
        return '\n'.join(lines)

    def __str__(self) -> str:
        with self._lock:
            return ''.join('\n---\n' + np.array2string(W) for W in self.weights)
