"""Initial weight allocation for validated architectures."""
from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .architecture import Architecture
from .layers import Layer, Convolution, unwrap
from .exceptions import AllocationError

Shape = Tuple[int, ...]


class Policy:
    """Initialisation distribution for one weight matrix."""

    def sample(self, shape: Shape, rng: np.random.Generator) -> np.ndarray:
        raise NotImplementedError


@dataclass(frozen=True)
class Uniform(Policy):
    low: float = -1.0
    high: float = 1.0

    def sample(self, shape, rng):
        return rng.uniform(self.low, self.high, size=shape)


@dataclass(frozen=True)
class Normal(Policy):
    mean: float = 0.0
    std: float = 0.1

    def sample(self, shape, rng):
        return rng.normal(self.mean, self.std, size=shape)


@dataclass(frozen=True)
class Zero(Policy):
    def sample(self, shape, rng):
        return np.zeros(shape)


@dataclass(frozen=True)
class Glorot(Policy):
    def sample(self, shape, rng):
        fan_in = np.prod(shape[1:]) if len(shape) > 1 else shape[0]
        fan_out = shape[0]
        limit = np.sqrt(6.0 / (fan_in + fan_out))
        return rng.uniform(-limit, limit, size=shape)


@dataclass(frozen=True)
class Custom(Policy):
    """Draw every weight from ``fn(rng)``."""
    fn: Callable[[np.random.Generator], float]

    def sample(self, shape, rng):
        out = np.empty(shape)
        for idx in np.ndindex(*shape):
            out[idx] = self.fn(rng)
        return out


def junction_shape(prev: Layer, layer: Layer) -> Shape:
    """Shape of the weights between ``prev`` and ``layer``.

    Dense junctions are ``(neurons_out, neurons_in)``; convolutions keep one
    row per filter over the flattened receptive field.
    """
    inner = unwrap(layer)
    if isinstance(inner, Convolution):
        fw, fh = inner.field
        return inner.filters, fw * fh * inner.dim_in[2]
    return inner.neurons, prev.neurons


def bias_shape(layer: Layer) -> Shape:
    inner = unwrap(layer)
    if isinstance(inner, Convolution):
        return (inner.filters,)
    return (inner.neurons,)


class WeightProvider:
    """Allocates the weights of an architecture according to ``policy``.

    Identical seeds give identical weights. Without a seed every call draws
    from its own freshly seeded generator, so concurrent calls don't share
    random state.
    """

    def __init__(self, policy: Optional[Policy] = None, seed: Optional[int] = None):
        self.policy = policy or Glorot()
        self.seed = seed

    def __call__(self, architecture: Architecture) -> Tuple[List[np.ndarray], List[Optional[np.ndarray]]]:
        rng = np.random.default_rng(self.seed)
        shapes = []
        for i, (prev, layer) in enumerate(architecture.junctions, start=1):
            shape = junction_shape(prev, layer)
            if any(d <= 0 for d in shape) or layer.neurons <= 0 or prev.neurons <= 0:
                raise AllocationError(
                    f"Layer {i} ({layer.symbol}) asks for weights of shape {shape}, "
                    f"all dimensions must be positive.")
            shapes.append((shape, layer))
        weights = []
        biases = []
        for shape, layer in shapes:
            weights.append(np.asarray(self.policy.sample(shape, rng), dtype=np.float64))
            biases.append(np.zeros(bias_shape(layer)) if layer.use_bias else None)
        return weights, biases
