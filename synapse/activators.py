"""Element-wise activation functions paired with their derivatives."""
from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class Activator:
    """A named nonlinearity.

    ``derivative`` receives the pre-activation ``z`` and returns ``f'(z)``.
    Activators without a derivative can only be trained with numerical
    gradient approximation.
    """
    name: str
    fn: Callable[[np.ndarray], np.ndarray]
    derivative: Optional[Callable[[np.ndarray], np.ndarray]] = None

    def __call__(self, z: np.ndarray) -> np.ndarray:
        return self.fn(z)

    @property
    def differentiable(self) -> bool:
        return self.derivative is not None

    def __repr__(self) -> str:
        return self.name


def _sigmoid(z):
    return 1 / (1 + np.exp(-np.clip(z, -500, 500)))


def _sigmoid_prime(z):
    s = _sigmoid(z)
    return s * (1 - s)


def _tanh_prime(z):
    t = np.tanh(z)
    return 1 - t**2


def _softplus(z):
    return np.logaddexp(0.0, z)


Linear = Activator('linear', lambda z: z, lambda z: np.ones_like(z))
Sigmoid = Activator('sigmoid', _sigmoid, _sigmoid_prime)
Tanh = Activator('tanh', np.tanh, _tanh_prime)
ReLU = Activator('relu', lambda z: np.maximum(0, z), lambda z: (z > 0).astype(z.dtype))
LeakyReLU = Activator(
    'leaky_relu',
    lambda z: np.where(z > 0, z, 0.01 * z),
    lambda z: np.where(z > 0, 1.0, 0.01),
)
Softplus = Activator('softplus', _softplus, _sigmoid)

NAME2ACTIVATOR = {a.name: a for a in [Linear, Sigmoid, Tanh, ReLU, LeakyReLU, Softplus]}


def get(name: str) -> Activator:
    try:
        return NAME2ACTIVATOR[name]
    except KeyError:
        raise ValueError(f"Unknown activator {name}") from None
