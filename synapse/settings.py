"""Network settings and the small value types they are made of."""
from __future__ import annotations
import os
import re
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Optional, Union, FrozenSet, Mapping, Iterable

from .exceptions import SettingsNotSupportedError


@dataclass(frozen=True)
class Node:
    """A distributed training participant."""
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


_UNITS = {
    '': 1, 'b': 1,
    'kb': 1000, 'mb': 1000**2, 'gb': 1000**3,
    'kib': 1024, 'mib': 1024**2, 'gib': 1024**3,
}


def parse_size(size: Union[int, str]) -> int:
    """Parse a byte size given as int or string like ``'128 MiB'``."""
    if isinstance(size, (int, np.integer)):
        return int(size)
    m = re.fullmatch(r'\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*', str(size))
    if m is None or m.group(2).lower() not in _UNITS:
        raise SettingsNotSupportedError(f"Cannot parse frame size {size!r}")
    return int(float(m.group(1)) * _UNITS[m.group(2).lower()])


FAILURE_POLICIES = ('degrade', 'retry')


@dataclass(frozen=True)
class Transport:
    """Wire settings for distributed training.

    ``message_group_size`` is the number of weights sent per message,
    ``frame_size`` the maximum size of a single message. ``on_failure``
    selects what happens when executors do not answer in time: ``'degrade'``
    aggregates whatever arrived, ``'retry'`` fails the round and repeats it.
    """
    message_group_size: int = 100000
    frame_size: Union[int, str] = '128 MiB'
    on_failure: str = 'degrade'
    timeout: float = 30.0
    retries: int = 3

    def __post_init__(self):
        if self.message_group_size <= 0:
            raise SettingsNotSupportedError(
                f"message_group_size must be positive, got {self.message_group_size}")
        if self.on_failure not in FAILURE_POLICIES:
            raise SettingsNotSupportedError(
                f"Unknown failure policy {self.on_failure!r}, choose from {FAILURE_POLICIES}")
        parse_size(self.frame_size)

    @property
    def frame_bytes(self) -> int:
        return parse_size(self.frame_size)


@dataclass(frozen=True)
class ErrorFuncOutput:
    """Where the error of every iteration goes: appended to ``file`` (one
    value per line) and/or passed to ``closure``."""
    file: Optional[str] = None
    closure: Optional[Callable[[float], None]] = None

    def write(self, error: float) -> None:
        if self.file is not None:
            with open(self.file, 'a') as f:
                f.write(f"{error}\n")
        if self.closure is not None:
            self.closure(error)


class Regularization:
    """Penalty added to the gradient of every weight matrix."""

    def term(self, w: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def penalty(self, w: np.ndarray) -> float:
        raise NotImplementedError


@dataclass(frozen=True)
class L2(Regularization):
    lam: float = 1e-4

    def term(self, w):
        return self.lam * w

    def penalty(self, w):
        return 0.5 * self.lam * float(np.sum(w * w))


@dataclass(frozen=True)
class L1(Regularization):
    lam: float = 1e-4

    def term(self, w):
        return self.lam * np.sign(w)

    def penalty(self, w):
        return self.lam * float(np.sum(np.abs(w)))


@dataclass(frozen=True)
class Approximation:
    """Approximate gradients by symmetric finite differences with step ``epsilon``."""
    epsilon: float = 1e-5


LearningRate = Union[float, Callable[[int], float]]


def constant(rate: float) -> Callable[[int], float]:
    def learning_rate(iteration: int) -> float:
        return rate
    return learning_rate


def schedule(rates: Mapping[int, float], default: float) -> Callable[[int], float]:
    """Learning rate taken from ``rates`` for the listed iterations, ``default`` otherwise."""
    rates = dict(rates)

    def learning_rate(iteration: int) -> float:
        return rates.get(iteration, default)
    return learning_rate


def partition(step: int, n: int) -> FrozenSet[int]:
    """Boundaries cutting a sequence of ``step * n`` items into ``n`` segments of ``step``."""
    return frozenset(range(step - 1, step * n, step))


def _default_parallelism() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class Settings:
    """Settings of a network.

    The network stops training when the error reaches ``precision`` or after
    ``iterations``, whichever comes first. ``learning_rate`` maps the
    iteration index (starting at 0) to a rate. ``partitions`` holds the
    0-based indices of the last sample of every segment of a sequential
    training stream.
    """
    verbose: bool = True
    learning_rate: LearningRate = 1e-4
    precision: float = 1e-5
    iterations: int = 100
    pretty_print: bool = False
    parallelism: int = field(default_factory=_default_parallelism)
    coordinator: Node = Node('0.0.0.0', 2552)
    transport: Transport = Transport()
    error_func_output: Optional[ErrorFuncOutput] = None
    regularization: Optional[Regularization] = None
    approximation: Optional[Approximation] = None
    partitions: Optional[FrozenSet[int]] = None
    specifics: Optional[Mapping[str, float]] = None

    def __post_init__(self):
        if self.parallelism < 1:
            raise SettingsNotSupportedError(f"parallelism must be at least 1, got {self.parallelism}")
        if self.iterations < 0:
            raise SettingsNotSupportedError(f"iterations must not be negative, got {self.iterations}")
        if self.partitions is not None:
            object.__setattr__(self, 'partitions', frozenset(int(p) for p in self.partitions))

    def rate(self, iteration: int) -> float:
        if callable(self.learning_rate):
            return float(self.learning_rate(iteration))
        return float(self.learning_rate)

    def specific(self, key: str, default: float) -> float:
        if self.specifics is None:
            return default
        return self.specifics.get(key, default)


def segments(n: int, partitions: Optional[Iterable[int]]) -> list:
    """Split ``range(n)`` at ``partitions`` into contiguous ``(start, stop)`` pairs.

    Every boundary names the last index of a segment; samples after the
    last boundary form a final segment.

    Raises:
        SettingsNotSupportedError: If a boundary lies outside ``[0, n)``.
    """
    if not partitions:
        return [(0, n)]
    bounds = sorted(set(partitions))
    bad = [b for b in bounds if b < 0 or b >= n]
    if bad:
        raise SettingsNotSupportedError(
            f"Partition boundaries {bad} lie outside a sequence of length {n}")
    out = []
    start = 0
    for b in bounds:
        out.append((start, b + 1))
        start = b + 1
    if start < n:
        out.append((start, n))
    return out
