"""Exception types raised by synapse."""
from __future__ import annotations
from typing import Optional


class SynapseError(Exception):
    """Base class of every error raised by this package."""


class NotSoundError(SynapseError, ValueError):
    """The layer sequence is not a structurally sound architecture.

    Attributes:
        rule: Identifier of the violated rule, e.g. ``'missing_input'``
        index: Position of the offending layer, if any
    """

    def __init__(self, rule: str, message: str, index: Optional[int] = None) -> None:
        self.rule = rule
        self.index = index
        where = f" (layer {index})" if index is not None else ""
        super().__init__(f"[{rule}]{where} {message}")


class SettingsNotSupportedError(SynapseError, ValueError):
    pass


class ShapeError(SynapseError, ValueError):
    pass


class AllocationError(SynapseError, ValueError):
    pass


class TransportError(SynapseError, ConnectionError):
    """A distributed node could not be reached or sent a bad message."""

    def __init__(self, message: str, node=None) -> None:
        self.node = node
        prefix = f"{node}: " if node is not None else ""
        super().__init__(prefix + message)


class TrainingFailed(SynapseError, RuntimeError):
    pass
