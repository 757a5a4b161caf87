"""Structural soundness checks for layer sequences.

A layer sequence is sound when it starts with exactly one :class:`Input`,
ends with exactly one :class:`Output`, every layer in between is activated,
there is at most one :class:`Focus`, and every :class:`Convolution` reads an
input volume as large as what the previous layer produces.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple, Union, Optional

from .layers import Layer, Input, Output, Convolution, Focus, unwrap
from .exceptions import NotSoundError


@dataclass(frozen=True)
class Architecture:
    """A validated layer sequence. Only :func:`validate` creates these."""
    layers: Tuple[Layer, ...]

    @property
    def junctions(self) -> Tuple[Tuple[Layer, Layer], ...]:
        """Adjacent (previous, layer) pairs carrying trainable weights."""
        return tuple(zip(self.layers[:-1], self.layers[1:]))

    @property
    def focus(self) -> Optional[int]:
        for i, layer in enumerate(self.layers):
            if isinstance(layer, Focus):
                return i
        return None


@dataclass(frozen=True)
class Sound:
    architecture: Architecture
    ok = True


@dataclass(frozen=True)
class Unsound:
    rule: str
    message: str
    index: Optional[int] = None
    ok = False

    def error(self) -> NotSoundError:
        return NotSoundError(self.rule, self.message, self.index)


Verdict = Union[Sound, Unsound]


def check(layers: Sequence[Layer]) -> Verdict:
    """Check ``layers`` without raising.

    Returns:
        :class:`Sound` carrying the validated architecture, or
        :class:`Unsound` naming the violated rule and the offending layer.
    """
    layers = tuple(layers)
    if not layers:
        return Unsound('empty', "A network needs at least an Input and an Output layer.")
    for i, layer in enumerate(layers):
        if not isinstance(layer, Layer):
            return Unsound('not_a_layer', f"{layer!r} is not a layer.", i)
    if not isinstance(layers[0], Input):
        return Unsound('missing_input', f"The first layer must be an Input, got {layers[0].symbol}.", 0)
    last = len(layers) - 1
    if not isinstance(layers[last], Output):
        return Unsound('missing_output', f"The last layer must be an Output, got {layers[last].symbol}.", last)
    if last == 0:
        return Unsound('missing_output', "An Input layer alone is not a network.", 0)

    focus_seen = None
    for i, layer in enumerate(layers[1:last], start=1):
        if isinstance(layer, Input):
            return Unsound('misplaced_input', "Input is only allowed as the first layer.", i)
        if isinstance(layer, Output):
            return Unsound('misplaced_output', "Output is only allowed as the last layer.", i)
        if isinstance(layer, Focus):
            if focus_seen is not None:
                return Unsound('multiple_focus', f"Layer {focus_seen} is already focused.", i)
            focus_seen = i
            if isinstance(layer.inner, (Input, Output, Focus)):
                return Unsound('focus_target', f"Focus can't wrap {layer.inner.symbol}.", i)
        if unwrap(layer).activator is None:
            return Unsound('missing_activator', f"{layer.symbol} carries no activator.", i)

    for i, layer in enumerate(layers[1:], start=1):
        inner = unwrap(layer)
        if isinstance(inner, Convolution) and inner.inputs != layers[i - 1].neurons:
            return Unsound('convolution_input',
                           f"Input volume {inner.dim_in} holds {inner.inputs} values, "
                           f"but the previous layer has {layers[i - 1].neurons} neurons.", i)
    return Sound(Architecture(layers))


def validate(layers: Sequence[Layer]) -> Architecture:
    """Validate ``layers``.

    Raises:
        NotSoundError: If the sequence violates a soundness rule.
    """
    verdict = check(layers)
    if not verdict.ok:
        raise verdict.error()
    return verdict.architecture
