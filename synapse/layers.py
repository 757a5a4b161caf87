"""Layer definitions.

Layers are immutable descriptions. They carry dimensionality and, where the
layer is trainable, an activator; the weights themselves live in the
:class:`synapse.network.Network` that owns the layer sequence.
"""
from __future__ import annotations
import dataclasses
from dataclasses import dataclass
from typing import Optional, Tuple, Dict, Any
from . import activators
from .activators import Activator
from .exceptions import NotSoundError


def squared(i: int) -> Tuple[int, int]:
    return i, i


def cubed(i: int) -> Tuple[int, int, int]:
    return i, i, i


class Layer:
    """Abstract layer base class."""
    symbol = 'Layer'

    def to_config(self) -> Dict[str, Any]:
        return {'class': self.__class__.__name__, 'config': {}}

    @classmethod
    def from_config(cls, config: Dict[str, Any]):
        config = dict(config)
        if 'activator' in config:
            config['activator'] = activators.get(config['activator'])
        return cls(**config)


@dataclass(frozen=True)
class Input(Layer):
    neurons: int
    activator = None
    use_bias = False
    symbol = 'In'

    def to_config(self):
        return {'class': 'Input', 'config': {'neurons': self.neurons}}


@dataclass(frozen=True)
class Dense(Layer):
    neurons: int
    activator: Activator
    use_bias: bool = True
    symbol = 'Hidden'

    def to_config(self):
        return {'class': 'Dense', 'config': {'neurons': self.neurons, 'activator': self.activator.name,
                                             'use_bias': self.use_bias}}


@dataclass(frozen=True)
class Output(Layer):
    neurons: int
    activator: Activator
    use_bias: bool = True
    symbol = 'Out'

    def to_config(self):
        return {'class': 'Output', 'config': {'neurons': self.neurons, 'activator': self.activator.name,
                                              'use_bias': self.use_bias}}


@dataclass(frozen=True)
class Convolution(Layer):
    """Convolutes an input volume.

    Args:
        dim_in: Input volume as (width, height, depth)
        field: Receptive field as (width, height)
        filters: Number of independent filters attached to the input
        stride: Step of the sliding window
        padding: Zero padding added on every side of the input (width, height)
        activator: Applied element-wise to the convolution result

    Raises:
        NotSoundError: If the field does not fit the padded input or the
            stride does not divide the remaining extent evenly.
    """
    dim_in: Tuple[int, int, int]
    field: Tuple[int, int]
    filters: int
    stride: int
    padding: int
    activator: Activator
    use_bias: bool = True
    dim_out: Tuple[int, int, int] = dataclasses.field(init=False)
    neurons: int = dataclasses.field(init=False)
    symbol = 'Conv'

    def __post_init__(self):
        object.__setattr__(self, 'dim_in', tuple(self.dim_in))
        object.__setattr__(self, 'field', tuple(self.field))
        w, h, _ = self.dim_in
        fw, fh = self.field
        if self.stride <= 0:
            raise NotSoundError('convolution_geometry', f"Stride {self.stride} must be positive!")
        if self.padding < 0:
            raise NotSoundError('convolution_geometry', f"Padding {self.padding} must not be negative!")
        d1 = w + 2 * self.padding - fw
        d2 = h + 2 * self.padding - fh
        if d1 < 0:
            raise NotSoundError('convolution_geometry',
                                f"Field {self.field} is too big for input width {w + 2 * self.padding}!")
        if d2 < 0:
            raise NotSoundError('convolution_geometry',
                                f"Field {self.field} is too big for input height {h + 2 * self.padding}!")
        if d1 % self.stride != 0:
            raise NotSoundError('convolution_geometry', f"Width {d1} doesn't match stride {self.stride}!")
        if d2 % self.stride != 0:
            raise NotSoundError('convolution_geometry', f"Height {d2} doesn't match stride {self.stride}!")
        dim_out = (d1 // self.stride + 1, d2 // self.stride + 1, self.filters)
        object.__setattr__(self, 'dim_out', dim_out)
        object.__setattr__(self, 'neurons', dim_out[0] * dim_out[1] * dim_out[2])

    @property
    def inputs(self) -> int:
        w, h, d = self.dim_in
        return w * h * d

    def to_config(self):
        return {'class': 'Convolution', 'config': {
            'dim_in': list(self.dim_in), 'field': list(self.field), 'filters': self.filters,
            'stride': self.stride, 'padding': self.padding, 'activator': self.activator.name,
            'use_bias': self.use_bias}}


@dataclass(frozen=True)
class Focus(Layer):
    """Marks ``inner`` as the desired model output instead of the Output
    layer (autoencoders, PCA, ...)."""
    inner: Layer

    @property
    def neurons(self) -> int:
        return self.inner.neurons

    @property
    def activator(self) -> Optional[Activator]:
        return self.inner.activator

    @property
    def use_bias(self) -> bool:
        return self.inner.use_bias

    @property
    def symbol(self) -> str:
        act = self.inner.activator.name if self.inner.activator is not None else '-'
        return f"Cluster({self.inner.symbol}({act}))"

    def to_config(self):
        return {'class': 'Focus', 'config': {'inner': self.inner.to_config()}}

    @classmethod
    def from_config(cls, config):
        inner = config['inner']
        return cls(NAME2LAYER[inner['class']].from_config(inner['config']))


def unwrap(layer: Layer) -> Layer:
    """Return the layer a :class:`Focus` points at, or ``layer`` itself."""
    return layer.inner if isinstance(layer, Focus) else layer


NAME2LAYER = {cls.__name__: cls for cls in [Input, Dense, Output, Convolution, Focus]}
