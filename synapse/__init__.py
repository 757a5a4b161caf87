"""synapse - Layered neural networks with soundness checks and distributed training.

Declare a layer sequence, let :meth:`Network.build` prove it sound and
allocate the weights, then train with the strategy of your choice.

Quick Start:
    from synapse import Network, Input, Dense, Output, Settings, Sigmoid

    net = Network.build(
        [Input(2), Dense(3, Sigmoid), Output(1, Sigmoid)],
        Settings(learning_rate=0.5, iterations=1000, precision=1e-3),
    )
    net.train(xs, ys)
    net.evaluate([1.0, 0.0])
"""
from __future__ import annotations
import os as _os

__version__: str = "1.0.0"
__license__: str = "MIT"


def _auto_configure_threads() -> None:
    """Set BLAS / OpenMP thread counts to all available CPU cores if user
    hasn't specified them. Must run before NumPy loads heavy backends.

    Disable by setting SYNAPSE_DISABLE_AUTO_THREADS=1.
    """
    if _os.environ.get('SYNAPSE_DISABLE_AUTO_THREADS') == '1':
        return
    cores: int = _os.cpu_count() or 1
    for var in ['OMP_NUM_THREADS', 'OPENBLAS_NUM_THREADS', 'MKL_NUM_THREADS', 'NUMEXPR_NUM_THREADS']:
        if var not in _os.environ:
            _os.environ[var] = str(cores)


_auto_configure_threads()

from .activators import Activator, Linear, Sigmoid, Tanh, ReLU, LeakyReLU, Softplus  # noqa: E402
from .layers import Input, Dense, Output, Convolution, Focus, squared, cubed  # noqa: E402
from .architecture import Architecture, Sound, Unsound, check, validate  # noqa: E402
from .settings import (  # noqa: E402
    Settings, Node, Transport, ErrorFuncOutput, L1, L2, Approximation, constant, schedule, partition
)
from .weights import WeightProvider, Uniform, Normal, Zero, Glorot, Custom  # noqa: E402
from .network import Network  # noqa: E402
from .training import (  # noqa: E402
    TrainingState, TrainingResult, SupervisedTraining, UnsupervisedTraining, SequentialTraining,
    DistributedTraining
)
from .exceptions import (  # noqa: E402
    SynapseError, NotSoundError, SettingsNotSupportedError, ShapeError, AllocationError,
    TransportError, TrainingFailed
)
from . import io  # noqa: E402

__all__ = [
    # Network
    'Network', 'Architecture', 'Sound', 'Unsound', 'check', 'validate',
    # Layers
    'Input', 'Dense', 'Output', 'Convolution', 'Focus', 'squared', 'cubed',
    # Activators
    'Activator', 'Linear', 'Sigmoid', 'Tanh', 'ReLU', 'LeakyReLU', 'Softplus',
    # Settings
    'Settings', 'Node', 'Transport', 'ErrorFuncOutput', 'L1', 'L2', 'Approximation',
    'constant', 'schedule', 'partition',
    # Weights
    'WeightProvider', 'Uniform', 'Normal', 'Zero', 'Glorot', 'Custom',
    # Training
    'TrainingState', 'TrainingResult', 'SupervisedTraining', 'UnsupervisedTraining',
    'SequentialTraining', 'DistributedTraining',
    # Errors
    'SynapseError', 'NotSoundError', 'SettingsNotSupportedError', 'ShapeError', 'AllocationError',
    'TransportError', 'TrainingFailed',
    'io',
]
