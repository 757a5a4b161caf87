"""Saving and loading networks: weights in HDF5 via h5py, architecture as JSON."""
from __future__ import annotations
import json
import os
import h5py
import numpy as np
from typing import Dict, Optional

from .layers import NAME2LAYER
from .network import Network
from .settings import Settings
from .weights import WeightProvider, Zero


def save_weights_hdf5(path: str, weights: Dict[str, np.ndarray]):
    with h5py.File(path, 'w') as f:
        for k, v in weights.items():
            f.create_dataset(k, data=v)


def load_weights_hdf5(path: str) -> Dict[str, np.ndarray]:
    with h5py.File(path, 'r') as f:
        return {k: f[k][()] for k in f.keys()}


def save(network: Network, path: str) -> None:
    """Write ``network`` to ``path`` (weights) and ``<base>.json`` (architecture)."""
    weights, biases = network.snapshot()
    data = {}
    for k, W in enumerate(weights):
        data[f"{k}_W"] = W
        if biases[k] is not None:
            data[f"{k}_b"] = biases[k]
    save_weights_hdf5(path, data)
    base, _ = os.path.splitext(path)
    with open(base + '.json', 'w') as f:
        json.dump({'identifier': network.identifier,
                   'layers': [layer.to_config() for layer in network.layers]}, f)


def load(path: str, settings: Optional[Settings] = None, training=None) -> Network:
    """Rebuild the network stored by :func:`save`; the layers are validated again."""
    base, _ = os.path.splitext(path)
    with open(base + '.json', 'r') as f:
        arch = json.load(f)
    layers = [NAME2LAYER[c['class']].from_config(c['config']) for c in arch['layers']]
    network = Network.build(layers, settings, weights=WeightProvider(Zero()), training=training,
                            identifier=arch.get('identifier'))
    data = load_weights_hdf5(path)
    n = len(network.weights)
    network.assign([data[f"{k}_W"] for k in range(n)], [data.get(f"{k}_b") for k in range(n)])
    return network
