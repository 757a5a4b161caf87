"""Forward propagation, backpropagation and numerical gradients.

All functions work on explicit ``(layers, weights, biases)`` so that the
training loop can run them against a snapshot of the weights. Samples are
rows: an input batch has shape ``(n, input_neurons)``.

Convolution volumes are stored flattened in (height, width, depth) order.
The forward pass uses im2col + GEMM; the scatter back onto the padded input
in the backward pass is compiled with numba.
"""
from __future__ import annotations
import numpy as np
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
from numba import njit

from .layers import Layer, Convolution, unwrap
from .exceptions import ShapeError, SettingsNotSupportedError

Params = Tuple[List[np.ndarray], List[Optional[np.ndarray]]]


@dataclass
class Trace:
    """Everything the forward pass produced, layer by layer."""
    activations: List[np.ndarray] = field(default_factory=list)
    pre_activations: List[np.ndarray] = field(default_factory=list)
    cols: List[Optional[np.ndarray]] = field(default_factory=list)


def as_batch(x, neurons: int, what: str = 'Input') -> np.ndarray:
    try:
        x = np.asarray(x, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ShapeError(f"{what} is not a numeric vector or batch of equal-length vectors: {e}") from e
    if x.ndim == 1:
        x = x[None, :]
    if x.ndim != 2 or x.shape[1] != neurons:
        raise ShapeError(f"{what} has shape {x.shape}, expected {neurons} values per sample.")
    return x


def _im2col(x: np.ndarray, layer: Convolution) -> Tuple[np.ndarray, int, int]:
    w, h, c = layer.dim_in
    fw, fh = layer.field
    p, s = layer.padding, layer.stride
    batch = x.shape[0]
    x = x.reshape(batch, h, w, c)
    x_p = np.pad(x, ((0, 0), (p, p), (p, p), (0, 0)), mode='constant')
    out_w, out_h, _ = layer.dim_out
    cols = np.lib.stride_tricks.as_strided(
        x_p,
        shape=(batch, out_h, out_w, fh, fw, c),
        strides=(x_p.strides[0], s * x_p.strides[1], s * x_p.strides[2],
                 x_p.strides[1], x_p.strides[2], x_p.strides[3])
    ).reshape(batch * out_h * out_w, fh * fw * c)
    return cols, out_h, out_w


@njit
def _col2im(dcols, dx_p, stride):
    batch, out_h, out_w, kh, kw, c = dcols.shape
    for n in range(batch):
        for i in range(out_h):
            for j in range(out_w):
                for a in range(kh):
                    for b in range(kw):
                        for ch in range(c):
                            dx_p[n, i * stride + a, j * stride + b, ch] += dcols[n, i, j, a, b, ch]


def convolve(x: np.ndarray, W: np.ndarray, b: Optional[np.ndarray], layer: Convolution) -> Tuple[np.ndarray, np.ndarray]:
    """Sliding-window dot product of every filter with the padded input.

    Returns:
        The flattened pre-activation volume and the im2col matrix.
    """
    cols, out_h, out_w = _im2col(x, layer)
    out = cols @ W.T
    if b is not None:
        out = out + b
    return out.reshape(x.shape[0], out_h * out_w * layer.filters), cols


def forward(layers: Sequence[Layer], weights, biases, x: np.ndarray) -> Trace:
    trace = Trace(activations=[x])
    a = x
    for k, layer in enumerate(layers[1:]):
        inner = unwrap(layer)
        W, b = weights[k], biases[k]
        if isinstance(inner, Convolution):
            z, cols = convolve(a, W, b, inner)
        else:
            z = a @ W.T
            if b is not None:
                z = z + b
            cols = None
        a = inner.activator(z)
        trace.pre_activations.append(z)
        trace.activations.append(a)
        trace.cols.append(cols)
    return trace


def error_sum(y: np.ndarray, t: np.ndarray) -> float:
    """Half the squared distance, summed over the samples."""
    return 0.5 * float(np.sum((y - t) ** 2))


def backward(layers: Sequence[Layer], weights, trace: Trace, t: np.ndarray) -> Params:
    """Backpropagate the summed squared error of ``trace`` against ``t``.

    Raises:
        SettingsNotSupportedError: If a layer's activator has no derivative.
    """
    grads_w: List[np.ndarray] = [None] * len(weights)
    grads_b: List[Optional[np.ndarray]] = [None] * len(weights)
    da = trace.activations[-1] - t
    for k in reversed(range(len(weights))):
        layer = unwrap(layers[k + 1])
        if not layer.activator.differentiable:
            raise SettingsNotSupportedError(
                f"Layer {k + 1} ({layer.symbol}) uses activator {layer.activator.name} without "
                f"derivative, use Approximation for its gradients.")
        delta = da * layer.activator.derivative(trace.pre_activations[k])
        a_prev = trace.activations[k]
        W = weights[k]
        if isinstance(layer, Convolution):
            n = a_prev.shape[0]
            out_w, out_h, filters = layer.dim_out
            delta2d = delta.reshape(n * out_h * out_w, filters)
            grads_w[k] = delta2d.T @ trace.cols[k]
            if layer.use_bias:
                grads_b[k] = delta2d.sum(axis=0)
            if k > 0:
                da = _convolution_input_grad(delta2d @ W, layer, n)
        else:
            grads_w[k] = delta.T @ a_prev
            if layer.use_bias:
                grads_b[k] = delta.sum(axis=0)
            if k > 0:
                da = delta @ W
    return grads_w, grads_b


def _convolution_input_grad(dcols: np.ndarray, layer: Convolution, n: int) -> np.ndarray:
    w, h, c = layer.dim_in
    fw, fh = layer.field
    p = layer.padding
    out_w, out_h, _ = layer.dim_out
    dx_p = np.zeros((n, h + 2 * p, w + 2 * p, c))
    _col2im(np.ascontiguousarray(dcols.reshape(n, out_h, out_w, fh, fw, c)), dx_p, layer.stride)
    dx = dx_p[:, p:p + h, p:p + w, :]
    return dx.reshape(n, h * w * c)


def gradients(layers, weights, biases, x, t) -> Tuple[float, List[np.ndarray], List[Optional[np.ndarray]]]:
    """Analytic summed error and gradients for the samples ``x`` / ``t``."""
    trace = forward(layers, weights, biases, x)
    grads_w, grads_b = backward(layers, weights, trace, t)
    return error_sum(trace.activations[-1], t), grads_w, grads_b


def approximate(layers, weights, biases, x, t, epsilon: float) -> Tuple[float, List[np.ndarray], List[Optional[np.ndarray]]]:
    """Symmetric finite-difference estimate of the summed error gradients.

    ``weights`` and ``biases`` are perturbed in place and restored, so pass
    copies when other readers share them.
    """
    def loss():
        return error_sum(forward(layers, weights, biases, x).activations[-1], t)

    def estimate(p: np.ndarray) -> np.ndarray:
        g = np.zeros_like(p)
        for idx in np.ndindex(*p.shape):
            orig = p[idx]
            p[idx] = orig + epsilon
            plus = loss()
            p[idx] = orig - epsilon
            minus = loss()
            p[idx] = orig
            g[idx] = (plus - minus) / (2 * epsilon)
        return g

    grads_w = [estimate(W) for W in weights]
    grads_b = [estimate(b) if b is not None else None for b in biases]
    return loss(), grads_w, grads_b
