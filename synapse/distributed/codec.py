"""Wire format of the distributed protocol.

A payload is an ordered sequence of matrices. It travels as chunks: every
chunk carries a header naming the matrix it belongs to (index, dimensions,
offset into the row-major data) followed by at most ``message_group_size``
big-endian float64 values, and the chunk together with its length prefix
never exceeds the frame size. The JSON setup message is split the same way.
"""
from __future__ import annotations
import json
import struct
import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..exceptions import TransportError
from .transport import LENGTH

# Message kinds
SETUP = 1
READY = 2
WEIGHTS = 3
GRADIENTS = 4
REPORT = 5
CANCEL = 6
FAIL = 7
BYE = 8

CHUNK_HEADER = struct.Struct('>BIIIIIII')  # kind, round, total, index, rows, cols, offset, count
REPORT_FORMAT = struct.Struct('>BIId')  # kind, round, samples, error sum
ROUND_FORMAT = struct.Struct('>BI')  # kind, round
SETUP_HEADER = struct.Struct('>BIII')  # kind, part, parts, frame size
VALUE = np.dtype('>f8')


@dataclass
class Chunk:
    kind: int
    round: int
    total: int
    index: int
    rows: int
    cols: int
    offset: int
    values: np.ndarray


def kind_of(frame: bytes) -> int:
    if not frame:
        raise TransportError("Empty frame")
    return frame[0]


def values_per_chunk(message_group_size: int, frame_size: int) -> int:
    per = min(message_group_size, (frame_size - LENGTH.size - CHUNK_HEADER.size) // VALUE.itemsize)
    if per < 1:
        raise TransportError(f"Frame size {frame_size} can't hold a single weight "
                             f"(headers alone take {LENGTH.size + CHUNK_HEADER.size} bytes)")
    return per


def encode_payload(kind: int, round_: int, matrices: Sequence[np.ndarray],
                   message_group_size: int, frame_size: int) -> List[bytes]:
    """Split ``matrices`` into chunks obeying both size limits."""
    per = values_per_chunk(message_group_size, frame_size)
    total = len(matrices)
    frames = []
    for index, m in enumerate(matrices):
        m = np.asarray(m, dtype=np.float64)
        if m.ndim != 2:
            raise TransportError(f"Only matrices can be sent, matrix {index} has shape {m.shape}")
        rows, cols = m.shape
        flat = m.astype(VALUE).ravel()
        for offset in range(0, flat.size, per):
            part = flat[offset:offset + per]
            header = CHUNK_HEADER.pack(kind, round_, total, index, rows, cols, offset, part.size)
            frames.append(header + part.tobytes())
    return frames


def decode_chunk(frame: bytes) -> Chunk:
    if len(frame) < CHUNK_HEADER.size:
        raise TransportError(f"Chunk of {len(frame)} bytes is shorter than its header")
    kind, round_, total, index, rows, cols, offset, count = CHUNK_HEADER.unpack_from(frame)
    body = frame[CHUNK_HEADER.size:]
    if len(body) != count * VALUE.itemsize:
        raise TransportError(f"Chunk announces {count} values but carries {len(body)} bytes")
    if index >= total or offset + count > rows * cols:
        raise TransportError(f"Chunk of matrix {index}/{total} at {offset}+{count} "
                             f"doesn't fit a {rows}x{cols} matrix")
    values = np.frombuffer(body, dtype=VALUE).astype(np.float64)
    return Chunk(kind, round_, total, index, rows, cols, offset, values)


class PayloadAssembler:
    """Collects the chunks of one payload, in any order."""

    def __init__(self, kind: int, round_: int):
        self.kind = kind
        self.round = round_
        self.total: Optional[int] = None
        self._buffers: Dict[int, np.ndarray] = {}
        self._shapes: Dict[int, Tuple[int, int]] = {}
        self._filled: Dict[int, int] = {}

    def add(self, chunk: Chunk) -> bool:
        """Add ``chunk``; returns False if it belongs to another payload."""
        if chunk.kind != self.kind or chunk.round != self.round:
            return False
        if self.total is None:
            self.total = chunk.total
        elif chunk.total != self.total:
            raise TransportError(f"Chunk claims {chunk.total} matrices, payload has {self.total}")
        if chunk.index not in self._buffers:
            self._buffers[chunk.index] = np.empty(chunk.rows * chunk.cols)
            self._shapes[chunk.index] = (chunk.rows, chunk.cols)
            self._filled[chunk.index] = 0
        elif self._shapes[chunk.index] != (chunk.rows, chunk.cols):
            raise TransportError(f"Matrix {chunk.index} changed its shape mid-payload")
        n = chunk.values.size
        self._buffers[chunk.index][chunk.offset:chunk.offset + n] = chunk.values
        self._filled[chunk.index] += n
        return True

    @property
    def complete(self) -> bool:
        if self.total is None or len(self._buffers) != self.total:
            return False
        return all(self._filled[i] == self._buffers[i].size for i in self._buffers)

    def matrices(self) -> List[np.ndarray]:
        if not self.complete:
            raise TransportError(f"Payload of round {self.round} is incomplete")
        return [self._buffers[i].reshape(self._shapes[i]) for i in range(self.total)]


def pack(weights, biases) -> List[np.ndarray]:
    """Weights followed by the present biases as column matrices."""
    return list(weights) + [b.reshape(-1, 1) for b in biases if b is not None]


def unpack(matrices: Sequence[np.ndarray], shapes, bias_shapes):
    """Inverse of :func:`pack` for a network with the given shapes."""
    expected = list(shapes) + [(s[0], 1) for s in bias_shapes if s is not None]
    got = [m.shape for m in matrices]
    if got != [tuple(s) for s in expected]:
        raise TransportError(f"Payload shapes {got} don't match the network {expected}")
    weights = list(matrices[:len(shapes)])
    rest = iter(matrices[len(shapes):])
    biases = [next(rest).reshape(-1) if s is not None else None for s in bias_shapes]
    return weights, biases


def encode_setup(config: dict, frame_size: int) -> List[bytes]:
    """Split the JSON setup ``config`` into SETUP frames that fit ``frame_size``.

    Every part names the frame size, so the executor can size its answers
    before the setup is complete.
    """
    data = json.dumps(config).encode('utf-8')
    per = frame_size - LENGTH.size - SETUP_HEADER.size
    if per < 1:
        raise TransportError(f"Frame size {frame_size} can't hold a setup message")
    total = max(1, -(-len(data) // per))
    return [SETUP_HEADER.pack(SETUP, index, total, frame_size) + data[index * per:(index + 1) * per]
            for index in range(total)]


class SetupAssembler:
    """Collects the parts of a setup message, in any order."""

    def __init__(self):
        self.total: Optional[int] = None
        self.frame_size: Optional[int] = None
        self._parts: Dict[int, bytes] = {}

    def add(self, frame: bytes) -> Optional[dict]:
        """Add one SETUP frame. Returns the decoded config once all parts arrived."""
        if len(frame) < SETUP_HEADER.size:
            raise TransportError(f"Setup part of {len(frame)} bytes is shorter than its header")
        _, index, total, frame_size = SETUP_HEADER.unpack_from(frame)
        if self.total is None:
            self.total = total
            self.frame_size = frame_size
        elif total != self.total:
            raise TransportError(f"Setup part claims {total} parts, setup has {self.total}")
        if index >= total:
            raise TransportError(f"Setup part {index} of {total}")
        self._parts[index] = frame[SETUP_HEADER.size:]
        if len(self._parts) < total:
            return None
        data = b''.join(self._parts[i] for i in range(total))
        try:
            return json.loads(data.decode('utf-8'))
        except ValueError as e:
            raise TransportError(f"Malformed setup message: {e}") from e


def encode_report(round_: int, samples: int, error_sum: float) -> bytes:
    return REPORT_FORMAT.pack(REPORT, round_, samples, error_sum)


def decode_report(frame: bytes) -> Tuple[int, int, float]:
    if len(frame) != REPORT_FORMAT.size:
        raise TransportError(f"Report of {len(frame)} bytes, expected {REPORT_FORMAT.size}")
    _, round_, samples, error_sum = REPORT_FORMAT.unpack(frame)
    return round_, samples, error_sum


def encode_round(kind: int, round_: int) -> bytes:
    return ROUND_FORMAT.pack(kind, round_)


def decode_round(frame: bytes) -> int:
    if len(frame) != ROUND_FORMAT.size:
        raise TransportError(f"Round message of {len(frame)} bytes, expected {ROUND_FORMAT.size}")
    return ROUND_FORMAT.unpack(frame)[1]


def encode_text(kind: int, text: str, frame_size: Optional[int] = None) -> bytes:
    """Text message, cut short to fit ``frame_size`` if given."""
    data = text.encode('utf-8')
    if frame_size is not None:
        data = data[:max(0, frame_size - LENGTH.size - 1)]
    return bytes([kind]) + data


def decode_text(frame: bytes) -> str:
    return frame[1:].decode('utf-8', errors='replace')
