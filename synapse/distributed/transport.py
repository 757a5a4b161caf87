"""Length-prefixed frames over TCP sockets."""
from __future__ import annotations
import socket
import struct
from typing import Optional

from ..exceptions import TransportError
from ..settings import Node

LENGTH = struct.Struct('>I')


def connect(node: Node, timeout: float, source: Optional[Node] = None) -> socket.socket:
    source_address = (source.host, 0) if source is not None else None
    try:
        sock = socket.create_connection((node.host, node.port), timeout=timeout,
                                        source_address=source_address)
    except OSError as e:
        raise TransportError(f"unreachable ({e})", node) from e
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    sock.settimeout(timeout)
    return sock


def send_frame(sock: socket.socket, payload: bytes, frame_size: int, node: Optional[Node] = None) -> None:
    if LENGTH.size + len(payload) > frame_size:
        raise TransportError(f"Message of {LENGTH.size + len(payload)} bytes exceeds the frame size of {frame_size}", node)
    try:
        sock.sendall(LENGTH.pack(len(payload)) + payload)
    except OSError as e:
        raise TransportError(f"send failed ({e})", node) from e


def _recv_exactly(sock: socket.socket, n: int, node: Optional[Node]) -> Optional[bytes]:
    buf = bytearray()
    while len(buf) < n:
        try:
            part = sock.recv(n - len(buf))
        except socket.timeout as e:
            raise TransportError("timed out", node) from e
        except OSError as e:
            raise TransportError(f"receive failed ({e})", node) from e
        if not part:
            if buf:
                raise TransportError("connection closed mid-frame", node)
            return None
        buf.extend(part)
    return bytes(buf)


def recv_frame(sock: socket.socket, frame_size: int, node: Optional[Node] = None) -> Optional[bytes]:
    """Read one frame. Returns None if the peer closed the connection."""
    head = _recv_exactly(sock, LENGTH.size, node)
    if head is None:
        return None
    (n,) = LENGTH.unpack(head)
    if LENGTH.size + n > frame_size:
        raise TransportError(f"Incoming message of {LENGTH.size + n} bytes exceeds the frame size of {frame_size}", node)
    if n == 0:
        raise TransportError("empty frame", node)
    body = _recv_exactly(sock, n, node)
    if body is None:
        raise TransportError("connection closed mid-frame", node)
    return body
