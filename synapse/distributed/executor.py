"""Executor: serves gradients of a local data shard to a coordinator."""
from __future__ import annotations
import logging
import socket
import socketserver
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from ..exceptions import SynapseError, TransportError
from ..layers import NAME2LAYER
from ..network import Network
from ..numerics import as_batch
from ..settings import Node, Settings, Approximation, parse_size
from ..weights import WeightProvider, Zero
from . import codec
from .transport import send_frame, recv_frame

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = parse_size('128 MiB')


class _Session:
    """State of one coordinator connection."""

    def __init__(self):
        self.network: Optional[Network] = None
        self.X = None
        self.T = None
        self.message_group_size = 0
        self.frame_size = DEFAULT_FRAME_SIZE
        self.assembler: Optional[codec.PayloadAssembler] = None
        self.cancelled: Optional[int] = None


class _Server(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


class _Handler(socketserver.BaseRequestHandler):
    def handle(self):
        self.server.executor.serve_connection(self.request)


class Executor:
    """Trains against ``xs`` / ``ys`` on behalf of a coordinator.

    The architecture is not needed up front: the coordinator ships it with
    its setup message. Use port 0 to bind an ephemeral port; :attr:`node`
    holds the bound address afterwards.
    """

    def __init__(self, node: Node, xs, ys, parallelism: int = 1):
        self.xs = xs
        self.ys = ys
        self.parallelism = parallelism
        self._server = _Server((node.host, node.port), _Handler)
        self._server.executor = self
        self.node = Node(node.host, self._server.server_address[1])
        self._thread: Optional[threading.Thread] = None
        self._pool = ThreadPoolExecutor(max_workers=parallelism) if parallelism > 1 else None

    def start(self) -> 'Executor':
        self._thread = threading.Thread(target=self.serve_forever, name=f"executor-{self.node}", daemon=True)
        self._thread.start()
        return self

    def serve_forever(self) -> None:
        logger.info("Executor %s ready.", self.node)
        self._server.serve_forever()

    def shutdown(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        if self._pool is not None:
            self._pool.shutdown()
        if self._thread is not None:
            self._thread.join()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.shutdown()

    # ------------------------------------------------------------------

    def serve_connection(self, sock: socket.socket) -> None:
        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        session = _Session()
        setup: Optional[codec.SetupAssembler] = None
        try:
            while True:
                frame = recv_frame(sock, session.frame_size)
                if frame is None:
                    return
                kind = codec.kind_of(frame)
                if kind == codec.SETUP:
                    assembler = setup or codec.SetupAssembler()
                    setup = None
                    try:
                        config = assembler.add(frame)
                        if config is None:
                            setup = assembler
                            continue
                        session = self._setup(config)
                    except (SynapseError, KeyError, TypeError, ValueError) as e:
                        logger.warning("Executor %s rejected setup: %s", self.node, e)
                        self._fail(sock, str(e), assembler.frame_size or session.frame_size)
                        continue
                    send_frame(sock, bytes([codec.READY]), session.frame_size)
                elif kind == codec.WEIGHTS:
                    if session.network is None:
                        self._fail(sock, "weights before setup", session.frame_size)
                        continue
                    chunk = codec.decode_chunk(frame)
                    if session.cancelled is not None and chunk.round <= session.cancelled:
                        continue
                    if session.assembler is None or session.assembler.round != chunk.round:
                        session.assembler = codec.PayloadAssembler(codec.WEIGHTS, chunk.round)
                    session.assembler.add(chunk)
                    if session.assembler.complete:
                        assembler, session.assembler = session.assembler, None
                        try:
                            self._answer(sock, session, assembler)
                        except TransportError:
                            raise
                        except SynapseError as e:
                            logger.warning("Executor %s failed round %d: %s", self.node, assembler.round, e)
                            self._fail(sock, str(e), session.frame_size)
                elif kind == codec.CANCEL:
                    round_ = codec.decode_round(frame)
                    logger.info("Executor %s: coordinator cancelled round %d, discarding in-flight work.",
                                self.node, round_)
                    session.cancelled = round_
                    if session.assembler is not None and session.assembler.round <= round_:
                        session.assembler = None
                elif kind == codec.BYE:
                    return
                else:
                    raise TransportError(f"Unexpected message kind {kind}")
        except TransportError as e:
            logger.warning("Executor %s dropped connection: %s", self.node, e)

    @staticmethod
    def _fail(sock: socket.socket, text: str, frame_size: int) -> None:
        send_frame(sock, codec.encode_text(codec.FAIL, text, frame_size), frame_size)

    def _setup(self, config: dict) -> _Session:
        layers = [NAME2LAYER[c['class']].from_config(c['config']) for c in config['layers']]
        eps = config.get('approximation')
        settings = Settings(verbose=False, iterations=0, parallelism=self.parallelism,
                            approximation=Approximation(eps) if eps is not None else None)
        session = _Session()
        session.network = Network.build(layers, settings, weights=WeightProvider(Zero()),
                                        identifier=f"{config.get('identifier', 'network')}@{self.node}")
        session.X = as_batch(self.xs, layers[0].neurons, 'Input')
        session.T = as_batch(self.ys, layers[-1].neurons, 'Target')
        if session.X.shape[0] != session.T.shape[0]:
            raise ValueError(f"Executor holds {session.X.shape[0]} inputs but {session.T.shape[0]} targets")
        session.message_group_size = int(config['message_group_size'])
        session.frame_size = int(config['frame_size'])
        logger.info("Executor %s serving coordinator %s with %d samples.",
                    self.node, config.get('coordinator'), session.X.shape[0])
        return session

    def _answer(self, sock: socket.socket, session: _Session, assembler: codec.PayloadAssembler) -> None:
        net = session.network
        weights, biases = codec.unpack(assembler.matrices(), net.shapes(), net.bias_shapes())
        net.assign(weights, biases)
        W, b = net.snapshot()
        n = session.X.shape[0]
        workers = min(self.parallelism, n)
        error, grads_w, grads_b = net.training.compute(self._pool, workers, W, b, session.X, session.T)
        sums_w = [g * n for g in grads_w]
        sums_b = [g * n if g is not None else None for g in grads_b]
        frames = codec.encode_payload(codec.GRADIENTS, assembler.round, codec.pack(sums_w, sums_b),
                                      session.message_group_size, session.frame_size)
        for frame in frames:
            send_frame(sock, frame, session.frame_size)
        send_frame(sock, codec.encode_report(assembler.round, n, error * n), session.frame_size)
        logger.debug("Executor %s answered round %d, error %.6g.", self.node, assembler.round, error)
