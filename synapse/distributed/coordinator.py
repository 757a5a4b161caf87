"""Coordinator: owns the global weights and drives the executors round by round."""
from __future__ import annotations
import logging
import socket
import threading
import numpy as np
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from tqdm import tqdm

from ..exceptions import TransportError, TrainingFailed
from ..settings import Node
from ..training import TrainingResult, TrainingState
from . import codec
from .transport import connect, send_frame, recv_frame

logger = logging.getLogger(__name__)

CANCEL_POLL = 0.05


@dataclass
class NodeReport:
    """What one executor answered in one round: summed error and gradients
    over its ``samples``."""
    node: Node
    samples: int
    error_sum: float
    grads_w: List[np.ndarray]
    grads_b: List[Optional[np.ndarray]]


def aggregate(reports: Sequence[NodeReport]):
    """Sample-weighted mean error and gradients of ``reports``.

    Reports are reduced in node order, so the arrival order doesn't change
    the result.

    Returns:
        ``(error, grads_w, grads_b)``
    """
    if not reports:
        raise ValueError("Nothing to aggregate")
    ordered = sorted(reports, key=lambda r: (r.node.host, r.node.port))
    total = sum(r.samples for r in ordered)
    error = sum(r.error_sum for r in ordered) / total
    first = ordered[0]
    grads_w = [sum(r.grads_w[k] for r in ordered) / total for k in range(len(first.grads_w))]
    grads_b = [sum(r.grads_b[k] for r in ordered) / total if first.grads_b[k] is not None else None
               for k in range(len(first.grads_b))]
    return error, grads_w, grads_b


class DistributedRun:
    """Handle on a distributed training run started in the background."""

    def __init__(self, coordinator: 'Coordinator'):
        self.coordinator = coordinator
        self._future: Future = Future()

    @property
    def state(self) -> TrainingState:
        return self.coordinator.state

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        """Stop issuing rounds and tell the executors to drop in-flight work."""
        self.coordinator.cancel()

    def result(self, timeout: Optional[float] = None) -> TrainingResult:
        """Wait for the run to end.

        Raises:
            TrainingFailed: If the run ended in the FAILED state
            concurrent.futures.TimeoutError: If it is still running after ``timeout``
        """
        result = self._future.result(timeout)
        if result.state is TrainingState.FAILED:
            raise TrainingFailed(f"Distributed training of {self.coordinator.network.identifier} failed "
                                 f"after {result.iterations} rounds.")
        return result


class _Link:
    """Connection to one executor. Frames are sent under ``lock`` so that a
    cancel never lands in the middle of a payload."""

    def __init__(self, node: Node, sock: socket.socket):
        self.node = node
        self.sock = sock
        self.lock = threading.Lock()

    def close(self) -> None:
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Shutting down link to %s: %s", self.node, e)
        try:
            self.sock.close()
        except OSError as e:
            logger.debug("Closing link to %s: %s", self.node, e)


class Coordinator:

    def __init__(self, training, nodes: Iterable[Node]):
        self.training = training
        self.network = training.network
        self.settings = training.network.settings
        self.nodes: List[Node] = sorted(set(nodes), key=lambda n: (n.host, n.port))
        if not self.nodes:
            raise ValueError("Distributed training needs at least one executor node.")
        self.state = TrainingState.INITIALIZED
        self._cancel = threading.Event()
        self._links: Dict[Node, _Link] = {}
        transport = self.settings.transport
        self.frame_size = transport.frame_bytes
        self.message_group_size = transport.message_group_size
        codec.values_per_chunk(self.message_group_size, self.frame_size)

    def start(self) -> DistributedRun:
        run = DistributedRun(self)
        thread = threading.Thread(target=self._run_into, args=(run._future,),
                                  name=f"coordinator-{self.network.identifier}", daemon=True)
        thread.start()
        return run

    def cancel(self) -> None:
        self._cancel.set()

    def _run_into(self, future: Future) -> None:
        try:
            future.set_result(self.run())
        except Exception as e:
            self.state = TrainingState.FAILED
            future.set_exception(e)

    # ------------------------------------------------------------------

    def setup_messages(self) -> List[bytes]:
        approximation = self.settings.approximation
        config = {
            'identifier': self.network.identifier,
            'coordinator': str(self.settings.coordinator),
            'layers': [layer.to_config() for layer in self.network.layers],
            'approximation': approximation.epsilon if approximation is not None else None,
            'message_group_size': self.message_group_size,
            'frame_size': self.frame_size,
        }
        return codec.encode_setup(config, self.frame_size)

    def _link(self, node: Node) -> _Link:
        link = self._links.get(node)
        if link is not None:
            return link
        transport = self.settings.transport
        sock = connect(node, transport.timeout, self.settings.coordinator)
        link = _Link(node, sock)
        try:
            for frame in self.setup_messages():
                send_frame(sock, frame, self.frame_size, node)
            answer = recv_frame(sock, self.frame_size, node)
            if answer is None:
                raise TransportError("closed the connection during setup", node)
            if codec.kind_of(answer) == codec.FAIL:
                raise TransportError(f"rejected setup: {codec.decode_text(answer)}", node)
            if codec.kind_of(answer) != codec.READY:
                raise TransportError(f"unexpected answer {codec.kind_of(answer)} to setup", node)
        except TransportError:
            link.close()
            raise
        self._links[node] = link
        logger.info("Coordinator %s registered executor %s.", self.settings.coordinator, node)
        return link

    def _drop(self, node: Node) -> None:
        link = self._links.pop(node, None)
        if link is not None:
            link.close()

    def exchange(self, node: Node, round_: int, frames: Sequence[bytes]) -> NodeReport:
        """Send the weights of ``round_`` to ``node`` and collect its gradients."""
        link = self._link(node)
        with link.lock:
            if self._cancel.is_set():
                raise TransportError(f"round {round_} cancelled", node)
            for frame in frames:
                send_frame(link.sock, frame, self.frame_size, node)
        assembler = codec.PayloadAssembler(codec.GRADIENTS, round_)
        while True:
            frame = recv_frame(link.sock, self.frame_size, node)
            if frame is None:
                raise TransportError("closed the connection", node)
            kind = codec.kind_of(frame)
            if kind == codec.GRADIENTS:
                if not assembler.add(codec.decode_chunk(frame)):
                    logger.debug("Ignoring stale gradients from %s.", node)
            elif kind == codec.REPORT:
                r, samples, error_sum = codec.decode_report(frame)
                if r != round_:
                    continue
                weights, biases = codec.unpack(assembler.matrices(), self.network.shapes(),
                                               self.network.bias_shapes())
                return NodeReport(node, samples, error_sum, weights, biases)
            elif kind == codec.FAIL:
                raise TransportError(f"failed round {round_}: {codec.decode_text(frame)}", node)
            else:
                raise TransportError(f"unexpected message kind {kind}", node)

    def broadcast(self, pool: ThreadPoolExecutor, round_: int) -> Tuple[List[NodeReport], List[Node]]:
        """One round trip to every node. Returns the reports and the nodes that failed.

        Stops waiting as soon as the run is cancelled; the round is then
        incomplete and must not be applied.
        """
        weights, biases = self.network.snapshot()
        frames = codec.encode_payload(codec.WEIGHTS, round_, codec.pack(weights, biases),
                                      self.message_group_size, self.frame_size)
        futures = {pool.submit(self.exchange, node, round_, frames): node for node in self.nodes}
        pending = set(futures)
        while pending:
            if self._cancel.is_set():
                return [], []
            _, pending = wait(pending, timeout=CANCEL_POLL, return_when=FIRST_COMPLETED)
        reports, failed = [], []
        for future, node in futures.items():
            try:
                reports.append(future.result())
            except TransportError as e:
                logger.warning("Round %d: %s", round_, e)
                self._drop(node)
                failed.append(node)
        return reports, failed

    def _notify(self, message: bytes) -> None:
        for node, link in list(self._links.items()):
            try:
                with link.lock:
                    send_frame(link.sock, message, self.frame_size, node)
            except TransportError as e:
                logger.debug("Could not notify %s: %s", node, e)

    def _abort(self, round_: int) -> None:
        """Tell the executors to drop ``round_`` and hang up; outstanding
        exchanges fail as their links close."""
        logger.info("%s: cancelling round %d.", self.network.identifier, round_)
        self._notify(codec.encode_round(codec.CANCEL, round_))
        self._notify(bytes([codec.BYE]))
        for node in list(self._links):
            self._drop(node)

    def run(self) -> TrainingResult:
        """Run the rounds in the calling thread until a terminal state is reached."""
        settings = self.settings
        transport = settings.transport
        min_responses = int(settings.specific('min_responses', 1))
        errors: List[float] = []
        round_ = 0
        attempts = 0
        error = float('inf')
        pbar = tqdm(total=settings.iterations, desc=self.network.identifier, disable=not settings.verbose)
        self.state = TrainingState.ITERATING
        try:
            with ThreadPoolExecutor(max_workers=len(self.nodes)) as pool:
                while True:
                    if self._cancel.is_set():
                        self._abort(round_)
                        self.state = TrainingState.CANCELLED
                        break
                    reports, failed = self.broadcast(pool, round_)
                    if self._cancel.is_set():
                        self._abort(round_)
                        self.state = TrainingState.CANCELLED
                        break
                    usable = reports if transport.on_failure == 'degrade' else (reports if not failed else [])
                    if len(usable) < max(1, min_responses):
                        attempts += 1
                        if attempts > transport.retries:
                            logger.error("Round %d failed %d times, giving up.", round_, attempts)
                            self.state = TrainingState.FAILED
                            break
                        logger.warning("Round %d failed (%d of %d executors answered), retrying.",
                                       round_, len(reports), len(self.nodes))
                        continue
                    attempts = 0
                    if failed:
                        logger.warning("Round %d proceeds with %d of %d executors.",
                                       round_, len(reports), len(self.nodes))
                    error, grads_w, grads_b = aggregate(usable)
                    if not np.isfinite(error):
                        self.state = TrainingState.FAILED
                        break
                    errors.append(error)
                    if settings.error_func_output is not None:
                        settings.error_func_output.write(error)
                    pbar.set_postfix(error=error)
                    if error <= settings.precision:
                        self.state = TrainingState.CONVERGED
                        break
                    if round_ == settings.iterations:
                        self.state = TrainingState.MAX_ITERATIONS_REACHED
                        break
                    self.network.update(grads_w, grads_b, settings.rate(round_))
                    round_ += 1
                    pbar.update(1)
        finally:
            pbar.close()
            self._notify(bytes([codec.BYE]))
            for node in list(self._links):
                self._drop(node)
        self.training.state = self.state
        if settings.verbose:
            logger.info("%s: %s after %d rounds, error %.6g.", self.network.identifier,
                        self.state.value, round_, error)
        return TrainingResult(self.state, round_, error, errors)
