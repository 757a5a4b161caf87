"""Distributed training: a coordinator drives executors over TCP.

Quick Start:
    # on every worker
    Executor(Node('0.0.0.0', 2553), xs, ys).serve_forever()

    # on the coordinator
    net = Network.build(layers, settings, training=DistributedTraining)
    run = net.train({Node('worker-1', 2553), Node('worker-2', 2553)})
    result = run.result()
"""
from .codec import encode_payload, decode_chunk, PayloadAssembler
from .coordinator import Coordinator, DistributedRun, NodeReport, aggregate
from .executor import Executor

__all__ = [
    'Coordinator', 'DistributedRun', 'NodeReport', 'aggregate', 'Executor',
    'encode_payload', 'decode_chunk', 'PayloadAssembler',
]
