import socket

import numpy as np
import pytest

from synapse import TransportError
from synapse.distributed import codec
from synapse.distributed.transport import LENGTH, send_frame, recv_frame

pytestmark = pytest.mark.unit


def _matrices():
    rng = np.random.default_rng(0)
    return [rng.normal(size=(3, 4)), rng.normal(size=(1, 7)), rng.normal(size=(5, 1))]


def test_values_per_chunk():
    assert codec.values_per_chunk(100, 10 ** 6) == 100
    headers = LENGTH.size + codec.CHUNK_HEADER.size
    assert codec.values_per_chunk(100, headers + 8 * 3) == 3
    assert codec.values_per_chunk(100, headers + 8 * 3 - 1) == 2
    with pytest.raises(TransportError):
        codec.values_per_chunk(100, headers + 7)


@pytest.mark.parametrize("group, frame", [(5, 10 ** 6), (100, 4 + codec.CHUNK_HEADER.size + 8 * 2), (1, 64)])
def test_chunks_obey_limits(group, frame):
    frames = codec.encode_payload(codec.WEIGHTS, 7, _matrices(), group, frame)
    per = codec.values_per_chunk(group, frame)
    assert all(LENGTH.size + len(f) <= frame for f in frames)
    chunks = [codec.decode_chunk(f) for f in frames]
    assert all(c.values.size <= per for c in chunks)
    assert sum(c.values.size for c in chunks) == 12 + 7 + 5
    assert {(c.kind, c.round, c.total) for c in chunks} == {(codec.WEIGHTS, 7, 3)}


def test_reassembly_in_any_order():
    matrices = _matrices()
    frames = codec.encode_payload(codec.GRADIENTS, 2, matrices, 2, 10 ** 6)
    order = np.random.default_rng(1).permutation(len(frames))
    assembler = codec.PayloadAssembler(codec.GRADIENTS, 2)
    for i in order:
        assert not assembler.complete
        assert assembler.add(codec.decode_chunk(frames[i]))
    assert assembler.complete
    for got, want in zip(assembler.matrices(), matrices):
        np.testing.assert_array_equal(got, want)


def test_assembler_ignores_foreign_chunks():
    frames = codec.encode_payload(codec.GRADIENTS, 3, _matrices(), 100, 10 ** 6)
    assembler = codec.PayloadAssembler(codec.GRADIENTS, 4)
    assert not assembler.add(codec.decode_chunk(frames[0]))
    assembler = codec.PayloadAssembler(codec.WEIGHTS, 3)
    assert not assembler.add(codec.decode_chunk(frames[0]))
    assert not assembler.complete
    with pytest.raises(TransportError):
        assembler.matrices()


def test_malformed_chunks():
    frame = codec.encode_payload(codec.WEIGHTS, 0, [np.ones((2, 2))], 100, 10 ** 6)[0]
    with pytest.raises(TransportError):
        codec.decode_chunk(frame[:10])
    with pytest.raises(TransportError):
        codec.decode_chunk(frame[:-8])
    with pytest.raises(TransportError):
        codec.encode_payload(codec.WEIGHTS, 0, [np.ones(3)], 100, 10 ** 6)


def test_pack_and_unpack():
    weights = [np.ones((3, 2)), np.full((1, 3), 2.0)]
    biases = [np.arange(3.0), None]
    matrices = codec.pack(weights, biases)
    assert [m.shape for m in matrices] == [(3, 2), (1, 3), (3, 1)]
    w, b = codec.unpack(matrices, [(3, 2), (1, 3)], [(3,), None])
    np.testing.assert_array_equal(b[0], biases[0])
    assert b[1] is None
    with pytest.raises(TransportError):
        codec.unpack(matrices, [(2, 3), (1, 3)], [(3,), None])


def test_small_messages():
    assert codec.decode_report(codec.encode_report(4, 10, 1.25)) == (4, 10, 1.25)
    assert codec.kind_of(codec.encode_round(codec.CANCEL, 1)) == codec.CANCEL
    assert codec.decode_round(codec.encode_round(codec.CANCEL, 9)) == 9
    assert codec.decode_text(codec.encode_text(codec.FAIL, 'boom')) == 'boom'
    long_text = codec.encode_text(codec.FAIL, 'x' * 100, frame_size=32)
    assert LENGTH.size + len(long_text) == 32
    with pytest.raises(TransportError):
        codec.kind_of(b'')


def test_frames_over_a_socket():
    a, b = socket.socketpair()
    with a, b:
        send_frame(a, b'hello', 16)
        send_frame(a, b'world!', 16)
        assert recv_frame(b, 16) == b'hello'
        assert recv_frame(b, 16) == b'world!'
        with pytest.raises(TransportError):
            send_frame(a, b'x' * 17, 16)
        send_frame(a, b'x' * 17, 32)
        with pytest.raises(TransportError):
            recv_frame(b, 16)
        a.shutdown(socket.SHUT_WR)
        b.recv(64)
        assert recv_frame(b, 16) is None


def test_length_prefix_counts_against_the_frame_size():
    a, b = socket.socketpair()
    with a, b:
        send_frame(a, b'x' * 12, 16)
        assert recv_frame(b, 16) == b'x' * 12
        with pytest.raises(TransportError):
            send_frame(a, b'x' * 13, 16)
        send_frame(a, b'x' * 13, 17)
        with pytest.raises(TransportError):
            recv_frame(b, 16)


def _config():
    return {'identifier': 'net', 'layers': [{'class': 'Dense', 'config': {'neurons': i}} for i in range(20)]}


@pytest.mark.parametrize("frame", [64, 160, 10 ** 6])
def test_setup_is_split_to_fit_the_frame(frame):
    frames = codec.encode_setup(_config(), frame)
    assert all(LENGTH.size + len(f) <= frame for f in frames)
    assert all(codec.kind_of(f) == codec.SETUP for f in frames)
    if frame < 1000:
        assert len(frames) > 1
    assembler = codec.SetupAssembler()
    order = np.random.default_rng(2).permutation(len(frames))
    results = [assembler.add(frames[i]) for i in order]
    assert results[:-1] == [None] * (len(frames) - 1)
    assert results[-1] == _config()
    assert assembler.frame_size == frame


def test_malformed_setup():
    with pytest.raises(TransportError):
        codec.SetupAssembler().add(bytes([codec.SETUP, 0]))
    frame = codec.encode_setup({'a': 1}, 1000)[0]
    with pytest.raises(TransportError):
        codec.SetupAssembler().add(frame[:-1] + b'!')
    with pytest.raises(TransportError):
        codec.encode_setup({'a': 1}, LENGTH.size + codec.SETUP_HEADER.size)
