import socket

import pytest

from conftest import wait_until
from prepropipe.errors import IncompleteHeader
from prepropipe.protocol import read_message, write_message
from prepropipe.registry import ConnectionRegistry, RegistryState
from prepropipe.transport import FramedSocket
from prepropipe.worker import (
    DEFAULT_REPLY,
    DEFAULT_REQUEST,
    ConnectionWorker,
    canned_responder,
    exchange,
)


def endpoint_pair(timeout=5.0):
    a, b = socket.socketpair()
    a.settimeout(timeout)
    b.settimeout(timeout)
    return FramedSocket(a), b


def test_worker_request_response():
    ep, peer = endpoint_pair()
    worker = ConnectionWorker(ep, 0, canned_responder())
    worker.start()

    write_message(peer, DEFAULT_REQUEST)
    assert read_message(peer) == DEFAULT_REPLY
    worker.join(5)

    assert worker.finished
    assert worker.ok is True
    assert ep.closed
    peer.close()


def test_worker_read_failure_skips_reply():
    ep, peer = endpoint_pair()
    worker = ConnectionWorker(ep, 3, canned_responder())
    worker.start()

    peer.sendall(b"\x00\x00\x00\x00")
    worker.join(5)

    assert worker.finished
    assert worker.ok is False
    with pytest.raises(IncompleteHeader):
        read_message(peer)
    peer.close()


def test_worker_responder_error():
    def explode(_msg):
        raise RuntimeError("boom")

    ep, peer = endpoint_pair()
    worker = ConnectionWorker(ep, 1, explode)
    worker.start()
    write_message(peer, DEFAULT_REQUEST)
    worker.join(5)

    assert worker.finished
    assert worker.ok is False
    assert ep.closed
    peer.close()


def test_client_exchange_with_response():
    ep, peer = endpoint_pair()
    write_message(peer, DEFAULT_REPLY)

    reply = exchange(ep, 0, DEFAULT_REQUEST, check_response=True)

    assert reply == DEFAULT_REPLY
    assert len(reply) == 20
    assert read_message(peer) == DEFAULT_REQUEST
    assert ep.closed
    peer.close()


def test_client_exchange_send_only():
    ep, peer = endpoint_pair()
    assert exchange(ep, 0) is None
    assert ep.closed
    assert read_message(peer) == DEFAULT_REQUEST
    peer.close()


def test_reap_only_finished_workers():
    registry = ConnectionRegistry()
    done_ep, done_peer = endpoint_pair()
    idle_ep, idle_peer = endpoint_pair()

    done = registry.spawn(done_ep)
    idle = registry.spawn(idle_ep)
    assert (done.index, idle.index) == (0, 1)

    write_message(done_peer, DEFAULT_REQUEST)
    assert read_message(done_peer) == DEFAULT_REPLY
    assert wait_until(lambda: done.finished)

    assert registry.reap() == 1
    assert registry.workers == (idle,)
    assert not idle.finished

    assert registry.drain() == 1
    assert idle.finished
    assert idle_ep.closed
    assert len(registry) == 0
    done_peer.close()
    idle_peer.close()


def test_drain_unblocks_stalled_workers():
    registry = ConnectionRegistry()
    peers = []
    workers = []
    for _ in range(4):
        # long timeout: only the drain can wake these up quickly
        ep, peer = endpoint_pair(timeout=60.0)
        peers.append(peer)
        workers.append(registry.spawn(ep))
    # one of them is stuck halfway through a header
    peers[0].sendall(b"\x06\x00")

    assert registry.drain() == 4

    assert registry.state is RegistryState.EMPTY
    for worker in workers:
        assert worker.finished
        assert not worker.is_alive()
        assert worker.ok is False
        assert worker.endpoint.sock.fileno() == -1
    for peer in peers:
        peer.close()


def test_spawn_after_drain_is_refused():
    registry = ConnectionRegistry()
    registry.drain()
    assert registry.state is RegistryState.EMPTY
    ep, peer = endpoint_pair()
    with pytest.raises(RuntimeError):
        registry.spawn(ep)
    assert ep.closed
    peer.close()


def test_close_after_drain_does_not_break_registry():
    registry = ConnectionRegistry()
    ep, peer = endpoint_pair(timeout=60.0)
    worker = registry.spawn(ep)
    registry.drain()
    worker.endpoint.close()
    worker.halt()
    assert registry.drain() == 0
    assert len(registry) == 0
    peer.close()


def test_spawn_closes_endpoint_when_thread_cannot_start(monkeypatch):
    def refuse(self):
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(ConnectionWorker, "start", refuse)
    registry = ConnectionRegistry()
    ep, peer = endpoint_pair()

    with pytest.raises(RuntimeError):
        registry.spawn(ep)

    assert ep.closed
    assert len(registry) == 0
    assert peer.recv(4) == b""
    peer.close()


def test_worker_rejects_non_bytes_reply():
    ep, peer = endpoint_pair()
    worker = ConnectionWorker(ep, 2, lambda _msg: "text reply")
    worker.start()
    write_message(peer, DEFAULT_REQUEST)
    worker.join(5)

    assert worker.finished
    assert worker.ok is False
    assert ep.closed
    with pytest.raises(IncompleteHeader):
        read_message(peer)
    peer.close()
