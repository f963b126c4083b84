"""
prepropipe.transport
基于 Unix domain socket 的 framing 发送/接收工具，以及监听/连接 socket 的创建。
"""
from __future__ import annotations

import os
import socket
import threading
from pathlib import Path

from .config import PipeConfig
from .errors import DialError, SetupError
from .protocol import PIPE_BUFFER_SIZE, read_message, write_message


def configure_endpoint(sock: socket.socket, timeout: float) -> None:
    """Symmetric send/recv timeout. Broken pipes are handled per send (MSG_NOSIGNAL)."""
    try:
        sock.settimeout(timeout)
    except OSError as e:
        raise SetupError(f"cannot set socket timeout: {e}") from e


class FramedSocket:
    """
    一个已连接的 endpoint。close() 只由拥有它的 worker 调用，可重复调用；
    halt() 供其他线程在 drain 时唤醒阻塞中的 recv/send。
    """

    def __init__(
        self,
        sock: socket.socket,
        byte_order: str = "native",
        chunk_size: int = PIPE_BUFFER_SIZE,
    ):
        self.sock = sock
        self.byte_order = byte_order
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, sock: socket.socket, config: PipeConfig) -> "FramedSocket":
        configure_endpoint(sock, config.timeout)
        return cls(sock, byte_order=config.byte_order, chunk_size=config.chunk_size)

    @property
    def closed(self) -> bool:
        return self._closed

    def send_frame(self, payload: bytes) -> int:
        return write_message(self.sock, payload, self.byte_order, self.chunk_size)

    def recv_frame(self) -> bytes:
        return read_message(self.sock, self.byte_order)

    def halt(self) -> None:
        """Shut down both directions. Safe on an endpoint that is already closed."""
        with self._lock:
            if self._closed:
                return
            try:
                self.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # peer already gone or socket not connected
                pass

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.sock.close()

    def __enter__(self) -> "FramedSocket":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def remove_stale_socket(path: str) -> None:
    p = Path(path)
    if p.is_socket() or p.is_symlink():
        p.unlink()
    elif p.exists():
        raise SetupError(f"{path} exists and is not a socket")


def open_listener(config: PipeConfig) -> socket.socket:
    """socket() -> bind() -> listen()，失败即 SetupError。"""
    try:
        remove_stale_socket(config.path)
    except OSError as e:
        raise SetupError(f"cannot remove stale socket {config.path}: {e}") from e

    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        raise SetupError(f"socket creation failed ({e})") from e

    try:
        # accept() wakes up periodically so the stop event is observed
        sock.settimeout(config.accept_interval)
        sock.bind(config.path)
        sock.listen(config.backlog)
    except OSError as e:
        sock.close()
        raise SetupError(f"cannot bind and listen on {config.path} ({e})") from e
    return sock


def dial(config: PipeConfig) -> FramedSocket:
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        raise SetupError(f"socket creation failed ({e})") from e

    try:
        endpoint = FramedSocket.from_config(sock, config)
    except SetupError:
        sock.close()
        raise

    try:
        sock.connect(config.path)
    except OSError as e:
        endpoint.close()
        raise DialError(f"cannot connect to {config.path} ({e})") from e
    return endpoint


def unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
