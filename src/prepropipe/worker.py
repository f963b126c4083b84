"""
prepropipe.worker
单连接 worker：服务器端在独立线程中完成一次 request/response；
客户端同步完成一次发送（可选读取回复）。两端都在所有路径上关闭 endpoint。
"""
from __future__ import annotations

import threading
from typing import Callable, Optional

from .errors import FramingError
from .log import get_logger
from .transport import FramedSocket

DEFAULT_REQUEST = b"hello\x00"
DEFAULT_REPLY = b"this is fine :fire:\x00"

Responder = Callable[[bytes], bytes]

log = get_logger("worker")


def canned_responder(reply: bytes = DEFAULT_REPLY) -> Responder:
    def respond(_request: bytes) -> bytes:
        return reply
    return respond


def printable(msg: bytes) -> str:
    return msg.rstrip(b"\x00").decode("utf-8", errors="replace")


class ConnectionWorker:
    """
    服务器端 worker。状态只有 RUNNING -> FINISHED：
    finished 事件是 worker 线程的最后一个动作，reaper 看到它之后才 join。
    """

    def __init__(self, endpoint: FramedSocket, index: int, responder: Responder):
        self.endpoint = endpoint
        self.index = index
        self.responder = responder
        self.ok: Optional[bool] = None
        self._finished = threading.Event()
        self._thread = threading.Thread(
            target=self.run, name=f"prepropipe-conn-{index}", daemon=False
        )

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def halt(self) -> None:
        self.endpoint.halt()

    def run(self) -> None:
        try:
            self.ok = self._exchange()
        finally:
            self.endpoint.close()
            self._finished.set()

    def _exchange(self) -> bool:
        try:
            request = self.endpoint.recv_frame()
        except FramingError as e:
            log.error("Failed while reading on connection #{}: {}", self.index, e)
            return False
        log.info("Read #{}: {}", self.index, printable(request))

        try:
            reply = self.responder(request)
        except Exception:
            log.exception("Responder failed on connection #{}", self.index)
            return False
        if not isinstance(reply, (bytes, bytearray, memoryview)):
            log.error(
                "Failed while writing on connection #{}: responder returned {}",
                self.index, type(reply).__name__,
            )
            return False

        try:
            self.endpoint.send_frame(reply)
        except FramingError as e:
            log.error("Failed while writing on connection #{}: {}", self.index, e)
            return False

        log.info("Disconnected (#{})", self.index)
        return True


def exchange(
    endpoint: FramedSocket,
    index: int,
    request: bytes = DEFAULT_REQUEST,
    check_response: bool = False,
) -> Optional[bytes]:
    """Client side: send one request, optionally read the reply, always close."""
    with endpoint:
        endpoint.send_frame(request)
        if not check_response:
            return None
        reply = endpoint.recv_frame()
        log.info("Read #{}: {}", index, printable(reply))
        return reply
