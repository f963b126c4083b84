"""
prepropipe.registry
服务器端 worker 的登记表：只由监听线程修改（spawn / reap / drain），
worker 线程自身只翻转自己的 finished 标志。
"""
from __future__ import annotations

from enum import Enum
from typing import List, Tuple

from .log import get_logger
from .transport import FramedSocket
from .worker import ConnectionWorker, Responder, canned_responder

log = get_logger("registry")


class RegistryState(Enum):
    ACTIVE = "active"
    DRAINING = "draining"
    EMPTY = "empty"


class ConnectionRegistry:
    def __init__(self, responder: Responder | None = None):
        self.responder = responder or canned_responder()
        self.state = RegistryState.ACTIVE
        self.connection_count = 0
        self._workers: List[ConnectionWorker] = []

    def __len__(self) -> int:
        return len(self._workers)

    @property
    def workers(self) -> Tuple[ConnectionWorker, ...]:
        return tuple(self._workers)

    def spawn(self, endpoint: FramedSocket) -> ConnectionWorker:
        """Takes ownership of endpoint: it is closed even when no worker starts."""
        if self.state is not RegistryState.ACTIVE:
            endpoint.close()
            raise RuntimeError(f"registry is {self.state.value}, cannot spawn")
        index = self.connection_count
        self.connection_count += 1
        log.info("Accepting new connection (#{})", index)
        worker = ConnectionWorker(endpoint, index, self.responder)
        try:
            worker.start()
        except RuntimeError:
            # never tracked, so nobody else will close it
            endpoint.close()
            raise
        self._workers.append(worker)
        return worker

    def reap(self) -> int:
        """Join and forget every worker whose finished flag is set."""
        done = [w for w in self._workers if w.finished]
        for worker in done:
            # finished is the thread's last action, this join is short
            worker.join()
            self._workers.remove(worker)
        return len(done)

    def drain(self) -> int:
        """Halt every remaining endpoint, then wait for all workers to exit."""
        if self.state is RegistryState.EMPTY:
            return 0
        self.state = RegistryState.DRAINING
        remaining = list(self._workers)
        if remaining:
            log.info("Closing {} connection(s)", len(remaining))
        for worker in remaining:
            worker.halt()
        for worker in remaining:
            worker.join()
        self._workers.clear()
        self.state = RegistryState.EMPTY
        return len(remaining)
