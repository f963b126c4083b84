"""
prepropipe.shutdown
协作式取消：信号处理函数只设置 stop 事件，由主循环在每轮检查。
"""
from __future__ import annotations

import signal
import threading
from typing import Iterable

from .log import get_logger

log = get_logger("shutdown")

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_stop_handlers(stop: threading.Event, signals: Iterable[int] = STOP_SIGNALS) -> None:
    """Route the given signals to stop.set(). Must run on the main thread."""

    def handle_signal(signum: int, _frame) -> None:
        stop.set()

    for signum in signals:
        signal.signal(signum, handle_signal)
    log.debug("stop handlers installed for {}", [signal.Signals(s).name for s in signals])
