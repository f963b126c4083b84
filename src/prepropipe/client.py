"""
prepropipe.client
压测客户端：循环执行 连接 -> 发送一条消息 -> （可选）读取回复 -> 断开 -> 短暂休眠。
单个连接失败只记录日志，下一轮自然重试。
"""
from __future__ import annotations

import argparse
import sys
import threading
from dataclasses import dataclass
from typing import Optional

from .config import PipeConfig, config_from_args
from .errors import DialError, FramingError, SetupError
from .log import configure_logging, get_logger
from .shutdown import install_stop_handlers
from .transport import dial
from .worker import DEFAULT_REQUEST, exchange

log = get_logger("client")


@dataclass
class DialerStats:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


class Dialer:
    def __init__(
        self,
        config: PipeConfig,
        request: bytes = DEFAULT_REQUEST,
        check_response: Optional[bool] = None,
    ):
        self.config = config
        self.request = request
        self.check_response = config.check_response if check_response is None else check_response

    def dial_once(self, index: int) -> Optional[bytes]:
        """One connection. Raises DialError / FramingError, SetupError is fatal."""
        endpoint = dial(self.config)
        log.info("Connected (#{})", index)
        reply = exchange(endpoint, index, self.request, self.check_response)
        log.info("Disconnected (#{})", index)
        return reply

    def run(self, stop: threading.Event, count: Optional[int] = None) -> DialerStats:
        stats = DialerStats()
        while not stop.is_set():
            if count is not None and stats.attempted >= count:
                break
            index = stats.attempted
            stats.attempted += 1
            try:
                self.dial_once(index)
            except DialError as e:
                log.error("Failed while connecting on connection #{}: {}", index, e)
                stats.failed += 1
            except FramingError as e:
                log.error("Failed while exchanging on connection #{}: {}", index, e)
                stats.failed += 1
            else:
                stats.succeeded += 1
            # returns early when stop is set
            stop.wait(self.config.dial_interval)
        return stats


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="prepropipe-client")
    ap.add_argument("--path", help="unix socket path (default ./KPrepropipe)")
    ap.add_argument("--config", help="TOML file with a [pipe] table")
    ap.add_argument("--timeout", type=float, help="send/recv timeout in seconds")
    ap.add_argument("--byte-order", choices=["native", "little", "big"])
    ap.add_argument("--message", help="request payload (sent NUL terminated)")
    ap.add_argument("--count", type=int, help="stop after this many connections")
    ap.add_argument("--interval", type=float, help="pause between connections in seconds")
    ap.add_argument("--check-response", action="store_true", default=None,
                    help="read and log the server reply")
    ap.add_argument("--log-level")
    ap.add_argument("--log-file")
    return ap


def main(argv: Optional[list] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        config = config_from_args(
            args,
            dial_interval=args.interval,
            check_response=args.check_response,
        )
    except (ValueError, TypeError) as e:
        ap.error(str(e))
    configure_logging(config.log_level, config.log_file)

    request = DEFAULT_REQUEST
    if args.message is not None:
        request = args.message.encode("utf-8") + b"\x00"

    stop = threading.Event()
    install_stop_handlers(stop)

    try:
        stats = Dialer(config, request).run(stop, count=args.count)
    except SetupError as e:
        log.error("Failed while initializing domain socket client {}: {}", config.path, e)
        return 1
    log.info("{} connection(s), {} ok, {} failed", stats.attempted, stats.succeeded, stats.failed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
