"""
prepropipe.server
Unix domain socket 服务器：每个连接一个线程，读取一条消息并回复固定内容。
Ctrl+C 只设置 stop 事件，监听循环退出后 drain 所有连接。
"""
from __future__ import annotations

import argparse
import socket
import sys
import threading
from typing import Optional

from .config import PipeConfig, config_from_args
from .errors import SetupError
from .log import configure_logging, get_logger
from .registry import ConnectionRegistry
from .shutdown import install_stop_handlers
from .transport import FramedSocket, open_listener, unlink_quietly
from .worker import Responder

log = get_logger("server")


class Server:
    def __init__(self, config: PipeConfig, responder: Optional[Responder] = None):
        self.config = config
        self.registry = ConnectionRegistry(responder)
        self.sock: Optional[socket.socket] = None
        self.bound = threading.Event()

    def bind(self) -> None:
        log.info("Starting domain socket server with name {}", self.config.path)
        self.sock = open_listener(self.config)
        self.bound.set()
        log.info("Listening...")

    def serve_forever(self, stop: threading.Event) -> None:
        if self.sock is None:
            self.bind()
        try:
            while not stop.is_set():
                self.registry.reap()
                self._accept_one(stop)
        finally:
            log.info("Closing connections and quitting...")
            self.registry.drain()
            self.close()

    def _accept_one(self, stop: threading.Event) -> None:
        try:
            conn, _ = self.sock.accept()
        except socket.timeout:
            return
        except OSError as e:
            if not stop.is_set():
                log.warning("accept failed: {}", e)
            return

        try:
            endpoint = FramedSocket.from_config(conn, self.config)
        except SetupError as e:
            log.error("Dropping connection: {}", e)
            conn.close()
            return
        try:
            self.registry.spawn(endpoint)
        except RuntimeError as e:
            log.error("Cannot start worker for new connection: {}", e)

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None
            unlink_quietly(self.config.path)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="prepropipe-server")
    ap.add_argument("--path", help="unix socket path (default ./KPrepropipe)")
    ap.add_argument("--config", help="TOML file with a [pipe] table")
    ap.add_argument("--timeout", type=float, help="send/recv timeout in seconds")
    ap.add_argument("--backlog", type=int)
    ap.add_argument("--byte-order", choices=["native", "little", "big"])
    ap.add_argument("--log-level")
    ap.add_argument("--log-file")
    return ap


def main(argv: Optional[list] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        config = config_from_args(args, backlog=args.backlog)
    except (ValueError, TypeError) as e:
        ap.error(str(e))
    configure_logging(config.log_level, config.log_file)

    stop = threading.Event()
    install_stop_handlers(stop)

    server = Server(config)
    try:
        server.bind()
    except SetupError as e:
        log.error("Failed while initializing domain socket server {}: {}", config.path, e)
        return 1
    server.serve_forever(stop)
    return 0


if __name__ == "__main__":
    sys.exit(main())
