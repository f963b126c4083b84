import threading
import time

import pytest

from prepropipe.config import PipeConfig
from prepropipe.server import Server


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def pipe_config(tmp_path):
    return PipeConfig(path=str(tmp_path / "pipe.sock"), timeout=2.0, accept_interval=0.05)


@pytest.fixture
def start_server(pipe_config):
    """Start a Server on a background thread; stopped and joined on teardown."""
    running = []

    def start(config=None, responder=None):
        server = Server(config or pipe_config, responder)
        server.bind()
        stop = threading.Event()
        thread = threading.Thread(target=server.serve_forever, args=(stop,))
        thread.start()
        running.append((stop, thread))
        return server, stop, thread

    yield start

    for stop, thread in running:
        stop.set()
        thread.join(10)
