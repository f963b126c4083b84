"""
prepropipe.errors
统一的异常层次：启动错误（致命）与单连接错误（只影响当前连接）。
"""
from __future__ import annotations


class PipeError(Exception):
    """Base class for all prepropipe errors."""


class SetupError(PipeError):
    """Socket creation, option, bind or listen failure. Fatal to the process."""


class DialError(PipeError):
    pass


class FramingError(PipeError):
    """A single connection failed to read or write one frame."""


class IncompleteHeader(FramingError):
    def __init__(self, received: int = 0):
        super().__init__(f"stream ended after {received} of 4 header bytes")
        self.received = received


class InvalidLength(FramingError):
    def __init__(self, length: int):
        super().__init__(f"invalid message length {length}")
        self.length = length


class IncompletePayload(FramingError):
    def __init__(self, expected: int, received: int):
        super().__init__(f"stream ended after {received} of {expected} payload bytes")
        self.expected = expected
        self.received = received


class MessageTooLarge(FramingError):
    def __init__(self, length: int):
        super().__init__(f"message of {length} bytes does not fit a 4-byte signed header")
        self.length = length


class SendFailed(FramingError):
    def __init__(self, sent: int, total: int):
        super().__init__(f"send failed after {sent} of {total} bytes")
        self.sent = sent
        self.total = total
