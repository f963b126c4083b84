"""
prepropipe.protocol
消息 framing（length-prefixed）：4 字节有符号长度头 + 负载。
不关心 socket 的创建、线程或连接状态，只需要一个可 recv/send 的字节流。
"""
from __future__ import annotations

import socket
import struct
from typing import Iterator

from .errors import (
    IncompleteHeader,
    IncompletePayload,
    InvalidLength,
    MessageTooLarge,
    SendFailed,
)

HEADER_SIZE = 4
PIPE_BUFFER_SIZE = 32768
MAX_MESSAGE_SIZE = 2**31 - 1
# first receive buffer for a payload; later steps double with what arrived
GROW_STEP = 1 << 20

# Header byte order. "native" is what the original peers expect.
BYTE_ORDERS = {
    "native": "=i",
    "little": "<i",
    "big": ">i",
}

_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)


def header_format(byte_order: str = "native") -> str:
    try:
        return BYTE_ORDERS[byte_order]
    except KeyError:
        raise ValueError(f"unknown byte order {byte_order!r}") from None


def pack_length(n: int, byte_order: str = "native") -> bytes:
    return struct.pack(header_format(byte_order), n)


def unpack_length(b: bytes, byte_order: str = "native") -> int:
    return struct.unpack(header_format(byte_order), b)[0]


def encode_frame(payload: bytes, byte_order: str = "native") -> bytes:
    """header + payload，长度不合法时在分配任何缓冲区之前拒绝。"""
    size = len(payload)
    if size > MAX_MESSAGE_SIZE:
        raise MessageTooLarge(size)
    if size < 1:
        raise InvalidLength(size)
    return pack_length(size, byte_order) + bytes(payload)


def iter_chunks(buf: bytes, size: int = PIPE_BUFFER_SIZE) -> Iterator[memoryview]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    view = memoryview(buf)
    for start in range(0, len(view), size):
        yield view[start:start + size]


def recv_into_full(sock: socket.socket, buf: bytearray) -> int:
    """
    反复 recv_into 直到 buf 填满，返回实际收到的字节数。
    对端关闭（0 字节）或 recv 出错（超时、reset、fd 已关闭）都视为流结束。
    """
    view = memoryview(buf)
    received = 0
    while received < len(buf):
        try:
            n = sock.recv_into(view[received:])
        except OSError:
            break
        if n == 0:
            break
        received += n
    return received


def recv_payload(sock: socket.socket, length: int) -> bytearray:
    """
    按到达的数据逐步扩大缓冲区（每步最多翻倍），而不是按声明长度一次性分配，
    避免一个只发了长度头就停住的对端让进程占用整块内存。
    返回的缓冲区短于 length 表示流提前结束。
    """
    payload = bytearray()
    while len(payload) < length:
        step = min(length - len(payload), max(GROW_STEP, len(payload)))
        chunk = bytearray(step)
        got = recv_into_full(sock, chunk)
        payload += memoryview(chunk)[:got]
        if got < step:
            break
    return payload


def read_message(sock: socket.socket, byte_order: str = "native") -> bytes:
    header = bytearray(HEADER_SIZE)
    got = recv_into_full(sock, header)
    if got < HEADER_SIZE:
        raise IncompleteHeader(got)

    length = unpack_length(bytes(header), byte_order)
    if length <= 0:
        raise InvalidLength(length)

    payload = recv_payload(sock, length)
    if len(payload) < length:
        # Missing data, the partial buffer is dropped
        raise IncompletePayload(length, len(payload))
    return bytes(payload)


def write_message(
    sock: socket.socket,
    payload: bytes,
    byte_order: str = "native",
    chunk_size: int = PIPE_BUFFER_SIZE,
) -> int:
    """
    把整帧分块发送，每块不超过 chunk_size（仅限制单次 send 的大小，对解码端透明）。
    任一块失败即整体失败；此前的块可能已经到达对端。
    """
    data = encode_frame(payload, byte_order)
    total = len(data)
    sent = 0
    for chunk in iter_chunks(data, chunk_size):
        try:
            sock.sendall(chunk, _SEND_FLAGS)
        except OSError as e:
            raise SendFailed(sent, total) from e
        sent += len(chunk)
    if sent != total:
        raise SendFailed(sent, total)
    return sent
