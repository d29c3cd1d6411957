"""
Demultiplexer for container engine log streams.

A container without a TTY returns stdout and stderr interleaved on one
byte stream. Each frame is:

    [selector:1][reserved:3][length:4, big-endian][payload:length]

selector 0 = stdin (written to stdout), 1 = stdout, 2 = stderr,
3 = engine-side error (payload is the message).

Collection is all-or-nothing: a malformed stream raises DemuxError and
no partial output is returned.
"""

import struct
from typing import Iterable

from .errors import DemuxError


HEADER_SIZE = 8
HEADER_FORMAT = ">BxxxL"

STDIN = 0
STDOUT = 1
STDERR = 2
SYSTEMERR = 3


def encode_frame(selector: int, payload: bytes) -> bytes:
    """Build one multiplexed frame."""
    return struct.pack(HEADER_FORMAT, selector, len(payload)) + payload


def demultiplex(chunks: Iterable[bytes]) -> tuple[str, str]:
    """
    Split a multiplexed log stream into stdout and stderr text.

    Args:
        chunks: The raw stream, in arbitrarily sized pieces

    Returns:
        (stdout, stderr) decoded as UTF-8

    Raises:
        DemuxError: On a truncated header or payload, an unknown selector,
            or an engine-side error frame
    """
    stdout = bytearray()
    stderr = bytearray()
    buf = bytearray()
    offset = 0
    # Bytes already trimmed from the front of buf
    consumed = 0

    for chunk in chunks:
        if not chunk:
            continue
        buf += chunk

        while len(buf) - offset >= HEADER_SIZE:
            selector, length = struct.unpack_from(HEADER_FORMAT, buf, offset)
            end = offset + HEADER_SIZE + length
            if len(buf) < end:
                break

            payload = bytes(buf[offset + HEADER_SIZE:end])
            if selector in (STDIN, STDOUT):
                stdout += payload
            elif selector == STDERR:
                stderr += payload
            elif selector == SYSTEMERR:
                raise DemuxError(
                    f"engine error in log stream: {payload.decode('utf-8', errors='replace')}"
                )
            else:
                raise DemuxError(f"unknown stream selector {selector} at byte {consumed + offset}")
            offset = end

        # Drop consumed bytes once in a while instead of on every frame
        if offset > 65536:
            consumed += offset
            del buf[:offset]
            offset = 0

    remaining = len(buf) - offset
    if remaining:
        if remaining < HEADER_SIZE:
            raise DemuxError(f"truncated frame header ({remaining} of {HEADER_SIZE} bytes)")
        _, length = struct.unpack_from(HEADER_FORMAT, buf, offset)
        raise DemuxError(
            f"truncated frame payload ({remaining - HEADER_SIZE} of {length} bytes)"
        )

    return (
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
