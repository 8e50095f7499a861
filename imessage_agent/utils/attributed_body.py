"""Plain-text recovery from ``message.attributedBody`` blobs.

On recent macOS releases many rows leave ``message.text`` NULL and keep the
text only inside an archived NSAttributedString (typedstream format). We do
not parse the archive. We look for the ``0x01 0x2B`` marker that precedes
the NSString payload and read the length-prefixed bytes after it:

- first byte below ``0x80``: that byte is the length
- ``0x81``: the next 2 bytes are a big-endian length
- ``0x82``: the next 4 bytes are a big-endian length

The first segment that is in bounds and non-empty after decoding wins.
"""

from __future__ import annotations

_MARKER = b"\x01\x2b"
_ESCAPE_U16 = 0x81
_ESCAPE_U32 = 0x82
_DIRECT_LIMIT = 0x80


def _read_length(blob: bytes, offset: int) -> tuple[int, int] | None:
    """Return ``(length, payload_offset)`` or None if the prefix is unusable."""
    first = blob[offset]
    if first < _DIRECT_LIMIT:
        return first, offset + 1
    if first == _ESCAPE_U16:
        if offset + 3 > len(blob):
            return None
        return int.from_bytes(blob[offset + 1:offset + 3], "big"), offset + 3
    if first == _ESCAPE_U32:
        if offset + 5 > len(blob):
            return None
        return int.from_bytes(blob[offset + 1:offset + 5], "big"), offset + 5
    return None


def extract_text(blob: bytes | bytearray | memoryview | None) -> str | None:
    """Return the first plausible text payload in *blob*, or None."""
    if not blob:
        return None
    data = bytes(blob)

    start = 0
    while True:
        idx = data.find(_MARKER, start)
        # Need at least one byte after the marker for the length prefix.
        if idx == -1 or idx + 2 >= len(data):
            return None
        start = idx + 1

        prefix = _read_length(data, idx + 2)
        if prefix is None:
            continue
        length, offset = prefix
        if length <= 0 or offset + length > len(data):
            continue

        text = data[offset:offset + length].decode("utf-8", errors="replace").strip()
        if text:
            return text
