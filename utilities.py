import hashlib
import struct

# --- Errors ---

class BlockParseError(Exception):
    """Base class for every fatal error raised while reading a block file."""


class FramingError(BlockParseError):
    """
    The record framing of the block file is broken (bad magic, impossible
    length). Frame boundaries after this point cannot be trusted.
    """

    def __init__(self, message: str, offset: int):
        super().__init__(message)
        self.offset = offset


class TruncatedFrameError(FramingError):
    """The file ended in the middle of a magic, length or payload."""


class DecodeError(BlockParseError):
    """A framed payload is not a well-formed block."""

    def __init__(self, step: str, offset: int, message: str):
        super().__init__(f"{step}: {message} (payload offset {offset})")
        self.step = step
        self.offset = offset
        self.detail = message
        self.frame_offset = None  # set once the payload is tied to a frame


# --- Hashing ---

def double_sha256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash_to_hex(digest: bytes) -> str:
    """Hashes are displayed byte-reversed."""
    return digest[::-1].hex()


# --- Low-Level Byte Parsing Utility ---

def read_varint(data: bytes, offset: int):
    """
    Read a Bitcoin varint (compact size) at data[offset].

    Every tier is accepted, even one wider than the value needs.

    Returns (value, size_in_bytes).
    """
    if offset >= len(data):
        raise DecodeError("compact size", offset, "no bytes left for prefix")
    prefix = data[offset]
    if prefix < 0xfd:
        return prefix, 1
    elif prefix == 0xfd:
        width = 2
    elif prefix == 0xfe:
        width = 4
    else:
        width = 8
    if offset + 1 + width > len(data):
        raise DecodeError("compact size", offset,
                          f"prefix 0x{prefix:02x} needs {width} more bytes, "
                          f"{len(data) - offset - 1} left")
    return int.from_bytes(data[offset + 1:offset + 1 + width], "little"), 1 + width


def write_varint(value: int) -> bytes:
    """Canonical compact size encoding of value."""
    if value < 0:
        raise ValueError(f"compact size cannot encode negative value {value}")
    if value < 0xfd:
        return bytes([value])
    elif value <= 0xffff:
        return b"\xfd" + struct.pack("<H", value)
    elif value <= 0xffffffff:
        return b"\xfe" + struct.pack("<I", value)
    elif value <= 0xffffffffffffffff:
        return b"\xff" + struct.pack("<Q", value)
    raise ValueError(f"compact size cannot encode {value}")


class PayloadReader:
    """
    Sequential, bounds-checked reader over one block payload.

    Every read names the decoding step it belongs to so that a short
    payload is reported as e.g. "output value: needs 8 bytes, 3 left".
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def peek(self, size: int) -> bytes:
        """Up to size bytes at the current offset, without consuming them."""
        return self.data[self.offset:self.offset + size]

    def _require(self, size: int, step: str):
        if size > self.remaining:
            raise DecodeError(step, self.offset,
                              f"needs {size} bytes, {self.remaining} left")

    def skip(self, size: int, step: str):
        self._require(size, step)
        self.offset += size

    def read_bytes(self, size: int, step: str) -> bytes:
        self._require(size, step)
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def _unpack(self, fmt: str, step: str) -> int:
        size = struct.calcsize(fmt)
        self._require(size, step)
        value = struct.unpack_from(fmt, self.data, self.offset)[0]
        self.offset += size
        return value

    def read_uint32(self, step: str) -> int:
        return self._unpack("<I", step)

    def read_int32(self, step: str) -> int:
        return self._unpack("<i", step)

    def read_int64(self, step: str) -> int:
        return self._unpack("<q", step)

    def read_varint(self, step: str) -> int:
        try:
            value, size = read_varint(self.data, self.offset)
        except DecodeError as err:
            raise DecodeError(step, self.offset, err.detail) from err
        self.offset += size
        return value

    def read_count(self, step: str, min_item_size: int) -> int:
        """
        Read an element count and check that that many elements of at least
        min_item_size bytes could still fit in the payload.
        """
        start = self.offset
        count = self.read_varint(step)
        if count * min_item_size > self.remaining:
            raise DecodeError(step, start,
                              f"count {count} needs at least {count * min_item_size} "
                              f"bytes, {self.remaining} left")
        return count

    def expect_end(self, step: str):
        if self.remaining:
            raise DecodeError(step, self.offset, f"{self.remaining} trailing bytes")
