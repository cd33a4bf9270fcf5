import logging
import os

logger = logging.getLogger(__name__)

# --- Configuration ---
KEY_LENGTH = 8
ZERO_KEY = bytes(KEY_LENGTH)  # identity transform, used when blocks are stored in the clear


def deobfuscate(data: bytes, key: bytes, offset: int = 0) -> bytes:
    """
    XOR data against the repeating key, as if data started at absolute
    position `offset` of the file. The same call obfuscates clear data.
    """
    if not data or not any(key):
        return bytes(data)
    start = offset % len(key)
    rotated = key[start:] + key[:start]
    keystream = (rotated * (len(data) // len(key) + 1))[:len(data)]
    mixed = int.from_bytes(data, "little") ^ int.from_bytes(keystream, "little")
    return mixed.to_bytes(len(data), "little")


def load_obfuscation_key(path: str) -> bytes:
    """
    Read the 8-byte key from the xor file written next to the block files.

    A missing, unreadable or empty file means the block files are not
    obfuscated and gives ZERO_KEY. A file shorter than 8 bytes fills the
    key from the front and leaves the rest zero.
    """
    try:
        size = os.path.getsize(path)
        if size == 0:
            logger.info("XOR file %s is empty. Block files are not obfuscated.", path)
            return ZERO_KEY
        with open(path, "rb") as f:
            raw_key = f.read(KEY_LENGTH)
    except OSError as err:
        logger.warning("Error checking the XOR file (%s). "
                       "Assuming block files are not obfuscated.", err)
        return ZERO_KEY

    logger.info("XOR file is present.")
    if len(raw_key) < KEY_LENGTH:
        logger.warning("XOR file %s holds only %d bytes; padding key with zeroes.",
                       path, len(raw_key))
    key = raw_key.ljust(KEY_LENGTH, b"\x00")
    if any(key):
        logger.info("XOR key is not 0x00. Block files are obfuscated.")
    logger.info("XOR key: %s", key.hex())
    return key


class XorReader:
    """
    Read-only byte stream that removes the XOR obfuscation of the wrapped
    source.

    The key byte applied to each byte depends on its absolute position in
    the stream, so the output does not depend on how reads are chunked.
    """

    def __init__(self, raw, key: bytes = ZERO_KEY):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"obfuscation key must be {KEY_LENGTH} bytes, got {len(key)}")
        self.raw = raw
        self._key = bytes(key)
        self._position = 0

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def position(self) -> int:
        """Number of bytes handed out so far."""
        return self._position

    def read(self, size: int = -1) -> bytes:
        data = self.raw.read(size)
        if not data:
            return b""
        clear = deobfuscate(data, self._key, self._position)
        self._position += len(data)
        return clear

    def close(self):
        self.raw.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"XorReader(key={self._key.hex()}, position={self._position})"
