import logging
import struct
from collections import namedtuple

from utilities import FramingError, TruncatedFrameError

logger = logging.getLogger(__name__)

# --- Configuration ---
# Network magic as read little-endian from the first 4 bytes of each record.
MAGIC = {
    "mainnet": 0xD9B4BEF9,
    "testnet3": 0x0709110B,
    "testnet4": 0x283F161C,
    "signet": 0x40CF030A,
    "regtest": 0xDAB5BFFA,
}
MAINNET_MAGIC = MAGIC["mainnet"]
MAX_FRAME_PAYLOAD = 32 * 1024 * 1024  # largest message payload on the wire

Frame = namedtuple("Frame", ["offset", "magic", "length", "payload"])


class FrameReader:
    """
    Splits a (deobfuscated) block file stream into [magic][length][payload]
    records.

    Iterating yields Frame tuples until the stream ends cleanly on a record
    boundary. Bad magic and truncated records raise; there is no attempt to
    find the next record, since its boundary cannot be known.
    """

    def __init__(self, stream, magic: int = MAINNET_MAGIC, stop_at_zero_padding: bool = False):
        self.stream = stream
        self.magic = magic
        self.stop_at_zero_padding = stop_at_zero_padding
        self.offset = 0  # bytes consumed from stream

    def _read_exact(self, size: int) -> bytes:
        """Read size bytes, or fewer only if the stream ends first."""
        chunks = []
        missing = size
        while missing > 0:
            chunk = self.stream.read(missing)
            if not chunk:
                break
            chunks.append(chunk)
            missing -= len(chunk)
        data = b"".join(chunks)
        self.offset += len(data)
        return data

    def read_frame(self):
        """Return the next Frame, or None at a clean end of stream."""
        start = self.offset

        # --- Magic (4 bytes) ---
        raw_magic = self._read_exact(4)
        if not raw_magic:
            return None
        if len(raw_magic) < 4:
            raise TruncatedFrameError(
                f"truncated magic at offset {start}: got {len(raw_magic)} of 4 bytes", start)
        magic = struct.unpack("<I", raw_magic)[0]
        if magic != self.magic:
            if magic == 0 and self.stop_at_zero_padding:
                logger.info("zero padding at offset %d, treating as end of data", start)
                return None
            raise FramingError(f"bad magic 0x{magic:x} at offset {start}", start)

        # --- Length (4 bytes) ---
        raw_length = self._read_exact(4)
        if len(raw_length) < 4:
            raise TruncatedFrameError(
                f"truncated length at offset {start + 4}: got {len(raw_length)} of 4 bytes",
                start)
        length = struct.unpack("<I", raw_length)[0]
        if length > MAX_FRAME_PAYLOAD:
            raise FramingError(
                f"frame at offset {start} declares {length} bytes, "
                f"more than the {MAX_FRAME_PAYLOAD} byte limit", start)

        # --- Payload ---
        payload = self._read_exact(length)
        if len(payload) < length:
            raise TruncatedFrameError(
                f"truncated payload in frame at offset {start}: "
                f"got {len(payload)} of {length} bytes", start)

        logger.debug("frame at offset %d, %d payload bytes", start, length)
        return Frame(start, magic, length, payload)

    def __iter__(self):
        while True:
            frame = self.read_frame()
            if frame is None:
                return
            yield frame

    def payloads(self):
        for frame in self:
            yield frame.payload
