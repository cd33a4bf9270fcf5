import struct
from datetime import datetime, timezone
from typing import List

from transaction_class import MIN_TX_SIZE, Transaction
from utilities import PayloadReader, double_sha256, hash_to_hex, write_varint


class BlockHeader:
    """
    The fixed 80-byte block header. The block hash is the double SHA-256 of
    exactly these 80 bytes.
    """

    SIZE = 80
    _FORMAT = "<i32s32sIII"

    def __init__(self, version: int, prev_block: bytes, merkle_root: bytes,
                 timestamp: int, bits: int, nonce: int):
        self.version = version
        self.prev_block = prev_block      # 32 bytes, wire order
        self.merkle_root = merkle_root    # 32 bytes, wire order
        self.timestamp = timestamp        # Unix epoch seconds
        self.bits = bits
        self.nonce = nonce

    @classmethod
    def parse(cls, reader: PayloadReader) -> "BlockHeader":
        raw = reader.read_bytes(cls.SIZE, "block header")
        return cls(*struct.unpack(cls._FORMAT, raw))

    def serialize(self) -> bytes:
        return struct.pack(self._FORMAT, self.version, self.prev_block, self.merkle_root,
                           self.timestamp, self.bits, self.nonce)

    @property
    def hash(self) -> str:
        return hash_to_hex(double_sha256(self.serialize()))

    @property
    def prev_block_hash(self) -> str:
        return hash_to_hex(self.prev_block)

    @property
    def merkle_root_hash(self) -> str:
        return hash_to_hex(self.merkle_root)

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    def __repr__(self):
        return f"BlockHeader(hash={self.hash}, prev={self.prev_block_hash[:16]}...)"


class Block:
    """
    A block decoded from one framed payload: header plus transactions.
    """

    def __init__(self, header: BlockHeader, transactions: List[Transaction]):
        self.header = header
        self.transactions = transactions

    @classmethod
    def parse(cls, payload: bytes) -> "Block":
        """
        Decode a whole payload. The payload must hold exactly one block; a
        short payload, an impossible count or trailing bytes raise DecodeError.
        """
        reader = PayloadReader(payload)
        header = BlockHeader.parse(reader)
        tx_count = reader.read_count("transaction count", MIN_TX_SIZE)
        transactions = [Transaction.parse(reader) for _ in range(tx_count)]
        reader.expect_end("block")
        return cls(header, transactions)

    def serialize(self) -> bytes:
        parts = [self.header.serialize(), write_varint(len(self.transactions))]
        parts.extend(tx.serialize() for tx in self.transactions)
        return b"".join(parts)

    @property
    def hash(self) -> str:
        return self.header.hash

    @property
    def tx_count(self) -> int:
        return len(self.transactions)

    def __repr__(self):
        return (f"--- BLOCK ---\n"
                f"Block Hash: {self.hash}\n"
                f"Timestamp: {self.header.datetime.strftime('%Y-%m-%d %H:%M:%S')}\n"
                f"Transaction Count: {self.tx_count}\n")
