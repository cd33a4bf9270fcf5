import struct
from typing import List, Optional

from utilities import PayloadReader, double_sha256, hash_to_hex, write_varint

SEGWIT_MARKER = b"\x00\x01"  # marker + flag between version and input count
NULL_HASH = b"\x00" * 32
NULL_INDEX = 0xFFFFFFFF

# Smallest possible encodings, used to reject counts the payload cannot hold.
MIN_TX_SIZE = 10       # version + 2 empty counts + locktime
MIN_TXIN_SIZE = 41     # outpoint + empty script + sequence
MIN_TXOUT_SIZE = 9     # value + empty script
MIN_WITNESS_ITEM_SIZE = 1


# --- Helper Classes for Transaction Components ---

class OutPoint:
    """Reference to an output of an earlier transaction."""

    def __init__(self, hash: bytes, index: int):
        self.hash = hash    # 32 bytes, wire order
        self.index = index  # 4 bytes

    @property
    def txid(self) -> str:
        return hash_to_hex(self.hash)

    @property
    def is_null(self) -> bool:
        return self.hash == NULL_HASH and self.index == NULL_INDEX

    def serialize(self) -> bytes:
        return self.hash + struct.pack("<I", self.index)

    def __eq__(self, other):
        return isinstance(other, OutPoint) and (self.hash, self.index) == (other.hash, other.index)

    def __repr__(self):
        return f"OutPoint({self.txid}:{self.index})"


class TxIn:
    """Represents a transaction input (vin)."""

    def __init__(self, previous_output: OutPoint, script_sig: bytes, sequence: int,
                 witness: Optional[List[bytes]] = None):
        self.previous_output = previous_output
        self.script_sig = script_sig           # Variable length script
        self.sequence = sequence               # 4 bytes
        self.witness = witness if witness is not None else []

    @property
    def is_coinbase(self) -> bool:
        return self.previous_output.is_null

    @classmethod
    def parse(cls, reader: PayloadReader) -> "TxIn":
        prev_hash = reader.read_bytes(32, "input previous output hash")
        prev_index = reader.read_uint32("input previous output index")
        script_len = reader.read_varint("input script length")
        script_sig = reader.read_bytes(script_len, "input script")
        sequence = reader.read_uint32("input sequence")
        return cls(OutPoint(prev_hash, prev_index), script_sig, sequence)

    def serialize(self) -> bytes:
        return (self.previous_output.serialize()
                + write_varint(len(self.script_sig)) + self.script_sig
                + struct.pack("<I", self.sequence))

    def __repr__(self):
        return f"TxIn(prev_tx={self.previous_output.txid[:8]}..., index={self.previous_output.index})"


class TxOut:
    """Represents a transaction output (vout)."""

    def __init__(self, value: int, script_pubkey: bytes):
        self.value = value                 # Amount in satoshis (8 bytes)
        self.script_pubkey = script_pubkey # Variable length script

    @property
    def btc(self) -> float:
        return self.value / 10**8

    @property
    def script_type(self) -> str:
        spk = self.script_pubkey
        size = len(spk)
        if size == 25 and spk[:2] == b"\x76\xa9" and spk[-2:] == b"\x88\xac":
            return "P2PKH"
        if size == 23 and spk[0] == 0xa9 and spk[-1] == 0x87:
            return "P2SH"
        if size == 22 and spk[:2] == b"\x00\x14":
            return "P2WPKH"
        if size == 34 and spk[:2] == b"\x00\x20":
            return "P2WSH"
        if size == 34 and spk[:2] == b"\x51\x20":
            return "P2TR"
        if size in (35, 67) and spk[0] == size - 2 and spk[-1] == 0xac:
            return "P2PK"
        if spk and spk[0] == 0x6a:
            return "OP_RETURN"
        return "unknown"

    @classmethod
    def parse(cls, reader: PayloadReader) -> "TxOut":
        value = reader.read_int64("output value")
        pk_len = reader.read_varint("output script length")
        script_pubkey = reader.read_bytes(pk_len, "output script")
        return cls(value, script_pubkey)

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + write_varint(len(self.script_pubkey)) + self.script_pubkey

    def __repr__(self):
        return f"TxOut(value={self.btc:.4f} BTC, script_len={len(self.script_pubkey)})"


# --- Transaction Class ---

class Transaction:
    """
    A Bitcoin transaction: version, inputs, outputs, locktime and, for
    segwit transactions, one witness stack per input.

    The TXID is the double SHA-256 of the serialization without marker,
    flag and witness data, so it is the same whether or not a transaction
    carries witnesses. The WTXID hashes the full serialization.
    """

    def __init__(self, version: int, vins: List[TxIn], vouts: List[TxOut], locktime: int,
                 segwit: Optional[bool] = None):
        self.version = version
        self.vins = vins
        self.vouts = vouts
        self.locktime = locktime
        if segwit is None:
            segwit = any(vin.witness for vin in vins)
        self.segwit = segwit

    @classmethod
    def parse(cls, reader: PayloadReader) -> "Transaction":
        """Decode one transaction starting at the reader's offset."""
        # 1. Version (4 bytes, little-endian)
        version = reader.read_int32("transaction version")

        # 2. SegWit marker/flag. Anything else is the start of the input count.
        segwit = reader.peek(2) == SEGWIT_MARKER
        if segwit:
            reader.skip(2, "segwit marker")

        # 3. Inputs (TxIn)
        vin_count = reader.read_count("input count", MIN_TXIN_SIZE)
        vins = [TxIn.parse(reader) for _ in range(vin_count)]

        # 4. Outputs (TxOut)
        vout_count = reader.read_count("output count", MIN_TXOUT_SIZE)
        vouts = [TxOut.parse(reader) for _ in range(vout_count)]

        # 5. Witness stacks, one per input
        if segwit:
            for vin in vins:
                item_count = reader.read_count("witness item count", MIN_WITNESS_ITEM_SIZE)
                stack = []
                for _ in range(item_count):
                    item_len = reader.read_varint("witness item length")
                    stack.append(reader.read_bytes(item_len, "witness item"))
                vin.witness = stack

        # 6. Locktime (4 bytes)
        locktime = reader.read_uint32("locktime")

        return cls(version, vins, vouts, locktime, segwit=segwit)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Transaction":
        reader = PayloadReader(data)
        tx = cls.parse(reader)
        reader.expect_end("transaction")
        return tx

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.segwit
        parts = [struct.pack("<i", self.version)]
        if with_witness:
            parts.append(SEGWIT_MARKER)
        parts.append(write_varint(len(self.vins)))
        parts.extend(vin.serialize() for vin in self.vins)
        parts.append(write_varint(len(self.vouts)))
        parts.extend(vout.serialize() for vout in self.vouts)
        if with_witness:
            for vin in self.vins:
                parts.append(write_varint(len(vin.witness)))
                for item in vin.witness:
                    parts.append(write_varint(len(item)) + item)
        parts.append(struct.pack("<I", self.locktime))
        return b"".join(parts)

    @property
    def txid(self) -> str:
        return hash_to_hex(double_sha256(self.serialize(include_witness=False)))

    @property
    def wtxid(self) -> str:
        return hash_to_hex(double_sha256(self.serialize(include_witness=True)))

    @property
    def witnesses(self) -> Optional[List[List[bytes]]]:
        if not self.segwit:
            return None
        return [vin.witness for vin in self.vins]

    @property
    def is_coinbase(self) -> bool:
        return len(self.vins) == 1 and self.vins[0].is_coinbase

    @property
    def size(self) -> int:
        return len(self.serialize())

    @property
    def stripped_size(self) -> int:
        return len(self.serialize(include_witness=False))

    def __repr__(self):
        return (f"--- TRANSACTION ---\n"
                f"TXID: {self.txid}\n"
                f"Type: {'SEGWIT' if self.segwit else 'LEGACY'}\n"
                f"Version: {self.version}\n"
                f"Inputs: {len(self.vins)}\n"
                f"Outputs: {len(self.vouts)}\n"
                f"Locktime: {self.locktime}\n")
