import struct

import pytest

from block_class import Block, BlockHeader
from frame_reader import MAINNET_MAGIC
from transaction_class import NULL_HASH, NULL_INDEX, OutPoint, Transaction, TxIn, TxOut

GENESIS_HEADER_HEX = (
    "01000000"
    + "00" * 32
    + "3ba3edfd7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa4b1e5e4a"
    + "29ab5f49"
    + "ffff001d"
    + "1dac2b7c"
)
GENESIS_PUBKEY = (
    "04678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61deb6"
    "49f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5f"
)


@pytest.fixture
def genesis_block():
    script_sig = (bytes.fromhex("04ffff001d010445")
                  + b"The Times 03/Jan/2009 Chancellor on brink of second bailout for banks")
    coinbase = Transaction(
        version=1,
        vins=[TxIn(OutPoint(NULL_HASH, NULL_INDEX), script_sig, 0xFFFFFFFF)],
        vouts=[TxOut(5000000000, bytes.fromhex("41" + GENESIS_PUBKEY + "ac"))],
        locktime=0,
    )
    return Block(_genesis_header(), [coinbase])


def _genesis_header():
    return BlockHeader(*struct.unpack("<i32s32sIII", bytes.fromhex(GENESIS_HEADER_HEX)))


@pytest.fixture
def header():
    return _genesis_header()


@pytest.fixture
def make_coinbase():
    def factory(value=5000000000, height=1):
        return Transaction(
            version=1,
            vins=[TxIn(OutPoint(NULL_HASH, NULL_INDEX), bytes([1, height & 0xff]), 0xFFFFFFFF)],
            vouts=[TxOut(value, b"\x76\xa9\x14" + bytes(20) + b"\x88\xac")],
            locktime=0,
        )
    return factory


@pytest.fixture
def make_spend():
    def factory(n_inputs=1, n_outputs=1, witness_items=0, tag=0x42):
        vins = []
        for i in range(n_inputs):
            witness = [bytes([tag, i, j]) for j in range(witness_items)]
            vins.append(TxIn(OutPoint(bytes([tag]) * 32, i), b"", 0xFFFFFFFE, witness))
        vouts = [TxOut(1000 * (k + 1), b"\x00\x14" + bytes([k]) * 20) for k in range(n_outputs)]
        return Transaction(2, vins, vouts, 0)
    return factory


@pytest.fixture
def make_frame():
    def factory(payload: bytes, magic: int = MAINNET_MAGIC) -> bytes:
        return struct.pack("<II", magic, len(payload)) + payload
    return factory
