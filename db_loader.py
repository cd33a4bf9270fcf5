import logging
import os

import psycopg2
from psycopg2.extras import execute_values

logger = logging.getLogger(__name__)

# --- Configuration ---
BATCH_SIZE = 1000  # Commit every 1000 blocks
DEFAULT_DSN = os.getenv("BLKDUMP_DSN", "dbname=bitcoin")

SCHEMA = """
CREATE TABLE IF NOT EXISTS blocks (
    hash BYTEA PRIMARY KEY,
    previous_block BYTEA NOT NULL,
    timestamp BIGINT NOT NULL,
    tx_count INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS transactions (
    txid BYTEA PRIMARY KEY,
    block_hash BYTEA NOT NULL,
    is_coinbase BOOLEAN NOT NULL
);
CREATE TABLE IF NOT EXISTS outputs (
    txid BYTEA NOT NULL,
    vout INTEGER NOT NULL,
    value BIGINT NOT NULL,
    script_pubkey BYTEA NOT NULL,
    script_type TEXT NOT NULL,
    PRIMARY KEY (txid, vout)
);
CREATE TABLE IF NOT EXISTS inputs (
    txid BYTEA NOT NULL,
    vin INTEGER NOT NULL,
    prev_txid BYTEA,
    prev_vout BIGINT,
    script_sig BYTEA NOT NULL,
    PRIMARY KEY (txid, vin)
);
"""


def get_db_connection(dsn: str = DEFAULT_DSN):
    try:
        return psycopg2.connect(dsn)
    except psycopg2.Error as e:
        logger.error("Error connecting to database: %s", e)
        raise


def create_schema(conn):
    with conn.cursor() as cursor:
        cursor.execute(SCHEMA)
    conn.commit()


def block_rows(block):
    """
    Convert a decoded block into rows for the blocks, transactions, outputs
    and inputs tables. Hashes are stored in display byte order.
    """
    block_hash = bytes.fromhex(block.hash)
    blocks = [(block_hash, bytes.fromhex(block.header.prev_block_hash),
               block.header.timestamp, block.tx_count)]
    txs, outputs, inputs = [], [], []

    for tx in block.transactions:
        txid = bytes.fromhex(tx.txid)
        is_coinbase = tx.is_coinbase
        txs.append((txid, block_hash, is_coinbase))

        for vout, out in enumerate(tx.vouts):
            outputs.append((txid, vout, out.value, out.script_pubkey, out.script_type))

        for vin, inp in enumerate(tx.vins):
            if is_coinbase:
                inputs.append((txid, vin, None, None, inp.script_sig))
            else:
                prev = inp.previous_output
                inputs.append((txid, vin, bytes.fromhex(prev.txid), prev.index, inp.script_sig))

    return blocks, txs, outputs, inputs


def bulk_insert(cursor, blocks, txs, outputs, inputs):
    if blocks:
        execute_values(cursor,
            "INSERT INTO blocks (hash, previous_block, timestamp, tx_count) VALUES %s "
            "ON CONFLICT (hash) DO NOTHING",
            blocks
        )
    if txs:
        execute_values(cursor,
            "INSERT INTO transactions (txid, block_hash, is_coinbase) VALUES %s "
            "ON CONFLICT (txid) DO NOTHING",
            txs
        )
    if outputs:
        execute_values(cursor,
            "INSERT INTO outputs (txid, vout, value, script_pubkey, script_type) VALUES %s "
            "ON CONFLICT (txid, vout) DO NOTHING",
            outputs
        )
    if inputs:
        execute_values(cursor,
            "INSERT INTO inputs (txid, vin, prev_txid, prev_vout, script_sig) VALUES %s "
            "ON CONFLICT (txid, vin) DO NOTHING",
            inputs
        )


class BlockLoader:
    """
    Buffers rows for decoded blocks and writes them in batches, committing
    once per batch.
    """

    def __init__(self, conn, batch_size: int = BATCH_SIZE):
        self.conn = conn
        self.batch_size = batch_size
        self.total_blocks = 0
        self._pending_blocks = 0
        self._batches = ([], [], [], [])

    def add(self, block):
        for batch, rows in zip(self._batches, block_rows(block)):
            batch.extend(rows)
        self._pending_blocks += 1
        if self._pending_blocks >= self.batch_size:
            self.flush()

    def flush(self):
        if not self._pending_blocks:
            return
        with self.conn.cursor() as cursor:
            bulk_insert(cursor, *self._batches)
        self.conn.commit()
        self.total_blocks += self._pending_blocks
        logger.info("Committed %d blocks (%d total)", self._pending_blocks, self.total_blocks)
        self.discard()

    def discard(self):
        """Drop rows that have not been written yet."""
        for batch in self._batches:
            batch.clear()
        self._pending_blocks = 0
