"""
Dump the blocks stored in a Bitcoin Core block file (blkNNNNN.dat).

The file is read through the XOR key found in the xor file (if any), split
into [magic][length][payload] records and each payload is decoded into a
block. A short report is printed per block. Any framing, decode or I/O
error stops the run with a non-zero exit status.
"""
import argparse
import logging
import os
import sys

import psycopg2

from block_class import Block
from db_loader import DEFAULT_DSN, BlockLoader, create_schema, get_db_connection
from frame_reader import MAGIC, FrameReader
from utilities import DecodeError, FramingError
from xor_reader import XorReader, load_obfuscation_key

logger = logging.getLogger(__name__)

# --- Configuration ---
BLOCK_FILE = "blk00455.dat"
XOR_FILE = "xor.dat"
MAX_TXS_SHOWN = 5
MAX_INPUTS_SHOWN = 3
MAX_OUTPUTS_SHOWN = 3
SATOSHIS_PER_BTC = 100_000_000
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def iter_blocks(block_path: str, key: bytes, magic: int, stop_at_zero_padding: bool = False):
    """
    Yield (frame, block) for every record of the block file, in file order.

    The file stays open only while the generator runs. A payload that fails
    to decode raises DecodeError with the frame offset attached as
    `frame_offset`.
    """
    with open(block_path, "rb") as f:
        reader = FrameReader(XorReader(f, key), magic, stop_at_zero_padding)
        for frame in reader:
            try:
                block = Block.parse(frame.payload)
            except DecodeError as err:
                err.frame_offset = frame.offset
                raise
            yield frame, block


def print_block(block, out=None):
    out = out or sys.stdout
    txs = block.transactions
    print(f"Block hash: {block.hash}, {len(txs)} tx(s) present in block.", file=out)

    for i, tx in enumerate(txs[:MAX_TXS_SHOWN]):
        print(f"  Tx {i}: {tx.txid}", file=out)

        print(f"    Inputs: {len(tx.vins)}", file=out)
        for j, vin in enumerate(tx.vins[:MAX_INPUTS_SHOWN]):
            prev = vin.previous_output
            print(f"      Input {j}: {prev.txid}:{prev.index}", file=out)

        print(f"    Outputs: {len(tx.vouts)}", file=out)
        for k, vout in enumerate(tx.vouts[:MAX_OUTPUTS_SHOWN]):
            print(f"      Output {k}: {vout.value / SATOSHIS_PER_BTC:.8f} BTC", file=out)

    if len(txs) > MAX_TXS_SHOWN:
        print(f"  ... and {len(txs) - MAX_TXS_SHOWN} more transactions", file=out)
    print(file=out)


def positive_int(text):
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("block_file", nargs="?", default=BLOCK_FILE,
                        help=f"block file to read (default: {BLOCK_FILE})")
    parser.add_argument("--xor-file", default=XOR_FILE,
                        help=f"file holding the 8-byte obfuscation key (default: {XOR_FILE})")
    parser.add_argument("--network", choices=sorted(MAGIC), default="mainnet",
                        help="network whose magic frames the records (default: mainnet)")
    parser.add_argument("--max-blocks", type=positive_int, default=None,
                        help="stop after this many blocks")
    parser.add_argument("--stop-at-zero-padding", action="store_true",
                        help="treat a zero magic as the end of the data")
    parser.add_argument("--database", action="store_true",
                        help="also load the decoded blocks into PostgreSQL")
    parser.add_argument("--dsn", default=DEFAULT_DSN,
                        help="PostgreSQL connection string (default: $BLKDUMP_DSN)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("LOGLEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    key = load_obfuscation_key(args.xor_file)
    loader = None
    conn = None
    count = 0
    try:
        if args.database:
            conn = get_db_connection(args.dsn)
            create_schema(conn)
            loader = BlockLoader(conn)

        blocks = iter_blocks(args.block_file, key, MAGIC[args.network], args.stop_at_zero_padding)
        for frame, block in blocks:
            print_block(block)
            if loader is not None:
                loader.add(block)
            count += 1
            if args.max_blocks is not None and count >= args.max_blocks:
                blocks.close()
                break

        if loader is not None:
            loader.flush()
    except FramingError as err:
        logger.error("framing error after %d block(s): %s", count, err)
        return 1
    except DecodeError as err:
        logger.error("failed to decode block at offset %d: %s",
                     err.frame_offset, err)
        return 1
    except psycopg2.Error as err:
        logger.error("database error: %s", err)
        return 1
    except OSError as err:
        logger.error("I/O error: %s", err)
        return 1
    finally:
        if loader is not None:
            loader.discard()
        if conn is not None:
            conn.close()

    logger.info("Done. %d block(s) read.", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
