import logging

import pytest

import block_parser
import db_loader
from block_class import Block
from frame_reader import MAGIC, MAINNET_MAGIC
from xor_reader import deobfuscate


@pytest.fixture
def write_block_file(tmp_path):
    def factory(data: bytes, key: bytes = None):
        path = tmp_path / "blk00000.dat"
        path.write_bytes(deobfuscate(data, key) if key else data)
        xor_path = tmp_path / "xor.dat"
        if key is not None:
            xor_path.write_bytes(key)
        return str(path), str(xor_path)
    return factory


def run(block_path, xor_path, *extra):
    return block_parser.main([block_path, "--xor-file", xor_path, *extra])


def block_lines(text):
    return [line for line in text.splitlines() if line.startswith("Block hash:")]


def test_one_block_then_bad_magic(header, make_coinbase, make_frame, write_block_file,
                                  capsys, caplog):
    coinbase = make_coinbase(value=5000000000)
    first = make_frame(Block(header, [coinbase]).serialize())
    second = make_frame(Block(header, []).serialize(), magic=MAINNET_MAGIC ^ 1)
    block_path, xor_path = write_block_file(first + second)

    assert run(block_path, xor_path) == 1

    out = capsys.readouterr().out
    assert block_lines(out) == [
        "Block hash: 000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f, "
        "1 tx(s) present in block."]
    assert f"  Tx 0: {coinbase.txid}" in out
    assert "    Inputs: 1" in out
    assert "      Input 0: " + "0" * 64 + ":4294967295" in out
    assert "      Output 0: 50.00000000 BTC" in out
    assert f"bad magic 0x{MAINNET_MAGIC ^ 1:x} at offset {len(first)}" in caplog.text


def test_clean_file_exits_zero(header, make_coinbase, make_frame, write_block_file, capsys):
    data = make_frame(Block(header, [make_coinbase()]).serialize()) * 3
    block_path, xor_path = write_block_file(data)
    assert run(block_path, xor_path) == 0
    assert len(block_lines(capsys.readouterr().out)) == 3


def test_obfuscated_file_with_key_file(header, make_coinbase, make_frame, write_block_file,
                                       capsys, caplog):
    caplog.set_level(logging.INFO)
    key = bytes.fromhex("5ac1d292e7350efe")
    data = make_frame(Block(header, [make_coinbase()]).serialize()) * 2
    block_path, xor_path = write_block_file(data, key)
    assert run(block_path, xor_path) == 0
    assert len(block_lines(capsys.readouterr().out)) == 2
    assert "XOR key: 5ac1d292e7350efe" in caplog.text


def test_obfuscated_file_without_key_fails(header, make_coinbase, make_frame, tmp_path,
                                           caplog):
    data = make_frame(Block(header, [make_coinbase()]).serialize())
    path = tmp_path / "blk00000.dat"
    path.write_bytes(deobfuscate(data, bytes.fromhex("5ac1d292e7350efe")))
    assert run(str(path), str(tmp_path / "missing.dat")) == 1
    assert "bad magic" in caplog.text and "offset 0" in caplog.text


def test_report_caps_transactions_inputs_and_outputs(header, make_coinbase, make_spend,
                                                     make_frame, write_block_file, capsys):
    txs = [make_coinbase()] + [make_spend(n_inputs=4, n_outputs=5, tag=i) for i in range(7)]
    block_path, xor_path = write_block_file(make_frame(Block(header, txs).serialize()))
    assert run(block_path, xor_path) == 0
    out = capsys.readouterr().out
    assert "8 tx(s) present in block." in out
    assert "  Tx 4: " in out and "  Tx 5: " not in out
    assert "  ... and 3 more transactions" in out
    assert "    Inputs: 4" in out and "      Input 3:" not in out
    assert "    Outputs: 5" in out and "      Output 3:" not in out
    assert "      Output 2: 0.00003000 BTC" in out


def test_no_remainder_line_for_exactly_five(header, make_coinbase, make_frame, capsys):
    block = Block(header, [make_coinbase(height=i) for i in range(5)])
    block_parser.print_block(block)
    out = capsys.readouterr().out
    assert "more transactions" not in out
    assert out.endswith("\n\n")


def test_decode_error_reports_frame_offset(header, make_frame, write_block_file, caplog):
    good = make_frame(Block(header, []).serialize())
    bad = make_frame(header.serialize() + b"\x05")
    block_path, xor_path = write_block_file(good + bad)
    assert run(block_path, xor_path) == 1
    assert f"failed to decode block at offset {len(good)}" in caplog.text
    assert "transaction count" in caplog.text


def test_truncated_file_is_fatal(header, make_frame, write_block_file, capsys, caplog):
    data = make_frame(Block(header, []).serialize())
    block_path, xor_path = write_block_file(data + data[:20])
    assert run(block_path, xor_path) == 1
    assert len(block_lines(capsys.readouterr().out)) == 1
    assert "truncated payload" in caplog.text


def test_missing_block_file(tmp_path, caplog):
    assert run(str(tmp_path / "nope.dat"), str(tmp_path / "xor.dat")) == 1
    assert "I/O error" in caplog.text


def test_max_blocks(header, make_frame, write_block_file, capsys):
    data = make_frame(Block(header, []).serialize()) * 4
    block_path, xor_path = write_block_file(data)
    assert run(block_path, xor_path, "--max-blocks", "2") == 0
    assert len(block_lines(capsys.readouterr().out)) == 2


@pytest.mark.parametrize("limit", ["0", "-3"])
def test_max_blocks_below_one_is_rejected(header, make_frame, write_block_file, capsys, limit):
    block_path, xor_path = write_block_file(make_frame(Block(header, []).serialize()))
    with pytest.raises(SystemExit) as excinfo:
        run(block_path, xor_path, "--max-blocks", limit)
    assert excinfo.value.code == 2
    captured = capsys.readouterr()
    assert block_lines(captured.out) == []
    assert "must be at least 1" in captured.err


def test_network_option(header, make_frame, write_block_file, capsys):
    data = make_frame(Block(header, []).serialize(), magic=MAGIC["regtest"])
    block_path, xor_path = write_block_file(data)
    assert run(block_path, xor_path, "--network", "regtest") == 0
    assert len(block_lines(capsys.readouterr().out)) == 1


def test_stop_at_zero_padding_option(header, make_frame, write_block_file, capsys):
    data = make_frame(Block(header, []).serialize()) + bytes(4096)
    block_path, xor_path = write_block_file(data)
    assert run(block_path, xor_path) == 1
    assert run(block_path, xor_path, "--stop-at-zero-padding") == 0


def test_iter_blocks_closes_file(header, make_frame, write_block_file):
    block_path, _ = write_block_file(make_frame(Block(header, []).serialize()) * 2)
    blocks = block_parser.iter_blocks(block_path, bytes(8), MAINNET_MAGIC)
    frame, block = next(blocks)
    assert frame.offset == 0 and block.tx_count == 0
    blocks.close()
    with pytest.raises(StopIteration):
        next(blocks)


# --- database option ---

class FakeCursor:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql):
        pass


class FakeConnection:
    def __init__(self):
        self.commits = 0
        self.closed = False

    def cursor(self):
        return FakeCursor()

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True


def test_database_option_loads_blocks(header, make_coinbase, make_frame, write_block_file,
                                      monkeypatch, capsys):
    conn = FakeConnection()
    inserted = []
    monkeypatch.setattr(block_parser, "get_db_connection", lambda dsn: conn)
    monkeypatch.setattr(db_loader, "execute_values",
                        lambda cursor, sql, rows: inserted.append((sql.split()[2], len(rows))))
    data = make_frame(Block(header, [make_coinbase()]).serialize()) * 2
    block_path, xor_path = write_block_file(data)

    assert run(block_path, xor_path, "--database", "--dsn", "dbname=test") == 0
    assert inserted == [("blocks", 2), ("transactions", 2), ("outputs", 2), ("inputs", 2)]
    assert conn.commits == 2  # schema + one batch
    assert conn.closed


def test_database_rows_discarded_on_fatal_error(header, make_frame, write_block_file,
                                                monkeypatch):
    conn = FakeConnection()
    inserted = []
    monkeypatch.setattr(block_parser, "get_db_connection", lambda dsn: conn)
    monkeypatch.setattr(db_loader, "execute_values",
                        lambda cursor, sql, rows: inserted.append(sql))
    data = make_frame(Block(header, []).serialize()) + b"\x00\x01"
    block_path, xor_path = write_block_file(data)

    assert run(block_path, xor_path, "--database") == 1
    assert inserted == []
    assert conn.closed
