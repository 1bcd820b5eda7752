"""Append-only, deduplicating CSV sink.

This module provides:
- `CsvEventSink`: writes one row per decoded event, exactly once per identity key
- `cell_value`: conversion of decoded field values to CSV cells

Design notes
------------
- The column set is fixed when the sink is created (base columns + the union of
  every registry event's fields); rows of events lacking a field leave it empty.
- An existing file must carry exactly that header, otherwise nothing is written.
- Each row is serialized with pyarrow's CSV writer into memory, then appended
  with a single write, flushed and fsynced before `export` returns.
- Identity keys are remembered for the last `dedup_window_blocks` blocks.
  On open they are reloaded from the existing file: every key above the
  checkpoint (rows of a chunk interrupted before its checkpoint advance) plus
  the window below the highest block, so a restart that re-reads those
  blocks does not duplicate rows.
"""

from __future__ import annotations

import csv
import json
import logging
import os
from collections import OrderedDict
from collections.abc import Iterable
from pathlib import Path
from typing import Any, BinaryIO

import pyarrow as pa
import pyarrow.csv as pacsv

from tradecollector.core.errors import ExportError
from tradecollector.core.interfaces import ExportResult
from tradecollector.core.models import BASE_COLUMNS, EventEnvelope, EventKey, row_schema

log = logging.getLogger(__name__)

KEY_COLUMN_TYPES = {
    "block_number": pa.uint64(),
    "transaction_hash": pa.string(),
    "log_index": pa.uint32(),
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)  # uint256 does not survive JSON number parsing
    return value


def cell_value(value: Any) -> str | None:
    """Render one decoded field value as a CSV cell (None → empty cell)."""
    if value is None:
        return None
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(_jsonable(value), separators=(",", ":"))
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def read_header(path: Path) -> list[str] | None:
    """First CSV record of `path`, or None for an empty file."""
    with open(path, newline="", encoding="utf-8") as f:
        return next(csv.reader(f), None)


class CsvEventSink:
    """Exactly-once CSV writer for `EventEnvelope` rows.

    Parameters
    ----------
    path : str | Path
        Output CSV file (created with its parent directory if missing).
    field_names : Iterable[str]
        Event field columns, in output order.
    dedup_window_blocks : int
        How many blocks below the highest exported block keys are remembered.
    """

    def __init__(self, path: str | Path, field_names: Iterable[str], *, dedup_window_blocks: int = 1_000) -> None:
        self.path = Path(path)
        self.schema = row_schema(field_names)
        self.columns: list[str] = list(self.schema.names)
        self.field_columns = self.columns[len(BASE_COLUMNS):]
        self.dedup_window_blocks = dedup_window_blocks
        self._seen: OrderedDict[EventKey, int] = OrderedDict()
        self._highest_block = -1
        self._fh: BinaryIO | None = None

    # ---------- lifecycle ----------

    def open(self, checkpoint: int | None = None) -> CsvEventSink:
        """Validate or create the file, reload recent keys and open for append.

        `checkpoint` is the last block known complete; every row above it is
        remembered regardless of the dedup window. None means no block is
        known complete, so every row in the file is remembered.
        """
        if self._fh is not None:
            return self
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fresh = not self.path.exists() or self.path.stat().st_size == 0
            if not fresh:
                self._check_header()
                self._repair_tail()
                self._reload_keys(checkpoint)
            self._fh = open(self.path, "ab")
            if fresh:
                self._write_bytes(self._encode(self.schema.empty_table(), include_header=True))
        except (OSError, pa.ArrowException) as e:
            raise ExportError(f"cannot open output {self.path}: {e}") from e
        log.info("output %s open (%d columns, %d recent keys)", self.path, len(self.columns), len(self._seen))
        return self

    def close(self) -> None:
        fh, self._fh = self._fh, None
        if fh is not None:
            fh.close()

    def __enter__(self) -> CsvEventSink:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---------- existing file ----------

    def _check_header(self) -> None:
        header = read_header(self.path)
        if header != self.columns:
            raise ExportError(
                f"{self.path} has a different header; refusing to mix schemas\n"
                f"  file:     {header}\n  expected: {self.columns}"
            )

    def _repair_tail(self) -> None:
        """Drop a torn last line left by a crash in the middle of a write."""
        with open(self.path, "rb+") as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            f.seek(size - 1)
            if f.read(1) == b"\n":
                return
            f.seek(0)
            data = f.read()
            keep = data.rfind(b"\n") + 1
            log.warning("truncating %d bytes of incomplete row at end of %s", size - keep, self.path)
            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())

    def _reload_keys(self, checkpoint: int | None) -> None:
        table = pacsv.read_csv(
            self.path,
            parse_options=pacsv.ParseOptions(newlines_in_values=True),
            convert_options=pacsv.ConvertOptions(
                include_columns=list(KEY_COLUMN_TYPES),
                column_types=KEY_COLUMN_TYPES,
            ),
        )
        if table.num_rows == 0:
            return
        blocks = table.column("block_number").to_pylist()
        hashes = table.column("transaction_hash").to_pylist()
        indexes = table.column("log_index").to_pylist()
        highest = max(blocks)
        floor = highest - self.dedup_window_blocks
        floor = min(floor, -1 if checkpoint is None else checkpoint + 1)
        rows = sorted((b, h, i) for b, h, i in zip(blocks, hashes, indexes) if b >= floor)
        for block, tx_hash, log_index in rows:
            self._seen[(tx_hash, log_index)] = block
        self._highest_block = highest

    # ---------- encoding ----------

    def _encode(self, table: pa.Table, *, include_header: bool) -> bytes:
        buf = pa.BufferOutputStream()
        pacsv.write_csv(table, buf, write_options=pacsv.WriteOptions(include_header=include_header))
        return buf.getvalue().to_pybytes()

    def _row(self, env: EventEnvelope) -> dict[str, Any]:
        row: dict[str, Any] = {
            "block_number": env.block_number,
            "block_timestamp": env.block_timestamp,
            "block_hash": env.block_hash,
            "transaction_hash": env.tx_hash,
            "log_index": env.log_index,
            "contract": env.contract,
            "event": env.event_kind,
        }
        for name in self.field_columns:
            row[name] = cell_value(env.fields.get(name))
        return row

    def _write_bytes(self, data: bytes) -> None:
        if self._fh is None:
            raise ExportError("sink is not open")
        self._fh.write(data)
        self._fh.flush()
        os.fsync(self._fh.fileno())

    # ---------- dedup window ----------

    def _remember(self, key: EventKey, block: int) -> None:
        self._seen[key] = block
        if block > self._highest_block:
            self._highest_block = block
        floor = self._highest_block - self.dedup_window_blocks
        while self._seen:
            oldest_key, oldest_block = next(iter(self._seen.items()))
            if oldest_block >= floor:
                break
            del self._seen[oldest_key]

    def has_exported(self, key: EventKey) -> bool:
        return key in self._seen

    # ---------- core API ----------

    def export(self, envelope: EventEnvelope) -> ExportResult:
        """Durably append `envelope` unless its key was already exported."""
        key = envelope.key
        if key in self._seen:
            return ExportResult.ALREADY_EXPORTED
        try:
            table = pa.Table.from_pylist([self._row(envelope)], schema=self.schema)
            data = self._encode(table, include_header=False)
            self._write_bytes(data)
        except (OSError, pa.ArrowException) as e:
            raise ExportError(f"cannot write row {key} to {self.path}: {e}") from e
        self._remember(key, envelope.block_number)
        return ExportResult.EXPORTED
