from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

import pyarrow.csv as pacsv

from tradecollector.core.models import BASE_COLUMNS
from tradecollector.storage.csv_sink import KEY_COLUMN_TYPES, read_header


@dataclass(slots=True)
class VerifyReport:
    """Outcome of `verify_csv`. `ok` is False when any problem was found."""

    path: Path
    header: list[str]
    rows: int = 0
    duplicate_keys: list[tuple[str, int]] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def verify_csv(path: str | Path, expected_rows: int | None = None) -> VerifyReport:
    """Check an exported CSV: header shape, row count, identity-key uniqueness."""
    path = Path(path)
    if not path.exists():
        return VerifyReport(path=path, header=[], problems=[f"{path} does not exist"])

    header = read_header(path) or []
    report = VerifyReport(path=path, header=header)
    if header[: len(BASE_COLUMNS)] != BASE_COLUMNS:
        report.problems.append(f"header does not start with {BASE_COLUMNS}")
        return report
    if len(set(header)) != len(header):
        report.problems.append("header repeats a column name")

    table = pacsv.read_csv(
        path,
        parse_options=pacsv.ParseOptions(newlines_in_values=True),
        convert_options=pacsv.ConvertOptions(
            include_columns=list(KEY_COLUMN_TYPES),
            column_types=KEY_COLUMN_TYPES,
        ),
    )
    report.rows = table.num_rows

    keys = Counter(
        zip(table.column("transaction_hash").to_pylist(), table.column("log_index").to_pylist())
    )
    report.duplicate_keys = sorted(k for k, n in keys.items() if n > 1)
    if report.duplicate_keys:
        report.problems.append(f"{len(report.duplicate_keys)} identity keys appear more than once")

    if expected_rows is not None and report.rows != expected_rows:
        report.problems.append(f"expected {expected_rows} rows, found {report.rows}")
    return report
