from pathlib import Path

import pytest
from click.testing import CliRunner

from tradecollector.cli import cli
from tradecollector.core.models import EventEnvelope
from tradecollector.storage.csv_sink import CsvEventSink


@pytest.fixture
def runner(monkeypatch) -> CliRunner:
    for var in ("MAINNET_WS_RPC_URL", "ETHERSCAN_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    return CliRunner()


def _export_one(path: Path) -> None:
    env = EventEnvelope(
        event_kind="ClearV2",
        block_number=3,
        block_hash="0x" + "00" * 32,
        tx_hash="0x" + "01" * 32,
        log_index=0,
        contract="0x0Ea6d458488d1cf51695e1D6e4744e6FB715d37C",
        fields={"sender": "0xabc"},
        raw_topics=(),
        raw_data="0x",
        block_timestamp=1,
    )
    with CsvEventSink(path, ["sender"]) as sink:
        sink.export(env)


def test_verify_ok(runner: CliRunner, tmp_path: Path) -> None:
    path = tmp_path / "events.csv"
    _export_one(path)

    result = runner.invoke(cli, ["verify", str(path), "--expected-rows", "1"])

    assert result.exit_code == 0, result.output
    assert "ok" in result.output


def test_verify_fails_on_row_count(runner: CliRunner, tmp_path: Path) -> None:
    path = tmp_path / "events.csv"
    _export_one(path)

    result = runner.invoke(cli, ["verify", str(path), "--expected-rows", "5"])

    assert result.exit_code == 1
    assert "verification failed" in result.output


def test_collect_rejects_bad_contract(runner: CliRunner, tmp_path: Path) -> None:
    output = tmp_path / "events.csv"

    result = runner.invoke(
        cli,
        ["collect", "--contract", "0x1234", "--ws-url", "ws://node", "--start-block", "1", "--output", str(output)],
    )

    assert result.exit_code == 1
    assert "invalid contract address" in result.output
    assert not output.exists()


def test_collect_rejects_unknown_event(runner: CliRunner, tmp_path: Path) -> None:
    output = tmp_path / "events.csv"

    result = runner.invoke(
        cli,
        ["collect", "-e", "AddOrderV2", "--ws-url", "ws://node", "--start-block", "1", "--output", str(output)],
    )

    assert result.exit_code == 1
    assert "AddOrderV2" in result.output
    assert not output.exists()


def test_collect_needs_rpc_url(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["collect", "--output", str(tmp_path / "events.csv")])

    assert result.exit_code == 1
    assert "MAINNET_WS_RPC_URL" in result.output
