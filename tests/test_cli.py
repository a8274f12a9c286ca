"""
tests/test_cli.py

afriflow CLI: fee, corridors and verify, driven through click's CliRunner.
"""

import json

import pytest
from click.testing import CliRunner

from afriflow.cli import cli
from afriflow.core.crypto import Ed25519KeyManager
from afriflow.journal.entry import RecordType
from afriflow.journal.journal import SettlementJournal

from conftest import TREASURY


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def journal_file(tmp_path):
    journal = SettlementJournal(Ed25519KeyManager.generate(), journal_path=str(tmp_path))
    for n in range(3):
        journal.append(RecordType.CONFIG_UPDATED, {"key": "fee_bps", "value": 10 + n})
    return journal.journal_file


class TestFeeCommand:

    def test_default_rate(self, runner):
        result = runner.invoke(cli, ["fee", "1000"])
        assert result.exit_code == 0
        assert "fee 1" in result.output
        assert "net 999" in result.output

    def test_json(self, runner):
        result = runner.invoke(cli, ["fee", "10000", "--bps", "15", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "amount": 10000, "feeBps": 15, "fee": 15, "netAmount": 9985,
        }

    def test_rate_out_of_range(self, runner):
        result = runner.invoke(cli, ["fee", "1000", "--bps", "500"])
        assert result.exit_code == 2


class TestCorridorsCommand:

    def test_default_table(self, runner):
        result = runner.invoke(cli, ["corridors"])
        assert result.exit_code == 0
        assert "NG -> KE" in result.output
        assert "US -> GB" not in result.output
        assert result.output.strip().endswith("190 corridors")

    def test_from_config(self, runner, tmp_path):
        path = tmp_path / "afriflow.yaml"
        path.write_text(
            f'treasury: "{TREASURY}"\n'
            "regional_corridors: [NG, KE]\n"
            "external_corridors: [US]\n"
        )
        result = runner.invoke(cli, ["corridors", "--config", str(path), "--json"])
        assert result.exit_code == 0
        pairs = {(p["origin"], p["destination"]) for p in json.loads(result.output)}
        assert pairs == {
            ("NG", "KE"), ("KE", "NG"),
            ("US", "NG"), ("NG", "US"), ("US", "KE"), ("KE", "US"),
        }

    def test_bad_config(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("fee_bps: 10\n")
        result = runner.invoke(cli, ["corridors", "--config", str(path)])
        assert result.exit_code == 2


class TestVerifyCommand:

    def test_valid(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--no-color"])
        assert result.exit_code == 0
        assert "VALID" in result.output

    def test_json_output(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--format", "json"])
        assert result.exit_code == 0
        out = json.loads(result.output)["afriflow_verify"]
        assert out["journal_valid"] is True
        assert out["total_entries"] == 3

    def test_compact_output(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--format", "compact", "--no-color"])
        assert result.exit_code == 0
        assert "3 entries" in result.output

    def test_tampered(self, runner, journal_file):
        lines = journal_file.read_text().splitlines()
        entry = json.loads(lines[1])
        entry["payload"]["value"] = 99
        lines[1] = json.dumps(entry)
        journal_file.write_text("\n".join(lines) + "\n")

        result = runner.invoke(cli, ["verify", str(journal_file), "--no-color"])
        assert result.exit_code == 1
        assert "INVALID" in result.output
        assert "invalid_signature" in result.output

    def test_quiet(self, runner, journal_file):
        result = runner.invoke(cli, ["verify", str(journal_file), "--quiet"])
        assert result.exit_code == 0
        assert result.output == ""

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["verify", str(tmp_path / "absent.jsonl"), "--format", "json"])
        assert result.exit_code == 2
        assert json.loads(result.output)["afriflow_verify"]["journal_valid"] is False

    def test_malformed(self, runner, tmp_path):
        path = tmp_path / "journal.jsonl"
        path.write_text("not json\n")
        result = runner.invoke(cli, ["verify", str(path)])
        assert result.exit_code == 2
