import json
from pathlib import Path

from typer.testing import CliRunner

from lineu_cli.main import app
from lineu_core.fingerprint import generate_fingerprint

runner = CliRunner()


def test_fingerprint_prints_computed_hash(tmp_path: Path) -> None:
    payload = {"message": "boom", "timestamp": "2025-01-01T00:00:00Z"}
    path = tmp_path / "payload.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    result = runner.invoke(app, ["fingerprint", str(path)])

    assert result.exit_code == 0
    assert result.stdout.strip() == generate_fingerprint(payload)


def test_fingerprint_prefers_external_value(tmp_path: Path) -> None:
    path = tmp_path / "payload.json"
    path.write_text(json.dumps({"fingerprint": "dup-test", "message": "boom"}), encoding="utf-8")

    result = runner.invoke(app, ["fingerprint", str(path)])

    assert result.stdout.strip() == "dup-test"


def test_fingerprint_rejects_non_object_payload(tmp_path: Path) -> None:
    path = tmp_path / "payload.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    result = runner.invoke(app, ["fingerprint", str(path)])

    assert result.exit_code == 1


def test_stats_on_empty_database(tmp_path: Path) -> None:
    result = runner.invoke(app, ["stats", "--db", str(tmp_path / "stats.db")])

    assert result.exit_code == 0
    assert "Job Statistics" in result.stdout
    assert "Pending" in result.stdout
