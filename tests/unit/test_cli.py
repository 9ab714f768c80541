"""Unit tests for the Typer CLI."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
import respx
from typer.testing import CliRunner

from couchsnap.cli import app

COUCH_URL = "http://localhost:5984"

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch):
    for var in ("COUCH_URL", "COUCH_USERNAME", "COUCH_PASSWORD", "COUCH_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("couchsnap.cli.configure_logging", lambda *a, **kw: None)


def _changes_page(*rows: dict, last_seq: str = "0") -> httpx.Response:
    return httpx.Response(
        200, json={"results": list(rows), "last_seq": last_seq, "pending": 0}
    )


class TestSnapCommand:
    def test_missing_database_exits_non_zero(self, tmp_path: Path):
        result = runner.invoke(app, ["snap", "--output-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "missing --db/--dbname" in result.output
        assert list(tmp_path.iterdir()) == []

    def test_writes_snapshot_and_checkpoint(self, tmp_path: Path):
        rows = [
            {"seq": "1-a", "id": "a", "doc": {"_id": "a", "_rev": "1-x", "v": 1}},
            {
                "seq": "2-b",
                "id": "b",
                "deleted": True,
                "doc": {"_id": "b", "_rev": "2-y", "_deleted": True},
            },
        ]
        with respx.mock(base_url=COUCH_URL) as mock:
            route = mock.post("/orders/_changes").mock(
                return_value=_changes_page(*rows, last_seq="2-b")
            )
            result = runner.invoke(
                app, ["snap", "--db", "orders", "--output-dir", str(tmp_path)]
            )

        assert result.exit_code == 0, result.output
        assert route.calls[0].request.url.params["since"] == "0"
        assert "spooling changes for orders since 0" in result.output
        assert "orders-meta.json" in result.output

        snapshots = list(tmp_path.glob("orders-snapshot-*.jsonl"))
        assert len(snapshots) == 1
        assert snapshots[0].name in result.output
        assert snapshots[0].read_text() == '{"_id":"a","v":1}\n'
        meta = json.loads((tmp_path / "orders-meta.json").read_text())
        assert meta["since"] == "2-b"
        assert meta["db"] == "orders"

    def test_dbname_alias_and_deletions_flag(self, tmp_path: Path):
        rows = [
            {
                "seq": "2-b",
                "id": "b",
                "deleted": True,
                "doc": {"_id": "b", "_rev": "2-y", "_deleted": True},
            },
        ]
        with respx.mock(base_url=COUCH_URL) as mock:
            mock.post("/orders/_changes").mock(
                return_value=_changes_page(*rows, last_seq="2-b")
            )
            result = runner.invoke(
                app,
                [
                    "snap",
                    "--dbname",
                    "orders",
                    "--deletions",
                    "--output-dir",
                    str(tmp_path),
                ],
            )

        assert result.exit_code == 0, result.output
        (snapshot,) = tmp_path.glob("orders-snapshot-*.jsonl")
        assert json.loads(snapshot.read_text()) == {"_id": "b", "_deleted": True}

    def test_resumes_from_existing_checkpoint(self, tmp_path: Path):
        (tmp_path / "orders-meta.json").write_text(
            json.dumps({"since": "9-g1AAAA", "db": "orders"})
        )
        with respx.mock(base_url=COUCH_URL) as mock:
            route = mock.post("/orders/_changes").mock(
                return_value=_changes_page(last_seq="9-g1AAAA")
            )
            result = runner.invoke(
                app, ["snap", "--db", "orders", "--output-dir", str(tmp_path)]
            )

        assert result.exit_code == 0, result.output
        assert route.calls[0].request.url.params["since"] == "9-g1AAAA"
        assert "since 9" in result.output

    def test_feed_open_failure_exits_non_zero(self, tmp_path: Path):
        with respx.mock(base_url=COUCH_URL) as mock:
            mock.post("/missing/_changes").mock(
                return_value=httpx.Response(404, json={"error": "not_found"})
            )
            result = runner.invoke(
                app, ["snap", "--db", "missing", "--output-dir", str(tmp_path)]
            )

        assert result.exit_code == 1
        assert "Snapshot failed" in result.output
        assert not (tmp_path / "missing-meta.json").exists()
        assert list(tmp_path.glob("missing-snapshot-*.jsonl")) == []

    def test_database_from_config_file(self, tmp_path: Path):
        config = tmp_path / "couchsnap.yaml"
        config.write_text(f"snapshot:\n  database: orders\n  output_dir: {tmp_path}\n")
        with respx.mock(base_url=COUCH_URL) as mock:
            mock.post("/orders/_changes").mock(return_value=_changes_page())
            result = runner.invoke(
                app, ["snap", "--config", str(config), "--print-config"]
            )

        assert result.exit_code == 0, result.output
        assert "App Config" in result.output
        assert (tmp_path / "orders-meta.json").exists()


class TestStatusCommand:
    def test_no_checkpoint(self, tmp_path: Path):
        result = runner.invoke(
            app, ["status", "--db", "orders", "--output-dir", str(tmp_path)]
        )
        assert result.exit_code == 0
        assert "No checkpoint for orders" in result.output

    def test_shows_checkpoint(self, tmp_path: Path):
        (tmp_path / "orders-meta.json").write_text(
            json.dumps(
                {
                    "since": "77-g1AAAA",
                    "startTime": "2026-10-17T09:00:00Z",
                    "endTime": "2026-10-17T09:01:00Z",
                    "db": "orders",
                }
            )
        )
        result = runner.invoke(
            app, ["status", "--db", "orders", "--output-dir", str(tmp_path)]
        )
        assert result.exit_code == 0
        assert "77" in result.output
        assert "g1AAAA" not in result.output


class TestHealthCommand:
    def test_healthy(self):
        with respx.mock(base_url=COUCH_URL) as mock:
            mock.get("/").mock(
                return_value=httpx.Response(
                    200, json={"couchdb": "Welcome", "version": "3.3.3"}
                )
            )
            mock.get("/orders").mock(
                return_value=httpx.Response(200, json={"doc_count": 5})
            )
            result = runner.invoke(app, ["health", "--db", "orders"])
        assert result.exit_code == 0, result.output
        assert "healthy" in result.output

    def test_unhealthy_database(self):
        with respx.mock(base_url=COUCH_URL) as mock:
            mock.get("/").mock(
                return_value=httpx.Response(200, json={"version": "3.3.3"})
            )
            mock.get("/orders").mock(
                return_value=httpx.Response(404, json={"error": "not_found"})
            )
            result = runner.invoke(app, ["health", "--db", "orders"])
        assert result.exit_code == 1
        assert "unhealthy" in result.output


class TestValidateCommand:
    def test_valid(self, tmp_path: Path):
        config = tmp_path / "couchsnap.yaml"
        config.write_text("snapshot:\n  database: orders\n")
        result = runner.invoke(app, ["validate", str(config)])
        assert result.exit_code == 0
        assert "Valid" in result.output

    def test_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1

    def test_invalid(self, tmp_path: Path):
        config = tmp_path / "couchsnap.yaml"
        config.write_text("feed:\n  batch_size: -1\n")
        result = runner.invoke(app, ["validate", str(config)])
        assert result.exit_code == 1
        assert "Config error" in result.output
