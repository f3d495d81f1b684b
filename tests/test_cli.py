"""
Tests for the sqlexplain command line.

Commands run through typer's CliRunner with the deterministic backend
selected from the environment.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from sqlexplain import __version__
from sqlexplain.cli import app
from sqlexplain.sql import fingerprint

FIXTURES_DIR = Path(__file__).parent / "fixtures"

SQL = "SELECT * FROM orders WHERE status = 'pending'"

runner = CliRunner()


@pytest.fixture(autouse=True)
def stub_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SQLEXPLAIN_BACKEND", "stub")
    monkeypatch.delenv("SQLEXPLAIN_REDIS_URL", raising=False)


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# =============================================================================
# explain
# =============================================================================


class TestExplainCommand:
    """End-to-end explanation from the terminal."""

    def test_human_output(self) -> None:
        result = runner.invoke(app, ["explain", SQL])

        assert result.exit_code == 0, result.output
        assert "Execute a SELECT query with filtering" in result.output
        assert "Add index on filtered column" in result.output
        assert "Fingerprint" in result.output

    def test_json_output(self) -> None:
        result = runner.invoke(app, ["explain", "--json", SQL])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["summary"] == "Execute a SELECT query with filtering"
        assert data["cached"] is False
        assert data["fingerprint"]["hash"] == fingerprint(SQL).hash

    def test_with_plan_file(self) -> None:
        result = runner.invoke(
            app,
            ["explain", "--json", "--plan", str(FIXTURES_DIR / "postgres_sort.txt"), SQL],
        )

        assert result.exit_code == 0, result.output
        titles = [o["title"] for o in json.loads(result.output)["optimizations"]]
        assert any(title.startswith("Add btree index on orders(") for title in titles)

    def test_missing_plan_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["explain", "--plan", str(tmp_path / "nope.json"), SQL])
        assert result.exit_code != 0

    def test_unknown_dialect(self) -> None:
        result = runner.invoke(app, ["explain", "--dialect", "oracle", SQL])
        assert result.exit_code != 0


# =============================================================================
# fingerprint
# =============================================================================


class TestFingerprintCommand:
    """Literal-independent identity."""

    def test_json(self) -> None:
        result = runner.invoke(app, ["fingerprint", "--json", SQL])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["hash"] == fingerprint(SQL).hash
        assert data["tables"] == ["orders"]
        assert {"pattern", "joinCount", "whereClauseComplexity"} <= set(data)

    def test_literals_do_not_change_hash(self) -> None:
        a = json.loads(runner.invoke(app, ["fingerprint", "-j", SQL]).output)
        b = json.loads(runner.invoke(app, ["fingerprint", "-j", SQL.replace("pending", "paid")]).output)
        assert a["hash"] == b["hash"]

    def test_table_output(self) -> None:
        result = runner.invoke(app, ["fingerprint", SQL])
        assert result.exit_code == 0
        assert fingerprint(SQL).hash in result.output


# =============================================================================
# parse-plan
# =============================================================================


class TestParsePlanCommand:
    """Offline plan parsing and heuristics."""

    def test_postgres_json(self) -> None:
        result = runner.invoke(
            app, ["parse-plan", "--json", str(FIXTURES_DIR / "postgres_hash_join.json")]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["plan"]["operation"] == "HashJoin"
        assert data["plan"]["nodeId"] == "node_0"
        assert [(r["table"], r["columns"]) for r in data["recommendations"]] == [
            ("orders", ["customer_id"]),
            ("customers", ["status"]),
        ]

    def test_sqlite_tree(self) -> None:
        result = runner.invoke(
            app,
            ["parse-plan", "--dialect", "sqlite", "--json", str(FIXTURES_DIR / "sqlite_tree.txt")],
        )

        assert result.exit_code == 0, result.output
        plan = json.loads(result.output)["plan"]
        assert plan["operation"] == "Sort"
        assert plan["children"][0]["operation"] == "NestedLoop"

    def test_tree_output(self) -> None:
        result = runner.invoke(app, ["parse-plan", str(FIXTURES_DIR / "postgres_hash_join.json")])

        assert result.exit_code == 0, result.output
        assert "customers" in result.output
        assert "Index recommendations" in result.output

    def test_unparseable_plan(self, tmp_path: Path) -> None:
        bad = tmp_path / "plan.txt"
        bad.write_text("id\tselect_type\ttable\n1\tSIMPLE\torders\n")

        result = runner.invoke(app, ["parse-plan", "--dialect", "mysql", str(bad)])
        assert result.exit_code == 1

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["parse-plan", str(tmp_path / "missing.json")])
        assert result.exit_code != 0
