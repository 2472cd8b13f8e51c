"""Tests for the task replay CLI."""

import json

import pytest

from consensus_oracle.main import main, parse_operators
from consensus_oracle.src.SignatureVerifier import EthSignatureVerifier


class TestParseOperators:
    def test_empty(self) -> None:
        assert parse_operators(None) == {}
        assert parse_operators("") == {}

    def test_pairs(self) -> None:
        assert parse_operators("a=100, b = 70") == {"a": 100, "b": 70}

    def test_items_without_stake_skipped(self) -> None:
        assert parse_operators("a=1,bogus") == {"a": 1}

    def test_invalid_stake(self) -> None:
        with pytest.raises(ValueError):
            parse_operators("a=lots")


class TestReplay:
    """Run the CLI over a small task file."""

    def write_tasks(self, tmp_path, tasks: list[dict]):
        path = tmp_path / "tasks.jsonl"
        path.write_text("\n".join(json.dumps(t) for t in tasks) + "\n")
        return path

    def test_replay_reaches_consensus(self, tmp_path, monkeypatch, capsys) -> None:
        tasks = [
            {
                "task_id": f"attest-{op}",
                "now": 100,
                "type": "price_attestation",
                "parameters": {
                    "pool_id": "eth/usd",
                    "price": "2000",
                    "source_hash": "h",
                    "operator": op,
                    "stake": 10,
                },
            }
            for op in ("a", "b", "c")
        ]
        tasks.append(
            {"task_id": "check", "now": 120, "type": "consensus_validation",
             "parameters": {"pool_id": "eth/usd"}}
        )
        path = self.write_tasks(tmp_path, tasks)
        monkeypatch.setattr(
            "sys.argv",
            ["consensus-oracle", str(path), "--operators", "a=100,b=100,c=100",
             "--stake-reference", "1"],
        )
        monkeypatch.setattr(
            EthSignatureVerifier, "verify", lambda self, operator_id, payload, signature: True
        )

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 0
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert [line["task_id"] for line in lines] == ["attest-a", "attest-b", "attest-c", "check"]
        assert lines[2]["result"]["consensus_committed"] is True
        assert lines[3]["result"]["has_consensus"] is True
        assert lines[3]["result"]["price"] == 200_000_000_000

    def test_failed_task_sets_exit_code(self, tmp_path, monkeypatch, capsys) -> None:
        path = self.write_tasks(tmp_path, [{"task_id": "bad", "type": "nope", "parameters": {}}])
        monkeypatch.setattr("sys.argv", ["consensus-oracle", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "unknown task type" in capsys.readouterr().out

    def test_malformed_line_does_not_stop_replay(self, tmp_path, monkeypatch, capsys) -> None:
        tasks = [
            {"task_id": "bad-now", "now": [], "type": "consensus_validation",
             "parameters": {"pool_id": "eth/usd"}},
            {"task_id": "check", "type": "consensus_validation",
             "parameters": {"pool_id": "eth/usd"}},
        ]
        path = self.write_tasks(tmp_path, tasks)
        monkeypatch.setattr("sys.argv", ["consensus-oracle", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert "error" in lines[0]
        assert lines[1]["task_id"] == "check"
        assert lines[1]["result"]["has_consensus"] is False
