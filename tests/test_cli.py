"""Tests for the fuel-queue command line."""

import json

import pytest

from fuel_queue.cli import build_parser, main


@pytest.fixture
def cli(tmp_path, capsys):
    """Run the CLI against a throwaway SQLite file and return (exit code, stdout, stderr)."""
    database_url = f"sqlite:///{tmp_path}/queue.db"

    def invoke(*argv):
        code = main(["--database-url", database_url, "--broadcast", "none", *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return invoke


def test_init_db(cli, tmp_path):
    code, out, _ = cli("init-db")

    assert code == 0
    assert json.loads(out)["status"] == "ok"
    assert (tmp_path / "queue.db").exists()


def test_submit_and_list_station(cli):
    code, out, _ = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "20")
    assert code == 0
    entry = json.loads(out)
    assert entry["queue_position"] == 1
    assert entry["status"] == "pending"

    _ = cli("submit", "--car", "car-B", "--station", "st-1", "--fuel-type", "Benzene", "--amount", "5")
    code, out, _ = cli("station", "st-1")

    assert code == 0
    assert [e["car_user_id"] for e in json.loads(out)] == ["car-A", "car-B"]


def test_full_service_flow(cli):
    _, out, _ = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "20")
    entry_id = str(json.loads(out)["id"])

    code, out, _ = cli("advance", entry_id, "start")
    assert code == 0
    assert json.loads(out)["status"] == "serving"

    code, out, _ = cli("advance", entry_id, "complete", "--served-amount", "18.5")
    assert code == 0
    assert json.loads(out)["served_amount"] == 18.5

    _, out, _ = cli("stats", "st-1")
    stats = json.loads(out)
    assert stats["completed_today_count"] == 1
    assert stats["fuel_sold_today"] == 18.5

    _, out, _ = cli("history", "st-1")
    assert json.loads(out)["cars_served"] == 1

    _, out, _ = cli("history", "st-1", "--limit", "5")
    assert len(json.loads(out)) == 1


def test_car_view_and_withdraw(cli):
    _ = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "20")
    _, out, _ = cli("submit", "--car", "car-B", "--station", "st-1", "--amount", "20")
    b_id = json.loads(out)["id"]

    _, out, _ = cli("car", "car-B")
    views = json.loads(out)
    assert views[0]["cars_ahead"] == 1
    assert views[0]["rank"] == 2

    code, out, _ = cli("withdraw", str(b_id))
    assert code == 0
    assert json.loads(out) == {"entry_id": b_id, "status": "deleted"}

    _, out, _ = cli("sizes")
    assert json.loads(out) == {"st-1": 1}


def test_renumber(cli):
    _ = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "20")

    code, out, _ = cli("renumber", "st-1")

    assert code == 0
    assert json.loads(out) == {"station_user_id": "st-1", "pending": 1}


def test_invalid_transition_exit_code(cli):
    _, out, _ = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "20")
    entry_id = str(json.loads(out)["id"])

    code, out, err = cli("advance", entry_id, "complete", "--served-amount", "10")

    assert code == 1
    assert out == ""
    assert json.loads(err.strip().splitlines()[-1])["code"] == "invalid_transition"


def test_not_found_exit_code(cli):
    code, _, err = cli("withdraw", "999")

    assert code == 1
    assert json.loads(err.strip().splitlines()[-1])["code"] == "not_found"


def test_invalid_amount_exit_code(cli):
    code, _, err = cli("submit", "--car", "car-A", "--station", "st-1", "--amount", "0")

    assert code == 1
    assert json.loads(err.strip().splitlines()[-1])["code"] == "invalid_amount"


def test_parser_rejects_unknown_action():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["advance", "1", "refuel"])


def test_errors_logged_under_module_logger(cli, caplog):
    _ = cli("withdraw", "999")

    assert any(
        r.name == "fuel_queue.cli" and "withdraw failed" in r.getMessage() for r in caplog.records
    )
