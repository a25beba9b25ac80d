"""Tests for the taskcal command line entry."""

import json

import pytest

from taskcal.__main__ import _create_parser, main

pytestmark = [pytest.mark.integration]


def test_parser_serve_options():
    args = _create_parser().parse_args(["--debug", "serve", "--host", "0.0.0.0", "--port", "9000"])

    assert (args.command, args.host, args.port, args.debug) == ("serve", "0.0.0.0", 9000, True)


def test_expand_prints_materialized_events(tmp_path, capsys):
    store = tmp_path / "events.json"
    store.write_text(
        json.dumps(
            [
                {
                    "id": "p1",
                    "title": "Weekly sync",
                    "startTime": "2024-01-01T09:00:00",
                    "isRecurring": True,
                    "recurrenceRule": "FREQ=WEEKLY;COUNT=3",
                },
                {"id": "s1", "title": "Lunch", "startTime": "2024-01-03T12:00:00"},
            ]
        ),
        encoding="utf-8",
    )

    with pytest.raises(SystemExit) as exc_info:
        main(["expand", "--store", str(store), "--now", "2024-01-15T12:00:00"])

    assert exc_info.value.code == 0
    records = json.loads(capsys.readouterr().out)
    assert [r["id"] for r in records] == ["p1-1704099600000", "s1", "p1-1704704400000", "p1-1705309200000"]
    assert records[1]["title"] == "Lunch"


def test_expand_without_store_prints_seed_events(capsys, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("TASKCAL_STORE_PATH", "TASKCAL_USE_REMOTE_API"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(SystemExit):
        main(["expand", "--now", "2024-11-15T00:00:00"])

    records = json.loads(capsys.readouterr().out)
    assert [r["title"] for r in records][:2] == ["Team Standup", "Client Presentation"]
