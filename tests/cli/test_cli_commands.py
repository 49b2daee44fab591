"""Tests for the questsync click CLI with the runtime swapped for doubles."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from uuid import uuid4

import pytest
from click.testing import CliRunner

from questsync import cli as cli_module
from questsync.cli import Runtime, cli
from questsync.models import CalendarInfo, ImportMode
from questsync.testing import make_event

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def runtime(monkeypatch, store, engine):
    for name in ("QUESTSYNC_CONFIG", "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"):
        monkeypatch.delenv(name, raising=False)

    @asynccontextmanager
    async def _open_runtime(config):
        yield Runtime(config=config, store=store, engine=engine)

    monkeypatch.setattr(cli_module, "open_runtime", _open_runtime)
    monkeypatch.setattr(cli_module, "configure_logging", lambda **kwargs: None)
    monkeypatch.setattr(cli_module, "init_telemetry", lambda *args, **kwargs: None)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_bad_config_path_exits(runner, tmp_path):
    config = tmp_path / "questsync.toml"
    config.write_text("[logging]\nformat = 'xml'\n")

    result = runner.invoke(cli, ["--config", str(config), "status", "--user-id", str(uuid4())])

    assert result.exit_code == 1
    assert "logging.format" in result.output


class TestSyncCommand:
    def test_prints_summary(self, runner, provider, connection, user_id):
        provider.events["primary"] = [
            make_event("evt", "Standup"),
            make_event("trip", "Trip", start="2026-03-12", end="2026-03-13", all_day=True),
        ]

        result = runner.invoke(cli, ["sync", "--user-id", str(user_id)])

        assert result.exit_code == 0, result.output
        assert "Tasks: 1 created, 0 updated" in result.output
        assert "Schedule entries: 1 created, 0 updated" in result.output
        assert "Events: 2 processed, 0 unchanged" in result.output
        assert "Calendars: 1 processed" in result.output

    def test_json_output_uses_wire_names(self, runner, provider, connection, user_id):
        provider.events["primary"] = [make_event("evt", "Standup")]

        result = runner.invoke(cli, ["sync", "--user-id", str(user_id), "--json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["scheduleBlocksCreated"] == 1
        assert payload["errors"] == []

    def test_reports_event_errors(self, runner, provider, store, connection, user_id):
        store.fail_titles.add("Standup")
        provider.events["primary"] = [make_event("evt", "Standup")]

        result = runner.invoke(cli, ["sync", "--user-id", str(user_id)])

        assert result.exit_code == 0
        assert "  error: Failed to create schedule entry: Standup" in result.output

    def test_run_fatal_error_exits_nonzero(self, runner, user_id):
        result = runner.invoke(cli, ["sync", "--user-id", str(user_id)])

        assert result.exit_code == 1
        assert "Error: No google calendar connection found" in result.output


class TestStatusCommand:
    def test_not_connected(self, runner, user_id):
        result = runner.invoke(cli, ["status", "--user-id", str(user_id)])

        assert result.exit_code == 0
        assert "Client credentials configured: no" in result.output
        assert "Not connected" in result.output

    def test_connected(self, runner, connection, user_id):
        result = runner.invoke(cli, ["status", "--user-id", str(user_id)])

        assert result.exit_code == 0
        assert "Import as: smart" in result.output
        assert "Selected calendars: primary" in result.output
        assert "Last synced: never" in result.output
        assert "access-1" not in result.output


class TestCalendarsCommand:
    def test_marks_selected_calendars(self, runner, provider, connection, user_id):
        provider.calendars = [
            CalendarInfo(id="primary", summary="Me", primary=True),
            CalendarInfo(id="team", summary="Team"),
        ]

        result = runner.invoke(cli, ["calendars", "--user-id", str(user_id)])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("* primary")
        assert lines[0].endswith("Me (primary)")
        assert lines[1].startswith("  team")


class TestSelectCommand:
    def test_updates_selection_and_mode(self, runner, store, connection, user_id):
        result = runner.invoke(
            cli,
            [
                "select",
                "--user-id",
                str(user_id),
                "--calendar",
                "team",
                "--calendar",
                "primary",
                "--import-as",
                "tasks",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Selected calendars: team, primary" in result.output
        stored = store.connections[connection.id]
        assert stored.import_as is ImportMode.TASKS
        assert stored.selected_calendars == ["team", "primary"]

    def test_quest_must_belong_to_user(self, runner, store, connection, user_id):
        foreign = store.add_quest(uuid4(), "Not yours")

        result = runner.invoke(
            cli, ["select", "--user-id", str(user_id), "--quest-id", str(foreign)]
        )

        assert result.exit_code == 1
        assert f"Quest not found: {foreign}" in result.output

    def test_sets_then_clears_quest(self, runner, store, connection, user_id):
        quest_id = store.add_quest(user_id, "Inbox")

        runner.invoke(cli, ["select", "--user-id", str(user_id), "--quest-id", str(quest_id)])
        assert store.connections[connection.id].target_quest_id == quest_id

        result = runner.invoke(cli, ["select", "--user-id", str(user_id), "--clear-quest"])
        assert result.exit_code == 0
        assert store.connections[connection.id].target_quest_id is None

    def test_conflicting_quest_flags(self, runner, connection, user_id):
        result = runner.invoke(
            cli,
            ["select", "--user-id", str(user_id), "--quest-id", str(uuid4()), "--clear-quest"],
        )
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_without_connection(self, runner, user_id):
        result = runner.invoke(cli, ["select", "--user-id", str(user_id), "--import-as", "smart"])
        assert result.exit_code == 1
        assert "No calendar connection found" in result.output


class TestConnectCommand:
    def test_stores_grant_from_stdin(self, runner, store, user_id):
        grant = {"access_token": "ya29.new", "refresh_token": "1//r", "expires_in": 3599}

        result = runner.invoke(
            cli,
            ["connect", "--user-id", str(user_id), "--email", "me@example.com"],
            input=json.dumps(grant),
        )

        assert result.exit_code == 0, result.output
        assert f"Connected google for user {user_id}" in result.output
        (connection,) = store.connections.values()
        assert connection.access_token == "ya29.new"
        assert connection.refresh_token == "1//r"
        assert connection.email == "me@example.com"

    def test_reconnect_without_refresh_token_keeps_existing(
        self, runner, store, connection, user_id
    ):
        result = runner.invoke(
            cli,
            ["connect", "--user-id", str(user_id)],
            input=json.dumps({"access_token": "ya29.again"}),
        )

        assert result.exit_code == 0
        stored = store.connections[connection.id]
        assert stored.access_token == "ya29.again"
        assert stored.refresh_token == "refresh-1"
        assert "Warning" not in result.output

    def test_first_grant_without_refresh_token_warns(self, runner, user_id):
        result = runner.invoke(
            cli,
            ["connect", "--user-id", str(user_id)],
            input=json.dumps({"access_token": "ya29.once"}),
        )

        assert result.exit_code == 0
        assert "Warning: no refresh token stored" in result.output

    def test_invalid_grant(self, runner, user_id):
        result = runner.invoke(
            cli, ["connect", "--user-id", str(user_id)], input='{"refresh_token": "x"}'
        )
        assert result.exit_code == 1
        assert "Invalid token grant" in result.output


class TestMigrateAndServe:
    def test_migrate_provisions_then_upgrades(self, runner, monkeypatch):
        calls: list[str] = []

        class _FakeDatabase:
            url = "postgresql://u:p@h:5432/questsync"

            @classmethod
            def from_env(cls, db_name):
                calls.append(f"from_env:{db_name}")
                return cls()

            async def provision(self):
                calls.append("provision")

        async def _run_migrations(db_url, chain="core"):
            calls.append(f"migrate:{db_url}")

        monkeypatch.setattr(cli_module, "Database", _FakeDatabase)
        monkeypatch.setattr(cli_module, "run_migrations", _run_migrations)

        result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 0, result.output
        assert calls == [
            "from_env:questsync",
            "provision",
            "migrate:postgresql://u:p@h:5432/questsync",
        ]
        assert "Database questsync is up to date" in result.output

    def test_serve_runs_uvicorn(self, runner, monkeypatch):
        served: dict = {}

        def _run(app, **kwargs):
            served["app"] = app
            served.update(kwargs)

        monkeypatch.setattr("uvicorn.run", _run)

        result = runner.invoke(cli, ["serve", "--port", "9001"])

        assert result.exit_code == 0, result.output
        assert served["host"] == "127.0.0.1"
        assert served["port"] == 9001
        assert served["app"].title == "questsync API"
