"""Tests for the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from bill_split.cli import app, format_money, parse_shares
from bill_split.ui import CategoryCompleter, confirm, fuzzy_match

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_ledger(tmp_path, monkeypatch):
    """Point the CLI at a fresh database."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BILL_SPLIT_DATABASE_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("BILL_SPLIT_MONTHLY_BUDGET", "300")


def invoke(*args):
    return runner.invoke(app, list(args))


class TestHelpers:
    """Test formatting and argument parsing."""

    def test_format_money(self):
        """Negative amounts use parentheses."""
        assert format_money(-8502, use_color=False) == "(€85.02)"
        assert format_money(8502, use_color=False) == " €85.02 "

    def test_parse_shares(self):
        """Named amounts are kept; bare names split the total evenly with the user."""
        assert parse_shares(["alice=12.50"], "30") == {"alice": "12.50"}
        assert parse_shares(["alice", "bob"], "30") == {"alice": 10.0, "bob": 10.0}


class TestCommands:
    """Test the commands end to end against a temporary database."""

    def test_split_and_balances(self):
        """A recorded split shows up in balances and history."""
        assert invoke("friend", "add", "Alice", "--email", "alice@example.com").exit_code == 0
        assert invoke("friend", "add", "Bob").exit_code == 0

        result = invoke("split", "30", "--with", "alice", "--with", "Bob", "-c", "food")
        assert result.exit_code == 0
        assert "Food" in result.output

        result = invoke("balances")
        assert result.exit_code == 0
        assert "Alice" in result.output
        assert "owes you" in result.output

        result = invoke("history", "--friend", "bob")
        assert result.exit_code == 0
        assert "Transactions" in result.output

    def test_settle_and_confirm(self):
        """Settling writes a settlement that can then be confirmed."""
        invoke("friend", "add", "Alice")
        invoke("split", "20", "--with", "alice=5")

        result = invoke("settle", "alice", "--method", "cash")
        assert result.exit_code == 0
        assert "initiated" in result.output

        exported = json.loads(invoke("export").stdout)
        settlement = exported["payload"]["transactions"][0]
        assert settlement["type"] == "settlement"
        assert settlement["payment"]["method"] == "cash"

        result = invoke("settlement", "confirm", settlement["id"])
        assert result.exit_code == 0
        assert "confirmed" in result.output
        assert "All settled up" in invoke("balances").output

    def test_errors_exit_nonzero(self):
        """Domain errors are reported and exit with status 1."""
        result = invoke("settle", "nobody")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_budgets(self):
        """The monthly budget override and category budgets are reported."""
        assert invoke("budget", "set", "monthly", "400").exit_code == 0
        assert invoke("budget", "set", "groceries", "50").exit_code == 0

        result = invoke("budget", "status")
        assert result.exit_code == 0
        assert "€400.00" in result.output
        assert "Groceries" in result.output

        assert invoke("budget", "clear", "Groceries").exit_code == 0
        assert "Groceries" not in invoke("budget", "status").output


class TestTemplates:
    """Test template commands."""

    def test_add_list_use(self):
        """A saved template records splits and shows up as due."""
        invoke("friend", "add", "Alice")
        args = ["Rent", "900", "--with", "alice=300", "-c", "bills"]
        result = invoke("template", "add", *args, "--every", "monthly", "--next", "2024-03-31")
        assert result.exit_code == 0
        assert "Template Rent: €900.00 (Bills)" in result.output

        result = invoke("template", "list")
        assert result.exit_code == 0
        assert "Rent" in result.output
        assert "monthly" in result.output

        result = invoke("template", "use", "rent")
        assert result.exit_code == 0
        assert "from Rent" in result.output
        assert "owes you" in invoke("balances").output

        result = invoke("template", "due")
        assert "Due:" in result.output
        assert "2024-04-30" in result.output

        assert invoke("template", "remove", "Rent").exit_code == 0
        assert "No templates yet" in invoke("template", "list").output

    def test_bad_frequency(self):
        """An unknown frequency is reported as an error."""
        invoke("friend", "add", "Alice")
        result = invoke("template", "add", "Gym", "30", "--with", "alice", "--every", "daily")
        assert result.exit_code == 1
        assert "Unknown frequency" in result.output

    def test_save_split(self):
        """An existing split is saved as a template."""
        invoke("friend", "add", "Alice")
        invoke("split", "20", "--with", "alice=5")
        tx_id = json.loads(invoke("export").stdout)["payload"]["transactions"][0]["id"]
        result = invoke("template", "save", tx_id, "Snacks")
        assert result.exit_code == 0
        assert "Template Snacks" in result.output


class TestReminders:
    """Test reminder commands."""

    def test_check_and_mark_sent(self):
        """Due reminders are listed and snoozed once marked as sent."""
        assert "Nobody owes €25.00 or more" in invoke("reminders", "check").output

        invoke("friend", "add", "Bob")
        invoke("split", "100", "--with", "bob=40")
        result = invoke("reminders", "check", "--mark-sent")
        assert result.exit_code == 0
        assert "Bob" in result.output
        assert "due" in result.output
        assert "Marked 1 reminder(s) as sent" in result.output

        assert "snoozed" in invoke("reminders", "check").output

    def test_config(self):
        """Preferences are changed and shown."""
        result = invoke("reminders", "config", "--level", "high")
        assert "Reminders: high, from €50.00, every 72h via email" in result.output

        result = invoke("reminders", "config", "--channel", "push", "--channel", "sms")
        assert "via sms, push" in result.output
        assert "via sms, push" in invoke("reminders", "config").output

        result = invoke("reminders", "config", "--level", "urgent")
        assert result.exit_code == 1
        assert "Unknown trigger level" in result.output


class TestImportExport:
    """Test snapshot files."""

    def test_import_reports_skips(self, tmp_path):
        """Imports replace the ledger and list skipped records."""
        path = tmp_path / "snapshot.json"
        path.write_text(
            json.dumps(
                {
                    "friends": [{"id": "f1", "name": "Carol"}],
                    "selectedId": "f1",
                    "transactions": [
                        {"id": "t1", "total": 20, "friendId": "f1"},
                        {"id": "t2", "total": 20, "friendId": "ghost"},
                    ],
                }
            )
        )
        result = invoke("import", str(path), "--yes")
        assert result.exit_code == 0
        assert "Imported 1 friend(s) and 1 transaction(s)" in result.output
        assert "Split references an unknown friend" in result.output

        payload = json.loads(invoke("export").stdout)["payload"]
        assert payload["selectedId"] == "f1"
        assert payload["transactions"][0]["participants"][1] == {"id": "f1", "amount": 10.0}

    def test_import_invalid_file(self, tmp_path):
        """Unreadable JSON and structural errors exit with status 1."""
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert invoke("import", str(broken), "--yes").exit_code == 1

        wrong = tmp_path / "wrong.json"
        wrong.write_text(json.dumps({"friends": []}))
        result = invoke("import", str(wrong), "--yes")
        assert result.exit_code == 1
        assert "Missing transactions[]" in result.output

    def test_export_to_file(self, tmp_path):
        """Export writes the envelope to a file."""
        invoke("friend", "add", "Dana")
        out = tmp_path / "out.json"
        assert invoke("export", str(out)).exit_code == 0
        data = json.loads(out.read_text())
        assert data["version"] == 1
        assert data["payload"]["friends"][0]["name"] == "Dana"


class TestPrompts:
    """Test the interactive helpers without a terminal."""

    def test_fuzzy_match(self):
        """Query characters must appear in order."""
        assert fuzzy_match("gro", "groceries")
        assert fuzzy_match("ent", "entertainment")
        assert not fuzzy_match("xyz", "food")

    def test_completer_resolve(self):
        """Typed text resolves to a canonical category, ignoring case."""
        completer = CategoryCompleter(["Food", "Taxi", " "])
        assert completer.resolve(" food ") == "Food"
        assert completer.resolve("boats") is None
        assert completer.categories == ["Food", "Taxi"]

    @pytest.mark.parametrize(
        "answer,default,expected",
        [("y", False, True), ("no", True, False), ("", True, True), ("", False, False)],
    )
    def test_confirm(self, monkeypatch, answer, default, expected):
        """Empty input falls back to the default."""
        monkeypatch.setattr("builtins.input", lambda _: answer)
        assert confirm("Continue?", default) is expected
