"""Tests for CLI argument parsing and REPL commands."""

import pathlib
import sys

import pytest

from fakes import FakeImages, FakeSearch, ScriptedProvider, call, reply
from overskill import main as main_module
from overskill.context import Context
from overskill.main import OverskillRepl, parse_args
from overskill.worker import AppLocks
from overskill.workspace import Workspace


class TestParseArgs:
    def test_defaults(self):
        assert parse_args([]) == (None, None, [])

    def test_all_options(self):
        assert parse_args(["-a", "site", "--max-turns", "5", "add", "a", "navbar"]) == ("site", 5, ["add", "a", "navbar"])

    def test_equals_forms(self):
        assert parse_args(["--app-dir=site", "--max-turns=3", "hi"]) == ("site", 3, ["hi"])

    def test_double_dash_keeps_dashes_in_the_message(self):
        assert parse_args(["--", "-v", "flag"]) == (None, None, ["-v", "flag"])

    @pytest.mark.parametrize("argv", [["--app-dir"], ["--max-turns"], ["--max-turns", "x"], ["--max-turns", "0"], ["--verbose"]])
    def test_errors(self, argv):
        with pytest.raises(ValueError):
            parse_args(argv)


@pytest.fixture
def repl(tmp_path):
    ws = Workspace(
        tmp_path,
        settings={},
        provider=ScriptedProvider("primary", [
            reply(None, call("write", path="index.html", content="<p>hi</p>\n")),
            reply("Created the page."),
        ]),
        images=FakeImages(),
        search=FakeSearch(),
        locks=AppLocks(),
    )
    yield OverskillRepl(ws, Context(tmp_path))
    ws.close()


class TestRepl:
    def test_message_then_inspection_commands(self, repl, capsys):
        assert repl.handle_user_input("Create a page")
        assert repl.handle_user_input(":files")
        assert repl.handle_user_input(":versions")
        assert repl.handle_user_input(":history")
        out = capsys.readouterr().out
        assert "Created the page." in out
        assert "index.html" in out
        assert "1.0.0" in out
        assert "user: Create a page" in out

    def test_diff_and_restore_errors_are_reported(self, repl, capsys):
        assert repl.handle_user_input(":diff 1.0.0 1.0.1")
        assert repl.handle_user_input(":restore 4.0.0")
        assert repl.handle_user_input(":diff")
        err = capsys.readouterr().err
        assert "Version not found: 1.0.0" in err
        assert "Version not found: 4.0.0" in err
        assert "Usage: :diff <a> <b>" in err

    def test_status_and_clear_history(self, repl, capsys):
        repl.handle_user_input("Create a page")
        assert repl.handle_user_input(":status")
        assert repl.handle_user_input(":clear-history")
        assert repl.ws.conversation() == []
        assert '"latest_version": "1.0.0"' in capsys.readouterr().out

    def test_unknown_command(self, repl, capsys):
        assert repl.handle_user_input(":dance")
        assert "Unknown command" in capsys.readouterr().err

    def test_quit(self, repl):
        assert repl.handle_user_input(":quit") is False


class TestMain:
    def test_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["overskill", "--help"])
        main_module.main()
        assert "Usage: overskill" in capsys.readouterr().out

    def test_bad_arguments_exit_2(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["overskill", "--max-turns", "zero"])
        with pytest.raises(SystemExit) as exc:
            main_module.main()
        assert exc.value.code == 2

    def test_one_shot_without_credentials_exits_1(self, monkeypatch, tmp_path, capsys):
        for key in ("OPENAI_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(key, raising=False)
        monkeypatch.setattr(sys, "argv", ["overskill", "-a", str(tmp_path), "hello"])
        with pytest.raises(SystemExit) as exc:
            main_module.main()
        assert exc.value.code == 1
        assert "no API key" in capsys.readouterr().err


def test_every_module_starts_with_the_overskill_header():
    package_dir = pathlib.Path(main_module.__file__).parent
    modules = sorted(package_dir.glob("*.py"))
    assert modules
    for module in modules:
        first = module.read_text(encoding="utf-8").splitlines()[0]
        assert first.startswith("# overskill: "), module.name
