# overskill: CLI entrypoint. One-shot mode runs a single message against an app directory; without a message an interactive REPL accepts messages and :commands.

import json
import logging
import pathlib
import sys
from typing import List, Optional

from .broadcaster import ConsoleChannel
from .context import Context
from .errors import OverskillError
from .models import RunOutcome, RunState
from .settings import load_settings, section
from .workspace import Workspace

USAGE = "Usage: overskill [--app-dir PATH|-a PATH] [--max-turns N] [message...]"

HELP_TEXT = """Commands:
  :help                 Show this help
  :files                List app files
  :versions             List version snapshots
  :diff <a> <b>         Show paths added/removed/changed between two versions
  :restore <version>    Restore the app files to a version
  :status               Show app, tracker and context-cache status
  :history              Show recent conversation turns
  :clear-history        Rotate the conversation history
  :quit                 Exit
Anything else is sent to the agent as a message."""


def configure_logging(settings: dict) -> None:
    level_name = str(section(settings, "logging").get("level") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format="[LOG] %(message)s")


class OverskillRepl:
    """Interactive loop over one Workspace."""

    def __init__(self, workspace: Workspace, ctx: Context) -> None:
        self.ws = workspace
        self.ctx = ctx

    def run(self) -> None:
        print(f"OverSkill ready at app root: {self.ws.app_root}")
        print("Type :help for commands.")
        while True:
            try:
                text = input("> ").strip()
            except EOFError:
                print("\nGoodbye.")
                break
            if not text:
                continue
            if not self.handle_user_input(text):
                break

    def handle_user_input(self, text: str) -> bool:
        """Execute a command or send a message; returns False when the loop should stop."""
        if not text.startswith(":"):
            self.send(text)
            return True
        parts = text.split()
        cmd = parts[0]
        if cmd == ":help":
            self.ctx.send_to_user(HELP_TEXT)
        elif cmd == ":files":
            self.cmd_files()
        elif cmd == ":versions":
            self.cmd_versions()
        elif cmd == ":diff":
            if len(parts) < 3:
                self.ctx.error_message("Usage: :diff <a> <b>")
            else:
                self.cmd_diff(parts[1], parts[2])
        elif cmd == ":restore":
            if len(parts) < 2:
                self.ctx.error_message("Usage: :restore <version>")
            else:
                self.cmd_restore(parts[1])
        elif cmd == ":status":
            self.ctx.send_to_user(json.dumps(self.ws.status(), indent=2))
        elif cmd == ":history":
            self.cmd_history()
        elif cmd in (":clear-history", ":clearHistory"):
            self.ws.clear_history()
            self.ctx.send_to_user("Conversation history cleared.")
        elif cmd == ":quit":
            self.ctx.send_to_user("Goodbye.")
            return False
        else:
            self.ctx.error_message(f"Unknown command: {cmd}. Type :help for help.")
        return True

    def send(self, text: str) -> Optional[RunOutcome]:
        try:
            outcome = self.ws.send_message(text)
        except RuntimeError as e:
            # Provider construction errors (missing credentials) surface here.
            self.ctx.error_message(str(e))
            return None
        if outcome.state == RunState.done:
            if outcome.final_message:
                self.ctx.send_to_user(outcome.final_message)
        else:
            self.ctx.error_message(outcome.error or "run failed")
        return outcome

    def cmd_files(self) -> None:
        paths = self.ws.store.list_paths()
        if not paths:
            self.ctx.send_to_user("(no files)")
            return
        for p in paths:
            self.ctx.send_to_user(f"  {p}  [{self.ws.tracker.tier_for(p)}]")

    def cmd_versions(self) -> None:
        versions = self.ws.versions.list()
        if not versions:
            self.ctx.send_to_user("(no versions)")
            return
        for v in versions:
            first_line = v.changelog.splitlines()[0] if v.changelog else ""
            self.ctx.send_to_user(f"  {v.version_number}  {len(v.files_snapshot)} files  {first_line[:80]}")

    def cmd_diff(self, a: str, b: str) -> None:
        try:
            diff = self.ws.versions.diff(a, b)
        except OverskillError as e:
            self.ctx.error_message(e.message)
            return
        for key, sign in (("added", "+"), ("removed", "-"), ("changed", "~")):
            for p in diff[key]:
                self.ctx.send_to_user(f"  {sign} {p}")
        if not any(diff.values()):
            self.ctx.send_to_user("(no differences)")

    def cmd_restore(self, version: str) -> None:
        try:
            deltas = self.ws.restore(version)
        except OverskillError as e:
            self.ctx.error_message(e.message)
            return
        self.ctx.send_to_user(f"Restored {version}: {len(deltas)} file change(s).")

    def cmd_history(self, limit: int = 10) -> None:
        items = self.ws.conversation()[-2 * limit:]
        if not items:
            self.ctx.send_to_user("(no history)")
            return
        for h in items:
            content = h["content"].replace("\n", " ")
            self.ctx.send_to_user(f"{h['role']}: {content[:160]}")


def parse_args(args: List[str]):
    """Return (app_dir, max_turns, message_words) or raise ValueError with a user-facing message."""
    app_dir: Optional[str] = None
    max_turns: Optional[int] = None
    words: List[str] = []
    i = 0
    while i < len(args):
        a = args[i]
        if a in ("-a", "--app-dir"):
            if i + 1 >= len(args):
                raise ValueError(f"{a} requires a PATH argument")
            app_dir = args[i + 1]
            i += 2
            continue
        if a.startswith("--app-dir="):
            app_dir = a.split("=", 1)[1]
            i += 1
            continue
        if a == "--max-turns" or a.startswith("--max-turns="):
            if "=" in a:
                raw = a.split("=", 1)[1]
                i += 1
            else:
                if i + 1 >= len(args):
                    raise ValueError("--max-turns requires a number")
                raw = args[i + 1]
                i += 2
            try:
                max_turns = int(raw)
            except ValueError:
                raise ValueError(f"--max-turns expects an integer, got {raw!r}")
            if max_turns < 1:
                raise ValueError("--max-turns must be at least 1")
            continue
        if a == "--":
            words.extend(args[i + 1:])
            break
        if a.startswith("-") and not words:
            raise ValueError(f"unknown option: {a}")
        words.append(a)
        i += 1
    return app_dir, max_turns, words


def main() -> None:
    """
    OverSkill CLI entrypoint.

    Usage:
        overskill [--app-dir PATH|-a PATH] [--max-turns N] [message...]

    Notes:
        - OPENAI_API_KEY (or settings.api) must be configured before a message is sent.
        - Without a message an interactive REPL starts; :help lists commands.
        - If --app-dir is not supplied, the current directory is used.
    """
    args = sys.argv[1:]

    if any(a in ("-h", "--help") for a in args):
        print(USAGE)
        print("Options:")
        print("  -a, --app-dir PATH   App directory (default: current directory)")
        print("  --max-turns N        Maximum model/tool cycles per message")
        print("Environment:")
        print("  OPENAI_API_KEY, AI_MODEL, OPENROUTER_API_KEY, SERPAPI_API_KEY, OVERSKILL_MAX_TURNS")
        return

    try:
        app_dir, max_turns, words = parse_args(args)
    except ValueError as e:
        print(f"error: {e}")
        print(USAGE)
        raise SystemExit(2)

    app_root = pathlib.Path(app_dir).resolve() if app_dir else pathlib.Path(".").resolve()
    settings = load_settings(app_root)
    configure_logging(settings)
    ctx = Context(app_root, settings=settings)
    ws = Workspace(app_root, settings=settings, ctx=ctx, channel=ConsoleChannel(ctx), max_turns=max_turns)
    repl = OverskillRepl(ws, ctx)
    try:
        if words:
            outcome = repl.send(" ".join(words))
            if outcome is None or outcome.state != RunState.done:
                raise SystemExit(1)
            return
        repl.run()
    finally:
        ws.close()


if __name__ == "__main__":
    main()
