# overskill: User I/O Context (logging sink passed explicitly to every component) and per-app Storage for metadata and conversation history.

import logging
import pathlib
import shutil
import sys
from typing import Any, Dict, List, Optional

from .config import CONV_CAP_TURNS
from .fs import append_jsonl, now_ts, read_json, read_jsonl, short_id, write_json


class Context:
    """
    Thin wrapper around console I/O and logging.

    Components receive a Context instead of reaching for a global logger, so a
    host application can route agent output wherever it wants.
    """

    def __init__(
        self,
        app_root: Optional[pathlib.Path] = None,
        settings: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.app_root = pathlib.Path(app_root) if app_root is not None else None
        self.settings: Dict[str, Any] = settings or {}
        self.logger = logger or logging.getLogger("overskill")

    def send_to_user(self, message: str) -> None:
        """Send a user-facing message to stdout."""
        print(message)

    def log(self, message: str) -> None:
        self.logger.info(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def warn(self, message: str) -> None:
        self.logger.warning(message)

    def error_message(self, message: str) -> None:
        """Log an error and echo it to stderr for interactive use."""
        self.logger.error(message)
        print(f"Error: {message}", file=sys.stderr)


class Storage:
    """
    Persistence wrapper for conversation history and app metadata.

    All paths are resolved under <app_root>/.overskill. History is stored as JSONL
    for append-only writes; metadata is a compact JSON file.
    """

    def __init__(self, app_root: pathlib.Path) -> None:
        self.app_root = pathlib.Path(app_root)
        self.state_dir = self.app_root / ".overskill"
        self.metadata_file = self.state_dir / "overskill-metadata.json"
        self.conv_file = self.state_dir / "overskill-conversation.jsonl"
        self.progress_file = self.state_dir / "progress.jsonl"
        self.versions_dir = self.state_dir / "versions"
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def default_metadata(self) -> Dict[str, Any]:
        return {
            "app_id": short_id("app"),
            "created_at": now_ts(),
            "runs": [],
            # derived; safe to drop and rebuild from the file store
            "change_tracker": {},
        }

    def load_metadata(self) -> Dict[str, Any]:
        """Load metadata from disk, filling any missing keys with defaults."""
        md = read_json(self.metadata_file, None)
        if not isinstance(md, dict):
            md = {}
        for k, v in self.default_metadata().items():
            md.setdefault(k, v)
        return md

    def save_metadata(self, md: Dict[str, Any]) -> None:
        write_json(self.metadata_file, md)

    def load_history(self) -> List[Dict[str, Any]]:
        """Load the conversation history and trim to CONV_CAP_TURNS most recent entries."""
        hist = read_jsonl(self.conv_file)
        if len(hist) > CONV_CAP_TURNS:
            hist = hist[-CONV_CAP_TURNS:]
        return hist

    def append_history(self, role: str, content: str, extra: Optional[Dict[str, Any]] = None) -> None:
        entry = {"ts": now_ts(), "type": "message", "role": role, "content": content}
        if extra:
            entry.update(extra)
        append_jsonl(self.conv_file, entry)

    def clear_history(self) -> None:
        """Rotate the current conversation JSONL to a timestamped .bak.jsonl file if present."""
        if self.conv_file.exists():
            backup = self.conv_file.with_name(f"{self.conv_file.stem}-{int(now_ts())}.bak.jsonl")
            shutil.move(str(self.conv_file), str(backup))
