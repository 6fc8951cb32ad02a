# overskill: Tiered system-context builder. Files are grouped by change-tracker tier into up to four labelled blocks (core/library/active/volatile) followed by the base prompt; a block's text is reused verbatim while its member set and hashes are unchanged so provider-side prompt caches keyed on block content stay warm.

from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field

from .change_tracker import TIER_ACTIVE, TIER_CORE, TIER_LIBRARY, TIER_VOLATILE, TIERS, ChangeTracker
from .context import Context
from .errors import NotFoundError
from .file_store import FileStore
from .models import FrozenModel

TIER_BASE = "base"

TIER_TTL: Dict[str, Optional[str]] = {
    TIER_CORE: "1h",
    TIER_LIBRARY: "30m",
    TIER_ACTIVE: "5m",
    TIER_VOLATILE: None,
    TIER_BASE: "1h",
}

TIER_LABEL = {
    TIER_CORE: "stable_core_files",
    TIER_LIBRARY: "library_dependencies",
    TIER_ACTIVE: "app_logic",
    TIER_VOLATILE: "recently_changed",
    TIER_BASE: "base_prompt",
}

_FENCE_LANG = {
    "ts": "typescript", "tsx": "tsx", "js": "javascript", "jsx": "jsx",
    "json": "json", "css": "css", "html": "html",
}


def file_kind(path: str) -> str:
    """Coarse file kind used in the useful-context wrapper."""
    p = path.lower()
    if p.endswith((".ts", ".tsx")):
        return "typescript"
    if p.endswith((".js", ".jsx", ".mjs", ".cjs")):
        return "javascript"
    if p.endswith((".yml", ".yaml")):
        return "yaml"
    if p.endswith(".json"):
        return "json"
    if p.endswith((".css", ".scss", ".sass")):
        return "styles"
    if p.endswith((".html", ".htm")):
        return "template"
    return "text"


class ContextBlock(FrozenModel):

    tier: str
    label: str
    cache_ttl: Optional[str] = Field(default=None, description="1h, 30m, 5m or None for uncached")
    text: str
    paths: Tuple[str, ...] = ()
    hashes: Dict[str, str] = Field(default_factory=dict)

    @property
    def cached(self) -> bool:
        return self.cache_ttl is not None

    def to_input_item(self) -> Dict[str, Any]:
        """Responses API system message for this block."""
        return {"type": "message", "role": "system", "content": self.text}


def format_files(label: str, files: List[Tuple[str, str, str]]) -> str:
    """files: (path, content_type, content) already in display order."""
    sections = []
    for path, ctype, content in files:
        lang = _FENCE_LANG.get(ctype, "")
        body = content if content.endswith("\n") else content + "\n"
        sections.append(
            f'<useful-context file="{path}" type="{file_kind(path)}">\n```{lang}\n{body}```\n</useful-context>\n'
        )
    return f"<!-- {label}: {len(files)} files -->\n" + "\n".join(sections)


class ContextBuilder:
    """
    Builds the system context for one app.

    build() reconciles the tracker with the store first, so edits made outside the
    tool loop (a human in an editor) are picked up at every turn boundary.
    """

    def __init__(
        self,
        store: FileStore,
        tracker: ChangeTracker,
        base_prompt: str = "",
        ctx: Optional[Context] = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.base_prompt = base_prompt
        self.ctx = ctx or Context()
        self._blocks: Dict[str, ContextBlock] = {}
        self._base_block: Optional[ContextBlock] = None
        self._rebuilt = 0
        self._reused = 0

    def build(self) -> List[ContextBlock]:
        snap = self.store.snapshot()
        for path, content in snap.items():
            self.tracker.track(path, content)
        for path in self.tracker.tracked_paths():
            if path not in snap:
                self.tracker.forget(path)

        groups = self.tracker.categorize(snap.keys())
        blocks: List[ContextBlock] = []
        for tier in TIERS:
            paths = groups[tier]
            if not paths:
                self._blocks.pop(tier, None)
                continue
            hashes = {p: self.tracker.current_hash(p) or "" for p in paths}
            prev = self._blocks.get(tier)
            if prev is not None and prev.hashes == hashes:
                self._reused += 1
                blocks.append(prev)
                continue
            ordered = sorted(paths, key=lambda p: (-len(snap[p]), p))
            rows = []
            for p in ordered:
                try:
                    ctype = self.store.read(p).content_type.value
                except NotFoundError:
                    ctype = "text"
                rows.append((p, ctype, snap[p]))
            block = ContextBlock(
                tier=tier,
                label=TIER_LABEL[tier],
                cache_ttl=TIER_TTL[tier],
                text=format_files(TIER_LABEL[tier], rows),
                paths=tuple(ordered),
                hashes=hashes,
            )
            self._blocks[tier] = block
            self._rebuilt += 1
            blocks.append(block)

        if self.base_prompt:
            if self._base_block is None or self._base_block.text != self.base_prompt:
                self._base_block = ContextBlock(
                    tier=TIER_BASE, label=TIER_LABEL[TIER_BASE], cache_ttl=TIER_TTL[TIER_BASE], text=self.base_prompt,
                )
            blocks.append(self._base_block)

        self._log_structure(blocks)
        return blocks

    def input_items(self) -> List[Dict[str, Any]]:
        return [b.to_input_item() for b in self.build()]

    def stats(self) -> Dict[str, int]:
        return {"rebuilt": self._rebuilt, "reused": self._reused}

    def invalidate(self) -> None:
        self._blocks.clear()
        self._base_block = None

    def _log_structure(self, blocks: List[ContextBlock]) -> None:
        total = sum(len(b.text) for b in blocks)
        cached = sum(len(b.text) for b in blocks if b.cached)
        ratio = round(cached / total * 100, 1) if total else 0
        parts = ", ".join(f"{b.tier}={len(b.paths)}/{b.cache_ttl or 'uncached'}" for b in blocks)
        self.ctx.debug(f"[context] blocks: {parts}; {ratio}% of chars cacheable")
