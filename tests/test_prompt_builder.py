"""Tests for tiered context blocks and their reuse."""

import pytest

from overskill.change_tracker import TIER_CORE, TIER_VOLATILE
from overskill.prompt_builder import TIER_BASE, ContextBuilder, file_kind, format_files


@pytest.fixture
def builder(store, tracker):
    store.write("src/App.jsx", "export default function App() {}\n")
    store.write("src/main.jsx", "import App from './App';\nrender(App);\n")
    store.write("index.html", "<div id=root></div>\n")
    return ContextBuilder(store, tracker, base_prompt="You build apps.")


def by_tier(blocks):
    return {b.tier: b for b in blocks}


def test_fresh_files_land_in_the_core_block(builder):
    blocks = builder.build()
    assert [b.tier for b in blocks] == [TIER_CORE, TIER_BASE]
    core = blocks[0]
    assert core.cache_ttl == "1h"
    assert core.label == "stable_core_files"
    assert set(core.paths) == {"src/App.jsx", "src/main.jsx", "index.html"}


def test_files_are_ordered_largest_first(builder):
    core = builder.build()[0]
    assert core.paths == ("src/main.jsx", "src/App.jsx", "index.html")


def test_unchanged_block_text_is_reused_verbatim(builder):
    first = by_tier(builder.build())
    second = by_tier(builder.build())
    assert second[TIER_CORE].text is first[TIER_CORE].text
    assert second[TIER_BASE] is first[TIER_BASE]
    assert builder.stats() == {"rebuilt": 1, "reused": 1}


def test_changed_file_moves_to_the_uncached_volatile_block(builder, store):
    builder.build()
    store.write("src/App.jsx", "export default function App() { return 1; }\n")
    tiers = by_tier(builder.build())
    volatile = tiers[TIER_VOLATILE]
    assert volatile.paths == ("src/App.jsx",)
    assert volatile.cache_ttl is None
    assert not volatile.cached
    assert "return 1;" in volatile.text
    assert "src/App.jsx" not in tiers[TIER_CORE].paths


def test_edit_outside_the_tool_loop_is_picked_up(builder, store, tracker):
    builder.build()
    store.write("index.html", "<main></main>\n")
    builder.build()
    assert tracker.recently_changed("index.html")


def test_deleted_files_are_forgotten(builder, store, tracker):
    builder.build()
    store.delete("index.html")
    blocks = builder.build()
    assert "index.html" not in tracker.tracked_paths()
    assert all("index.html" not in b.paths for b in blocks)


def test_base_prompt_is_the_trailing_cached_block(builder):
    blocks = builder.build()
    assert blocks[-1].tier == TIER_BASE
    assert blocks[-1].text == "You build apps."
    assert blocks[-1].cache_ttl == "1h"


def test_input_items_are_system_messages(builder):
    items = builder.input_items()
    assert all(i == {"type": "message", "role": "system", "content": i["content"]} for i in items)
    assert items[-1]["content"] == "You build apps."


def test_empty_store_has_only_the_base_block(store, tracker):
    blocks = ContextBuilder(store, tracker, base_prompt="base").build()
    assert [b.tier for b in blocks] == [TIER_BASE]


def test_invalidate_forces_a_rebuild(builder):
    first = by_tier(builder.build())
    builder.invalidate()
    second = by_tier(builder.build())
    assert second[TIER_CORE].text == first[TIER_CORE].text
    assert second[TIER_CORE].text is not first[TIER_CORE].text


def test_format_files():
    text = format_files("app_logic", [("src/App.jsx", "jsx", "let a = 1;")])
    assert text.startswith("<!-- app_logic: 1 files -->\n")
    assert '<useful-context file="src/App.jsx" type="javascript">' in text
    assert "```jsx\nlet a = 1;\n```" in text


@pytest.mark.parametrize("path,kind", [
    ("a.tsx", "typescript"),
    ("a.mjs", "javascript"),
    ("styles/site.scss", "styles"),
    ("index.html", "template"),
    ("package.json", "json"),
    ("README", "text"),
])
def test_file_kind(path, kind):
    assert file_kind(path) == kind
