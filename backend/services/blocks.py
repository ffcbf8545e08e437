"""HTML to Notion block conversion and exact block-group matching.

Highlights are edited as HTML; the Notion page stores them as a flat run of
blocks separated by an empty paragraph. To edit or delete a highlight in
place, both sides are rendered into the same block-ordered plain text,
normalized, and compared. Only an exact match counts: a highlight that has
drifted on the Notion side is reported as not found rather than guessed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any, Protocol

import httpx

from backend.text_utils import strip_tags

logger = logging.getLogger(__name__)

BLOCK_BOUNDARY = "\u2029"

Block = dict[str, Any]

_VOID_TAGS = frozenset({"br", "hr", "img", "input", "meta", "link", "wbr"})
_CONTAINER_TAGS = frozenset({"p", "div", "section", "article", "main", "body", "html"})
_LIST_TAGS = {"ul": "bulleted_list_item", "ol": "numbered_list_item"}
_HEADING_TAGS = {
    "h1": "heading_1",
    "h2": "heading_2",
    "h3": "heading_3",
    "h4": "heading_3",
    "h5": "heading_3",
    "h6": "heading_3",
}
_BLOCK_TAGS = (
    _CONTAINER_TAGS | set(_LIST_TAGS) | set(_HEADING_TAGS) | {"blockquote", "pre"}
)
_ANNOTATION_TAGS = {
    "strong": "bold",
    "b": "bold",
    "em": "italic",
    "i": "italic",
    "u": "underline",
    "s": "strikethrough",
    "strike": "strikethrough",
    "del": "strikethrough",
    "code": "code",
}
_ANNOTATIONS = ("bold", "italic", "strikethrough", "underline", "code")
_LIST_ITEM_TYPES = frozenset(_LIST_TAGS.values())


# ---------------------------------------------------------------------------
# HTML tree
# ---------------------------------------------------------------------------


class _Node:
    __slots__ = ("tag", "attrs", "children")

    def __init__(self, tag: str, attrs: dict[str, str] | None = None) -> None:
        self.tag = tag
        self.attrs = attrs or {}
        self.children: list[_Node | str] = []


class _TreeBuilder(HTMLParser):
    """Builds a lenient element tree; unmatched end tags are ignored."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = _Node("#root")
        self._stack = [self.root]

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        node = _Node(tag, {k: v or "" for k, v in attrs})
        self._stack[-1].children.append(node)
        if tag not in _VOID_TAGS:
            self._stack.append(node)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._stack[-1].children.append(_Node(tag, {k: v or "" for k, v in attrs}))

    def handle_endtag(self, tag: str) -> None:
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag == tag:
                del self._stack[depth:]
                return

    def handle_data(self, data: str) -> None:
        self._stack[-1].children.append(data)


def _parse(html: str) -> _Node:
    builder = _TreeBuilder()
    builder.feed(html)
    builder.close()
    return builder.root


def _node_text(node: _Node | str) -> str:
    if isinstance(node, str):
        return node
    if node.tag == "br":
        return "\n"
    return "".join(_node_text(child) for child in node.children)


# ---------------------------------------------------------------------------
# Rich text
# ---------------------------------------------------------------------------


def _text_item(content: str, marks: frozenset[str] = frozenset(), link: str | None = None) -> dict[str, Any]:
    text: dict[str, Any] = {"content": content}
    if link:
        text["link"] = {"url": link}
    annotations: dict[str, Any] = {name: name in marks for name in _ANNOTATIONS}
    annotations["color"] = "default"
    return {
        "type": "text",
        "text": text,
        "annotations": annotations,
        "plain_text": content,
    }


def _rich_text_from_nodes(nodes: list[_Node | str]) -> list[dict[str, Any]]:
    segments: list[list[Any]] = []  # [text, marks, link]

    def emit(text: str, marks: frozenset[str], link: str | None) -> None:
        if segments and segments[-1][1] == marks and segments[-1][2] == link:
            segments[-1][0] += text
        else:
            segments.append([text, marks, link])

    def walk(node: _Node | str, marks: frozenset[str], link: str | None) -> None:
        if isinstance(node, str):
            if node:
                emit(node.replace("\xa0", " "), marks, link)
            return
        if node.tag == "br":
            emit("\n", marks, link)
            return
        mark = _ANNOTATION_TAGS.get(node.tag)
        if mark:
            marks = marks | {mark}
        if node.tag == "a" and node.attrs.get("href"):
            link = node.attrs["href"]
        for child in node.children:
            walk(child, marks, link)

    for node in nodes:
        walk(node, frozenset(), None)

    rich_text = []
    last = len(segments) - 1
    for index, (text, marks, link) in enumerate(segments):
        if index == 0:
            text = text.lstrip()
        if index == last:
            text = text.rstrip()
        if text:
            rich_text.append(_text_item(text, marks, link))
    return rich_text


def html_to_rich_text(html: str) -> list[dict[str, Any]]:
    """Convert inline HTML into Notion rich-text items.

    Bold, italic, underline, strikethrough and code annotations and links are
    kept; ``<br>`` becomes a newline; entities are decoded. The first item is
    left-trimmed and the last right-trimmed.
    """
    if not html or not html.strip():
        return []
    return _rich_text_from_nodes(_parse(html).children)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def _text_block(block_type: str, rich_text: list[dict[str, Any]]) -> Block:
    return {"type": block_type, block_type: {"rich_text": rich_text}}


def _split_lines(nodes: list[_Node | str], split_newlines: bool) -> list[list[_Node | str]]:
    lines: list[list[_Node | str]] = [[]]
    for node in nodes:
        if isinstance(node, _Node) and node.tag == "br":
            lines.append([])
        elif isinstance(node, str) and split_newlines and "\n" in node:
            first, *rest = node.split("\n")
            lines[-1].append(first)
            for part in rest:
                lines.append([part])
        else:
            lines[-1].append(node)
    return lines


def _paragraphs(nodes: list[_Node | str], split_newlines: bool) -> list[Block]:
    blocks = []
    for line in _split_lines(nodes, split_newlines):
        rich_text = _rich_text_from_nodes(line)
        if rich_text:
            blocks.append(_text_block("paragraph", rich_text))
    return blocks


def _list_items(list_node: _Node) -> list[Block]:
    block_type = _LIST_TAGS[list_node.tag]
    items = []
    for child in list_node.children:
        if not isinstance(child, _Node) or child.tag != "li":
            continue
        inline = [c for c in child.children if not (isinstance(c, _Node) and c.tag in _LIST_TAGS)]
        nested = [c for c in child.children if isinstance(c, _Node) and c.tag in _LIST_TAGS]

        block = _text_block(block_type, _rich_text_from_nodes(inline))
        children = [item for sub in nested for item in _list_items(sub)]
        if children:
            block[block_type]["children"] = children
        if block[block_type]["rich_text"] or children:
            items.append(block)
    return items


def _convert(nodes: list[_Node | str], split_newlines: bool) -> list[Block]:
    blocks: list[Block] = []
    run: list[_Node | str] = []

    def flush() -> None:
        blocks.extend(_paragraphs(run, split_newlines))
        run.clear()

    for node in nodes:
        if isinstance(node, str) or node.tag not in _BLOCK_TAGS:
            run.append(node)
            continue

        flush()
        if node.tag in _CONTAINER_TAGS:
            blocks.extend(_convert(node.children, split_newlines=False))
        elif node.tag in _LIST_TAGS:
            blocks.extend(_list_items(node))
        elif node.tag in _HEADING_TAGS:
            rich_text = _rich_text_from_nodes(node.children)
            if rich_text:
                blocks.append(_text_block(_HEADING_TAGS[node.tag], rich_text))
        elif node.tag == "blockquote":
            rich_text = _rich_text_from_nodes(node.children)
            if rich_text:
                blocks.append(_text_block("quote", rich_text))
        elif node.tag == "pre":
            code = _node_text(node).strip()
            if code:
                block = _text_block("code", [_text_item(code)])
                block["code"]["language"] = "plain text"
                blocks.append(block)
    flush()
    return blocks


def html_to_blocks(html: str) -> list[Block]:
    """Convert highlight HTML (or plain text) into Notion blocks.

    Blocks come out in authoring order. Nested lists become ``children`` of
    their parent item. Loose text is split on newlines and ``<br>``. Empty
    lines are dropped so a highlight never contains the empty paragraph that
    separates highlights on the page; empty input yields one empty
    paragraph.
    """
    if not html or not html.strip():
        return [_text_block("paragraph", [])]
    blocks = _convert(_parse(html).children, split_newlines=True)
    return blocks or [_text_block("paragraph", [])]


def flatten_blocks_for_sync(blocks: list[Block]) -> list[Block]:
    """Flatten nested list items depth-first, detaching their children.

    The result lines up index for index with Notion's flat block listing.
    """
    flat: list[Block] = []
    for block in blocks:
        block_type = block["type"]
        if block_type in _LIST_ITEM_TYPES:
            data = block.get(block_type) or {}
            flat.append(_text_block(block_type, data.get("rich_text", [])))
            flat.extend(flatten_blocks_for_sync(data.get("children", [])))
        else:
            flat.append(block)
    return flat


def get_block_text(block: Block) -> str:
    """Return the lowercased, trimmed plain text of a block's rich text."""
    data = block.get(block.get("type", "")) or {}
    rich_text = data.get("rich_text") or []
    text = "".join(
        item.get("plain_text") or (item.get("text") or {}).get("content", "")
        for item in rich_text
    )
    return text.strip().lower()


def html_to_block_text(html: str) -> str:
    """Render HTML as plain text in Notion block order.

    One segment per block, nested list items right after their parent,
    joined with :data:`BLOCK_BOUNDARY`.
    """
    if not html or not html.strip():
        return ""
    parts = [
        text
        for block in flatten_blocks_for_sync(html_to_blocks(html))
        if (text := _block_plain_text(block))
    ]
    if not parts:
        return strip_tags(html).strip()
    return BLOCK_BOUNDARY.join(parts)


def _block_plain_text(block: Block) -> str:
    data = block.get(block["type"]) or {}
    return "".join(item["plain_text"] for item in data.get("rich_text", [])).strip()


# ---------------------------------------------------------------------------
# Normalization and matching
# ---------------------------------------------------------------------------

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_UNICODE_SPACE_RE = re.compile("[\u2000-\u200B\u202F\u205F\u3000]")
_BULLET_RE = re.compile(r"[\s\u2022\u2043\u2219]+")
_LIST_MARKER_RE = re.compile(r"\s*[-*]\s+")
_PERIOD_SPACE_RE = re.compile(r"\.\s+")
_PERIOD_JOINED_RE = re.compile(r"\.(\S)")
_FOLD_TABLE = str.maketrans(
    {
        "\u2014": "-",
        "\u2013": "-",
        "\u00a0": " ",
        "\u201c": '"',
        "\u201d": '"',
        "\u201e": '"',
        "\u2018": "'",
        "\u2019": "'",
        "\u201a": "'",
        BLOCK_BOUNDARY: " ",
    }
)


def normalize_for_block_compare(text: str) -> str:
    """Normalize text so a highlight and a block group compare equal.

    Strips tags, folds dashes, quotes and Unicode spaces, drops bullet
    glyphs and list markers, evens out sentence spacing and lowercases.
    """
    s = _WHITESPACE_RE.sub(" ", _TAG_RE.sub(" ", text)).strip().lower()
    s = s.translate(_FOLD_TABLE)
    s = _UNICODE_SPACE_RE.sub(" ", s)
    s = _BULLET_RE.sub(" ", s)
    s = _LIST_MARKER_RE.sub(" ", s)
    s = _WHITESPACE_RE.sub(" ", s).strip()
    s = _PERIOD_SPACE_RE.sub(". ", s)
    s = _PERIOD_JOINED_RE.sub(r". \1", s)
    return _WHITESPACE_RE.sub(" ", s).strip()


def build_search_strings(html_content: str | None, text: str | None) -> tuple[str, str]:
    """Return (block-order search string, plain-text search string)."""
    plain = text or ""
    block_text = html_to_block_text(html_content) if html_content else ""
    return (
        normalize_for_block_compare(block_text or plain),
        normalize_for_block_compare(plain),
    )


def _is_list_item(block: Block) -> bool:
    return block.get("type") in _LIST_ITEM_TYPES


def _is_empty_paragraph(block: Block) -> bool:
    if block.get("type") != "paragraph":
        return False
    return not (block.get("paragraph") or {}).get("rich_text")


def _ends_group(last: Block, block: Block) -> bool:
    if _is_list_item(last):
        return not _is_list_item(block)
    # A paragraph may introduce the list that follows it.
    return _is_list_item(block) and last.get("type") != "paragraph"


def _iter_groups(blocks: list[Block]):
    """Yield (start index, blocks) for each highlight-shaped run of blocks."""
    group: list[Block] = []
    start = 0
    for index, block in enumerate(blocks):
        empty = _is_empty_paragraph(block)
        if group and (empty or _ends_group(group[-1], block)):
            yield start, group
            group = []
        if empty:
            continue
        if not group:
            start = index
        group.append(block)
    if group:
        yield start, group


def _group_text(group: list[Block]) -> str:
    return normalize_for_block_compare(BLOCK_BOUNDARY.join(get_block_text(b) for b in group))


def build_normalized_block_groups(blocks: list[Block]) -> list[str]:
    """Normalized text of every block group, for diagnostics."""
    return [_group_text(group) for _, group in _iter_groups(blocks)]


@dataclass
class MatchResult:
    """The block run a highlight occupies on the page."""

    blocks: list[Block] = field(default_factory=list)
    start: int = -1
    end: int = -1
    found: bool = False
    exact: bool = False


def find_matching_blocks(blocks: list[Block], search: tuple[str, str]) -> MatchResult:
    """Return the first block group whose normalized text equals a search string.

    Never falls back to substring or partial matches.
    """
    targets = {s for s in search if s}
    if not targets:
        return MatchResult()
    for start, group in _iter_groups(blocks):
        if _group_text(group) in targets:
            return MatchResult(
                blocks=list(group),
                start=start,
                end=start + len(group) - 1,
                found=True,
                exact=True,
            )
    return MatchResult()


# ---------------------------------------------------------------------------
# Applying an update
# ---------------------------------------------------------------------------


class BlockClient(Protocol):
    async def update_block(self, block_id: str, block: Block) -> Block: ...

    async def delete_block(self, block_id: str) -> None: ...

    async def append_blocks(
        self, parent_id: str, blocks: list[Block], after: str | None = None
    ) -> list[Block]: ...


@dataclass
class UpdateOutcome:
    """Per-operation counters of one in-place update."""

    updated: int = 0
    recreated: int = 0
    deleted: int = 0
    appended: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.updated + self.recreated + self.deleted + self.appended + self.failed


def _parent_id(block: Block, page_id: str) -> str:
    parent = block.get("parent") or {}
    if parent.get("type") == "block_id":
        return parent["block_id"]
    return page_id


def _update_payload(block: Block) -> Block:
    block_type = block["type"]
    data = {k: v for k, v in block[block_type].items() if k != "children"}
    return {block_type: data}


async def apply_block_update(
    notion: BlockClient,
    page_id: str,
    match: MatchResult,
    new_blocks: list[Block],
) -> UpdateOutcome:
    """Rewrite a matched block run with new content, position by position.

    Same-type blocks are updated in place. A type change is recreated right
    after the old block; old descendants of a recreated block go with it, so
    their new content is appended in the same batch. Surplus new blocks are
    appended after the run (exact matches only). Every delete waits until the
    writes are done and runs deepest first, so no anchor disappears early.
    A failing block is logged and counted; the rest still run.
    """
    outcome = UpdateOutcome()
    old_blocks = match.blocks
    overlap = min(len(old_blocks), len(new_blocks))
    extra = new_blocks[overlap:] if match.exact and old_blocks else []
    pending_deletes: list[tuple[str, str]] = []

    group_root: Block | None = None
    group_ids: set[str] = set()
    group_blocks: list[Block] = []

    async def flush(with_extra: bool = False) -> None:
        nonlocal group_root
        if group_root is None:
            return
        batch = group_blocks + (extra if with_extra else [])
        try:
            await notion.append_blocks(
                _parent_id(group_root, page_id), batch, after=group_root["id"]
            )
            pending_deletes.extend(
                (b["id"], "recreated") for b in old_blocks if b["id"] in group_ids
            )
            if with_extra:
                outcome.appended += len(extra)
        except httpx.HTTPError as exc:
            logger.warning("Failed to recreate block %s: %s", group_root.get("id"), exc)
            outcome.failed += len(batch)
        group_root = None
        group_ids.clear()
        group_blocks.clear()

    for old, new in zip(old_blocks[:overlap], new_blocks[:overlap]):
        if group_root is not None and _parent_id(old, page_id) in group_ids:
            group_ids.add(old["id"])
            group_blocks.append(new)
            continue
        await flush()
        if old["type"] != new["type"]:
            group_root = old
            group_ids.add(old["id"])
            group_blocks.append(new)
            continue
        try:
            await notion.update_block(old["id"], _update_payload(new))
            outcome.updated += 1
        except httpx.HTTPError as exc:
            logger.warning("Failed to update block %s: %s", old.get("id"), exc)
            outcome.failed += 1

    if extra and group_root is not None and old_blocks[-1]["id"] in group_ids:
        await flush(with_extra=True)
    else:
        await flush()
        if extra:
            anchor = old_blocks[-1]
            try:
                await notion.append_blocks(_parent_id(anchor, page_id), extra, after=anchor["id"])
                outcome.appended += len(extra)
            except httpx.HTTPError as exc:
                logger.warning(
                    "Failed to append %d block(s) after %s: %s", len(extra), anchor.get("id"), exc
                )
                outcome.failed += len(extra)

    pending_deletes.extend((old["id"], "deleted") for old in old_blocks[overlap:])

    for block_id, kind in reversed(pending_deletes):
        try:
            await notion.delete_block(block_id)
        except httpx.HTTPError as exc:
            logger.warning("Failed to delete block %s: %s", block_id, exc)
            outcome.failed += 1
            continue
        if kind == "recreated":
            outcome.recreated += 1
        else:
            outcome.deleted += 1

    return outcome
