"""
Line-oriented parser for the markdown dialect the model is asked to write.

Supported blocks: ``#``/``##``/``###`` headings, ``> `` quotes, fenced code,
``*``/``-`` and ``N.`` lists nested by indentation, and paragraphs. Inline
spans: ``**bold**``, ``*italic*`` and ``code``. Anything malformed stays
literal text; parsing never raises.

The output is a tuple of frozen nodes, so rendering the same text twice gives
equal trees and nothing is shared between calls.
"""

import html
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class Span:
    kind: str  # "text" | "bold" | "italic" | "code"
    text: str


Inline = Tuple[Span, ...]


@dataclass(frozen=True)
class Heading:
    level: int
    content: Inline


@dataclass(frozen=True)
class Paragraph:
    lines: Tuple[Inline, ...]


@dataclass(frozen=True)
class BlockQuote:
    lines: Tuple[Inline, ...]


@dataclass(frozen=True)
class CodeBlock:
    code: str
    language: str = ""


@dataclass(frozen=True)
class ListItem:
    content: Inline
    children: Tuple["ListBlock", ...] = ()


@dataclass(frozen=True)
class ListBlock:
    ordered: bool
    items: Tuple[ListItem, ...]
    start: int = 1


Block = Union[Heading, Paragraph, BlockQuote, CodeBlock, ListBlock]


# --- inline spans ---

# Order matters: code first so markers inside backticks stay literal, bold before italic
_INLINE_PATTERNS = (
    ("code", re.compile(r"`([^`\n]+)`")),
    ("bold", re.compile(r"\*\*(.+?)\*\*")),
    ("italic", re.compile(r"(?<!\*)\*(?![\s*])(.+?)(?<![\s*])\*(?!\*)")),
)


def parse_inline(text: str) -> Inline:
    """
    Resolve each pattern left-to-right over the segments no earlier pattern
    claimed. Spans never nest.
    """
    segments: List[Tuple[Optional[str], str]] = [(None, text)]
    for kind, pattern in _INLINE_PATTERNS:
        resolved: List[Tuple[Optional[str], str]] = []
        for seg_kind, seg_text in segments:
            if seg_kind is not None:
                resolved.append((seg_kind, seg_text))
                continue
            cursor = 0
            for match in pattern.finditer(seg_text):
                if match.start() > cursor:
                    resolved.append((None, seg_text[cursor:match.start()]))
                resolved.append((kind, match.group(1)))
                cursor = match.end()
            if cursor < len(seg_text):
                resolved.append((None, seg_text[cursor:]))
        segments = resolved

    spans: List[Span] = []
    for seg_kind, seg_text in segments:
        kind = seg_kind or "text"
        if kind == "text" and spans and spans[-1].kind == "text":
            spans[-1] = Span("text", spans[-1].text + seg_text)
        elif seg_text or kind != "text":
            spans.append(Span(kind, seg_text))
    return tuple(spans)


# --- blocks ---

_HEADING = re.compile(r"^(#{1,3})\s+(.*)$")
_BULLET = re.compile(r"^[*-]\s+(.*)$")
_ORDERED = re.compile(r"^(\d+)\.\s+(.*)$")
_QUOTE = re.compile(r"^>\s?(.*)$")
_FENCE = "```"


class _ItemBuilder:
    def __init__(self, content: Inline):
        self.content = content
        self.children: List["_ListBuilder"] = []

    def freeze(self) -> ListItem:
        return ListItem(self.content, tuple(child.freeze() for child in self.children))


class _ListBuilder:
    def __init__(self, ordered: bool, indent: int, start: int = 1):
        self.ordered = ordered
        self.indent = indent
        self.start = start
        self.items: List[_ItemBuilder] = []

    def freeze(self) -> ListBlock:
        return ListBlock(self.ordered, tuple(item.freeze() for item in self.items), self.start)


def _indent_of(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip(" "))


class _BlockParser:
    def __init__(self):
        self.blocks: List[Block] = []
        self.paragraph: List[Inline] = []
        self.quote: List[Inline] = []
        self.lists: List[_ListBuilder] = []

    def end_paragraph(self) -> None:
        if self.paragraph:
            self.blocks.append(Paragraph(tuple(self.paragraph)))
            self.paragraph = []

    def end_quote(self) -> None:
        if self.quote:
            self.blocks.append(BlockQuote(tuple(self.quote)))
            self.quote = []

    def end_list(self) -> None:
        if self.lists:
            self.blocks.append(self.lists[0].freeze())
            self.lists = []

    def end_all(self) -> None:
        self.end_paragraph()
        self.end_quote()
        self.end_list()

    def add_item(self, indent: int, ordered: bool, number: int, text: str) -> None:
        self.end_paragraph()
        self.end_quote()

        if not self.lists:
            self.lists.append(_ListBuilder(ordered, indent, number))
        else:
            while len(self.lists) > 1 and indent < self.lists[-1].indent:
                self.lists.pop()
            top = self.lists[-1]
            if indent > top.indent and top.items:
                nested = _ListBuilder(ordered, indent, number)
                top.items[-1].children.append(nested)
                self.lists.append(nested)
            elif top.ordered != ordered:
                if len(self.lists) == 1:
                    self.end_list()
                    self.lists.append(_ListBuilder(ordered, indent, number))
                else:
                    self.lists.pop()
                    sibling = _ListBuilder(ordered, indent, number)
                    self.lists[-1].items[-1].children.append(sibling)
                    self.lists.append(sibling)

        self.lists[-1].items.append(_ItemBuilder(parse_inline(text)))

    def parse(self, text: str) -> Tuple[Block, ...]:
        lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        i = 0
        while i < len(lines):
            raw = lines[i]
            stripped = raw.strip()
            i += 1

            if not stripped:
                self.end_all()
                continue

            if stripped.startswith(_FENCE):
                self.end_all()
                language = stripped[len(_FENCE):].strip()
                code_lines: List[str] = []
                # An unterminated fence runs to the end, which keeps half-streamed replies readable
                while i < len(lines) and lines[i].strip() != _FENCE:
                    code_lines.append(lines[i])
                    i += 1
                i += 1  # closing fence
                self.blocks.append(CodeBlock("\n".join(code_lines), language))
                continue

            heading = _HEADING.match(stripped)
            if heading:
                self.end_all()
                self.blocks.append(Heading(len(heading.group(1)), parse_inline(heading.group(2).strip())))
                continue

            bullet = _BULLET.match(stripped)
            if bullet:
                self.add_item(_indent_of(raw), False, 1, bullet.group(1))
                continue

            ordered = _ORDERED.match(stripped)
            if ordered:
                self.add_item(_indent_of(raw), True, int(ordered.group(1)), ordered.group(2))
                continue

            quote = _QUOTE.match(stripped)
            if quote:
                self.end_paragraph()
                self.end_list()
                self.quote.append(parse_inline(quote.group(1)))
                continue

            self.end_list()
            self.end_quote()
            self.paragraph.append(parse_inline(stripped))

        self.end_all()
        return tuple(self.blocks)


def render(text: str) -> Tuple[Block, ...]:
    """Parse markdown into display blocks."""
    if not text:
        return ()
    return _BlockParser().parse(text)


# --- output formats ---

_HTML_TAGS = {"bold": "strong", "italic": "em", "code": "code"}


def _inline_html(content: Inline) -> str:
    out = []
    for span in content:
        escaped = html.escape(span.text)
        tag = _HTML_TAGS.get(span.kind)
        out.append(f"<{tag}>{escaped}</{tag}>" if tag else escaped)
    return "".join(out)


def _list_html(block: ListBlock) -> str:
    tag = "ol" if block.ordered else "ul"
    start = f' start="{block.start}"' if block.ordered and block.start != 1 else ""
    items = []
    for item in block.items:
        children = "".join(_list_html(child) for child in item.children)
        items.append(f"<li>{_inline_html(item.content)}{children}</li>")
    return f"<{tag}{start}>{''.join(items)}</{tag}>"


def to_html(blocks: Tuple[Block, ...]) -> str:
    parts = []
    for block in blocks:
        if isinstance(block, Heading):
            parts.append(f"<h{block.level}>{_inline_html(block.content)}</h{block.level}>")
        elif isinstance(block, Paragraph):
            parts.append("<p>" + "<br>".join(_inline_html(line) for line in block.lines) + "</p>")
        elif isinstance(block, BlockQuote):
            parts.append("<blockquote>" + "<br>".join(_inline_html(line) for line in block.lines) + "</blockquote>")
        elif isinstance(block, CodeBlock):
            css = f' class="language-{html.escape(block.language)}"' if block.language else ""
            parts.append(f"<pre><code{css}>{html.escape(block.code)}</code></pre>")
        elif isinstance(block, ListBlock):
            parts.append(_list_html(block))
    return "\n".join(parts)


def _inline_text(content: Inline) -> str:
    return "".join(span.text for span in content)


def _list_text(block: ListBlock, depth: int) -> List[str]:
    lines = []
    for offset, item in enumerate(block.items):
        marker = f"{block.start + offset}." if block.ordered else "•"
        lines.append(f"{'  ' * depth}{marker} {_inline_text(item.content)}")
        for child in item.children:
            lines.extend(_list_text(child, depth + 1))
    return lines


def to_plain_text(blocks: Tuple[Block, ...]) -> str:
    """Markers stripped, structure kept: what a user expects when copying the summary."""
    chunks = []
    for block in blocks:
        if isinstance(block, Heading):
            chunks.append(_inline_text(block.content))
        elif isinstance(block, (Paragraph, BlockQuote)):
            chunks.append("\n".join(_inline_text(line) for line in block.lines))
        elif isinstance(block, CodeBlock):
            chunks.append(block.code)
        elif isinstance(block, ListBlock):
            chunks.append("\n".join(_list_text(block, 0)))
    return "\n\n".join(chunks)
