"""
Markdown source highlighting.

The document is styled in place, the way an editor shows it: headings,
emphasis, strong text, links, inline code, block quotes, lists and code
blocks get their element style, then each code block's tokens are laid
over it at their position in the document.

markdown-it only maps block tokens to source lines, so inline elements are
found by walking each inline token's children through its content text and
mapping every content line back onto its source line.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from rich.style import Style
from rich.text import Text

from md_playground.fragments import parse_markdown
from md_playground.tokenizer import byte_offsets, char_index
from md_playground.tokens import ElementKind, HighlightStyle, Token

_BLOCK_ELEMENTS = {
    "heading_open": ElementKind.HEADING,
    "blockquote_open": ElementKind.BLOCK_QUOTE,
    "bullet_list_open": ElementKind.LIST,
    "ordered_list_open": ElementKind.LIST,
    "fence": ElementKind.CODE_BLOCK,
    "code_block": ElementKind.CODE_BLOCK,
}


@dataclass(frozen=True)
class MarkdownSpan:
    """A markdown element in UTF-8 byte offsets of the document, end exclusive."""
    start: int
    end: int
    kind: ElementKind
    level: int = 0
    url: Optional[str] = None


class _SourceLines:
    """Line table of a document, in code point offsets."""

    def __init__(self, source: str):
        self.lines = source.split("\n")
        self.starts = []
        position = 0
        for line in self.lines:
            self.starts.append(position)
            position += len(line) + 1

    def span(self, first: int, last: int) -> tuple[int, int]:
        """Offsets covering lines [first, last), without the final newline."""
        last = min(last, len(self.lines))
        if first >= last:
            return (0, 0)
        return (self.starts[first], self.starts[last - 1] + len(self.lines[last - 1]))

    def content_map(self, content: str, first_line: int) -> "_ContentMap":
        return _ContentMap(content, self, first_line)


class _ContentMap:
    """
    Maps offsets in a token's content to offsets in the document.

    Content line i comes from source line first_line + i, minus whatever
    prefix markdown stripped (indentation, `>` markers, heading hashes).
    """

    def __init__(self, content: str, lines: _SourceLines, first_line: int):
        self._content_starts: list[int] = []
        self._document_starts: list[int] = []
        offset = 0
        for index, line in enumerate(content.split("\n")):
            number = first_line + index
            if number >= len(lines.lines):
                break
            source_line = lines.lines[number]
            if source_line.endswith(line):
                column = len(source_line) - len(line)
            else:
                column = max(source_line.find(line), 0)
            self._content_starts.append(offset)
            self._document_starts.append(lines.starts[number] + column)
            offset += len(line) + 1

    def __call__(self, offset: int) -> Optional[int]:
        index = bisect_right(self._content_starts, offset) - 1
        if index < 0:
            return None
        return self._document_starts[index] + offset - self._content_starts[index]

    def span(self, start: int, end: int) -> Optional[tuple[int, int]]:
        """Document offsets of content range [start, end)."""
        if end <= start:
            return None
        first = self(start)
        last = self(end - 1)
        if first is None or last is None:
            return None
        return (first, last + 1)


def _pop_open(opened: list, kind: ElementKind) -> Optional[tuple[int, Optional[str]]]:
    for index in range(len(opened) - 1, -1, -1):
        if opened[index][0] == kind:
            _, start, url = opened.pop(index)
            return start, url
    return None


def _skip_destination(content: str, end: int) -> int:
    """Given the offset just past `]`, skip a `(destination)` or `[label]`."""
    if content.startswith("(", end):
        depth = 0
        for index in range(end, len(content)):
            if content[index] == "(":
                depth += 1
            elif content[index] == ")":
                depth -= 1
                if depth == 0:
                    return index + 1
        return end
    if content.startswith("[", end):
        close = content.find("]", end)
        return close + 1 if close >= 0 else end
    return end


def _inline_spans(content: str, children) -> list[tuple[int, int, ElementKind, Optional[str]]]:
    """Element ranges in content offsets, found by walking inline children."""
    spans = []
    opened: list = []
    cursor = 0

    for child in children:
        if child.type in ("text", "html_inline"):
            index = content.find(child.content, cursor) if child.content else -1
            if index >= 0:
                cursor = index + len(child.content)

        elif child.type in ("softbreak", "hardbreak"):
            index = content.find("\n", cursor)
            if index >= 0:
                cursor = index + 1

        elif child.type in ("em_open", "strong_open"):
            index = content.find(child.markup, cursor)
            if index >= 0:
                kind = ElementKind.EMPHASIS if child.type == "em_open" else ElementKind.STRONG
                opened.append((kind, index, None))
                cursor = index + len(child.markup)

        elif child.type in ("em_close", "strong_close"):
            kind = ElementKind.EMPHASIS if child.type == "em_close" else ElementKind.STRONG
            index = content.find(child.markup, cursor)
            started = _pop_open(opened, kind)
            if index >= 0 and started is not None:
                cursor = index + len(child.markup)
                spans.append((started[0], cursor, kind, None))

        elif child.type == "code_inline":
            index = content.find(child.markup, cursor)
            if index < 0:
                continue
            search = index + len(child.markup)
            body = content.find(child.content, search) if child.content else -1
            if body >= 0:
                search = body + len(child.content)
            close = content.find(child.markup, search)
            if close >= 0:
                cursor = close + len(child.markup)
                spans.append((index, cursor, ElementKind.CODE_SPAN, None))

        elif child.type == "link_open":
            opener = "<" if child.markup == "autolink" else "["
            index = content.find(opener, cursor)
            if index >= 0:
                opened.append((ElementKind.LINK, index, child.attrGet("href")))
                cursor = index + 1

        elif child.type == "link_close":
            started = _pop_open(opened, ElementKind.LINK)
            closer = ">" if child.markup == "autolink" else "]"
            index = content.find(closer, cursor)
            if started is None or index < 0:
                continue
            cursor = index + 1
            if closer == "]":
                cursor = _skip_destination(content, cursor)
            spans.append((started[0], cursor, ElementKind.LINK, started[1]))

        elif child.type == "image":
            index = content.find("![", cursor)
            if index >= 0:
                close = content.find("]", index)
                if close >= 0:
                    cursor = _skip_destination(content, close + 1)

    return spans


def _scan(
    source: str, fragment_tokens: Mapping[str, Sequence[Token]]
) -> tuple[list[tuple[int, int, ElementKind, int, Optional[str]]], list[Token]]:
    """One pass over the document: element spans and code tokens, in code points."""
    lines = _SourceLines(source)
    elements = []
    code: list[Token] = []

    for token in parse_markdown(source):
        kind = _BLOCK_ELEMENTS.get(token.type)
        if kind is not None and token.map:
            start, end = lines.span(*token.map)
            level = int(token.tag[1:]) if kind == ElementKind.HEADING else 0
            if end > start:
                elements.append((start, end, kind, level, None))

        if token.type == "inline" and token.map and token.children:
            to_document = lines.content_map(token.content, token.map[0])
            for start, end, inline_kind, url in _inline_spans(token.content, token.children):
                span = to_document.span(start, end)
                if span is not None:
                    elements.append((span[0], span[1], inline_kind, 0, url))

        elif kind == ElementKind.CODE_BLOCK and token.map:
            tokens = fragment_tokens.get(token.content)
            if not tokens:
                continue
            first_line = token.map[0] + 1 if token.type == "fence" else token.map[0]
            to_document = lines.content_map(token.content, first_line)
            offsets = byte_offsets(token.content)
            for code_token in tokens:
                span = to_document.span(
                    char_index(offsets, code_token.start), char_index(offsets, code_token.end)
                )
                if span is not None:
                    code.append(Token(span[0], span[1], code_token.kind))

    return elements, code


def markdown_spans(source: str) -> list[MarkdownSpan]:
    """
    Find the styled markdown elements of a document.

    Returns:
        Spans in document order, outer elements before the ones they contain
    """
    elements, _ = _scan(source, {})
    offsets = byte_offsets(source)
    return [
        MarkdownSpan(offsets[start], offsets[end], kind, level, url)
        for start, end, kind, level, url in elements
    ]


def code_block_tokens(source: str, fragment_tokens: Mapping[str, Sequence[Token]]) -> list[Token]:
    """
    Move code block tokens into document coordinates.

    Args:
        source: Markdown document
        fragment_tokens: Tokens per code block text, in that block's own offsets

    Returns:
        Tokens in UTF-8 byte offsets of the document
    """
    _, code = _scan(source, fragment_tokens)
    offsets = byte_offsets(source)
    return [Token(offsets[t.start], offsets[t.end], t.kind) for t in code]


def render_document(
    source: str,
    fragment_tokens: Optional[Mapping[str, Sequence[Token]]] = None,
    style: Optional[HighlightStyle] = None,
) -> Text:
    """Build a rich Text of a whole markdown document, elements and code tokens styled."""
    style = style or HighlightStyle()
    elements, code = _scan(source, fragment_tokens or {})

    rendered = Text(source)
    for start, end, kind, level, url in elements:
        element_style = style.for_element(kind, level)
        if element_style:
            rendered.stylize(element_style, start, end)
        if url:
            rendered.stylize(Style(link=url), start, end)
    for token in code:
        rendered.stylize(style.for_kind(token.kind), token.start, token.end)
    return rendered
