"""
Token spans produced by the highlighter.

All offsets are UTF-8 byte offsets: into the fragment a code token belongs
to, or into the whole document for markdown elements.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class TokenKind(str, Enum):
    """Highlighting category of a token."""
    STRING = "string"
    NUMBER = "number"
    KEYWORD = "keyword"
    COMMENT = "comment"


class ElementKind(str, Enum):
    """Markdown element styled in the document source."""
    HEADING = "heading"
    EMPHASIS = "emphasis"
    STRONG = "strong"
    LINK = "link"
    CODE_SPAN = "code_span"
    BLOCK_QUOTE = "block_quote"
    LIST = "list_block"
    CODE_BLOCK = "code_block"


@dataclass(frozen=True)
class Token:
    """A highlighted span in UTF-8 byte offsets, end exclusive."""
    start: int
    end: int
    kind: TokenKind

    def shifted(self, offset: int) -> "Token":
        """Return the same token moved by `offset` bytes."""
        return Token(self.start + offset, self.end + offset, self.kind)

    def clamped(self, limit: int) -> "Token":
        """Return the token with its end cut at `limit`."""
        return Token(self.start, min(self.end, limit), self.kind)

    def slice(self, text: str) -> str:
        """Return the part of `text` covered by this token."""
        return text.encode("utf-8")[self.start:self.end].decode("utf-8", errors="replace")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {"kind": self.kind.value, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> "Token":
        """Create from dictionary."""
        return cls(start=int(data["start"]), end=int(data["end"]), kind=TokenKind(data["kind"]))


# Solarized accents, see https://ethanschoonover.com/solarized/
SOLARIZED_YELLOW = "#b58900"
SOLARIZED_ORANGE = "#cb4b16"
SOLARIZED_RED = "#dc322f"
SOLARIZED_MAGENTA = "#d33682"
SOLARIZED_VIOLET = "#6c71c4"
SOLARIZED_BLUE = "#268bd2"
SOLARIZED_CYAN = "#2aa198"
SOLARIZED_BASE02 = "#073642"


class HighlightStyle(BaseModel):
    """
    Immutable mapping from token and markdown element kinds to rich style
    strings.

    Passed explicitly wherever highlighted text is rendered, so there is
    no process-wide default to mutate.
    """
    model_config = ConfigDict(frozen=True)

    string: str = SOLARIZED_RED
    number: str = SOLARIZED_MAGENTA
    keyword: str = SOLARIZED_VIOLET
    comment: str = SOLARIZED_YELLOW
    code: str = ""

    heading: str = f"bold {SOLARIZED_ORANGE}"
    emphasis: str = "italic"
    strong: str = "bold"
    link: str = f"underline {SOLARIZED_BLUE}"
    code_span: str = SOLARIZED_CYAN
    block_quote: str = "italic"
    list_block: str = ""
    code_block: str = f"on {SOLARIZED_BASE02}"

    def for_kind(self, kind: TokenKind) -> str:
        return getattr(self, kind.value)

    def for_element(self, kind: ElementKind, level: int = 0) -> str:
        """Style for a markdown element; top-level headings are also underlined."""
        style = getattr(self, kind.value)
        if kind == ElementKind.HEADING and level == 1:
            return f"{style} underline"
        return style
