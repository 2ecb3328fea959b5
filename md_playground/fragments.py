"""
Fragments: code blocks extracted from a markdown document.
"""

from pathlib import Path
from typing import Optional

from markdown_it import MarkdownIt
from markdown_it.token import Token as MdToken
from pydantic import BaseModel, Field


class CodeFragment(BaseModel):
    """
    A code block in a markdown document.

    The fragment's identity is its exact text. The range is opaque to the
    core (here: the block's [first, last) line numbers); it moves when the
    document is edited above the block, while the identity does not.
    """
    text: str
    language: Optional[str] = None
    range: tuple[int, int] = (0, 0)
    error: Optional[str] = None

    @property
    def identity(self) -> str:
        return self.text

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "text": self.text,
            "language": self.language,
            "range": list(self.range),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CodeFragment":
        """Create from dictionary."""
        return cls(
            text=data.get("text", ""),
            language=data.get("language"),
            range=tuple(data.get("range", (0, 0))),
            error=data.get("error"),
        )


def _language(info: str) -> Optional[str]:
    """First word of a fence info string, lowercased."""
    words = info.strip().split()
    return words[0].lower() if words else None


def parse_markdown(markdown: str) -> list[MdToken]:
    """The markdown-it token stream of `markdown`, CommonMark rules."""
    return MarkdownIt("commonmark").parse(markdown)


def extract_fragments(markdown: str) -> list[CodeFragment]:
    """
    Find every fenced or indented code block in `markdown`.

    Args:
        markdown: Markdown source

    Returns:
        Fragments in document order
    """
    fragments = []
    for token in parse_markdown(markdown):
        if token.type not in ("fence", "code_block"):
            continue
        first, last = token.map if token.map else (0, 0)
        fragments.append(CodeFragment(
            text=token.content,
            language=_language(token.info) if token.type == "fence" else None,
            range=(first, last),
        ))
    return fragments


class Document(BaseModel):
    """
    A markdown document and the code fragments found in it.
    """

    source: str = ""
    path: Optional[Path] = None
    fragments: list[CodeFragment] = Field(default_factory=list)

    @classmethod
    def from_markdown(cls, source: str, path: Optional[Path] = None) -> "Document":
        """Parse markdown source into a document."""
        return cls(source=source, path=path, fragments=extract_fragments(source))

    @classmethod
    def load(cls, path: Path) -> "Document":
        """
        Load a document from a markdown file.

        Args:
            path: Path to load from

        Returns:
            Loaded document
        """
        path = Path(path)
        return cls.from_markdown(path.read_text(encoding="utf-8"), path=path)

    def fragment_at(self, line: int) -> Optional[CodeFragment]:
        """Return the fragment whose line range contains `line`."""
        for fragment in self.fragments:
            first, last = fragment.range
            if first <= line < last:
                return fragment
        return None
