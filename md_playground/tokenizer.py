"""
Tokenizer adapters: turn standalone source text into a flat token stream.

Two adapters are provided. PygmentsTokenizer lexes in-process.
CommandTokenizer hands the source to an external program through a
temporary file. Both report UTF-8 byte offsets.
"""

import json
import logging
import os
import subprocess
import tempfile
import threading
from bisect import bisect_right
from typing import Optional, Sequence

from pydantic import BaseModel, TypeAdapter, ValidationError
from pygments.lexers import get_lexer_by_name
from pygments.token import Comment, Keyword, Number, String
from pygments.util import ClassNotFound

from md_playground.errors import TokenizerFailure
from md_playground.tokens import Token, TokenKind

logger = logging.getLogger(__name__)


class Tokenizer:
    """
    Base class for tokenizers.

    Subclasses implement `_tokenize`. `tokenize` counts invocations and
    turns any failure into TokenizerFailure.
    """

    def __init__(self):
        self.invocations = 0
        self._count_lock = threading.Lock()

    def tokenize(self, source: str) -> list[Token]:
        """
        Tokenize a standalone source text.

        Returns:
            Tokens in UTF-8 byte offsets, ordered by start

        Raises:
            TokenizerFailure: if the underlying tool fails
        """
        with self._count_lock:
            self.invocations += 1
        try:
            tokens = self._tokenize(source)
        except TokenizerFailure:
            raise
        except Exception as e:
            raise TokenizerFailure(f"{type(self).__name__} failed: {e}") from e
        return sorted(tokens, key=lambda t: (t.start, t.end))

    def _tokenize(self, source: str) -> list[Token]:
        raise NotImplementedError


def _kind_for(ttype) -> Optional[TokenKind]:
    """Map a Pygments token type onto a TokenKind."""
    if ttype in String:
        return TokenKind.STRING
    if ttype in Number:
        return TokenKind.NUMBER
    if ttype in Keyword:
        return TokenKind.KEYWORD
    if ttype in Comment:
        return TokenKind.COMMENT
    return None


def byte_offsets(source: str) -> list[int]:
    """
    Byte offset of every code point index, plus one entry for the end.

    offsets[i] is where code point i starts in source.encode("utf-8").
    """
    offsets = [0] * (len(source) + 1)
    position = 0
    for index, char in enumerate(source):
        offsets[index] = position
        position += len(char.encode("utf-8", errors="surrogatepass"))
    offsets[len(source)] = position
    return offsets


class PygmentsTokenizer(Tokenizer):
    """In-process tokenizer backed by a Pygments lexer."""

    def __init__(self, language: str = "python"):
        super().__init__()
        self.language = language
        try:
            self._lexer = get_lexer_by_name(language, stripnl=False, stripall=False, ensurenl=False)
        except ClassNotFound as e:
            raise TokenizerFailure(f"No lexer for language {language!r}") from e
        self.aliases = tuple(self._lexer.aliases)

    def _tokenize(self, source: str) -> list[Token]:
        offsets = byte_offsets(source)
        tokens: list[Token] = []
        for index, ttype, value in self._lexer.get_tokens_unprocessed(source):
            kind = _kind_for(ttype)
            if kind is None or not value:
                continue
            start = offsets[index]
            end = offsets[min(index + len(value), len(source))]
            previous = tokens[-1] if tokens else None
            # Pygments splits literals into pieces ("'", "abc", "'")
            if previous is not None and previous.kind == kind and previous.end == start:
                tokens[-1] = Token(previous.start, end, kind)
            else:
                tokens.append(Token(start, end, kind))
        return tokens


class TokenSpan(BaseModel):
    """One span as printed by an external tokenizer command."""
    kind: TokenKind
    start: int
    end: int


_SPANS = TypeAdapter(list[TokenSpan])


class CommandTokenizer(Tokenizer):
    """
    Tokenizer that runs an external program on a temporary file.

    The program receives the file path as its last argument and must print
    a JSON array of {"kind", "start", "end"} objects, offsets in UTF-8 bytes.
    """

    def __init__(self, command: Sequence[str], suffix: str = ".txt", timeout: Optional[float] = 30.0):
        super().__init__()
        self.command = list(command)
        self.suffix = suffix
        self.timeout = timeout

    def _tokenize(self, source: str) -> list[Token]:
        fd, path = tempfile.mkstemp(suffix=self.suffix, prefix="md-playground-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(source.encode("utf-8"))

            try:
                result = subprocess.run(
                    self.command + [path],
                    capture_output=True,
                    timeout=self.timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                raise TokenizerFailure(f"Tokenizer command failed: {e}") from e

            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", errors="replace").strip()
                raise TokenizerFailure(f"Tokenizer exited with code {result.returncode}: {stderr}")

            try:
                spans = _SPANS.validate_python(json.loads(result.stdout))
            except (ValueError, ValidationError) as e:
                raise TokenizerFailure(f"Tokenizer printed invalid output: {e}") from e
        finally:
            try:
                os.unlink(path)
            except OSError:
                logger.debug("Could not remove temporary file %s", path)

        size = len(source.encode("utf-8"))
        return [
            Token(span.start, min(span.end, size), span.kind)
            for span in spans
            if 0 <= span.start < span.end and span.start < size
        ]


def char_index(offsets: list[int], offset: int) -> int:
    """Code point index for a byte offset, given the table from byte_offsets()."""
    return max(bisect_right(offsets, offset) - 1, 0)