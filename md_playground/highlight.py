"""
Incremental highlighting: a content-keyed token cache and a batching front
end that sends every cache miss to the tokenizer in a single call.
"""

import logging
import threading
from bisect import bisect_right
from collections import OrderedDict
from typing import Optional, Sequence

from rich.text import Text

from md_playground.errors import TokenizerFailure
from md_playground.tokenizer import Tokenizer, byte_offsets, char_index
from md_playground.tokens import HighlightStyle, Token

logger = logging.getLogger(__name__)

# Maximum number of fragments kept in the cache
MAX_CACHE_ENTRIES = 1024
# Maximum total UTF-8 size of cached fragment texts
MAX_CACHE_BYTES = 8 * 1024 * 1024

# Placed between fragments in a batch; keeps line comments from running on
DELIMITER = "\n\n"


class HighlightCache:
    """
    LRU cache of token lists keyed by exact fragment text.

    Thread-safe. Entries are replaced whole, never edited in place, so a
    reader sees either no entry or a complete one. Evicts least recently
    used entries when either the entry count or the byte budget is exceeded.
    """

    def __init__(self, max_entries: int = MAX_CACHE_ENTRIES, max_bytes: int = MAX_CACHE_BYTES):
        self._store: OrderedDict[str, tuple[Token, ...]] = OrderedDict()
        self._sizes: dict[str, int] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._bytes = 0
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, text: str) -> bool:
        with self._lock:
            return text in self._store

    def get(self, text: str) -> Optional[list[Token]]:
        """Return the cached tokens for `text`, or None on a miss."""
        with self._lock:
            tokens = self._store.get(text)
            if tokens is None:
                self.misses += 1
                return None
            self._store.move_to_end(text)
            self.hits += 1
            return list(tokens)

    def put(self, text: str, tokens: Sequence[Token]):
        """Store the complete token list for `text`."""
        entry = tuple(tokens)
        size = len(text.encode("utf-8"))
        with self._lock:
            if text in self._store:
                self._bytes -= self._sizes[text]
            self._store[text] = entry
            self._store.move_to_end(text)
            self._sizes[text] = size
            self._bytes += size
            self._evict()

    def put_batch(self, entries: dict[str, Sequence[Token]]):
        """Store several entries at once."""
        for text, tokens in entries.items():
            self.put(text, tokens)

    def _evict(self):
        while self._store and (len(self._store) > self._max_entries or self._bytes > self._max_bytes):
            text, _ = self._store.popitem(last=False)
            self._bytes -= self._sizes.pop(text)
            self.evictions += 1

    def clear(self):
        """Remove every entry."""
        with self._lock:
            self._store.clear()
            self._sizes.clear()
            self._bytes = 0

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._store),
                "bytes": self._bytes,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }


class BatchTokenizer:
    """
    Highlights many fragments with at most one tokenizer invocation.

    Fragments already in the cache are returned as-is. The rest are joined
    with DELIMITER, tokenized together, and the resulting tokens are moved
    back into each fragment's own byte offsets.
    """

    def __init__(self, tokenizer: Tokenizer, cache: Optional[HighlightCache] = None):
        self.tokenizer = tokenizer
        self.cache = cache if cache is not None else HighlightCache()
        self.last_error: Optional[TokenizerFailure] = None

    @property
    def invocations(self) -> int:
        return self.tokenizer.invocations

    def highlight(self, texts: Sequence[str]) -> list[list[Token]]:
        """
        Return one token list per input text, in input order.

        On tokenizer failure the misses come back empty and nothing is
        cached, so they are retried on the next call.
        """
        results: list[Optional[list[Token]]] = [self.cache.get(text) for text in texts]

        misses: list[str] = []
        seen: set[str] = set()
        for text, cached in zip(texts, results):
            if cached is None and text not in seen:
                seen.add(text)
                misses.append(text)

        if not misses:
            return [list(tokens) for tokens in results]

        try:
            tokenized = self._tokenize_batch(misses)
        except TokenizerFailure as e:
            self.last_error = e
            logger.warning("Tokenizer failed on a batch of %d fragment(s): %s", len(misses), e)
            return [tokens if tokens is not None else [] for tokens in results]

        self.last_error = None
        self.cache.put_batch(tokenized)
        return [tokens if tokens is not None else list(tokenized[text]) for text, tokens in zip(texts, results)]

    def _tokenize_batch(self, texts: list[str]) -> dict[str, list[Token]]:
        """Tokenize `texts` in one call and split the tokens per text."""
        starts: list[int] = []
        ends: list[int] = []
        offset = 0
        delimiter_size = len(DELIMITER.encode("utf-8"))
        for text in texts:
            size = len(text.encode("utf-8"))
            starts.append(offset)
            ends.append(offset + size)
            offset += size + delimiter_size

        combined = DELIMITER.join(texts)
        logger.debug("Tokenizing %d fragment(s), %d bytes", len(texts), offset)
        tokens = self.tokenizer.tokenize(combined)

        grouped: dict[str, list[Token]] = {text: [] for text in texts}
        for token in tokens:
            index = bisect_right(starts, token.start) - 1
            if index < 0 or token.start >= ends[index]:
                # Starts inside a delimiter
                continue
            local = token.shifted(-starts[index]).clamped(ends[index] - starts[index])
            if local.end > local.start:
                grouped[texts[index]].append(local)
        return grouped


def render(text: str, tokens: Sequence[Token], style: Optional[HighlightStyle] = None) -> Text:
    """Build a rich Text of `text` with each token styled by kind."""
    style = style or HighlightStyle()
    rendered = Text(text, style=style.code)
    offsets = byte_offsets(text)
    for token in tokens:
        start = char_index(offsets, token.start)
        end = char_index(offsets, token.end)
        rendered.stylize(style.for_kind(token.kind), start, end)
    return rendered
