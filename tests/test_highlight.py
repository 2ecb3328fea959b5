"""Tests for HighlightCache, BatchTokenizer and render."""

from rich.text import Span

from md_playground import highlight, tokenizer
from md_playground.highlight import DELIMITER, BatchTokenizer, HighlightCache, render
from md_playground.tokenizer import PygmentsTokenizer
from md_playground.tokens import HighlightStyle, Token, TokenKind

from conftest import FailingTokenizer, FlakyTokenizer


class TestHighlightCache:
    """Tests for the LRU token cache."""

    def setup_method(self):
        self.cache = HighlightCache(max_entries=2)

    def test_miss_then_hit(self):
        assert self.cache.get("x = 1") is None
        self.cache.put("x = 1", [Token(4, 5, TokenKind.NUMBER)])
        assert self.cache.get("x = 1") == [Token(4, 5, TokenKind.NUMBER)]

        stats = self.cache.stats()
        assert (stats["hits"], stats["misses"]) == (1, 1)

    def test_empty_token_list_is_a_hit(self):
        self.cache.put("name", [])
        assert self.cache.get("name") == []
        assert "name" in self.cache

    def test_returned_list_is_a_copy(self):
        self.cache.put("a", [Token(0, 1, TokenKind.NUMBER)])
        self.cache.get("a").clear()
        assert self.cache.get("a") == [Token(0, 1, TokenKind.NUMBER)]

    def test_evicts_least_recently_used(self):
        self.cache.put("a", [])
        self.cache.put("b", [])
        self.cache.get("a")
        self.cache.put("c", [])

        assert "a" in self.cache
        assert "b" not in self.cache
        assert "c" in self.cache
        assert self.cache.stats()["evictions"] == 1

    def test_byte_budget(self):
        cache = HighlightCache(max_entries=100, max_bytes=10)
        cache.put("12345", [])
        cache.put("67890", [])
        cache.put("é", [])

        assert len(cache) == 2
        assert "12345" not in cache
        assert cache.stats()["bytes"] == 7

    def test_replace_entry(self):
        self.cache.put("a", [])
        self.cache.put("a", [Token(0, 1, TokenKind.KEYWORD)])
        assert len(self.cache) == 1
        assert self.cache.stats()["bytes"] == 1
        assert self.cache.get("a") == [Token(0, 1, TokenKind.KEYWORD)]

    def test_clear(self):
        self.cache.put_batch({"a": [], "b": []})
        self.cache.clear()
        assert len(self.cache) == 0
        assert self.cache.stats()["bytes"] == 0


class TestBatchTokenizer:
    """Tests for batched highlighting."""

    def setup_method(self):
        self.tokenizer = PygmentsTokenizer("python")
        self.batch = BatchTokenizer(self.tokenizer)

    def test_one_invocation_per_batch(self):
        texts = ["x = 1", "y = 'a'", "# comment", "def f(): pass"]
        results = self.batch.highlight(texts)

        assert len(results) == 4
        assert self.batch.invocations == 1

    def test_second_pass_is_free(self):
        texts = ["x = 1", "y = 2"]
        first = self.batch.highlight(texts)
        second = self.batch.highlight(texts)

        assert first == second
        assert self.batch.invocations == 1

    def test_only_misses_are_tokenized(self):
        self.batch.highlight(["x = 1"])
        self.batch.highlight(["x = 1", "y = 2"])
        assert self.batch.invocations == 2
        assert self.batch.cache.stats()["entries"] == 2

    def test_duplicates_tokenized_once(self):
        results = self.batch.highlight(["x = 1", "x = 1"])
        assert results[0] == results[1] == [Token(4, 5, TokenKind.NUMBER)]
        assert len(self.batch.cache) == 1

    def test_empty_input(self):
        assert self.batch.highlight([]) == []
        assert self.batch.invocations == 0

    def test_tokens_mapped_into_fragment_offsets(self):
        texts = ["let x = 1", '"hello".count']
        first, second = self.batch.highlight(texts)

        assert Token(8, 9, TokenKind.NUMBER) in first
        assert Token(0, 7, TokenKind.STRING) in second

    def test_batched_equals_standalone(self):
        texts = ["a = 1  # one", "b = 'two'", "if a:\n    pass\n"]
        batched = self.batch.highlight(texts)
        standalone = [PygmentsTokenizer("python").tokenize(text) for text in texts]
        assert batched == standalone

    def test_tokens_within_fragment_bounds(self):
        texts = ['s = """unterminated', "x = 1", "# trailing comment", "é = 'ü'"]
        for text, tokens in zip(texts, self.batch.highlight(texts)):
            size = len(text.encode("utf-8"))
            for token in tokens:
                assert 0 <= token.start < token.end <= size

    def test_multibyte_offsets_after_delimiter(self):
        texts = ["é = 1", "x = 'ü'"]
        _, second = self.batch.highlight(texts)
        strings = [t for t in second if t.kind == TokenKind.STRING]
        assert [t.slice(texts[1]) for t in strings] == ["'ü'"]

    def test_identity_is_text_not_position(self):
        self.batch.highlight(["print(1)"])
        again = self.batch.highlight(["# moved", "print(1)"])
        assert again[1] == [Token(6, 7, TokenKind.NUMBER)]
        assert self.batch.invocations == 2
        assert self.batch.cache.stats()["hits"] == 1

    def test_failure_leaves_misses_uncached(self):
        batch = BatchTokenizer(FailingTokenizer())
        assert batch.highlight(["x = 1", "y"]) == [[], []]
        assert len(batch.cache) == 0
        assert batch.last_error is not None

    def test_failure_keeps_cached_results(self):
        batch = BatchTokenizer(FailingTokenizer())
        batch.cache.put("cached", [Token(0, 1, TokenKind.KEYWORD)])
        assert batch.highlight(["cached", "new"]) == [[Token(0, 1, TokenKind.KEYWORD)], []]

    def test_retry_after_failure(self):
        batch = BatchTokenizer(FlakyTokenizer(PygmentsTokenizer("python")))
        assert batch.highlight(["x = 1"]) == [[]]
        assert batch.highlight(["x = 1"]) == [[Token(4, 5, TokenKind.NUMBER)]]
        assert batch.last_error is None

    def test_delimiter(self):
        assert DELIMITER == "\n\n"


class TestRender:
    """Tests for rich rendering of highlighted text."""

    def test_spans_styled_by_kind(self):
        style = HighlightStyle()
        rendered = render("x = 1", [Token(4, 5, TokenKind.NUMBER)], style)
        assert rendered.plain == "x = 1"
        assert Span(4, 5, style.number) in rendered.spans

    def test_byte_offsets_converted(self):
        text = 'é = "ü"'
        style = HighlightStyle(string="green")
        rendered = render(text, [Token(5, 9, TokenKind.STRING)], style)
        assert Span(4, 7, "green") in rendered.spans

    def test_default_style(self):
        rendered = render("# c", [Token(0, 3, TokenKind.COMMENT)])
        assert Span(0, 3, HighlightStyle().comment) in rendered.spans

    def test_offset_table_built_once(self, monkeypatch):
        calls = []

        def counting(source):
            calls.append(source)
            return tokenizer.byte_offsets(source)

        monkeypatch.setattr(highlight, "byte_offsets", counting)
        text = "x = 1\n" * 40
        tokens = [Token(i + 4, i + 5, TokenKind.NUMBER) for i in range(0, len(text), 6)]
        rendered = render(text, tokens)
        assert len(calls) == 1
        assert len(rendered.spans) == len(tokens)
