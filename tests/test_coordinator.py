"""Tests for the Playground coordinator."""

import textwrap

import pytest
from rich.text import Span

from md_playground.config import HighlightConfig, PlaygroundConfig
from md_playground.coordinator import FragmentEventKind, Playground
from md_playground.evaluation import Outcome
from md_playground.tokenizer import PygmentsTokenizer
from md_playground.tokens import Token, TokenKind

DOC = textwrap.dedent("""\
    # Notes

    ```python
    1 + 1
    ```

    ```python
    1 / 0
    ```

    ```swift
    let x = 1
    ```
""")


class TestDocumentUpdates:
    """Tests for update() and the fragment channel."""

    def setup_method(self):
        self.playground = Playground()
        self.events = []
        self.playground.subscribe(self.events.append)

    def teardown_method(self):
        self.playground.close()

    def test_initial_update_adds_every_fragment(self):
        events = self.playground.update(DOC)
        assert [e.kind for e in events] == [FragmentEventKind.ADDED] * 3
        assert self.events == events

    def test_moving_fragments_publishes_nothing(self):
        self.playground.update(DOC)
        self.events.clear()

        events = self.playground.update("Intro paragraph.\n\n" + DOC)
        assert events == []
        assert self.playground.fragments[0].range == (4, 7)

    def test_edit_is_remove_plus_add(self):
        self.playground.update(DOC)
        events = self.playground.update(DOC.replace("1 + 1", "2 + 2"))

        kinds = {(e.kind, e.fragment.text) for e in events}
        assert kinds == {
            (FragmentEventKind.ADDED, "2 + 2\n"),
            (FragmentEventKind.REMOVED, "1 + 1\n"),
        }

    def test_duplicate_fragments_counted(self):
        block = "```python\nx\n```\n\n"
        self.playground.update(block)
        events = self.playground.update(block * 2)
        assert [e.kind for e in events] == [FragmentEventKind.ADDED]

    def test_unsubscribe(self):
        self.playground.unsubscribe(self.events.append)
        self.playground.update(DOC)
        assert self.events == []

    def test_subscriber_exception_is_logged(self, caplog):
        def broken(event):
            raise RuntimeError("subscriber bug")

        self.playground.subscribe(broken)
        self.playground.update(DOC)
        assert len(self.events) == 3
        assert "Fragment subscriber raised" in caplog.text

    def test_load(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text(DOC, encoding="utf-8")
        self.playground.load(path)
        assert self.playground.document.path == path
        assert len(self.playground.fragments) == 3

    def test_update_does_not_launch_interpreter(self):
        self.playground.update(DOC)
        self.playground.highlight()
        assert self.playground._driver is None


class TestHighlighting:
    """Tests for Playground.highlight()."""

    def setup_method(self):
        self.tokenizer = PygmentsTokenizer("python")
        self.playground = Playground(tokenizer=self.tokenizer)
        self.playground.update(DOC)

    def teardown_method(self):
        self.playground.close()

    def test_tokens_per_fragment(self):
        results = self.playground.highlight()
        assert [f.text for f, _ in results] == [f.text for f in self.playground.fragments]
        assert results[0][1] == [Token(0, 1, TokenKind.NUMBER), Token(4, 5, TokenKind.NUMBER)]

    def test_other_language_not_highlighted(self):
        results = self.playground.highlight()
        assert results[2][1] == []

    def test_single_tokenizer_call(self):
        self.playground.highlight()
        self.playground.highlight()
        assert self.tokenizer.invocations == 1

    def test_edit_above_does_not_retokenize(self):
        self.playground.highlight()
        self.playground.update("More text above.\n\n" + DOC)
        self.playground.highlight()
        assert self.tokenizer.invocations == 1

    def test_render_document(self):
        style = self.playground.config.highlight.style
        rendered = self.playground.render_document()
        assert rendered.plain == DOC
        assert Span(19, 20, style.number) in rendered.spans
        assert Span(23, 24, style.number) in rendered.spans
        assert self.tokenizer.invocations == 1

    def test_highlight_language_from_config(self):
        config = PlaygroundConfig(highlight=HighlightConfig(language="swift"))
        with Playground(config) as playground:
            playground.update(DOC)
            results = playground.highlight()
        assert results[0][1] == []
        assert any(t.kind == TokenKind.KEYWORD for t in results[2][1])


class TestEvaluation:
    """Tests for evaluation through a real interpreter."""

    def setup_method(self):
        self.records = []
        self.events = []
        self.playground = Playground(on_output=self.records.append)
        self.playground.subscribe(self.events.append)
        self.playground.update(DOC)

    def teardown_method(self):
        self.playground.close()

    def evaluated(self):
        return [e for e in self.events if e.kind == FragmentEventKind.EVALUATED]

    def test_evaluate_all(self):
        assert self.playground.evaluate_all() == 2
        assert self.playground.wait_idle(timeout=15)

        ok, failing, swift = self.playground.fragments
        assert self.playground.output_for(ok) == "2"
        assert self.playground.error_for(ok) is None
        assert "ZeroDivisionError" in self.playground.error_for(failing)
        assert "ZeroDivisionError" in failing.error
        assert self.playground.output_for(swift) is None
        assert [r.metadata for r in self.records] == [ok.text, failing.text]

    def test_evaluated_events(self):
        self.playground.evaluate(self.playground.fragments[0])
        assert self.playground.wait_idle(timeout=15)

        [event] = self.evaluated()
        assert event.fragment.text == "1 + 1\n"
        assert event.record.stdout == "2"
        assert event.record.outcome == Outcome.COMPLETED

    def test_non_evaluable_language(self):
        assert not self.playground.evaluate(self.playground.fragments[2])
        assert self.playground._driver is None

    def test_evaluate_at_line(self):
        assert self.playground.evaluate_at(3)
        assert not self.playground.evaluate_at(0)
        assert self.playground.wait_idle(timeout=15)
        assert self.playground.output_for(self.playground.fragments[0]) == "2"

    def test_error_follows_fragment(self):
        self.playground.evaluate(self.playground.fragments[1])
        assert self.playground.wait_idle(timeout=15)

        self.playground.update("Inserted paragraph.\n\n" + DOC)
        moved = self.playground.fragments[1]
        assert moved.range[0] > 6
        assert "ZeroDivisionError" in moved.error

    def test_error_dropped_when_fragment_removed(self):
        failing = self.playground.fragments[1]
        self.playground.evaluate(failing)
        assert self.playground.wait_idle(timeout=15)

        self.playground.update(DOC.replace("1 / 0", "1 / 1"))
        assert self.playground.error_for(failing) is None
        assert self.playground.fragments[1].error is None

    def test_fragment_removed_while_running(self):
        slow_doc = "```python\nimport time; time.sleep(0.5); undefined_name\n```\n"
        self.playground.update(slow_doc)
        running = self.playground.fragments[0]
        self.playground.evaluate(running)

        self.playground.update("# Block removed\n")
        assert self.playground.wait_idle(timeout=15)
        assert self.playground.error_for(running) is None
        assert self.playground.output_for(running) is None

        self.playground.update(slow_doc)
        assert self.playground.fragments[0].error is None
        assert self.playground.error_for(self.playground.fragments[0]) is None

        [event] = self.evaluated()
        assert event.fragment is None
        assert "NameError" in event.record.stderr

    def test_fixing_fragment_clears_error(self):
        self.playground.update("```python\nvalue\n```\n\n```python\nvalue = 5\n```\n")
        lookup, assign = self.playground.fragments
        self.playground.evaluate(lookup)
        assert self.playground.wait_idle(timeout=15)
        assert "NameError" in self.playground.error_for(lookup)

        self.playground.evaluate(assign)
        self.playground.evaluate(lookup)
        assert self.playground.wait_idle(timeout=15)
        assert self.playground.error_for(lookup) is None
        assert self.playground.output_for(lookup) == "5"

    def test_reset_clears_errors(self):
        self.playground.evaluate_all()
        assert self.playground.wait_idle(timeout=15)

        self.playground.reset()
        assert all(f.error is None for f in self.playground.fragments)
        assert self.playground.error_for(self.playground.fragments[1]) is None
        assert self.events[-1].kind == FragmentEventKind.RESET

    def test_reset_terminates_running_evaluation(self):
        self.playground.update("```python\nimport time; time.sleep(5)\n```\n")
        self.playground.evaluate(self.playground.fragments[0])
        self.playground.reset()
        assert self.playground.wait_idle(timeout=15)

        assert self.records[-1].outcome == Outcome.TERMINATED
        assert self.playground.output_for(self.playground.fragments[0]) is None


@pytest.mark.parametrize("language", [None, "python", "py"])
def test_evaluable_languages(language):
    from md_playground.fragments import CodeFragment

    with Playground() as playground:
        assert playground.evaluable(CodeFragment(text="1", language=language))
