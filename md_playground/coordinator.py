"""
Playground: ties a markdown document to the highlighter and the interpreter.

Fragments are identified by their text, so cached tokens and recorded
errors follow a code block wherever it moves in the document.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rich.text import Text

from md_playground.config import PlaygroundConfig
from md_playground.driver import SessionDriver
from md_playground.evaluation import Outcome, OutputRecord
from md_playground.fragments import CodeFragment, Document
from md_playground.highlight import BatchTokenizer, HighlightCache
from md_playground.markup import render_document
from md_playground.tokenizer import PygmentsTokenizer, Tokenizer
from md_playground.tokens import HighlightStyle, Token

logger = logging.getLogger(__name__)


class FragmentEventKind(str, Enum):
    """What happened to a fragment."""
    ADDED = "added"
    REMOVED = "removed"
    EVALUATED = "evaluated"
    RESET = "reset"


@dataclass
class FragmentEvent:
    """A change published on the fragment channel."""
    kind: FragmentEventKind
    fragment: Optional[CodeFragment] = None
    record: Optional[OutputRecord] = None


Subscriber = Callable[[FragmentEvent], None]


class Playground:
    """
    Coordinator for one markdown document.

    - update() re-extracts fragments and publishes ADDED/REMOVED events
    - highlight() returns tokens per fragment through the batch tokenizer
    - evaluate() sends a fragment to the interpreter; results update the
      per-text output/error state and publish EVALUATED events
    - reset() restarts the interpreter and clears that state
    """

    def __init__(
        self,
        config: Optional[PlaygroundConfig] = None,
        tokenizer: Optional[Tokenizer] = None,
        on_output: Optional[Callable[[OutputRecord], None]] = None,
    ):
        self.config = config or PlaygroundConfig()
        highlight = self.config.highlight
        self.highlighter = BatchTokenizer(
            tokenizer or PygmentsTokenizer(highlight.language),
            HighlightCache(highlight.cache_max_entries, highlight.cache_max_bytes),
        )
        self.document = Document()
        self._on_output = on_output
        self._driver: Optional[SessionDriver[str]] = None
        self._lock = threading.RLock()
        self._errors: dict[str, str] = {}
        self._outputs: dict[str, str] = {}
        self._subscribers: list[Subscriber] = []

    @property
    def driver(self) -> SessionDriver[str]:
        """The interpreter driver, launched on first use."""
        with self._lock:
            if self._driver is None:
                self._driver = SessionDriver(self._on_result, self.config.session)
            return self._driver

    @property
    def fragments(self) -> list[CodeFragment]:
        return self.document.fragments

    # ------------------------------------------------------------------ #
    # Fragment channel
    # ------------------------------------------------------------------ #

    def subscribe(self, callback: Subscriber) -> Subscriber:
        """Register a callback for fragment events."""
        with self._lock:
            self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _publish(self, events: list[FragmentEvent]):
        with self._lock:
            subscribers = list(self._subscribers)
        for event in events:
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    logger.exception("Fragment subscriber raised on %s event", event.kind.value)

    # ------------------------------------------------------------------ #
    # Document
    # ------------------------------------------------------------------ #

    def update(self, markdown: str, path: Optional[Path] = None) -> list[FragmentEvent]:
        """
        Replace the document with a new version of its source.

        Errors recorded for a fragment's text are re-attached to whichever
        fragment now has that text.

        Returns:
            The ADDED and REMOVED events that were published
        """
        document = Document.from_markdown(markdown, path=path or self.document.path)

        with self._lock:
            previous = Counter(f.text for f in self.document.fragments)
            current = Counter(f.text for f in document.fragments)

            events = []
            remaining = previous.copy()
            for fragment in document.fragments:
                fragment.error = self._errors.get(fragment.text)
                if remaining[fragment.text] > 0:
                    remaining[fragment.text] -= 1
                else:
                    events.append(FragmentEvent(FragmentEventKind.ADDED, fragment))

            remaining = current.copy()
            for fragment in self.document.fragments:
                if remaining[fragment.text] > 0:
                    remaining[fragment.text] -= 1
                else:
                    events.append(FragmentEvent(FragmentEventKind.REMOVED, fragment))

            for text in list(self._errors):
                if text not in current:
                    del self._errors[text]
            for text in list(self._outputs):
                if text not in current:
                    del self._outputs[text]

            self.document = document

        self._publish(events)
        return events

    def load(self, path: Path) -> list[FragmentEvent]:
        """Read a markdown file and update from it."""
        path = Path(path)
        return self.update(path.read_text(encoding="utf-8"), path=path)

    # ------------------------------------------------------------------ #
    # Highlighting
    # ------------------------------------------------------------------ #

    def highlightable(self, fragment: CodeFragment) -> bool:
        if fragment.language is None:
            return True
        aliases = getattr(self.highlighter.tokenizer, "aliases", ())
        return fragment.language == self.config.highlight.language or fragment.language in aliases

    def highlight(self, fragments: Optional[list[CodeFragment]] = None) -> list[tuple[CodeFragment, list[Token]]]:
        """
        Tokens for each fragment, in order.

        Fragments in another language than the highlighter's get no tokens.
        """
        fragments = self.fragments if fragments is None else fragments
        targets = [f for f in fragments if self.highlightable(f)]
        tokens = dict(zip((f.text for f in targets), self.highlighter.highlight([f.text for f in targets])))
        return [(f, tokens.get(f.text, []) if self.highlightable(f) else []) for f in fragments]

    def render_document(self, style: Optional[HighlightStyle] = None) -> Text:
        """The whole document source with markdown elements and code tokens styled."""
        tokens = {fragment.text: fragment_tokens for fragment, fragment_tokens in self.highlight()}
        return render_document(self.document.source, tokens, style or self.config.highlight.style)

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #

    def evaluable(self, fragment: CodeFragment) -> bool:
        languages = self.config.session.profile.languages
        return fragment.language is None or not languages or fragment.language in languages

    def evaluate(self, fragment: CodeFragment) -> bool:
        """
        Send a fragment to the interpreter.

        Returns:
            False if the fragment is in a language the interpreter does not run
        """
        if not self.evaluable(fragment):
            return False
        self.driver.evaluate(fragment.text, metadata=fragment.text)
        return True

    def evaluate_all(self) -> int:
        """Evaluate every evaluable fragment in document order."""
        return sum(1 for fragment in list(self.fragments) if self.evaluate(fragment))

    def evaluate_at(self, line: int) -> bool:
        """Evaluate the fragment containing `line`, if any."""
        fragment = self.document.fragment_at(line)
        return fragment is not None and self.evaluate(fragment)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted fragment has produced a result."""
        if self._driver is None:
            return True
        return self._driver.wait_idle(timeout)

    def error_for(self, fragment: CodeFragment) -> Optional[str]:
        with self._lock:
            return self._errors.get(fragment.text)

    def output_for(self, fragment: CodeFragment) -> Optional[str]:
        with self._lock:
            return self._outputs.get(fragment.text)

    def _on_result(self, record: OutputRecord):
        text = record.metadata
        with self._lock:
            driver = self._driver
            stale = driver is not None and record.generation != driver.generation
            matches = [f for f in self.document.fragments if f.text == text]

            # Results for fragments removed while running are not recorded
            if matches and record.outcome == Outcome.COMPLETED and not stale:
                self._outputs[text] = record.stdout
                if record.stderr:
                    self._errors[text] = record.stderr
                else:
                    self._errors.pop(text, None)
            elif matches and record.outcome == Outcome.TIMED_OUT:
                self._errors[text] = record.stderr or "Evaluation timed out"

            for candidate in matches:
                candidate.error = self._errors.get(text)
            fragment = matches[0] if matches else None

        self._publish([FragmentEvent(FragmentEventKind.EVALUATED, fragment, record)])
        if self._on_output is not None:
            self._on_output(record)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def reset(self):
        """Restart the interpreter and forget recorded outputs and errors."""
        if self._driver is not None:
            self._driver.reset()
        with self._lock:
            self._errors.clear()
            self._outputs.clear()
            for fragment in self.document.fragments:
                fragment.error = None
        self._publish([FragmentEvent(FragmentEventKind.RESET)])

    def close(self):
        with self._lock:
            driver, self._driver = self._driver, None
        if driver is not None:
            driver.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
