"""Watcher that reloads a markdown document when it changes on disk."""

import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class FileWatcher:
    """Poll a document for external edits.

    A background thread compares the file's mtime on every poll and, when
    it moved, the SHA256 of its contents. A touch without an edit is not a
    change. Each real change is handed to `on_change` as decoded text,
    from the watcher thread.
    """

    def __init__(
        self,
        file_path: str | Path,
        on_change: Optional[Callable[[str], None]] = None,
        poll_interval: float = 1.0,
    ):
        """Initialize file watcher.

        Args:
            file_path: Path to the markdown document
            on_change: Called with the new text after each detected change
            poll_interval: Seconds between checks (default: 1.0)
        """
        self.file_path = Path(file_path)
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.changes = 0
        self._mtime: float = 0.0
        self._digest: Optional[str] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._read_if_changed(force=True)

    def _read_if_changed(self, force: bool = False) -> Optional[bytes]:
        """Return the file contents if they differ from the last seen version."""
        try:
            mtime = os.path.getmtime(self.file_path)
            if not force and mtime == self._mtime:
                return None
            content = self.file_path.read_bytes()
        except OSError:
            return None

        digest = hashlib.sha256(content).hexdigest()
        with self._lock:
            self._mtime = mtime
            if digest == self._digest:
                return None
            self._digest = digest
        return content

    def poll(self) -> bool:
        """Check the file once. Returns True if it changed."""
        content = self._read_if_changed()
        if content is None:
            return False

        with self._lock:
            self.changes += 1
        if self.on_change is not None:
            try:
                self.on_change(content.decode("utf-8", errors="replace"))
            except Exception:
                logger.exception("Change handler for %s raised", self.file_path)
        return True

    def _watch_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            self.poll()

    def start(self) -> None:
        """Start the watcher thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._watch_loop, name="md-playground-watcher", daemon=True)
        self._thread.start()
        logger.debug("Watching %s every %.2fs", self.file_path, self.poll_interval)

    def stop(self) -> None:
        """Stop the watcher thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval + 0.5)
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
