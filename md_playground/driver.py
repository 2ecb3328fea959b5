"""
SessionDriver: evaluates code in a persistent interpreter subprocess.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from md_playground.config import SessionConfig
from md_playground.errors import InterpreterTerminated, LaunchFailure, ProtocolDesync
from md_playground.evaluation import EvaluationQueue, Outcome, OutputRecord, PendingRequest
from md_playground.framer import ErrorAccumulator, OutputFramer
from md_playground.session import InterpreterSession, SessionState

logger = logging.getLogger(__name__)

M = TypeVar("M")

ResultCallback = Callable[[OutputRecord], None]


@dataclass
class _Restart:
    """Delivery-thread instruction to replace the session."""
    reason: str
    generation: int


_STOP = object()


class SessionDriver(Generic[M]):
    """
    Persistent interpreter session that maintains execution state.

    This driver wraps an interpreter subprocess to provide:
    - Framed evaluation requests correlated with caller metadata
    - Asynchronous result delivery on a single delivery thread
    - Serialized writes: one frame in flight at a time
    - Reset, crash detection and per-evaluation timeouts
    - Execution history
    """

    def __init__(self, on_result: Optional[ResultCallback] = None, config: Optional[SessionConfig] = None):
        """
        Launch the interpreter and start delivering results.

        Args:
            on_result: Called with one OutputRecord per evaluate() call
            config: Session settings, defaults to a Python interpreter

        Raises:
            LaunchFailure: if the interpreter cannot be started
        """
        self.config = config or SessionConfig()
        self._on_result = on_result
        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._queue: EvaluationQueue[M] = EvaluationQueue()
        self._deliveries: queue.Queue = queue.Queue()
        self._frames: list[str] = []
        self._framer: Optional[OutputFramer] = None
        self._errors: Optional[ErrorAccumulator] = None
        self._session: Optional[InterpreterSession] = None
        self._generation = 0
        self._outstanding = 0
        self._closed = False
        self.execution_count = 0
        self._history: list[tuple[int, str, OutputRecord]] = []

        with self._lock:
            self._launch()

        self._delivery_thread = threading.Thread(
            target=self._deliver_loop, name="md-playground-delivery", daemon=True
        )
        self._delivery_thread.start()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> SessionState:
        with self._lock:
            if self._session is None:
                return SessionState.TERMINATED
            return self._session.state

    @property
    def pending(self) -> int:
        """Number of submitted requests whose frame has not closed."""
        return len(self._queue)

    @property
    def session(self) -> Optional[InterpreterSession]:
        return self._session

    def evaluate(self, code: str, metadata: Optional[M] = None):
        """
        Submit code for evaluation and return immediately.

        The result arrives later through the result callback, never
        synchronously. Errors raised by the code show up as stderr on
        the record.

        Args:
            code: Source to run in the interpreter
            metadata: Opaque value handed back on the OutputRecord
        """
        with self._lock:
            if self._closed:
                raise InterpreterTerminated("SessionDriver is closed")
            self._outstanding += 1
            request = PendingRequest(code=code, metadata=metadata, generation=self._generation)

            if self._session is None or not self._session.running:
                self._deliveries.put(EvaluationQueue.failure(
                    request, Outcome.TERMINATED,
                    "Interpreter is not running; reset() starts a new session",
                ))
                return

            self._queue.submit(request)
            self._pump()

    def reset(self):
        """
        Terminate the interpreter and launch a fresh one.

        Every pending request is answered with a TERMINATED record, and no
        output produced by the old session is delivered afterwards.
        """
        logger.info("Resetting interpreter session")
        self._restart("Session reset")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted request has been delivered.

        Returns:
            True if idle, False if the timeout expired first
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout)

    def close(self):
        """Fail pending requests, stop the interpreter and the delivery thread."""
        with self._lock:
            if self._closed:
                return
            self._fail_pending(Outcome.TERMINATED, "SessionDriver closed")
            self._closed = True
            self._generation += 1
            session, self._session = self._session, None
            self._framer = None
            if session is not None:
                session.terminate(self.config.terminate_grace)

        self._deliveries.put(_STOP)
        if threading.current_thread() is not self._delivery_thread:
            self._delivery_thread.join(timeout=self.config.terminate_grace + 1.0)

    def get_history(self) -> list[tuple[int, str, OutputRecord]]:
        """Get execution history."""
        with self._lock:
            return self._history.copy()

    def clear_history(self):
        """Clear execution history."""
        with self._lock:
            self._history.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #

    def _launch(self):
        """Start a session for the current generation. Caller holds the lock."""
        profile = self.config.profile
        session = InterpreterSession(
            profile,
            self._generation,
            on_stdout=self._on_stdout,
            on_stderr=self._on_stderr,
            on_exit=self._on_exit,
            read_size=self.config.read_size,
        )
        self._framer = OutputFramer(
            session.start_marker,
            session.end_marker,
            echo_prefix=profile.echo_prefix,
            encoding=profile.encoding,
            max_buffer=self.config.frame_buffer_limit,
        )
        self._errors = ErrorAccumulator(
            session.end_marker if profile.stderr_statement else None,
            encoding=profile.encoding,
        )
        self._frames = []
        self._session = session
        session.start()

    def _restart(self, reason: str, in_flight_outcome: Outcome = Outcome.TERMINATED):
        """Replace the session, failing everything that was pending on it."""
        with self._lock:
            if self._closed:
                return
            self._generation += 1

            in_flight = self._queue.pop_in_flight()
            if in_flight is not None:
                self._deliveries.put(EvaluationQueue.failure(in_flight, in_flight_outcome, reason))
            self._fail_pending(Outcome.TERMINATED, reason)

            old, self._session = self._session, None
            self._framer = None
            if old is not None:
                old.terminate(self.config.terminate_grace)
            self._launch()

    def _fail_pending(self, outcome: Outcome, reason: str):
        for record in self._queue.fail_all(outcome, reason):
            self._deliveries.put(record)
        self._frames = []

    def _pump(self):
        """Write the next request if nothing is in flight. Caller holds the lock."""
        if self._queue.in_flight() is not None:
            return
        request = self._queue.next_unwritten()
        if request is None or self._session is None:
            return

        self._queue.mark_written(request)
        try:
            self._session.write(request.code)
        except InterpreterTerminated as e:
            logger.warning("Could not write to interpreter: %s", e)
            self._fail_pending(Outcome.TERMINATED, str(e))

    # ------------------------------------------------------------------ #
    # Reader thread callbacks
    # ------------------------------------------------------------------ #

    def _on_stdout(self, generation: int, data: bytes):
        with self._lock:
            if generation != self._generation or self._framer is None:
                return
            try:
                frames = self._framer.feed(data)
            except ProtocolDesync as e:
                self._desync(e)
                return
            if frames:
                logger.debug("Decoded %d frame(s) generation=%s", len(frames), generation)
            self._frames.extend(frames)
            if len(self._frames) > (1 if self._queue.in_flight() is not None else 0):
                self._desync(ProtocolDesync(f"{len(self._frames)} frame(s) closed with one request written"))
                return
            self._resolve_ready()

    def _on_stderr(self, generation: int, data: bytes):
        with self._lock:
            if generation != self._generation or self._errors is None:
                return
            self._errors.feed(data)
            self._resolve_ready()

    def _on_exit(self, generation: int, returncode: Optional[int]):
        with self._lock:
            if generation != self._generation:
                return
            self._fail_pending(Outcome.TERMINATED, f"Interpreter exited with code {returncode}")

    def _resolve_ready(self):
        """Pair closed frames with their stderr and queue the records."""
        while self._frames and self._errors is not None and self._errors.ready():
            stdout = self._frames.pop(0)
            stderr = self._errors.drain()
            try:
                record = self._queue.resolve(stdout, stderr)
            except ProtocolDesync as e:
                self._desync(e)
                return
            self._deliveries.put(record)
        self._pump()

    def _desync(self, error: ProtocolDesync):
        """Stop reading this session and have the delivery thread replace it."""
        logger.error("Protocol desynchronized, resetting session: %s", error)
        self._framer = None
        self._errors = None
        self._deliveries.put(_Restart(reason=f"Protocol desynchronized: {error}", generation=self._generation))

    # ------------------------------------------------------------------ #
    # Delivery thread
    # ------------------------------------------------------------------ #

    def _deliver_loop(self):
        while True:
            try:
                item = self._deliveries.get(timeout=self.config.poll_interval)
            except queue.Empty:
                self._check_timeout()
                continue

            if item is _STOP:
                break
            if isinstance(item, _Restart):
                if item.generation == self._generation:
                    self._restart_safely(item.reason)
                continue

            self._deliver(item)
            self._check_timeout()

    def _deliver(self, record: OutputRecord):
        with self._lock:
            if record.completed and record.generation != self._generation:
                # Resolved just before a reset; its output must not surface
                logger.debug("Dropping output from stale generation %s", record.generation)
                record = OutputRecord(
                    stdout="",
                    stderr="Session was reset before the result was delivered",
                    metadata=record.metadata,
                    outcome=Outcome.TERMINATED,
                    generation=record.generation,
                    code=record.code,
                )
            if record.completed:
                self.execution_count += 1
            self._history.append((self.execution_count, record.code, record))

        try:
            if self._on_result is not None:
                self._on_result(record)
        except Exception:
            logger.exception("Result callback raised")
        finally:
            with self._idle:
                self._outstanding -= 1
                self._idle.notify_all()

    def _check_timeout(self):
        timeout = self.config.eval_timeout
        if timeout is None:
            return
        with self._lock:
            request = self._queue.in_flight()
            if request is None or request.written_at is None:
                return
            if time.monotonic() - request.written_at < timeout:
                return
            logger.warning("Evaluation exceeded %.1fs, restarting interpreter", timeout)
            self._restart_safely(f"Evaluation timed out after {timeout}s", Outcome.TIMED_OUT)

    def _restart_safely(self, reason: str, in_flight_outcome: Outcome = Outcome.TERMINATED):
        """Restart from the delivery thread, where a launch failure cannot propagate."""
        try:
            self._restart(reason, in_flight_outcome)
        except LaunchFailure:
            logger.exception("Could not relaunch interpreter; reset() to retry")
