"""
InterpreterSession: one interpreter subprocess and its stream readers.
"""

import logging
import os
import subprocess
import threading
import uuid
from enum import Enum
from typing import Callable, Optional

from md_playground.config import InterpreterProfile
from md_playground.errors import InterpreterTerminated, LaunchFailure

logger = logging.getLogger(__name__)

# (generation, data)
StreamCallback = Callable[[int, bytes], None]
# (generation, returncode)
ExitCallback = Callable[[int, Optional[int]], None]


class SessionState(str, Enum):
    """Lifecycle of an interpreter session."""
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


class InterpreterSession:
    """
    A long-lived interpreter subprocess with piped stdio.

    stdout and stderr are read by two daemon threads which hand raw bytes
    to the callbacks, tagged with this session's generation. The stdout
    reader reports the process exit once its stream reaches EOF.
    """

    def __init__(
        self,
        profile: InterpreterProfile,
        generation: int,
        on_stdout: StreamCallback,
        on_stderr: StreamCallback,
        on_exit: ExitCallback,
        read_size: int = 65536,
    ):
        self.profile = profile
        self.generation = generation
        self.marker = uuid.uuid4().hex
        self.state = SessionState.STARTING
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._on_exit = on_exit
        self._read_size = read_size
        self._closing = False
        self._write_lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self.process: Optional[subprocess.Popen] = None

    @property
    def start_marker(self) -> str:
        return f"<{self.marker}"

    @property
    def end_marker(self) -> str:
        return f">{self.marker}"

    @property
    def running(self) -> bool:
        return self.state == SessionState.RUNNING

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def start(self):
        """
        Launch the subprocess and its reader threads.

        Raises:
            LaunchFailure: if the executable cannot be started
        """
        env = os.environ.copy()
        env.update(self.profile.env)
        try:
            self.process = subprocess.Popen(
                list(self.profile.command),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            self.state = SessionState.TERMINATED
            raise LaunchFailure(self.profile.command, str(e)) from e

        self._threads = [
            threading.Thread(
                target=self._read_loop,
                args=(self.process.stdout, self._on_stdout, True),
                name=f"md-playground-stdout-{self.generation}",
                daemon=True,
            ),
            threading.Thread(
                target=self._read_loop,
                args=(self.process.stderr, self._on_stderr, False),
                name=f"md-playground-stderr-{self.generation}",
                daemon=True,
            ),
        ]
        self.state = SessionState.RUNNING
        for thread in self._threads:
            thread.start()
        logger.info("Started interpreter pid=%s generation=%s", self.process.pid, self.generation)

    def wrap(self, code: str) -> str:
        """Frame `code` with this session's markers."""
        return self.profile.wrap(code, self.start_marker, self.end_marker)

    def write(self, code: str):
        """
        Write one framed evaluation to stdin.

        Raises:
            InterpreterTerminated: if the process is gone or its stdin is closed
        """
        if not self.running or self.process is None or self.process.stdin is None:
            raise InterpreterTerminated("Interpreter session is not running")
        payload = self.wrap(code).encode(self.profile.encoding)
        with self._write_lock:
            try:
                self.process.stdin.write(payload)
                self.process.stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as e:
                self.state = SessionState.TERMINATED
                raise InterpreterTerminated(f"Interpreter stdin closed: {e}") from e
        logger.debug("Wrote %d bytes to interpreter generation=%s", len(payload), self.generation)

    def terminate(self, grace: float = 2.0):
        """Stop the subprocess: close stdin, SIGTERM, then SIGKILL after `grace` seconds."""
        self._closing = True
        self.state = SessionState.TERMINATED
        proc = self.process
        if proc is None:
            return

        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except (BrokenPipeError, OSError):
            pass

        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        logger.info("Terminated interpreter pid=%s generation=%s", proc.pid, self.generation)

    def join(self, timeout: Optional[float] = None):
        """Wait for the reader threads to finish."""
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout)

    def _read_loop(self, stream, callback: StreamCallback, is_stdout: bool):
        """Reader thread body: forward chunks until EOF."""
        try:
            while True:
                data = stream.read1(self._read_size)
                if not data:
                    break
                callback(self.generation, data)
        except (ValueError, OSError):
            # Pipe closed while shutting down
            pass
        finally:
            if is_stdout:
                self._handle_eof()

    def _handle_eof(self):
        proc = self.process
        returncode = None
        if proc is not None:
            try:
                returncode = proc.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                returncode = proc.poll()
        self.state = SessionState.TERMINATED
        if self._closing:
            return
        logger.warning(
            "Interpreter pid=%s generation=%s exited with code %s",
            proc.pid if proc is not None else None, self.generation, returncode,
        )
        self._on_exit(self.generation, returncode)
