"""
EvaluationQueue: correlates completed frames with the requests that caused them.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from md_playground.errors import ProtocolDesync

M = TypeVar("M")


class Outcome(str, Enum):
    """How an evaluation ended."""
    COMPLETED = "completed"
    TERMINATED = "terminated"
    TIMED_OUT = "timed_out"


@dataclass
class PendingRequest(Generic[M]):
    """An evaluation that has been submitted but whose frame has not closed."""
    code: str
    metadata: M
    generation: int = 0
    submitted_at: float = field(default_factory=time.monotonic)
    written_at: Optional[float] = None

    @property
    def written(self) -> bool:
        return self.written_at is not None


@dataclass
class OutputRecord(Generic[M]):
    """Result of one evaluation."""
    stdout: str
    stderr: Optional[str]
    metadata: M
    outcome: Outcome = Outcome.COMPLETED
    generation: int = 0
    code: str = ""

    @property
    def completed(self) -> bool:
        return self.outcome == Outcome.COMPLETED

    @property
    def has_error(self) -> bool:
        return self.stderr is not None or not self.completed

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "metadata": self.metadata,
            "outcome": self.outcome.value,
            "generation": self.generation,
            "code": self.code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OutputRecord":
        """Create from dictionary."""
        return cls(
            stdout=data["stdout"],
            stderr=data.get("stderr"),
            metadata=data.get("metadata"),
            outcome=Outcome(data.get("outcome", Outcome.COMPLETED.value)),
            generation=data.get("generation", 0),
            code=data.get("code", ""),
        )


class EvaluationQueue(Generic[M]):
    """
    Strict FIFO of pending requests.

    The Nth frame that closes answers the Nth request written, because
    requests and frames travel over one ordered pipe. The queue length is
    the number of frames not yet closed.
    """

    def __init__(self):
        self._pending: deque[PendingRequest[M]] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, request: PendingRequest[M]) -> PendingRequest[M]:
        """Append a request to the end of the queue."""
        with self._lock:
            self._pending.append(request)
        return request

    def in_flight(self) -> Optional[PendingRequest[M]]:
        """The oldest request if it has been written, else None."""
        with self._lock:
            if self._pending and self._pending[0].written:
                return self._pending[0]
            return None

    def next_unwritten(self) -> Optional[PendingRequest[M]]:
        """The oldest request that has not been written yet."""
        with self._lock:
            for request in self._pending:
                if not request.written:
                    return request
            return None

    def mark_written(self, request: PendingRequest[M]):
        with self._lock:
            request.written_at = time.monotonic()

    def resolve(self, stdout: str, stderr: Optional[str]) -> OutputRecord[M]:
        """
        Pop the oldest request and pair it with a decoded frame.

        Raises:
            ProtocolDesync: if no written request is waiting for a frame
        """
        with self._lock:
            if not self._pending:
                raise ProtocolDesync("Received a frame with no pending request")
            if not self._pending[0].written:
                raise ProtocolDesync("Received a frame before the request was written")
            request = self._pending.popleft()
        return OutputRecord(
            stdout=stdout,
            stderr=stderr,
            metadata=request.metadata,
            generation=request.generation,
            code=request.code,
        )

    def fail_all(self, outcome: Outcome, stderr: Optional[str] = None) -> list[OutputRecord[M]]:
        """Drop every pending request and return a failure record for each."""
        with self._lock:
            dropped = list(self._pending)
            self._pending.clear()
        return [self.failure(request, outcome, stderr) for request in dropped]

    def pop_in_flight(self) -> Optional[PendingRequest[M]]:
        """Remove and return the in-flight request, if there is one."""
        with self._lock:
            if self._pending and self._pending[0].written:
                return self._pending.popleft()
            return None

    @staticmethod
    def failure(request: PendingRequest, outcome: Outcome, stderr: Optional[str] = None) -> OutputRecord:
        """Build the record delivered for a request that will never complete."""
        return OutputRecord(
            stdout="",
            stderr=stderr,
            metadata=request.metadata,
            outcome=outcome,
            generation=request.generation,
            code=request.code,
        )

    def snapshot(self) -> list[Any]:
        """Metadata of all pending requests, oldest first."""
        with self._lock:
            return [request.metadata for request in self._pending]
