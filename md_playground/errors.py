"""
Exception types shared by the session driver and the highlighter.

Evaluation errors raised by user code are never turned into exceptions:
they travel back as stderr text on an OutputRecord. The types below cover
failures of the machinery itself.
"""


class PlaygroundError(Exception):
    """Base class for all md-playground errors."""


class LaunchFailure(PlaygroundError):
    """
    Raised when the interpreter subprocess cannot be started.

    Fatal at construction time; the driver does not retry.
    """

    def __init__(self, command, reason):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"Could not launch interpreter {' '.join(self.command)!r}: {reason}")


class ProtocolDesync(PlaygroundError):
    """
    Raised when frames and pending requests stop lining up.

    Typical causes are a frame arriving with nothing in flight, or user
    output that happens to contain the session marker. The driver reacts
    by resetting the session.
    """


class FrameOverflow(ProtocolDesync):
    """Raised when the frame buffer grows past its limit without closing a frame."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Frame buffer holds {size} bytes, limit is {limit}")


class InterpreterTerminated(PlaygroundError):
    """Raised when writing to an interpreter session that is no longer running."""


class TokenizerFailure(PlaygroundError):
    """
    Raised when the external tokenizer fails on a batch.

    BatchTokenizer catches it: the affected fragments stay unhighlighted
    until the next pass.
    """
