"""
Configuration objects for the session driver and the highlighter.

Every object here is an immutable pydantic model. Callers build one and
pass it in; nothing reads module-level mutable defaults.
"""

import os
import sys
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from md_playground.tokens import HighlightStyle


# Runs before the interactive loop: empty prompts keep stderr clean.
PYTHON_BOOTSTRAP = "import sys as _s; _s.ps1 = _s.ps2 = ''; del _s"
# Prints a marker to one of the streams the interpreter started with
PYTHON_MARKER = 'print("{{marker}}", file=__import__("sys").{stream})'


class InterpreterProfile(BaseModel):
    """
    How to launch an interpreter and how to talk to it.

    The statement templates receive the session marker as `{marker}`.
    `stderr_statement`, when set, is written after the end statement so
    that stderr carries its own per-request delimiter.
    """
    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...]
    env: dict[str, str] = Field(default_factory=dict)
    start_statement: str = 'print("{marker}")'
    end_statement: str = 'print("{marker}")'
    stderr_statement: Optional[str] = None
    echo_prefix: Optional[str] = None
    languages: tuple[str, ...] = ()
    encoding: str = "utf-8"

    @classmethod
    def python(cls, executable: Optional[str] = None) -> "InterpreterProfile":
        """
        Profile for the CPython interactive interpreter.

        Markers are printed to sys.__stdout__ and sys.__stderr__ so that code
        rebinding sys.stdout or sys.stderr cannot divert them.
        """
        return cls(
            command=(executable or sys.executable, "-q", "-u", "-i", "-c", PYTHON_BOOTSTRAP),
            env={"PYTHON_BASIC_REPL": "1", "PYTHONIOENCODING": "utf-8"},
            start_statement=PYTHON_MARKER.format(stream="__stdout__"),
            end_statement=PYTHON_MARKER.format(stream="__stdout__"),
            stderr_statement=PYTHON_MARKER.format(stream="__stderr__"),
            languages=("python", "py", "python3"),
        )

    @classmethod
    def swift(cls, executable: str = "/usr/bin/swift") -> "InterpreterProfile":
        """Profile for the Swift REPL, which echoes values as `$R0: Int = 2`."""
        return cls(
            command=(executable,),
            echo_prefix=r"^\$R\d+: ",
            languages=("swift",),
        )

    def wrap(self, code: str, start_marker: str, end_marker: str) -> str:
        """Build the text written to stdin for one evaluation."""
        parts = [
            self.start_statement.format(marker=start_marker),
            code,
            "",
            self.end_statement.format(marker=end_marker),
        ]
        if self.stderr_statement:
            parts.append(self.stderr_statement.format(marker=end_marker))
        return "\n".join(parts) + "\n"


class SessionConfig(BaseModel):
    """Settings for SessionDriver."""
    model_config = ConfigDict(frozen=True)

    profile: InterpreterProfile = Field(default_factory=InterpreterProfile.python)
    eval_timeout: Optional[float] = 30.0
    frame_buffer_limit: int = 16 * 1024 * 1024
    terminate_grace: float = 2.0
    poll_interval: float = 0.1
    read_size: int = 65536


class HighlightConfig(BaseModel):
    """Settings for the highlighter."""
    model_config = ConfigDict(frozen=True)

    language: str = "python"
    cache_max_entries: int = 1024
    cache_max_bytes: int = 8 * 1024 * 1024
    style: HighlightStyle = Field(default_factory=HighlightStyle)


class PlaygroundConfig(BaseModel):
    """Top-level configuration for a Playground."""
    model_config = ConfigDict(frozen=True)

    session: SessionConfig = Field(default_factory=SessionConfig)
    highlight: HighlightConfig = Field(default_factory=HighlightConfig)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "PlaygroundConfig":
        """
        Build a configuration from environment variables.

        Recognized variables:
            MD_PLAYGROUND_PYTHON: interpreter executable
            MD_PLAYGROUND_TIMEOUT: evaluation timeout in seconds, 0 disables
            MD_PLAYGROUND_LANGUAGE: highlighting language
            MD_PLAYGROUND_CACHE_ENTRIES: highlight cache size
        """
        environ = os.environ if environ is None else environ

        timeout: Optional[float] = SessionConfig.model_fields["eval_timeout"].default
        raw_timeout = environ.get("MD_PLAYGROUND_TIMEOUT")
        if raw_timeout:
            timeout = float(raw_timeout) or None

        session = SessionConfig(
            profile=InterpreterProfile.python(environ.get("MD_PLAYGROUND_PYTHON") or None),
            eval_timeout=timeout,
        )

        highlight_kwargs = {}
        if environ.get("MD_PLAYGROUND_LANGUAGE"):
            highlight_kwargs["language"] = environ["MD_PLAYGROUND_LANGUAGE"]
        if environ.get("MD_PLAYGROUND_CACHE_ENTRIES"):
            highlight_kwargs["cache_max_entries"] = int(environ["MD_PLAYGROUND_CACHE_ENTRIES"])

        return cls(session=session, highlight=HighlightConfig(**highlight_kwargs))
