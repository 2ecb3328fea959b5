"""Tests for configuration objects."""

import sys

import pytest
from pydantic import ValidationError

from md_playground.config import (
    PYTHON_BOOTSTRAP,
    HighlightConfig,
    InterpreterProfile,
    PlaygroundConfig,
    SessionConfig,
)
from md_playground.tokens import HighlightStyle, TokenKind


class TestInterpreterProfile:
    """Tests for interpreter profiles."""

    def test_python_defaults(self):
        profile = InterpreterProfile.python()
        assert profile.command[0] == sys.executable
        assert profile.command[-1] == PYTHON_BOOTSTRAP
        assert "-i" in profile.command
        assert profile.env["PYTHONIOENCODING"] == "utf-8"
        assert "python" in profile.languages

    def test_python_custom_executable(self):
        assert InterpreterProfile.python("/opt/python3").command[0] == "/opt/python3"

    def test_wrap_python(self):
        wrapped = InterpreterProfile.python().wrap("x = 1", "<m", ">m")
        assert wrapped.split("\n") == [
            'print("<m", file=__import__("sys").__stdout__)',
            "x = 1",
            "",
            'print(">m", file=__import__("sys").__stdout__)',
            'print(">m", file=__import__("sys").__stderr__)',
            "",
        ]

    def test_wrap_swift(self):
        profile = InterpreterProfile.swift()
        assert profile.wrap("1 + 1", "<m", ">m") == 'print("<m")\n1 + 1\n\nprint(">m")\n'
        assert profile.echo_prefix is not None
        assert profile.stderr_statement is None

    def test_frozen(self):
        profile = InterpreterProfile.python()
        with pytest.raises(ValidationError):
            profile.encoding = "latin-1"


class TestPlaygroundConfig:
    """Tests for PlaygroundConfig.from_env()."""

    def test_defaults(self):
        config = PlaygroundConfig.from_env({})
        assert config.session.eval_timeout == 30.0
        assert config.highlight.language == "python"
        assert config.highlight.cache_max_entries == 1024

    def test_timeout(self):
        assert PlaygroundConfig.from_env({"MD_PLAYGROUND_TIMEOUT": "2.5"}).session.eval_timeout == 2.5

    def test_zero_timeout_disables(self):
        assert PlaygroundConfig.from_env({"MD_PLAYGROUND_TIMEOUT": "0"}).session.eval_timeout is None

    def test_interpreter(self):
        config = PlaygroundConfig.from_env({"MD_PLAYGROUND_PYTHON": "/usr/bin/python3"})
        assert config.session.profile.command[0] == "/usr/bin/python3"

    def test_highlight_settings(self):
        config = PlaygroundConfig.from_env({
            "MD_PLAYGROUND_LANGUAGE": "swift",
            "MD_PLAYGROUND_CACHE_ENTRIES": "16",
        })
        assert config.highlight.language == "swift"
        assert config.highlight.cache_max_entries == 16

    def test_explicit_construction(self):
        config = PlaygroundConfig(
            session=SessionConfig(eval_timeout=None),
            highlight=HighlightConfig(language="rust"),
        )
        assert config.session.eval_timeout is None
        assert config.session.profile.languages == InterpreterProfile.python().languages


class TestHighlightStyle:
    """Tests for HighlightStyle."""

    def test_solarized_defaults(self):
        style = HighlightStyle()
        assert style.for_kind(TokenKind.STRING) == "#dc322f"
        assert style.for_kind(TokenKind.NUMBER) == "#d33682"
        assert style.for_kind(TokenKind.KEYWORD) == "#6c71c4"
        assert style.for_kind(TokenKind.COMMENT) == "#b58900"

    def test_override(self):
        assert HighlightStyle(keyword="bold blue").for_kind(TokenKind.KEYWORD) == "bold blue"

    def test_frozen(self):
        with pytest.raises(ValidationError):
            HighlightStyle().string = "red"
