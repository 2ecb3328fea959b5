"""
md-playground: evaluate and highlight the code blocks of markdown documents.

This package provides the core of a markdown playground where:
- Code blocks run in one persistent interpreter subprocess
- Output is framed with per-session markers and matched to its request
- Syntax highlighting is batched and cached by fragment text
"""

from md_playground.config import HighlightConfig, InterpreterProfile, PlaygroundConfig, SessionConfig
from md_playground.coordinator import FragmentEvent, FragmentEventKind, Playground
from md_playground.driver import SessionDriver
from md_playground.evaluation import EvaluationQueue, Outcome, OutputRecord
from md_playground.fragments import CodeFragment, Document, extract_fragments
from md_playground.framer import ErrorAccumulator, OutputFramer
from md_playground.highlight import BatchTokenizer, HighlightCache, render
from md_playground.markup import MarkdownSpan, code_block_tokens, markdown_spans, render_document
from md_playground.tokenizer import CommandTokenizer, PygmentsTokenizer, Tokenizer
from md_playground.tokens import ElementKind, HighlightStyle, Token, TokenKind

__version__ = "0.1.0"
__all__ = [
    "SessionDriver",
    "OutputFramer",
    "ErrorAccumulator",
    "EvaluationQueue",
    "OutputRecord",
    "Outcome",
    "BatchTokenizer",
    "HighlightCache",
    "HighlightStyle",
    "render",
    "render_document",
    "markdown_spans",
    "code_block_tokens",
    "MarkdownSpan",
    "ElementKind",
    "Tokenizer",
    "PygmentsTokenizer",
    "CommandTokenizer",
    "Token",
    "TokenKind",
    "CodeFragment",
    "Document",
    "extract_fragments",
    "Playground",
    "FragmentEvent",
    "FragmentEventKind",
    "InterpreterProfile",
    "SessionConfig",
    "HighlightConfig",
    "PlaygroundConfig",
]
