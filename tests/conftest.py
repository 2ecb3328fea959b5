"""Pytest fixtures shared across all test modules."""

import threading

import pytest

from md_playground.config import SessionConfig
from md_playground.driver import SessionDriver
from md_playground.errors import TokenizerFailure
from md_playground.tokenizer import Tokenizer


class ResultCollector:
    """Result callback that records every OutputRecord it receives."""

    def __init__(self):
        self.records = []
        self.threads = set()
        self._cond = threading.Condition()

    def __call__(self, record):
        with self._cond:
            self.records.append(record)
            self.threads.add(threading.current_thread().name)
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 15.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.records) >= count, timeout)

    @property
    def last(self):
        return self.records[-1]


class FailingTokenizer(Tokenizer):
    """Tokenizer whose every invocation fails."""

    def _tokenize(self, source):
        raise RuntimeError("tokenizer crashed")


class FlakyTokenizer(Tokenizer):
    """Fails on the first call, then delegates to another tokenizer."""

    def __init__(self, delegate: Tokenizer):
        super().__init__()
        self.delegate = delegate

    def _tokenize(self, source):
        if self.invocations == 1:
            raise TokenizerFailure("first call fails")
        return self.delegate.tokenize(source)


@pytest.fixture
def collector():
    return ResultCollector()


@pytest.fixture
def make_driver(collector):
    """Factory for SessionDrivers that are closed after the test."""
    drivers = []

    def factory(**config_kwargs):
        driver = SessionDriver(collector, SessionConfig(**config_kwargs))
        drivers.append(driver)
        return driver

    yield factory
    for driver in drivers:
        driver.close()
