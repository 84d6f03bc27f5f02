"""Shared fixtures for unit tests.

Unit tests never spawn git: the provider is wired to ``FakeExecutor``,
which records every call and replays scripted ``ProcessResult`` values.
"""

import pytest

from git_engine.config import EngineConfig
from git_engine.logging_config import clear_context
from git_engine.models import ProcessResult
from git_engine.provider import CliGitProvider
from git_engine.working_dir import InMemoryWorkingDirectoryStore


class FakeExecutor:
    """Stands in for GitExecutor; replays results in order.

    Each scripted response is a ProcessResult or an exception to raise.
    Once the script is exhausted, every further call succeeds with empty
    output.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def run(self, args, cwd, env=None, timeout_ms=None, input=None):
        self.calls.append({"args": list(args), "cwd": cwd, "env": env, "input": input})
        if not self.responses:
            return ProcessResult(exit_code=0)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def argvs(self):
        return [call["args"] for call in self.calls]


@pytest.fixture(autouse=True)
def _reset_log_context():
    """Keep correlation ids from leaking between tests."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def engine_config():
    return EngineConfig(store_backend="memory")


@pytest.fixture
def store():
    return InMemoryWorkingDirectoryStore(default_ttl_seconds=None)


@pytest.fixture
def provider(engine_config, fake_executor, store):
    return CliGitProvider(config=engine_config, executor=fake_executor, store=store)
