"""Root test configuration."""

import logging
import os

import pytest
import structlog
from crucible.config import get_settings
from crucible.context import HandlerPhase
from crucible.core.errors import ProviderError
from crucible.providers.registry import ProviderRegistry
from crucible.resource import resource
from crucible.scope import Scope
from crucible.state import memory_state_store

CI_VARS = ("CI", "GITHUB_ACTIONS", "JENKINS_URL", "GITLAB_CI", "CIRCLECI", "TRAVIS")


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Fresh settings, no CI markers and an empty global scope stack per test."""
    for key in list(os.environ):
        if key.startswith("CRUCIBLE_"):
            monkeypatch.delenv(key, raising=False)
    for key in CI_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CRUCIBLE_STATE_STORE", "memory")
    monkeypatch.setenv("CRUCIBLE_STATE_DIR", str(tmp_path / ".crucible"))
    monkeypatch.chdir(tmp_path)
    Scope.globals.clear()
    get_settings.cache_clear()
    yield
    Scope.globals.clear()
    get_settings.cache_clear()


@pytest.fixture
def registry():
    return ProviderRegistry()


@pytest.fixture
def backend():
    """Shared in-memory state, keyed by scope chain (``"demo/test"``)."""
    return {}


@pytest.fixture
def store(backend):
    return memory_state_store(backend)


@pytest.fixture
def calls():
    """Handler invocations as ``(phase, id, props, replacing)`` tuples."""
    return []


@pytest.fixture
def Queue(registry, calls):
    """A queue resource that replaces itself when its name changes."""

    @resource("test::queue", registry=registry)
    async def Queue(ctx, id, props):
        calls.append((str(ctx.phase), id, dict(props), ctx.replacing))
        if ctx.phase == HandlerPhase.DELETE:
            ctx.destroy()
        if ctx.phase == HandlerPhase.UPDATE and ctx.output["name"] != props["name"]:
            ctx.replace()
        if props.get("fail"):
            raise ProviderError(f"queue {props['name']} failed")
        return ctx.finalize(name=props["name"], url=f"https://queues.example.com/{props['name']}")

    return Queue


@pytest.fixture
def start(registry, store):
    """Start a run of the ``demo`` app on stage ``test`` with isolated state."""
    from crucible.app import app

    def _start(**options):
        options.setdefault("stage", "test")
        options.setdefault("state_store", store)
        return app("demo", registry=registry, argv=[], **options)

    return _start
