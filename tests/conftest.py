# catsync Test Fixtures
# Pytest fixtures for catsync tests

import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest
import yaml

from catsync.config.schema import CatsyncConfig
from catsync.remote.client import ReadinessReport
from catsync.storage import InMemoryTableStore, MemoryKeyValueStore
from catsync.sync.resources import RemoteCall, get_contract
from catsync.sync.row import Operation


class FakeClock:
    """Controllable clock returning aware datetimes."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Sleep replacement recording requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeRemote:
    """
    Remote catalog double.

    Outcomes queued in ``script`` are consumed one per call: an exception
    instance is raised, a dict is returned. With an empty script creates get
    a fresh id and other calls return an empty body.
    """

    def __init__(self) -> None:
        self.calls: list[RemoteCall] = []
        self.script: list[Union[BaseException, dict[str, Any]]] = []
        self.handler: Optional[Callable[[RemoteCall], dict[str, Any]]] = None
        self.readiness = ReadinessReport(connectivity=True, permissions=True, quota_ok=True)
        self.readiness_checks = 0
        self._next_id = 1000

    def send(self, call: RemoteCall) -> dict[str, Any]:
        self.calls.append(call)
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        if self.handler is not None:
            return self.handler(call)
        if call.operation == Operation.CREATE:
            self._next_id += 1
            return {get_contract(call.kind).wrapper: {"id": self._next_id}}
        return {}

    def check_readiness(self) -> ReadinessReport:
        self.readiness_checks += 1
        return self.readiness


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary home directory."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("CATSYNC_CONFIG", raising=False)
    return home


@pytest.fixture
def clock() -> FakeClock:
    """Fixed, manually advanced clock."""
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    """Sleep that records delays instead of blocking."""
    return RecordingSleep()


@pytest.fixture
def fake_remote() -> FakeRemote:
    """Scriptable remote catalog."""
    return FakeRemote()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    """Empty in-memory key/value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def table() -> InMemoryTableStore:
    """Empty in-memory table store."""
    return InMemoryTableStore()


@pytest.fixture
def config() -> CatsyncConfig:
    """Default configuration with fast retries."""
    return CatsyncConfig.model_validate(
        {
            "retry": {"max_retries": 2, "base_delay": 0.1, "max_delay": 1.0},
            "batching": {"rate_limit_delay": 0.0},
            "datasets": {
                "products": {"kind": "product", "path": "products.csv"},
                "metafields": {"kind": "metafield", "path": "metafields.csv", "owner_kind": "product"},
            },
        }
    )


@pytest.fixture
def sample_config() -> dict:
    """Create sample configuration dict."""
    return {
        "remote": {"shop": "test-shop.myshopify.com", "token_env": "TEST_TOKEN"},
        "retry": {"max_retries": 2},
        "datasets": {
            "products": {"kind": "product", "path": "products.csv", "description": "Test products"},
            "variants": {"kind": "variant", "path": "variants.csv"},
        },
        "output": {"verbose": False, "colored": False},
    }


@pytest.fixture
def config_file(temp_home: Path, sample_config: dict) -> Path:
    """Create a configuration file."""
    config_dir = temp_home / ".config" / "catsync"
    config_dir.mkdir(parents=True)
    config_path = config_dir / "config.yaml"

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(sample_config, f, default_flow_style=False)

    return config_path
