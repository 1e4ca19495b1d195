"""Shared pytest fixtures for gitstore tests."""

import shutil
import subprocess
from datetime import datetime, timedelta, timezone

import pytest

from gitstore.config_schema import StoreConfig, SyncConfig, UnifiedConfig
from gitstore.store import Store

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock: every call advances by ``step``."""

    def __init__(self, start: datetime = EPOCH, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        self.now = self.now + self.step
        return self.now

    def freeze(self) -> None:
        self.step = timedelta(0)


class SequentialIds:
    """Deterministic id generator: ``<prefix>0001``, ``<prefix>0002``, ..."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}{self.count:04d}"


@pytest.fixture
def clock():
    """One clock shared by every instance in a test, so times are ordered."""
    return FakeClock()


@pytest.fixture
def remote(tmp_path):
    """An empty bare repository standing in for the shared remote."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    path = tmp_path / "remote.git"
    subprocess.run(
        ["git", "init", "-q", "--bare", "-b", "main", str(path)],
        check=True,
        capture_output=True,
    )
    return path


@pytest.fixture
def make_store(tmp_path, remote, clock):
    """Factory for batched-mode stores sharing ``remote`` and ``clock``."""
    opened: list[Store] = []

    def _make(
        name: str,
        *,
        remote_url: str | None = None,
        ids=None,
        sleep=lambda _: None,
        **sync_overrides,
    ) -> Store:
        sync_settings = {
            "mode": "batched",
            "backoff_base": 0.0,
            "backoff_max": 0.0,
            "git_timeout": 30.0,
        }
        sync_settings.update(sync_overrides)
        config = UnifiedConfig(
            store=StoreConfig(
                path=str(tmp_path / name),
                instance=name,
                remote_url=remote_url if remote_url is not None else str(remote),
            ),
            sync=SyncConfig(**sync_settings),
        )
        store = Store(
            config,
            clock=clock,
            id_generator=ids or SequentialIds(f"{name}-"),
            sleep=sleep,
        )
        opened.append(store)
        return store

    yield _make

    for store in opened:
        store.close()


@pytest.fixture
def store_x(make_store):
    return make_store("x")


@pytest.fixture
def store_y(make_store):
    return make_store("y")


@pytest.fixture
def converge():
    """Flush every store, then flush all but the last again.

    Afterwards every store holds the same history.
    """

    def _converge(*stores: Store) -> None:
        for store in stores:
            store.flush()
        for store in stores[:-1]:
            store.flush()

    return _converge
