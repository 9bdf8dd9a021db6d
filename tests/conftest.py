"""Shared pytest fixtures for sandbox-persist tests."""

from __future__ import annotations

import shutil
import sys

import pytest

from sandbox_persist.config import SnapshotConfig
from sandbox_persist.manager import SnapshotManager
from sandbox_persist.models import SnapshotScope
from tests.fakes import FakeClock, FakeRemoteUnit, InMemoryObjectStore, RecordingSleep

# ============================================================================
# Host tool probes (integration tests)
# ============================================================================

HAS_SHELL_TOOLS = sys.platform == "linux" and all(shutil.which(tool) for tool in ("tar", "split", "stat", "curl"))

skip_unless_shell_tools = pytest.mark.skipif(
    not HAS_SHELL_TOOLS,
    reason="Requires GNU tar, split, stat and curl (Linux)",
)


# ============================================================================
# Fakes
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryObjectStore:
    return InMemoryObjectStore(clock)


@pytest.fixture
def unit(store: InMemoryObjectStore, clock: FakeClock) -> FakeRemoteUnit:
    """Awake unit with the standard snapshot directories present but empty."""
    u = FakeRemoteUnit(store=store, clock=clock)
    u.add_dir("/workspace")
    u.add_dir("/home/claude")
    return u


@pytest.fixture
def fresh_unit(store: InMemoryObjectStore, clock: FakeClock) -> FakeRemoteUnit:
    """Second unit sharing the same store, as after a restart."""
    u = FakeRemoteUnit(store=store, clock=clock)
    u.add_dir("/workspace")
    u.add_dir("/home/claude")
    return u


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def config() -> SnapshotConfig:
    return SnapshotConfig()


@pytest.fixture
def manager(store: InMemoryObjectStore, config: SnapshotConfig, clock: FakeClock, sleep: RecordingSleep) -> SnapshotManager:
    return SnapshotManager(store, config, clock=clock, sleep=sleep)


@pytest.fixture
def private_scope() -> SnapshotScope:
    return SnapshotScope(chat_id="chat-1", sender_id="user-1", is_group=False)


@pytest.fixture
def group_scope() -> SnapshotScope:
    return SnapshotScope(chat_id="group-9", sender_id="user-1", is_group=True)
