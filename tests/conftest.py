"""Shared fixtures for the test suite."""

import httpx
import pytest

from bizflow.orchestrator.data_orchestrator import DataOrchestrator
from bizflow.orchestrator.local_cache import LocalCache, MemoryBackend
from bizflow.tools.sheet_sync_client import SheetSyncClient
from fakes import ENDPOINTS, FakeRemoteStore, FakeSheetScript, RecordingNotifier


@pytest.fixture
def sheet_script():
    return FakeSheetScript()


@pytest.fixture
def sheets(sheet_script):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(sheet_script))
    return SheetSyncClient(endpoints=ENDPOINTS, http_client=http_client)


@pytest.fixture
def cache():
    return LocalCache(MemoryBackend())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def orchestrator(cache, sheets, notifier):
    return DataOrchestrator(cache, sheets, notifier=notifier, retry_base_delay=0)


@pytest.fixture
def connected(cache, sheets, notifier, remote):
    """Orchestrator wired to the fake hosted backend (session not started)"""
    return DataOrchestrator(cache, sheets, remote=remote, notifier=notifier, retry_base_delay=0)
