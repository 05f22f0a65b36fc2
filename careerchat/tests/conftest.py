"""
Shared pytest fixtures for CareerChat tests.

Providers are mocks, session storage is in memory, and the conversation
store is either a temp-file SQLite database or a list-backed fake.
"""

import pytest

from careerchat.core.conversation_store import ConversationStore
from careerchat.core.state_storage import MemoryStateStorage
from careerchat.services.session_state import SessionRegistry
from careerchat.tests.fakes import FakeConversationStore


@pytest.fixture
def memory_storage():
    return MemoryStateStorage()


@pytest.fixture
def sessions(memory_storage):
    return SessionRegistry(memory_storage)


@pytest.fixture
def fake_store():
    return FakeConversationStore()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/careerchat.db"


@pytest.fixture
async def store(db_url):
    store = ConversationStore(db_url)
    await store.init_models()
    yield store
    await store.close()
