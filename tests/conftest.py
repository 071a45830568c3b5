import asyncio

import pytest
import pytest_asyncio

from bloodlink.core.retry import RetryConfig
from bloodlink.infrastructure.change_feed import InMemoryChangeFeed
from bloodlink.infrastructure.database import create_engine, create_session_factory, drop_db, init_db
from bloodlink.infrastructure.identity import SessionIdentityProvider
from bloodlink.services.blood_request_service import BloodRequestService
from bloodlink.services.message_store import MessageStore
from bloodlink.services.profile_store import ProfileStore


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database for each test"""
    engine = create_engine("sqlite+aiosqlite://", echo=False)
    await init_db(engine)

    yield engine

    await drop_db(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def feed():
    return InMemoryChangeFeed(prefix="test")


@pytest.fixture
def identity():
    return SessionIdentityProvider()


@pytest.fixture
def message_store(session_factory, feed, identity):
    return MessageStore(session_factory, feed, identity)


@pytest.fixture
def profile_store(session_factory, identity):
    return ProfileStore(session_factory, identity)


@pytest.fixture
def request_service(session_factory, feed, identity):
    return BloodRequestService(session_factory, feed, identity)


@pytest.fixture
def fast_retry():
    """Retry policy without real waiting"""
    return RetryConfig(max_retries=5, initial_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def eventually():
    """Poll a condition until it holds, letting background tasks run"""
    async def wait(predicate, timeout: float = 1.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met in time")
            await asyncio.sleep(0.005)

    return wait


@pytest.fixture
def create_profile(profile_store, identity):
    """Save a profile as its owner, then restore the previous session"""
    async def create(user_id, full_name, role="donor", blood_type="O+", city="Kampala", **extra):
        previous = await identity.get_current_user()
        identity.sign_in(user_id)
        profile = await profile_store.save_profile(
            user_id,
            {"full_name": full_name, "role": role, "blood_type": blood_type, "city": city, **extra},
        )
        if previous:
            identity.sign_in(previous)
        else:
            identity.sign_out()
        return profile

    return create


@pytest.fixture
def store_for(session_factory, feed):
    """Message store signed in as another user, e.g. the counterparty's device"""
    def make(user_id):
        return MessageStore(session_factory, feed, SessionIdentityProvider(user_id))

    return make
