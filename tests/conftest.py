import asyncio
import inspect
import os
import sys
from pathlib import Path

from argon2 import PasswordHasher, Type

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "Correct-Horse-Battery-9"
JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"

# Cheap parameters keep hashing fast; verification cost still follows the hash
_TEST_HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
ADMIN_PASSWORD_HASH = _TEST_HASHER.hash(ADMIN_PASSWORD)

# Configure the environment before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", JWT_SECRET)
os.environ.setdefault("ADMIN_USERNAME", ADMIN_USERNAME)
os.environ.setdefault("ADMIN_PASSWORD_HASH", ADMIN_PASSWORD_HASH)
os.environ.setdefault("LOG_JSON", "true")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from contactdesk.service.auth import AdminAuthService  # noqa: E402
from contactdesk.service.csrf import CsrfService  # noqa: E402
from contactdesk.service.rate_limit import LoginRateLimiter  # noqa: E402
from contactdesk.service.runtime import reset_runtime_for_tests  # noqa: E402
from contactdesk.service.tokens import TokenService  # noqa: E402
from contactdesk.storage.memory import MemoryCache  # noqa: E402


class FakeClock:
    """Manually advanced clock shared by the store and the token service."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def tokens(clock):
    return TokenService(JWT_SECRET, access_ttl_seconds=3600, refresh_ttl_seconds=604800, clock=clock)


@pytest.fixture
def csrf(store):
    return CsrfService(store, ttl_seconds=900)


@pytest.fixture
def rate_limiter(store):
    return LoginRateLimiter(store, max_attempts=5, window_seconds=900)


@pytest.fixture
def auth_service(store, tokens, csrf, rate_limiter, clock):
    return AdminAuthService(
        store,
        tokens,
        csrf,
        rate_limiter,
        admin_username=ADMIN_USERNAME,
        admin_password_hash=ADMIN_PASSWORD_HASH,
        dashboard_url="/admin/dashboard",
        clock=clock,
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
