import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="tweetline_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("TOKEN_STORE", "store")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from tweetline.config import Settings  # noqa: E402
from tweetline.service.passwords import PasswordService  # noqa: E402
from tweetline.service.runtime import reset_runtime_for_tests  # noqa: E402
from tweetline.service.tokens import TokenCodec  # noqa: E402


def _clear_memory_state() -> None:
    state_file = Path(os.environ["SHARED_FS_ROOT"]) / "state" / "memory_store.json"
    state_file.unlink(missing_ok=True)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    _clear_memory_state()
    reset_runtime_for_tests()
    yield
    _clear_memory_state()
    reset_runtime_for_tests()


@pytest.fixture(scope="session")
def settings():
    """Settings sharing the session's generated signing keys."""
    return Settings(shared_fs_root=os.environ["SHARED_FS_ROOT"], test_mode=True)


@pytest.fixture(scope="session")
def codec(settings):
    return TokenCodec.from_settings(settings)


@pytest.fixture(scope="session")
def passwords():
    return PasswordService.fast()


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
