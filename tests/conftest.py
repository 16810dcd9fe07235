"""
Brief: Global pytest configuration: src/ import path, per-test timeout and
shared fakes for the Docker SDK client.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'dockdns' is importable without installing
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


WEB_ID = "abc123" + "0" * 52 + "def456"
DB_ID = "fedcba9876543210" * 4


class FakeContainer:
    def __init__(self, attrs):
        self.attrs = attrs
        self.id = attrs.get("Id")


class FakeContainers:
    def __init__(self, owner):
        self._owner = owner

    def list(self, **kwargs):
        self._owner.list_calls.append(kwargs)
        if self._owner.error is not None:
            raise self._owner.error
        return [FakeContainer(a) for a in self._owner.attrs]


class FakeDockerClient:
    """Brief: Stand-in for docker.DockerClient exposing containers.list()/ping().

    Inputs:
      - attrs: list of list-API container dicts (Id, Names, State, Status).
      - error: optional exception raised by containers.list().
    """

    def __init__(self, attrs=None, error=None, ping_error=None):
        self.attrs = list(attrs or [])
        self.error = error
        self.ping_error = ping_error
        self.list_calls = []
        self.containers = FakeContainers(self)

    def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True


def container_attrs(ident, names=(), state="running", status=None):
    return {
        "Id": ident,
        "Names": list(names),
        "State": state,
        "Status": status or ("Up 5 minutes" if state == "running" else "Exited (0)"),
    }


@pytest.fixture
def docker_client():
    return FakeDockerClient(
        [
            container_attrs(WEB_ID, ["/web"]),
            container_attrs(DB_ID, ["/db"], state="exited"),
        ]
    )


@pytest.fixture
def make_docker_client():
    """Brief: Factory fixture returning FakeDockerClient instances."""
    return FakeDockerClient


@pytest.fixture
def make_container():
    """Brief: Factory fixture for list-API container attrs."""
    return container_attrs


@pytest.fixture
def web_id():
    return WEB_ID


@pytest.fixture
def db_id():
    return DB_ID
