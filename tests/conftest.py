"""Shared fakes for rotation tests: secret store, database fleet, discovery, event sink."""
import json
import threading
import time

import pytest

from credential_rotator.rotation.domains.discovery import Discovery
from credential_rotator.rotation.domains.errors import SecretNotFoundError
from credential_rotator.rotation.domains.events import EventReceiver
from credential_rotator.rotation.domains.models import (
    AWSCURRENT,
    AWSPENDING,
    AWSPREVIOUS,
    Candidate,
    ReplicaStatus,
    SecretVersion,
)
from credential_rotator.rotation.domains.password_client import PasswordClient
from credential_rotator.rotation.domains.secret_setter import SecretSetter
from credential_rotator.rotation.domains.secret_store import SecretStore
from credential_rotator.rotation.workflows.password_setter import PasswordSetter
from credential_rotator.rotation.workflows.rotator import Rotator

SECRET_ID = "db/app"
TOKEN = "token-v2"


class FakeSecretStore(SecretStore):
    """In-memory Secrets Manager with staging-label semantics."""

    def __init__(self):
        self.versions = {}  # version_id -> {"string": str, "stages": set}
        self.get_calls = []
        self.puts = []
        self.moves = []
        self.replication = [[]]  # successive describe results; last one repeats
        self.replication_calls = 0
        self.fail_move = None  # stage whose move_stage raises

    def add(self, version_id, values, *stages):
        secret_string = values if isinstance(values, str) or values is None else json.dumps(values)
        for other in self.versions.values():
            other["stages"] -= set(stages)
        self.versions[version_id] = {"string": secret_string, "stages": set(stages)}

    def stage_of(self, stage):
        for version_id, version in self.versions.items():
            if stage in version["stages"]:
                return version_id
        return None

    def get_secret(self, secret_id, stage):
        self.get_calls.append(stage)
        version_id = self.stage_of(stage)
        if version_id is None:
            raise SecretNotFoundError(secret_id, stage)
        version = self.versions[version_id]
        return SecretVersion(version_id, sorted(version["stages"]), version["string"])

    def put_pending(self, secret_id, token, secret_string):
        existing = self.versions.get(token)
        if existing is not None and existing["string"] != secret_string:
            raise ValueError("version already exists with different content")
        self.puts.append((secret_id, token, secret_string))
        self.add(token, secret_string, AWSPENDING)

    def move_stage(self, secret_id, stage, to_version=None, from_version=None):
        self.moves.append((stage, to_version, from_version))
        if self.fail_move == stage:
            raise RuntimeError(f"update_secret_version_stage {stage} failed")
        if from_version is not None:
            self.versions[from_version]["stages"].discard(stage)
            if stage == AWSCURRENT:
                for version in self.versions.values():
                    version["stages"].discard(AWSPREVIOUS)
                self.versions[from_version]["stages"].add(AWSPREVIOUS)
        if to_version is not None:
            for version in self.versions.values():
                version["stages"].discard(stage)
            self.versions[to_version]["stages"].add(stage)

    def replication_status(self, secret_id):
        index = min(self.replication_calls, len(self.replication) - 1)
        self.replication_calls += 1
        return [ReplicaStatus(region, status) for region, status in self.replication[index]]


class FakeFleet(PasswordClient):
    """Databases keyed by address, each with one password. Thread-safe."""

    def __init__(self, passwords=None, delay=0.0):
        self.passwords = dict(passwords or {})
        self.delay = delay
        self.fail_changes = {}  # address -> number of change calls that fail
        self.fail_verifies = set()  # addresses whose verify always fails
        self.change_calls = []
        self.verify_calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def _enter(self):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _exit(self):
        with self._lock:
            self.in_flight -= 1

    def change_password(self, transition, cancel):
        address = transition.current.address
        self._enter()
        try:
            with self._lock:
                self.change_calls.append(transition)
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                if self.fail_changes.get(address, 0) > 0:
                    self.fail_changes[address] -= 1
                    raise ConnectionError(f"{address}: connection refused")
                if self.passwords.get(address) != transition.current.password:
                    raise PermissionError(f"{address}: access denied for {transition.current.username}")
                self.passwords[address] = transition.new.password
        finally:
            self._exit()

    def verify_password(self, transition, cancel):
        address = transition.new.address
        self._enter()
        try:
            with self._lock:
                self.verify_calls.append(transition)
            if self.delay:
                time.sleep(self.delay)
            if address in self.fail_verifies or self.passwords.get(address) != transition.new.password:
                raise PermissionError(f"{address}: access denied for {transition.new.username}")
        finally:
            self._exit()


class FakeDiscovery(Discovery):
    def __init__(self, candidates):
        self.candidates = candidates
        self.error = None
        self.calls = 0

    def discover(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class RecordingReceiver(EventReceiver):
    def __init__(self):
        self.events = []

    def receive(self, event):
        self.events.append(event)

    @property
    def names(self):
        return [e.name for e in self.events]


class VersionedSetter(SecretSetter):
    """Rotates "v" to the next number and derives the password from it."""

    def __init__(self):
        self.init_calls = 0
        self.rotate_calls = 0
        self.handled = []

    def init(self, event):
        self.init_calls += 1

    def handler(self, event):
        self.handled.append(event)
        return {"handled": True}

    def rotate(self, secret):
        self.rotate_calls += 1
        secret["v"] = str(int(secret["v"]) + 1)
        secret["password"] = f"p{secret['v']}"

    def credentials(self, secret):
        return secret["username"], secret["password"]


def candidates(*addresses):
    return [Candidate(identifier=f"db{i}", address=address) for i, address in enumerate(addresses, 1)]


def event(step, token=TOKEN):
    return {"Step": step, "SecretId": SECRET_ID, "ClientRequestToken": token}


@pytest.fixture
def store():
    """Secret with only a current version v1 (user foo, password p1)."""
    s = FakeSecretStore()
    s.add("v1", {"username": "foo", "password": "p1", "v": "1"}, AWSCURRENT)
    return s


@pytest.fixture
def fleet():
    return FakeFleet({"db1.example.com": "p1", "db2.example.com": "p1", "db3.example.com": "p1"})


@pytest.fixture
def receiver():
    return RecordingReceiver()


@pytest.fixture
def make_setter(fleet):
    def _make(addresses=None, **kwargs):
        addresses = addresses or sorted(fleet.passwords)
        return PasswordSetter(FakeDiscovery(candidates(*addresses)), fleet, **kwargs)
    return _make


@pytest.fixture
def make_rotator(store, make_setter, receiver):
    def _make(setter=None, **kwargs):
        kwargs.setdefault("replication_poll_seconds", 0.01)
        return Rotator(
            secret_store=store,
            password_setter=setter or make_setter(),
            secret_setter=kwargs.pop("secret_setter", None) or VersionedSetter(),
            event_receiver=receiver,
            **kwargs,
        )
    return _make
