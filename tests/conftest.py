"""Shared fixtures: an in-memory provider with configurable schemas and injected failures."""

import copy
import itertools
import threading
import pytest
from converge.config.settings import EngineSettings
from converge.engine import Engine
from converge.ingest.module_loader import parse_module
from converge.providers.base import AttributeSchema, Provider, ResourceSchema
from converge.state.store import MemoryStateStore

TEST_SCHEMAS = {
    "test_thing": {
        "x": AttributeSchema(force_new=True),
        "name": AttributeSchema(type="string"),
        "ref": AttributeSchema(),
        "size": AttributeSchema(type="number"),
        "tags": AttributeSchema(type="map(string)"),
        "id": AttributeSchema(computed=True),
        "arn": AttributeSchema(computed=True),
        "owner": AttributeSchema(computed=True, stable=True),
    },
    "test_link": {
        "target": AttributeSchema(required=True, force_new=True),
        "target_x": AttributeSchema(),
        "owner": AttributeSchema(),
        "id": AttributeSchema(computed=True),
    },
}


class FakeProvider(Provider):
    """Records every call; computed attributes are derived from the identity."""

    name = "test"

    def __init__(self, schemas=None):
        self.schemas = TEST_SCHEMAS if schemas is None else schemas
        self.resources = {}
        self.calls = []
        self.failures = []
        self.hooks = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def fail(self, operation, **match):
        """Make ``operation`` raise for resources whose attributes include ``match``."""
        self.failures.append((operation, match))

    def on_call(self, hook):
        """Call ``hook(operation, resource_type, attributes)`` before every mutating call."""
        self.hooks.append(hook)

    def drift(self, identity, **changes):
        self.resources[identity][1].update(changes)

    def vanish(self, identity):
        del self.resources[identity]

    def identities(self, resource_type):
        return sorted(i for i, (t, _) in self.resources.items() if t == resource_type)

    def _check(self, operation, resource_type, attributes):
        for hook in self.hooks:
            hook(operation, resource_type, attributes)
        for failing, match in self.failures:
            if failing == operation and all(attributes.get(k) == v for k, v in match.items()):
                raise RuntimeError(f"injected {operation} failure")

    def get_schema(self, resource_type):
        return ResourceSchema(resource_type=resource_type, attributes=self.schemas.get(resource_type, {}))

    def create(self, resource_type, attributes):
        self._check("create", resource_type, attributes)
        with self._lock:
            identity = f"{resource_type}-{next(self._ids)}"
            full = dict(attributes)
            for name, attr in self.schemas.get(resource_type, {}).items():
                if attr.computed and name not in full:
                    full[name] = f"{name}-stable" if attr.stable else f"{name}-{identity}"
            full["id"] = identity
            self.resources[identity] = (resource_type, full)
            self.calls.append(("create", resource_type, identity))
            return identity, copy.deepcopy(full)

    def read(self, resource_type, identity):
        with self._lock:
            entry = self.resources.get(identity)
            return copy.deepcopy(entry[1]) if entry else None

    def update(self, resource_type, identity, attributes):
        self._check("update", resource_type, attributes)
        with self._lock:
            current = self.resources[identity][1]
            current.update(attributes)
            self.calls.append(("update", resource_type, identity))
            return copy.deepcopy(current)

    def delete(self, resource_type, identity):
        with self._lock:
            attributes = self.resources.get(identity, (None, {}))[1]
        self._check("delete", resource_type, attributes)
        with self._lock:
            self.resources.pop(identity, None)
            self.calls.append(("delete", resource_type, identity))


@pytest.fixture
def provider():
    """Fake provider serving the test_* resource types."""
    return FakeProvider()


@pytest.fixture
def store():
    """Empty in-memory state store."""
    return MemoryStateStore()


@pytest.fixture
def make_engine(provider, store):
    """Build an engine for a module document against the fake provider and store."""
    def _make(document, **settings):
        settings.setdefault("refresh", True)
        return Engine(parse_module(document), {"test": provider}, store, EngineSettings(**settings))
    return _make
