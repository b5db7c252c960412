"""Tests for ServerRegistry."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

import simserve
from simserve.endpoint import Endpoint, HandlerConfig
from simserve.http.server import ServerInstance
from simserve.registry.local import ServerRegistry


class CountingFactory:
    """Instance factory that records every start and can fail on demand."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, **kwargs) -> ServerInstance:
        with self._lock:
            self.calls += 1
            if self.failures:
                self.failures -= 1
                raise OSError("no ephemeral ports left")
        return ServerInstance(**kwargs)


class TestRegistry:
    """Test ServerRegistry functionality."""

    def setup_method(self):
        """Start each test with a fresh registry."""
        self.factory = CountingFactory()
        self.registry = ServerRegistry(instance_factory=self.factory)

    def teardown_method(self):
        self.registry.stop()

    def test_nothing_runs_until_first_registration(self):
        assert self.registry.instance() is None
        assert self.registry.instance(use_ssl=True) is None
        assert self.factory.calls == 0

    def test_instance_is_reused(self):
        """Test registrations on one protocol share a single instance."""
        first = self.registry.register(HandlerConfig(content=b"a"))
        instance = self.registry.instance()
        second = self.registry.register(HandlerConfig(content=b"b"))

        assert self.registry.instance() is instance
        assert self.factory.calls == 1
        assert first.rsplit("/", 1)[0] == second.rsplit("/", 1)[0] == instance.origin

    def test_plain_and_tls_are_separate_slots(self):
        plain = self.registry.register(HandlerConfig())
        secure = self.registry.register(HandlerConfig(ssl=True))

        assert plain.startswith("http://127.0.0.1:")
        assert secure.startswith("https://127.0.0.1:")
        assert self.registry.instance() is not self.registry.instance(use_ssl=True)
        assert self.factory.calls == 2

    def test_paths_are_strictly_increasing_across_protocols(self):
        urls = [
            self.registry.register(HandlerConfig()),
            self.registry.register(HandlerConfig(ssl=True)),
            self.registry.register(HandlerConfig()),
        ]
        assert [url.rsplit("/", 1)[1] for url in urls] == ["0", "1", "2"]

    def test_counter_survives_stop(self):
        """Test paths are never reused after a restart."""
        self.registry.register(HandlerConfig())
        self.registry.register(HandlerConfig())
        self.registry.stop()

        url = self.registry.register(HandlerConfig())
        assert url.endswith("/2")

    def test_stop_clears_both_slots(self):
        self.registry.register(HandlerConfig())
        self.registry.register(HandlerConfig(ssl=True))
        plain = self.registry.instance()

        self.registry.stop()

        assert self.registry.instance() is None
        assert self.registry.instance(use_ssl=True) is None
        assert not plain.running

    def test_registration_after_stop_recreates_instance(self):
        self.registry.register(HandlerConfig())
        old = self.registry.instance()
        self.registry.stop()

        self.registry.register(HandlerConfig())

        assert self.registry.instance() is not old
        assert self.registry.instance().running
        assert self.factory.calls == 2

    def test_stop_when_nothing_runs(self):
        """Test stop is a no-op without instances."""
        self.registry.stop()
        self.registry.stop()
        assert self.registry.instance() is None

    def test_bind_failure_leaves_slot_absent(self):
        """Test a failed start propagates and can be retried."""
        self.factory.failures = 1

        with pytest.raises(OSError, match="no ephemeral ports left"):
            self.registry.register(HandlerConfig())
        assert self.registry.instance() is None

        url = self.registry.register(HandlerConfig())
        assert url.endswith("/0")
        assert self.registry.instance() is not None

    def test_same_config_twice_gives_two_paths(self):
        config = HandlerConfig(content=b"same")
        assert self.registry.register(config) != self.registry.register(config)

    def test_endpoint_is_bound_to_registry(self):
        builder = self.registry.endpoint()
        assert isinstance(builder, Endpoint)
        assert builder.registry is self.registry

    def test_concurrent_registrations(self):
        """Test racing callers share one instance and never collide on a path."""
        def register_many(_):
            return [self.registry.register(HandlerConfig()) for _ in range(20)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(register_many, range(8)))

        urls = [url for batch in results for url in batch]
        assert len(set(urls)) == 160
        assert self.factory.calls == 1
        paths = sorted(int(url.rsplit("/", 1)[1]) for url in urls)
        assert paths == list(range(160))


class TestGlobalRegistry:
    """Test the module-level convenience functions."""

    def teardown_method(self):
        simserve.stop()

    def test_stop_without_servers(self):
        simserve.stop()
        simserve.stop()

    def test_endpoint_uses_global_registry(self, fetch):
        from simserve.registry.local import _global_registry

        builder = simserve.endpoint()
        assert builder.registry is _global_registry

        url = builder.with_content("global").start()
        assert fetch(url).text == "global"

    def test_register_function(self, fetch):
        url = simserve.register(HandlerConfig(content=b"direct"))
        assert fetch(url).content == b"direct"


def test_fixture_registry_is_private(simserve_registry):
    from simserve.registry.local import _global_registry

    assert simserve_registry is not _global_registry
    url = simserve_registry.endpoint().start()
    assert url.endswith("/0")
