"""Tests for thread safety of Container."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Generic, TypeVar

import pytest

from targetwire import Container
from targetwire.compiled_targets import InstanceFactory
from targetwire.container import ResolutionCache

T = TypeVar("T")


class _ServiceA:
    pass


class _ServiceB:
    def __init__(self, a: _ServiceA) -> None:
        self.a = a


class _Slow:
    def __init__(self) -> None:
        time.sleep(0.01)


class _IBox(Generic[T]):
    pass


class _Box(_IBox[T]):
    pass


class TestConcurrentResolution:
    def test_concurrent_singleton_resolution_same_instance(self, container: Container) -> None:
        """Concurrent singleton resolution returns same instance."""
        container.register_singleton(_Slow)
        results: list[_Slow] = []
        errors: list[Exception] = []
        barrier = threading.Barrier(10)

        def resolve_service() -> None:
            barrier.wait()
            try:
                results.append(container.resolve(_Slow))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=resolve_service) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert len(results) == 10
        assert all(r is results[0] for r in results)

    def test_concurrent_transient_resolution_different_instances(self, container: Container) -> None:
        """Concurrent transient resolution creates different instances."""
        container.register_type(_ServiceA)
        container.register_type(_ServiceB)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: container.resolve(_ServiceB), range(50)))

        assert len({id(r) for r in results}) == 50
        assert all(isinstance(r.a, _ServiceA) for r in results)

    def test_concurrent_open_generic_resolution(self, container: Container) -> None:
        container.register_type(_Box, _IBox)
        requested = [_IBox[int], _IBox[str], _IBox[bytes]] * 10

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(container.resolve, requested))

        assert all(isinstance(r, _Box) for r in results)
        assert container.get_factory(_IBox[int]) is container.get_factory(_IBox[int])


class TestResolutionCache:
    def test_factory_created_once_per_key(self) -> None:
        calls: list[object] = []
        lock = threading.Lock()

        def create(service_type: object) -> InstanceFactory:
            with lock:
                calls.append(service_type)
            time.sleep(0.01)
            return InstanceFactory(service_type)

        cache = ResolutionCache(create)

        with ThreadPoolExecutor(max_workers=8) as executor:
            factories = list(executor.map(lambda _: cache.get(_ServiceA), range(20)))

        assert calls == [_ServiceA]
        assert all(f is factories[0] for f in factories)
        assert _ServiceA in cache

    def test_failure_is_not_cached(self) -> None:
        attempts: list[int] = []

        def create(service_type: object) -> InstanceFactory:
            attempts.append(1)
            if len(attempts) == 1:
                msg = "first attempt fails"
                raise RuntimeError(msg)
            return InstanceFactory(service_type)

        cache = ResolutionCache(create)

        with pytest.raises(RuntimeError, match="first attempt fails"):
            cache.get(_ServiceA)
        assert _ServiceA not in cache

        assert cache.get(_ServiceA) is cache.get(_ServiceA)
        assert attempts == [1, 1]
