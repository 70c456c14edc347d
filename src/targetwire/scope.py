from __future__ import annotations

import threading
import types
from collections.abc import Callable
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any

from targetwire.resolve_context import ResolveContext

if TYPE_CHECKING:
    from typing_extensions import Self

    from targetwire.container_interface import IContainer

_MISSING: Any = object()


class ContainerScope:
    """Lifetime boundary for created instances.

    Instances handed to ``track`` are closed in reverse order when the scope
    closes: context managers through ``__exit__`` and other objects through
    their ``close`` method. Scoped targets keep one instance per scope here.
    """

    def __init__(self, container: IContainer, parent: ContainerScope | None = None) -> None:
        self._container = container
        self._parent = parent
        self._exit_stack = ExitStack()
        self._instances: dict[Any, Any] = {}
        self._lock = threading.RLock()
        self._closed = False

    @property
    def container(self) -> IContainer:
        return self._container

    @property
    def parent(self) -> ContainerScope | None:
        return self._parent

    @property
    def root(self) -> ContainerScope:
        scope = self
        while scope._parent is not None:
            scope = scope._parent
        return scope

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, instance: Any) -> None:
        """Close ``instance`` together with this scope if it is closeable."""
        if instance is self or instance is self._container or isinstance(instance, type):
            return
        with self._lock:
            if hasattr(instance, "__exit__"):
                self._exit_stack.push(instance)
            elif callable(getattr(instance, "close", None)):
                self._exit_stack.callback(instance.close)

    def get_or_add(self, key: Any, factory: Callable[[], Any]) -> Any:
        """Return the instance stored under ``key``, creating and tracking it once."""
        instance = self._instances.get(key, _MISSING)
        if instance is not _MISSING:
            return instance
        with self._lock:
            instance = self._instances.get(key, _MISSING)
            if instance is _MISSING:
                instance = factory()
                self._instances[key] = instance
                self.track(instance)
        return instance

    def resolve(self, service_type: Any) -> Any:
        """Resolve ``service_type`` with this scope as the active scope."""
        return self._container.resolve_context(
            ResolveContext(container=self._container, requested_type=service_type, scope=self),
        )

    def create_scope(self) -> ContainerScope:
        return ContainerScope(self._container, parent=self)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._instances.clear()
        self._exit_stack.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()
