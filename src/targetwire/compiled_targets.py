"""Compiled factories produced from targets.

Targets are compiled once per requested type into these small callables.
Every factory takes the call-time ``ResolveContext`` and returns an instance,
so resolution does no reflection and no registry lookups.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, Protocol

from targetwire.exceptions import TargetWireResolutionError

if TYPE_CHECKING:
    from targetwire.container_interface import IContainer
    from targetwire.resolve_context import ResolveContext

_MISSING: Any = object()


class CompiledFactory(Protocol):
    """Protocol for compiled factories."""

    def __call__(self, context: ResolveContext) -> Any:
        """Resolve and return an instance."""
        ...


class InstanceFactory:
    """Factory returning a pre-built value."""

    __slots__ = ("_instance",)

    def __init__(self, instance: Any) -> None:
        self._instance = instance

    def __call__(self, context: ResolveContext) -> Any:
        return self._instance


class ConstructorFactory:
    """Factory calling a class with pre-compiled dependency factories."""

    __slots__ = ("_callable", "_keyword", "_positional")

    def __init__(
        self,
        callable_: Callable[..., Any],
        positional: tuple[CompiledFactory, ...] = (),
        keyword: tuple[tuple[str, CompiledFactory], ...] = (),
    ) -> None:
        self._callable = callable_
        self._positional = positional
        self._keyword = keyword

    def __call__(self, context: ResolveContext) -> Any:
        args = [factory(context) for factory in self._positional]
        kwargs = {name: factory(context) for name, factory in self._keyword}
        return self._callable(*args, **kwargs)


class DelegateFactory(ConstructorFactory):
    """Factory calling a plain function with pre-compiled dependency factories."""

    __slots__ = ()


class TrackingFactory:
    """Hand every created instance to the active scope for cleanup."""

    __slots__ = ("_inner",)

    def __init__(self, inner: CompiledFactory) -> None:
        self._inner = inner

    def __call__(self, context: ResolveContext) -> Any:
        instance = self._inner(context)
        if context.scope is not None:
            context.scope.track(instance)
        return instance


class SingletonFactory:
    """Factory for singletons.

    Stores the instance directly in the factory for the fastest possible cache
    hit; creation is serialised by a lock and tracked by the root scope.
    """

    __slots__ = ("_inner", "_instance", "_lock")

    def __init__(self, inner: CompiledFactory) -> None:
        self._inner = inner
        self._instance: Any = _MISSING
        self._lock = threading.Lock()

    def __call__(self, context: ResolveContext) -> Any:
        instance = self._instance
        if instance is not _MISSING:
            return instance
        with self._lock:
            if self._instance is _MISSING:
                instance = self._inner(context)
                if context.scope is not None:
                    context.scope.root.track(instance)
                self._instance = instance
        return self._instance


class ScopedFactory:
    """Factory keeping one instance per scope.

    Without an active scope every call creates a new instance.
    """

    __slots__ = ("_inner", "_key")

    def __init__(self, inner: CompiledFactory, key: Any) -> None:
        self._inner = inner
        self._key = key

    def __call__(self, context: ResolveContext) -> Any:
        scope = context.scope
        if scope is None:
            return self._inner(context)
        return scope.get_or_add(self._key, lambda: self._inner(context))


class SameContainerCheck:
    """Tell whether a call arrives through the container that compiled the factory."""

    __slots__ = ("_container",)

    def __init__(self, container: IContainer) -> None:
        self._container = container

    def __call__(self, context: ResolveContext) -> bool:
        return context.container is self._container


class ContainerResolveFactory:
    """Defer to a container's own resolution of ``service_type`` at call time."""

    __slots__ = ("_container", "_service_type")

    def __init__(self, container: IContainer, service_type: Any) -> None:
        self._container = container
        self._service_type = service_type

    def __call__(self, context: ResolveContext) -> Any:
        return self._container.resolve_context(context.new_context(requested_type=self._service_type))


class DynamicResolveFactory:
    """Prefer the call-time container's registration over the compiled one.

    When the call arrives through the compiling container the static factory
    runs directly. Otherwise the call-time container is asked first, and the
    static factory is used only if it cannot resolve ``service_type``.
    """

    __slots__ = ("_is_same_container", "_service_type", "_static")

    def __init__(
        self,
        service_type: Any,
        static: CompiledFactory,
        is_same_container: Callable[[ResolveContext], bool],
    ) -> None:
        self._service_type = service_type
        self._static = static
        self._is_same_container = is_same_container

    def __call__(self, context: ResolveContext) -> Any:
        context = context.new_context(requested_type=self._service_type)
        if self._is_same_container(context):
            return self._static(context)
        if context.container.can_resolve(self._service_type):
            return context.container.resolve_context(context)
        return self._static(context)


class EnumerableFactory:
    """Factory building a collection from element factories, in registration order.

    The collection is a tuple unless another collection type is given.
    """

    __slots__ = ("_collection", "_factories")

    def __init__(
        self,
        factories: tuple[CompiledFactory, ...],
        collection: Callable[[Iterable[Any]], Any] = tuple,
    ) -> None:
        self._factories = factories
        self._collection = collection

    def __call__(self, context: ResolveContext) -> Any:
        return self._collection(factory(context) for factory in self._factories)


class AutoFactory:
    """Factory producing a zero-argument callable that resolves ``service_type``.

    Each call of the produced callable goes through the call-time container
    and scope, so lifetimes are honoured per call.
    """

    __slots__ = ("_service_type",)

    def __init__(self, service_type: Any) -> None:
        self._service_type = service_type

    def __call__(self, context: ResolveContext) -> Callable[[], Any]:
        resolve_context = context.new_context(requested_type=self._service_type)

        def create() -> Any:
            return resolve_context.container.resolve_context(resolve_context)

        return create


class UnresolvedTypeFactory:
    """Placeholder factory for a type without any target."""

    __slots__ = ("requested_type",)

    def __init__(self, requested_type: Any) -> None:
        self.requested_type = requested_type

    def __call__(self, context: ResolveContext) -> Any:
        raise TargetWireResolutionError(self.requested_type)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.requested_type!r})"


def is_unresolved(factory: Any) -> bool:
    return isinstance(factory, UnresolvedTypeFactory)
