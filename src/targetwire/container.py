from __future__ import annotations

import logging
import threading
import types
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from targetwire._internal.type_model import is_generic_definition, normalize_type
from targetwire.compilation import CompileContext, TargetCompiler
from targetwire.compiled_targets import CompiledFactory, UnresolvedTypeFactory, is_unresolved
from targetwire.container_interface import IContainer
from targetwire.registry import OverridingTargetRegistry, TargetRegistry, TargetRegistryOptions
from targetwire.resolve_context import ResolveContext
from targetwire.scope import ContainerScope
from targetwire.targets import (
    ConstructorTarget,
    DelegateTarget,
    GenericConstructorTarget,
    ObjectTarget,
    ScopedTarget,
    SingletonTarget,
    Target,
)

if TYPE_CHECKING:
    from typing_extensions import Self

logger = logging.getLogger(__name__)


class ResolutionCache:
    """Per-type cache of compiled factories.

    ``get`` computes each entry at most once even under concurrent callers of
    the same key; callers of other keys are never blocked. A failed
    computation leaves no entry behind.
    """

    def __init__(self, create_factory: Callable[[Any], CompiledFactory]) -> None:
        self._create_factory = create_factory
        self._entries: dict[Any, CompiledFactory] = {}
        self._locks: dict[Any, threading.RLock] = {}
        self._locks_lock = threading.Lock()

    def __contains__(self, service_type: Any) -> bool:
        return service_type in self._entries

    def get(self, service_type: Any) -> CompiledFactory:
        factory = self._entries.get(service_type)
        if factory is not None:
            return factory

        with self._get_lock(service_type):
            factory = self._entries.get(service_type)
            if factory is None:
                factory = self._create_factory(service_type)
                self._entries[service_type] = factory
        return factory

    def _get_lock(self, service_type: Any) -> threading.RLock:
        lock = self._locks.get(service_type)
        if lock is not None:
            return lock
        with self._locks_lock:
            return self._locks.setdefault(service_type, threading.RLock())


class Container(IContainer):
    """Dependency resolution container.

    Targets are registered first; the first resolution freezes the registry.
    Each requested type is compiled once into a factory and cached.

    Args:
        allow_multiple: Allow more than one target per service type.
        fetch_all_matching_generics: Gather enumerable members from every
            matching generic candidate instead of stopping at the first.
        enable_contravariance: Allow contravariant candidate searches.

    """

    def __init__(
        self,
        *,
        allow_multiple: bool = True,
        fetch_all_matching_generics: bool = False,
        enable_contravariance: bool = True,
    ) -> None:
        self._options = TargetRegistryOptions(
            allow_multiple=allow_multiple,
            fetch_all_matching_generics=fetch_all_matching_generics,
            enable_contravariance=enable_contravariance,
        )
        self._targets = self._create_registry(self._options)
        self._compiler = TargetCompiler()
        self._cache = ResolutionCache(self._create_factory)
        self._root_scope = ContainerScope(self)

    @property
    def targets(self) -> TargetRegistry:
        return self._targets

    @property
    def options(self) -> TargetRegistryOptions:
        return self._options

    def register(self, target: Target, service_type: Any = None) -> None:
        """Register ``target`` for ``service_type`` (its declared type by default)."""
        self._targets.register(target, service_type)

    def register_type(self, implementation: Any, service_type: Any = None) -> Target:
        """Register a constructor target for ``implementation``.

        Open generic definitions get a generic constructor target.
        """
        target = self._constructor_target(implementation)
        self.register(target, service_type)
        return target

    def register_instance(self, instance: Any, service_type: Any = None) -> Target:
        target = ObjectTarget(instance, service_type)
        self.register(target, service_type)
        return target

    def register_factory(self, factory: Callable[..., Any], service_type: Any = None) -> Target:
        target = DelegateTarget(factory, service_type)
        self.register(target, service_type)
        return target

    def register_singleton(self, implementation: Any, service_type: Any = None) -> Target:
        target = SingletonTarget(self._constructor_target(implementation))
        self.register(target, service_type)
        return target

    def register_scoped(self, implementation: Any, service_type: Any = None) -> Target:
        target = ScopedTarget(self._constructor_target(implementation))
        self.register(target, service_type)
        return target

    def register_decorator(self, decorator_type: Any, decorated_type: Any) -> None:
        """Wrap everything resolved for ``decorated_type`` in ``decorator_type``."""
        self._targets.decorate(decorator_type, decorated_type)

    def disable_contravariance(self, service_type: Any) -> None:
        self._targets.disable_contravariance(service_type)

    def fetch(self, service_type: Any) -> Target | None:
        return self._targets.fetch(service_type)

    def fetch_all(self, service_type: Any) -> list[Target]:
        return self._targets.fetch_all(service_type)

    def get_factory(self, service_type: Any) -> CompiledFactory:
        """Return the compiled factory for ``service_type``, compiling it on first use."""
        if not self._targets.frozen:
            self._targets.freeze()
        return self._cache.get(normalize_type(service_type))

    def can_resolve(self, service_type: Any) -> bool:
        if self._targets.fetch(service_type) is not None:
            return True
        return not is_unresolved(self._get_fallback_factory(normalize_type(service_type)))

    def resolve(self, service_type: Any) -> Any:
        return self.resolve_context(
            ResolveContext(container=self, requested_type=service_type, scope=self._root_scope),
        )

    def try_resolve(self, service_type: Any) -> tuple[bool, Any]:
        factory = self.get_factory(service_type)
        if is_unresolved(factory):
            return False, None
        context = ResolveContext(container=self, requested_type=service_type, scope=self._root_scope)
        return True, factory(context)

    def resolve_context(self, context: ResolveContext) -> Any:
        return self.get_factory(context.requested_type)(context)

    def create_scope(self) -> ContainerScope:
        return self._root_scope.create_scope()

    def close(self) -> None:
        """Close every instance tracked by the root scope, singletons included."""
        self._root_scope.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def _create_registry(self, options: TargetRegistryOptions) -> TargetRegistry:
        return TargetRegistry(options)

    def _create_factory(self, service_type: Any) -> CompiledFactory:
        target = self._targets.fetch(service_type)
        if target is None:
            return self._get_fallback_factory(service_type)

        if target.use_fallback:
            fallback = self._get_fallback_factory(service_type)
            if not is_unresolved(fallback):
                return fallback

        context = CompileContext(self, self._targets, service_type)
        return self._compiler.compile(target, context)

    def _get_fallback_factory(self, service_type: Any) -> CompiledFactory:
        return UnresolvedTypeFactory(service_type)

    def _constructor_target(self, implementation: Any) -> Target:
        if is_generic_definition(implementation):
            return GenericConstructorTarget(implementation)
        return ConstructorTarget(implementation)


class OverridingContainer(Container):
    """Container layering its own registrations over another container's.

    Types without a registration in either layer fall back to the inner
    container's own factories.
    """

    def __init__(
        self,
        inner: Container,
        *,
        allow_multiple: bool | None = None,
        fetch_all_matching_generics: bool | None = None,
        enable_contravariance: bool | None = None,
    ) -> None:
        self._inner = inner
        options = inner.options
        super().__init__(
            allow_multiple=options.allow_multiple if allow_multiple is None else allow_multiple,
            fetch_all_matching_generics=(
                options.fetch_all_matching_generics
                if fetch_all_matching_generics is None
                else fetch_all_matching_generics
            ),
            enable_contravariance=(
                options.enable_contravariance if enable_contravariance is None else enable_contravariance
            ),
        )

    @property
    def inner(self) -> Container:
        return self._inner

    def _create_registry(self, options: TargetRegistryOptions) -> TargetRegistry:
        return OverridingTargetRegistry(self._inner.targets, options)

    def _get_fallback_factory(self, service_type: Any) -> CompiledFactory:
        return self._inner.get_factory(service_type)
