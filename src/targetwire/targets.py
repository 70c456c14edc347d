"""Targets: registered recipes for producing instances.

A target knows which type it declares, which requested types it can satisfy,
and how to build a compiled factory for one of them inside a compile context.
"""

from __future__ import annotations

import collections.abc
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, get_args, get_origin

from targetwire._internal.dependencies import DependenciesExtractor, ParameterInfo
from targetwire._internal.type_model import (
    contains_typevar,
    find_generic_base,
    generic_definition,
    is_assignable,
    is_closed_generic,
    is_generic_definition,
    make_generic,
    map_generic_arguments,
    match_typevars,
    normalize_type,
    substitute_typevars,
)
from targetwire.compiled_targets import (
    CompiledFactory,
    ConstructorFactory,
    ContainerResolveFactory,
    DelegateFactory,
    AutoFactory,
    DynamicResolveFactory,
    EnumerableFactory,
    InstanceFactory,
    SameContainerCheck,
    ScopedFactory,
    SingletonFactory,
    TrackingFactory,
)
from targetwire.exceptions import (
    TargetWireInvalidGenericTypeArgumentError,
    TargetWireInvalidRegistrationError,
)

if TYPE_CHECKING:
    from targetwire.compilation import CompileContext, TargetCompiler

logger = logging.getLogger(__name__)

_dependencies_extractor = DependenciesExtractor()


class Target(ABC):
    """Base class for all targets."""

    use_fallback: bool = False

    @property
    @abstractmethod
    def declared_type(self) -> Any:
        """The type this target produces."""

    def supports_type(self, service_type: Any) -> bool:
        """Return whether this target can satisfy a request for ``service_type``."""
        return is_assignable(service_type, self.declared_type)

    @abstractmethod
    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        """Build the compiled factory for ``context.target_type``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.declared_type!r})"


class ObjectTarget(Target):
    """Target that always produces the same value."""

    def __init__(self, value: Any, declared_type: Any = None, *, use_fallback: bool = False) -> None:
        self.value = value
        self._declared_type = normalize_type(declared_type) if declared_type is not None else type(value)
        self.use_fallback = use_fallback

    @property
    def declared_type(self) -> Any:
        return self._declared_type

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        return InstanceFactory(self.value)


class CompiledTarget(Target):
    """Target wrapping a factory that is already compiled."""

    def __init__(self, factory: CompiledFactory, declared_type: Any) -> None:
        self.factory = factory
        self._declared_type = normalize_type(declared_type)

    @property
    def declared_type(self) -> Any:
        return self._declared_type

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        return self.factory


class _CallTarget(Target):
    """Shared dependency wiring for constructor and delegate targets."""

    def __init__(self, bindings: Mapping[str, Target] | None) -> None:
        self._bindings = dict(bindings or {})

    def _build_call(
        self,
        context: CompileContext,
        compiler: TargetCompiler,
        *,
        callable_: Callable[..., Any],
        parameters: Sequence[ParameterInfo],
        typevar_map: Mapping[Any, Any],
        factory_class: type[ConstructorFactory],
    ) -> CompiledFactory:
        positional: list[CompiledFactory] = []
        keyword: list[tuple[str, CompiledFactory]] = []
        for parameter in parameters:
            dependency_type = normalize_type(substitute_typevars(parameter.annotation, typevar_map))
            dependency = self._dependency_target(parameter, dependency_type)
            factory = compiler.compile(dependency, context.new_context(target_type=dependency_type))
            if parameter.is_positional_only:
                positional.append(factory)
            else:
                keyword.append((parameter.name, factory))

        compiled = factory_class(callable_, tuple(positional), tuple(keyword))
        if context.suppress_scope_tracking:
            return compiled
        return TrackingFactory(compiled)

    def _dependency_target(self, parameter: ParameterInfo, dependency_type: Any) -> Target:
        bound = self._bindings.get(parameter.name)
        if bound is not None:
            return bound

        # Generic argument injection: ``type[T]`` receives the bound class itself.
        if get_origin(dependency_type) is type and contains_typevar(parameter.annotation):
            (argument,) = get_args(dependency_type)
            return ObjectTarget(argument, dependency_type)

        fallback = ObjectTarget(parameter.default, dependency_type) if parameter.has_default else None
        return ResolvedTarget(dependency_type, fallback_target=fallback)


class ConstructorTarget(_CallTarget):
    """Target constructing a concrete class.

    ``implementation`` may be a plain class or a closed alias of a generic
    class; TypeVars in ``__init__`` hints are substituted from the alias.

    Args:
        implementation: Class or closed generic alias to construct.
        bindings: Explicit targets for individual ``__init__`` parameters.

    """

    def __init__(self, implementation: Any, *, bindings: Mapping[str, Target] | None = None) -> None:
        super().__init__(bindings)
        implementation = normalize_type(implementation)
        origin = get_origin(implementation) or implementation
        if not inspect.isclass(origin):
            msg = f"{implementation!r} is not a class and cannot be constructed."
            raise TargetWireInvalidRegistrationError(msg)
        if inspect.isabstract(origin):
            msg = f"{implementation!r} is abstract and cannot be constructed."
            raise TargetWireInvalidRegistrationError(msg)
        if is_generic_definition(implementation) or contains_typevar(implementation):
            msg = (
                f"{implementation!r} is an open generic definition; "
                "use GenericConstructorTarget or a closed alias instead."
            )
            raise TargetWireInvalidRegistrationError(msg)
        self._implementation = implementation
        self._origin = origin

    @property
    def declared_type(self) -> Any:
        return self._implementation

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        typevar_map: dict[Any, Any] = {}
        if get_origin(self._implementation) is not None:
            template = find_generic_base(self._origin, self._origin)
            typevar_map = match_typevars(template=template, concrete=self._implementation) or {}

        return self._build_call(
            context,
            compiler,
            callable_=self._origin,
            parameters=_dependencies_extractor.get_parameters(self._origin),
            typevar_map=typevar_map,
            factory_class=ConstructorFactory,
        )


class GenericConstructorTarget(Target):
    """Target constructing an open generic class closed over the requested type.

    The closed type is chosen at compile time from ``context.target_type``: it
    may be a closed alias of the definition itself or of any generic base the
    definition derives from.
    """

    def __init__(self, definition: Any, *, bindings: Mapping[str, Target] | None = None) -> None:
        definition = normalize_type(definition)
        if not is_generic_definition(definition):
            msg = f"{definition!r} is not an open generic definition."
            raise TargetWireInvalidRegistrationError(msg)
        if inspect.isabstract(definition):
            msg = f"{definition!r} is abstract and cannot be constructed."
            raise TargetWireInvalidRegistrationError(msg)
        self._definition = definition
        self._bindings = dict(bindings or {})
        self._closed_targets: dict[Any, ConstructorTarget] = {}
        self._lock = threading.Lock()

    @property
    def declared_type(self) -> Any:
        return self._definition

    def supports_type(self, service_type: Any) -> bool:
        service_type = normalize_type(service_type)
        definition = generic_definition(service_type)
        if definition is None:
            return is_assignable(service_type, self._definition)
        template = find_generic_base(self._definition, definition)
        if template is None:
            return False
        if not is_closed_generic(service_type):
            return True
        return match_typevars(template=template, concrete=service_type) is not None

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        requested = context.target_type
        arguments = map_generic_arguments(self._definition, requested) if requested is not None else None
        if arguments is None:
            msg = (
                f"Cannot construct {self._definition!r} for {requested!r}: "
                "the requested type does not carry the generic arguments."
            )
            raise TargetWireInvalidGenericTypeArgumentError(msg)

        closed = normalize_type(make_generic(self._definition, arguments))
        return compiler.compile(self._closed_target(closed), context.new_context(target_type=closed))

    def _closed_target(self, closed: Any) -> ConstructorTarget:
        target = self._closed_targets.get(closed)
        if target is None:
            with self._lock:
                target = self._closed_targets.setdefault(
                    closed,
                    ConstructorTarget(closed, bindings=self._bindings),
                )
        return target


class DelegateTarget(_CallTarget):
    """Target calling a factory function.

    The declared type defaults to the function's return annotation; the
    function's parameters are resolved like constructor parameters.
    """

    def __init__(
        self,
        factory: Callable[..., Any],
        declared_type: Any = None,
        *,
        bindings: Mapping[str, Target] | None = None,
    ) -> None:
        super().__init__(bindings)
        if not callable(factory):
            msg = f"{factory!r} is not callable."
            raise TargetWireInvalidRegistrationError(msg)
        if declared_type is None:
            declared_type = _dependencies_extractor.get_return_annotation(factory)
        if declared_type is None:
            msg = f"Cannot infer the produced type of {factory!r}; annotate its return type."
            raise TargetWireInvalidRegistrationError(msg)
        if contains_typevar(declared_type):
            msg = f"Factory {factory!r} must declare a closed return type, got {declared_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        self._factory = factory
        self._declared_type = normalize_type(declared_type)

    @property
    def declared_type(self) -> Any:
        return self._declared_type

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        return self._build_call(
            context,
            compiler,
            callable_=self._factory,
            parameters=_dependencies_extractor.get_parameters(self._factory),
            typevar_map={},
            factory_class=DelegateFactory,
        )


def decorator_target(decorator_type: Any, decorated_type: Any) -> Target:
    """Return the constructor target for ``decorator_type`` decorating ``decorated_type``.

    Raises:
        TargetWireInvalidRegistrationError: If the decorator cannot be
            constructed or does not implement the decorated type.

    """
    if is_generic_definition(decorator_type):
        decorator: Target = GenericConstructorTarget(decorator_type)
    else:
        decorator = ConstructorTarget(decorator_type)
    if not decorator.supports_type(decorated_type):
        msg = f"Decorator {decorator_type!r} does not implement {decorated_type!r}."
        raise TargetWireInvalidRegistrationError(msg)
    return decorator


class DecoratorTarget(Target):
    """Target wrapping another target's instance in a decorator class.

    The decorator is compiled in a child context where ``decorated_type`` is
    overridden by the already compiled inner target, so the decorator's own
    dependency on ``decorated_type`` receives the decorated instance. Both the
    decorated instance and the decorator are tracked by the active scope.
    """

    def __init__(
        self,
        decorator_type: Any,
        decorated_target: Target,
        decorated_type: Any,
        *,
        decorator: Target | None = None,
    ) -> None:
        decorated_type = normalize_type(decorated_type)
        if not decorated_target.supports_type(decorated_type):
            msg = f"{decorated_target!r} does not support {decorated_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        if decorator is None:
            decorator = decorator_target(decorator_type, decorated_type)
        self.decorator_type = decorator_type
        self.decorated_target = decorated_target
        self.decorated_type = decorated_type
        self._decorator = decorator

    @property
    def declared_type(self) -> Any:
        return self.decorated_type

    @property
    def use_fallback(self) -> bool:  # type: ignore[override]
        return self.decorated_target.use_fallback

    def supports_type(self, service_type: Any) -> bool:
        return self._decorator.supports_type(service_type)

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        requested = context.target_type if context.target_type is not None else self.decorated_type
        inner = compiler.compile(self.decorated_target, context.new_context(target_type=requested))
        child = context.new_context(target_type=requested)
        child.register(CompiledTarget(inner, requested), requested)
        return compiler.compile(self._decorator, child)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.decorator_type!r}, {self.decorated_target!r})"


class ResolvedTarget(Target):
    """Target standing for "whatever is registered for this type".

    Binding happens at compile time against the compile context, which sees
    overrides registered by enclosing targets first. When the bound target can
    be used directly its factory is inlined; otherwise the produced factory
    consults the call-time container before falling back.
    """

    def __init__(self, service_type: Any, fallback_target: Target | None = None) -> None:
        service_type = normalize_type(service_type)
        if fallback_target is not None and not fallback_target.supports_type(service_type):
            msg = f"Fallback {fallback_target!r} does not support {service_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        self._service_type = service_type
        self.fallback_target = fallback_target

    @property
    def declared_type(self) -> Any:
        return self._service_type

    def bind(self, context: CompileContext) -> Target | None:
        """Return the target to use for this lookup in ``context``."""
        from_context = context.fetch(self._service_type)
        if from_context is None:
            return self.fallback_target
        if from_context.use_fallback:
            return self.fallback_target or from_context
        return from_context

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        static_target = self.bind(context)
        if static_target is not None:
            static = compiler.compile(static_target, context.new_context(target_type=self._service_type))
            if not static_target.use_fallback:
                return static
        else:
            static = ContainerResolveFactory(context.container, self._service_type)

        is_same_container = context.get_or_add_shared(
            "is_same_container",
            lambda: SameContainerCheck(context.container),
            target_type=bool,
            requesting_type=ResolvedTarget,
        )
        return DynamicResolveFactory(self._service_type, static, is_same_container)


class SingletonTarget(Target):
    """Target producing one instance per closed type for the target's lifetime.

    Wrapping another singleton target adds nothing: the inner singleton's
    factory is used as is.
    """

    def __init__(self, inner: Target) -> None:
        self.inner = inner
        self._factories: dict[Any, SingletonFactory] = {}
        self._lock = threading.Lock()

    @property
    def declared_type(self) -> Any:
        return self.inner.declared_type

    def supports_type(self, service_type: Any) -> bool:
        return self.inner.supports_type(service_type)

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        if isinstance(self.inner, SingletonTarget):
            return compiler.compile(self.inner, context)
        key = context.target_type if context.target_type is not None else self.declared_type
        factory = self._factories.get(key)
        if factory is not None:
            return factory
        inner = compiler.compile(self.inner, context.new_context(suppress_scope_tracking=True))
        with self._lock:
            return self._factories.setdefault(key, SingletonFactory(inner))


class ScopedTarget(Target):
    """Target producing one instance per container scope."""

    def __init__(self, inner: Target) -> None:
        if isinstance(inner, (SingletonTarget, ScopedTarget)):
            msg = f"A scoped target cannot wrap {type(inner).__name__}."
            raise TargetWireInvalidRegistrationError(msg)
        self.inner = inner

    @property
    def declared_type(self) -> Any:
        return self.inner.declared_type

    def supports_type(self, service_type: Any) -> bool:
        return self.inner.supports_type(service_type)

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        key = (self, context.target_type)
        inner = compiler.compile(self.inner, context.new_context(suppress_scope_tracking=True))
        return ScopedFactory(inner, key)


class VariantMatchTarget(Target):
    """Target found through a variant candidate rather than the requested type.

    The inner target is compiled against the type it was registered for.
    """

    def __init__(self, target: Target, requested_type: Any, registered_type: Any) -> None:
        self.target = target
        self.requested_type = requested_type
        self.registered_type = registered_type

    @classmethod
    def wrap(cls, target: Target, requested_type: Any, registered_type: Any) -> Target:
        """Wrap ``target`` when it was found under a different type than requested."""
        if requested_type == registered_type or isinstance(target, (cls, ObjectTarget, CompiledTarget)):
            return target
        logger.debug("Variant match: %r satisfied by target registered for %r", requested_type, registered_type)
        return cls(target, requested_type, registered_type)

    @property
    def declared_type(self) -> Any:
        return self.target.declared_type

    @property
    def use_fallback(self) -> bool:  # type: ignore[override]
        return self.target.use_fallback

    def supports_type(self, service_type: Any) -> bool:
        return self.target.supports_type(service_type)

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        return compiler.compile(self.target, context.new_context(target_type=self.registered_type))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.target!r}, {self.requested_type!r} <- {self.registered_type!r})"


class EnumerableTarget(Target):
    """Target producing a tuple of every instance registered for an element type.

    An empty enumerable is only a placeholder: it asks for the fallback
    provider to be tried first.
    """

    def __init__(self, element_type: Any, targets: Iterable[Target]) -> None:
        self.element_type = normalize_type(element_type)
        self.targets = tuple(targets)
        self.use_fallback = not self.targets

    @property
    def declared_type(self) -> Any:
        return make_generic(Iterable, (self.element_type,))

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        factories = tuple(
            compiler.compile(target, context.new_context(target_type=self.element_type))
            for target in self.targets
        )
        return EnumerableFactory(factories)


class CollectionTarget(EnumerableTarget):
    """Target producing a ``list[X]`` or ``tuple[X, ...]`` of every instance registered for ``X``."""

    def __init__(self, collection_type: type, element_type: Any, targets: Iterable[Target]) -> None:
        if collection_type not in (list, tuple):
            msg = f"Cannot build a collection of type {collection_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        super().__init__(element_type, targets)
        self.collection_type = collection_type

    @property
    def declared_type(self) -> Any:
        if self.collection_type is tuple:
            return make_generic(tuple, (self.element_type, ...))
        return make_generic(list, (self.element_type,))

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        factories = tuple(
            compiler.compile(target, context.new_context(target_type=self.element_type))
            for target in self.targets
        )
        return EnumerableFactory(factories, self.collection_type)


class AutoFactoryTarget(Target):
    """Target producing a ``Callable[[], X]`` that resolves ``X`` whenever it is called."""

    def __init__(self, service_type: Any) -> None:
        service_type = normalize_type(service_type)
        if contains_typevar(service_type):
            msg = f"Cannot build a factory for open type {service_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        self.service_type = service_type

    @property
    def declared_type(self) -> Any:
        return collections.abc.Callable[[], self.service_type]

    def supports_type(self, service_type: Any) -> bool:
        return auto_factory_result(service_type) == self.service_type

    def build(self, context: CompileContext, compiler: TargetCompiler) -> CompiledFactory:
        return AutoFactory(self.service_type)


def collection_element(service_type: Any) -> Any | None:
    """Return ``X`` for ``list[X]`` and ``tuple[X, ...]``, else ``None``."""
    origin = get_origin(service_type)
    arguments = get_args(service_type)
    if origin is list and len(arguments) == 1:
        return arguments[0]
    if origin is tuple and len(arguments) == 2 and arguments[1] is Ellipsis:
        return arguments[0]
    return None


def auto_factory_result(service_type: Any) -> Any | None:
    """Return ``X`` for ``Callable[[], X]``, else ``None``."""
    if get_origin(service_type) is not collections.abc.Callable:
        return None
    arguments = get_args(service_type)
    if len(arguments) != 2 or arguments[0] != []:
        return None
    return normalize_type(arguments[1])
