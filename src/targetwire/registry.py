"""Target registry.

Maps service types to targets. Plain types map to a ``TargetList``; open
generic definitions and their closed instantiations share one
``GenericTargetFamily`` which runs the candidate search on every fetch.
"""

from __future__ import annotations

import collections.abc
import logging
from dataclasses import dataclass
from typing import Any, Protocol, get_args, get_origin

from targetwire._internal.known_types import KnownTypesIndex
from targetwire._internal.type_model import (
    contains_typevar,
    generic_definition,
    is_closed_generic,
    is_generic_definition,
    normalize_type,
    type_arguments,
)
from targetwire._internal.type_selector import TargetTypeSelector
from targetwire.exceptions import (
    TargetWireInvalidRegistrationError,
    TargetWireRegistrationClosedError,
)
from targetwire.targets import (
    AutoFactoryTarget,
    CollectionTarget,
    DecoratorTarget,
    EnumerableTarget,
    Target,
    VariantMatchTarget,
    auto_factory_result,
    collection_element,
    decorator_target,
)

logger = logging.getLogger(__name__)


class TargetSource(Protocol):
    """Anything targets can be fetched from."""

    def fetch(self, service_type: Any) -> Target | None: ...

    def fetch_all(self, service_type: Any) -> list[Target]: ...


class TargetNode(Protocol):
    """A registry entry for one key."""

    def register(self, target: Target, service_type: Any) -> None: ...

    def fetch(self, service_type: Any) -> Target | None: ...

    def fetch_all(self, service_type: Any) -> list[Target]: ...


@dataclass(frozen=True, slots=True, kw_only=True)
class TargetRegistryOptions:
    """Registry behaviour switches.

    Attributes:
        allow_multiple: Allow more than one target per service type.
        fetch_all_matching_generics: Make ``fetch_all`` gather targets from
            every matching generic candidate instead of stopping at the first.
        enable_contravariance: Allow contravariant candidate searches.

    """

    allow_multiple: bool = True
    fetch_all_matching_generics: bool = False
    enable_contravariance: bool = True


class TargetList:
    """Targets registered for one exact type, in registration order."""

    def __init__(self, registered_type: Any, *, allow_multiple: bool = True) -> None:
        self.registered_type = registered_type
        self._allow_multiple = allow_multiple
        self._targets: list[Target] = []

    @property
    def targets(self) -> tuple[Target, ...]:
        return tuple(self._targets)

    def register(self, target: Target, service_type: Any = None) -> None:
        if self._targets and not self._allow_multiple:
            msg = f"A target is already registered for {self.registered_type!r} and multiple registrations are disabled."
            raise TargetWireInvalidRegistrationError(msg)
        self._targets.append(target)

    def fetch(self, service_type: Any) -> Target | None:
        if not self._targets:
            return None
        return self._targets[-1]

    def fetch_all(self, service_type: Any) -> list[Target]:
        return list(self._targets)


class GenericTargetFamily:
    """Targets for one open generic definition and all its closed instantiations."""

    def __init__(self, root: TargetRegistry, definition: Any, *, open_targets: TargetList | None = None) -> None:
        if not isinstance(definition, type):
            msg = f"{definition!r} is not a generic type definition."
            raise TargetWireInvalidRegistrationError(msg)
        self._root = root
        self.definition = definition
        self._open = open_targets or TargetList(definition, allow_multiple=root.options.allow_multiple)
        self._closed: dict[Any, TargetNode] = {}

    def register(self, target: Target, service_type: Any = None) -> None:
        service_type = normalize_type(service_type if service_type is not None else target.declared_type)
        if service_type == self.definition:
            self._open.register(target, service_type)
            return
        self._closed_node(service_type).register(target, service_type)

    def fetch(self, service_type: Any) -> Target | None:
        target = self._fetch_closed(service_type)
        if target is not None:
            return target
        return self._open.fetch(service_type)

    def fetch_all(self, service_type: Any) -> list[Target]:
        found: list[Target] = []
        for candidate in self._candidates(service_type):
            node = self._closed.get(candidate)
            if node is None:
                continue
            targets = node.fetch_all(candidate)
            found.extend(VariantMatchTarget.wrap(target, service_type, candidate) for target in targets)
            if targets and not self._root.options.fetch_all_matching_generics:
                break
        found.extend(self._open.fetch_all(service_type))
        return found

    def decorate_closed(self, decorating: DecoratingNode) -> None:
        node = self._closed_node(decorating.decorated_type)
        self._closed[decorating.decorated_type] = decorating.combine_with(node)

    def _closed_node(self, service_type: Any) -> TargetNode:
        if not is_closed_generic(service_type) or generic_definition(service_type) != self.definition:
            msg = f"{service_type!r} is not a closed instantiation of {self.definition!r}."
            raise TargetWireInvalidRegistrationError(msg)
        node = self._closed.get(service_type)
        if node is None:
            node = TargetList(service_type, allow_multiple=self._root.options.allow_multiple)
            self._closed[service_type] = node
        return node

    def _fetch_closed(self, service_type: Any) -> Target | None:
        for candidate in self._candidates(service_type):
            node = self._closed.get(candidate)
            if node is None:
                continue
            target = node.fetch(candidate)
            if target is not None:
                return VariantMatchTarget.wrap(target, service_type, candidate)
        return None

    def _candidates(self, service_type: Any) -> list[Any]:
        if not is_closed_generic(service_type):
            return []
        candidates = []
        for candidate in self._root.select_types(service_type):
            if candidate == self.definition:
                break
            candidates.append(candidate)
        return candidates


class EnumerableTargetFamily(GenericTargetFamily):
    """Family for ``Iterable[X]`` requests.

    Without an explicit registration the family answers with an
    ``EnumerableTarget`` over everything registered for ``X``.
    """

    def __init__(self, root: TargetRegistry) -> None:
        super().__init__(root, collections.abc.Iterable)

    def fetch(self, service_type: Any) -> Target | None:
        target = super().fetch(service_type)
        if target is not None or not is_closed_generic(service_type):
            return target
        (element_type,) = type_arguments(service_type)
        return EnumerableTarget(element_type, self._root.fetch_all(element_type))


class CollectionTargetFamily(GenericTargetFamily):
    """Family for ``list[X]`` and ``tuple[X, ...]`` requests.

    Explicit registrations win; otherwise the family builds the collection
    from everything registered for ``X``.
    """

    def fetch(self, service_type: Any) -> Target | None:
        if not is_closed_generic(service_type):
            return self._open.fetch(service_type)
        target = self._fetch_closed(service_type)
        if target is not None:
            return target
        element_type = collection_element(service_type)
        if element_type is None:
            return None
        return CollectionTarget(self.definition, element_type, self._root.fetch_all(element_type))


class AutoFactoryTargetFamily:
    """Node for ``Callable[[], X]`` requests.

    Registrations are kept per exact signature. Without one, a factory that
    resolves ``X`` on every call is synthesised.
    """

    def __init__(self, root: TargetRegistry) -> None:
        self._root = root
        self._targets: dict[Any, TargetList] = {}

    def register(self, target: Target, service_type: Any = None) -> None:
        service_type = service_type if service_type is not None else target.declared_type
        key = _signature_key(service_type)
        targets = self._targets.get(key)
        if targets is None:
            targets = TargetList(service_type, allow_multiple=self._root.options.allow_multiple)
            self._targets[key] = targets
        targets.register(target, service_type)

    def fetch(self, service_type: Any) -> Target | None:
        targets = self._targets.get(_signature_key(service_type))
        target = targets.fetch(service_type) if targets is not None else None
        if target is not None:
            return target
        result_type = auto_factory_result(service_type)
        if result_type is None or contains_typevar(result_type):
            return None
        return AutoFactoryTarget(result_type)

    def fetch_all(self, service_type: Any) -> list[Target]:
        targets = self._targets.get(_signature_key(service_type))
        return targets.fetch_all(service_type) if targets is not None else []


def _signature_key(service_type: Any) -> Any:
    arguments = get_args(service_type)
    if len(arguments) != 2:
        return service_type
    parameters, result = arguments
    if isinstance(parameters, list):
        parameters = tuple(normalize_type(parameter) for parameter in parameters)
    return (parameters, normalize_type(result))


class DecoratingNode:
    """Node decorating every target fetched from the node it wraps."""

    def __init__(self, decorator_type: Any, decorated_type: Any) -> None:
        decorated_type = normalize_type(decorated_type)
        self._decorator = decorator_target(decorator_type, decorated_type)
        self.decorator_type = decorator_type
        self.decorated_type = decorated_type
        self.inner: TargetNode | None = None

    def combine_with(self, existing: TargetNode) -> DecoratingNode:
        if self.inner is not None:
            msg = f"Decorator {self.decorator_type!r} is already decorating {self.decorated_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        self.inner = existing
        return self

    def register(self, target: Target, service_type: Any = None) -> None:
        self._inner.register(target, service_type)

    def fetch(self, service_type: Any) -> Target | None:
        target = self._inner.fetch(service_type)
        if target is None:
            return None
        return self._decorate(target, service_type)

    def fetch_all(self, service_type: Any) -> list[Target]:
        return [self._decorate(target, service_type) for target in self._inner.fetch_all(service_type)]

    def _decorate(self, target: Target, service_type: Any) -> Target:
        # Decorators only apply to the types they implement.
        if not self._decorator.supports_type(service_type):
            return target
        return DecoratorTarget(self.decorator_type, target, service_type, decorator=self._decorator)

    def decorate_closed(self, decorating: DecoratingNode) -> None:
        self._inner.decorate_closed(decorating)  # type: ignore[attr-defined]

    @property
    def family(self) -> GenericTargetFamily | None:
        node = self.inner
        while isinstance(node, DecoratingNode):
            node = node.inner
        return node if isinstance(node, GenericTargetFamily) else None

    @property
    def _inner(self) -> TargetNode:
        if self.inner is None:
            msg = f"Decorator {self.decorator_type!r} has nothing to decorate."
            raise TargetWireInvalidRegistrationError(msg)
        return self.inner


class TargetRegistry:
    """Root registry of targets.

    Registration happens in a first phase; ``freeze`` ends it, after which the
    registry is only read and ``register`` raises
    ``TargetWireRegistrationClosedError``. Fetch results are memoised per exact
    requested type and the memo is cleared on every registration.
    """

    def __init__(self, options: TargetRegistryOptions | None = None) -> None:
        self.options = options or TargetRegistryOptions()
        self.known_types = KnownTypesIndex()
        self._nodes: dict[Any, TargetNode] = {}
        self._fetch_cache: dict[Any, Target | None] = {}
        self._contravariance_disabled: set[Any] = set()
        self._frozen = False
        self._nodes[collections.abc.Iterable] = EnumerableTargetFamily(self)
        self._nodes[list] = CollectionTargetFamily(self, list)
        self._nodes[tuple] = CollectionTargetFamily(self, tuple)
        self._nodes[collections.abc.Callable] = AutoFactoryTargetFamily(self)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, target: Target, service_type: Any = None) -> None:
        """Register ``target`` for ``service_type`` (its declared type by default)."""
        self._ensure_open()
        service_type = normalize_type(service_type if service_type is not None else target.declared_type)
        if contains_typevar(service_type) and not is_generic_definition(service_type):
            msg = f"Cannot register against partially open type {service_type!r}."
            raise TargetWireInvalidRegistrationError(msg)
        if not target.supports_type(service_type):
            msg = f"{target!r} does not support {service_type!r}."
            raise TargetWireInvalidRegistrationError(msg)

        self._ensure_node(service_type).register(target, service_type)
        self.known_types.add(service_type)
        self._fetch_cache.clear()

    def fetch(self, service_type: Any) -> Target | None:
        """Return the best target for ``service_type``, or ``None``."""
        service_type = normalize_type(service_type)
        try:
            return self._fetch_cache[service_type]
        except KeyError:
            pass

        node = self._nodes.get(self._node_key(service_type))
        target = node.fetch(service_type) if node is not None else None
        if target is None:
            logger.debug("No target registered for %r", service_type)
        self._fetch_cache[service_type] = target
        return target

    def fetch_all(self, service_type: Any) -> list[Target]:
        service_type = normalize_type(service_type)
        node = self._nodes.get(self._node_key(service_type))
        if node is None:
            return []
        return node.fetch_all(service_type)

    def decorate(self, decorator_type: Any, decorated_type: Any) -> None:
        """Decorate every target fetched for ``decorated_type`` with ``decorator_type``.

        Decorating the same type again chains decorators; the newest
        decorator is outermost.
        """
        self._ensure_open()
        decorating = DecoratingNode(decorator_type, decorated_type)
        decorated_type = decorating.decorated_type
        if is_closed_generic(decorated_type):
            family = self._family(self._ensure_node(decorated_type))
            family.decorate_closed(decorating)
        else:
            key = self._node_key(decorated_type)
            existing = self._ensure_node(decorated_type)
            self._nodes[key] = decorating.combine_with(existing)
        self._fetch_cache.clear()

    def disable_contravariance(self, service_type: Any) -> None:
        """Disable contravariant searches for ``service_type`` and its subclasses."""
        self._ensure_open()
        self._contravariance_disabled.add(normalize_type(service_type))
        self._fetch_cache.clear()

    def is_contravariance_enabled(self, service_type: Any) -> bool:
        if not self.options.enable_contravariance:
            return False
        if not self._contravariance_disabled:
            return True
        definition = generic_definition(service_type)
        if service_type in self._contravariance_disabled or definition in self._contravariance_disabled:
            return False
        mro = getattr(definition or service_type, "__mro__", ())
        return not any(cls in self._contravariance_disabled for cls in mro)

    def select_types(self, service_type: Any) -> TargetTypeSelector:
        return TargetTypeSelector(
            service_type,
            contravariance_enabled=self.is_contravariance_enabled,
            known_types=self.known_types,
        )

    def freeze(self) -> None:
        if self._frozen:
            return
        self._frozen = True
        logger.info(
            "Target registry frozen: registered_keys=%d known_types=%d",
            len(self._nodes),
            len(self.known_types),
        )

    def _ensure_open(self) -> None:
        if self._frozen:
            msg = "The target registry is frozen; register targets before the first resolution."
            raise TargetWireRegistrationClosedError(msg)

    def _node_key(self, service_type: Any) -> Any:
        if get_origin(service_type) is collections.abc.Callable:
            return collections.abc.Callable
        definition = generic_definition(service_type)
        return definition if definition is not None else service_type

    def _ensure_node(self, service_type: Any) -> TargetNode:
        definition = generic_definition(service_type)
        key = self._node_key(service_type)
        node = self._nodes.get(key)
        if node is None:
            if definition is not None:
                node = GenericTargetFamily(self, definition)
            else:
                node = TargetList(key, allow_multiple=self.options.allow_multiple)
            self._nodes[key] = node
        elif definition is not None and isinstance(node, TargetList):
            node = GenericTargetFamily(self, definition, open_targets=node)
            self._nodes[key] = node
        return node

    def _family(self, node: TargetNode) -> GenericTargetFamily:
        if isinstance(node, GenericTargetFamily):
            return node
        if isinstance(node, DecoratingNode) and node.family is not None:
            return node.family
        msg = f"{node!r} does not hold generic targets."
        raise TargetWireInvalidRegistrationError(msg)


class OverridingTargetRegistry(TargetRegistry):
    """Registry layer whose own targets win over a parent's.

    ``fetch_all`` returns the parent's targets followed by the layer's own.
    """

    def __init__(self, parent: TargetSource, options: TargetRegistryOptions | None = None) -> None:
        super().__init__(options)
        self.parent = parent

    def fetch(self, service_type: Any) -> Target | None:
        own = super().fetch(service_type)
        if own is not None and not own.use_fallback:
            return own
        inherited = self.parent.fetch(service_type)
        return inherited if inherited is not None else own

    def fetch_all(self, service_type: Any) -> list[Target]:
        return [*self.parent.fetch_all(service_type), *super().fetch_all(service_type)]
