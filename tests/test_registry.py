from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

import pytest

from targetwire.exceptions import (
    TargetWireInvalidRegistrationError,
    TargetWireRegistrationClosedError,
)
from targetwire.registry import (
    DecoratingNode,
    OverridingTargetRegistry,
    TargetList,
    TargetRegistry,
    TargetRegistryOptions,
)
from targetwire.targets import (
    AutoFactoryTarget,
    CollectionTarget,
    ConstructorTarget,
    DecoratorTarget,
    EnumerableTarget,
    GenericConstructorTarget,
    ObjectTarget,
    VariantMatchTarget,
)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)


class _Base:
    pass


class _Derived(_Base):
    pass


class _IBox(Generic[T]):
    pass


class _Box(_IBox[T]):
    pass


class _IConsumer(Generic[T_contra]):
    pass


class _BaseConsumer(_IConsumer[_Base]):
    pass


class _DerivedConsumer(_IConsumer[_Derived]):
    pass


class _Service:
    pass


class _ServiceImpl(_Service):
    pass


class _LoggingService(_Service):
    def __init__(self, inner: _Service) -> None:
        self.inner = inner


class _CachingService(_Service):
    def __init__(self, inner: _Service) -> None:
        self.inner = inner


def test_fetch_returns_latest_and_fetch_all_keeps_order(registry: TargetRegistry) -> None:
    first = ObjectTarget(_Base())
    second = ObjectTarget(_Base())
    registry.register(first)
    registry.register(second)

    assert registry.fetch(_Base) is second
    assert registry.fetch_all(_Base) == [first, second]


def test_fetch_unknown_type_returns_none(registry: TargetRegistry) -> None:
    assert registry.fetch(_Base) is None
    assert registry.fetch_all(_Base) == []


def test_fetch_memo_is_cleared_on_registration(registry: TargetRegistry) -> None:
    assert registry.fetch(_Base) is None

    target = ObjectTarget(_Base())
    registry.register(target)

    assert registry.fetch(_Base) is target


def test_multiple_registrations_rejected_when_disabled() -> None:
    registry = TargetRegistry(TargetRegistryOptions(allow_multiple=False))
    registry.register(ObjectTarget(_Base()))

    with pytest.raises(TargetWireInvalidRegistrationError, match="multiple registrations are disabled"):
        registry.register(ObjectTarget(_Base()))


def test_register_rejects_unsupported_service_type(registry: TargetRegistry) -> None:
    with pytest.raises(TargetWireInvalidRegistrationError, match="does not support"):
        registry.register(ObjectTarget(_Base()), _Derived)


def test_register_rejects_partially_open_type(registry: TargetRegistry) -> None:
    with pytest.raises(TargetWireInvalidRegistrationError, match="partially open"):
        registry.register(GenericConstructorTarget(_Box), _IBox[list[T]])


def test_closed_registration_wins_over_open_definition(registry: TargetRegistry) -> None:
    open_target = GenericConstructorTarget(_Box)
    closed_target = ObjectTarget(_Box[int](), _IBox[int])
    registry.register(open_target, _IBox)
    registry.register(closed_target, _IBox[int])

    assert registry.fetch(_IBox[int]) is closed_target
    assert registry.fetch(_IBox[str]) is open_target


def test_fetch_all_appends_open_targets_last(registry: TargetRegistry) -> None:
    open_target = GenericConstructorTarget(_Box)
    closed_target = ObjectTarget(_Box[int](), _IBox[int])
    registry.register(open_target, _IBox)
    registry.register(closed_target, _IBox[int])

    assert registry.fetch_all(_IBox[int]) == [closed_target, open_target]


def test_contravariant_match_is_wrapped(registry: TargetRegistry) -> None:
    target = ConstructorTarget(_BaseConsumer)
    registry.register(target, _IConsumer[_Base])

    fetched = registry.fetch(_IConsumer[_Derived])

    assert isinstance(fetched, VariantMatchTarget)
    assert fetched.target is target
    assert fetched.requested_type == _IConsumer[_Derived]
    assert fetched.registered_type == _IConsumer[_Base]


def test_exact_match_is_preferred_over_variant(registry: TargetRegistry) -> None:
    base_target = ConstructorTarget(_BaseConsumer)
    derived_target = ConstructorTarget(_DerivedConsumer)
    registry.register(base_target, _IConsumer[_Base])
    registry.register(derived_target, _IConsumer[_Derived])

    assert registry.fetch(_IConsumer[_Derived]) is derived_target


def test_fetch_all_stops_at_first_matching_candidate(registry: TargetRegistry) -> None:
    derived_target = ObjectTarget(_DerivedConsumer(), _IConsumer[_Derived])
    base_target = ObjectTarget(_BaseConsumer(), _IConsumer[_Base])
    registry.register(derived_target, _IConsumer[_Derived])
    registry.register(base_target, _IConsumer[_Base])

    assert registry.fetch_all(_IConsumer[_Derived]) == [derived_target]


def test_fetch_all_matching_generics_gathers_every_candidate(
    registry_all_generics: TargetRegistry,
) -> None:
    derived_target = ObjectTarget(_DerivedConsumer(), _IConsumer[_Derived])
    base_target = ObjectTarget(_BaseConsumer(), _IConsumer[_Base])
    registry_all_generics.register(derived_target, _IConsumer[_Derived])
    registry_all_generics.register(base_target, _IConsumer[_Base])

    assert registry_all_generics.fetch_all(_IConsumer[_Derived]) == [derived_target, base_target]


def test_disable_contravariance_blocks_variant_match(registry: TargetRegistry) -> None:
    registry.register(ConstructorTarget(_BaseConsumer), _IConsumer[_Base])
    registry.disable_contravariance(_IConsumer)

    assert registry.fetch(_IConsumer[_Derived]) is None


def test_iterable_request_synthesises_enumerable(registry: TargetRegistry) -> None:
    first = ObjectTarget(_ServiceImpl(), _Service)
    second = ObjectTarget(_ServiceImpl(), _Service)
    registry.register(first)
    registry.register(second)

    fetched = registry.fetch(Iterable[_Service])

    assert isinstance(fetched, EnumerableTarget)
    assert fetched.targets == (first, second)
    assert not fetched.use_fallback


def test_empty_enumerable_asks_for_fallback(registry: TargetRegistry) -> None:
    fetched = registry.fetch(Iterable[_Service])

    assert isinstance(fetched, EnumerableTarget)
    assert fetched.targets == ()
    assert fetched.use_fallback


def test_decorate_wraps_fetched_targets(registry: TargetRegistry) -> None:
    target = ConstructorTarget(_ServiceImpl)
    registry.register(target, _Service)
    registry.decorate(_LoggingService, _Service)

    fetched = registry.fetch(_Service)

    assert isinstance(fetched, DecoratorTarget)
    assert fetched.decorator_type is _LoggingService
    assert fetched.decorated_target is target


def test_decorating_twice_puts_newest_outermost(registry: TargetRegistry) -> None:
    registry.register(ConstructorTarget(_ServiceImpl), _Service)
    registry.decorate(_LoggingService, _Service)
    registry.decorate(_CachingService, _Service)

    fetched = registry.fetch(_Service)

    assert isinstance(fetched, DecoratorTarget)
    assert fetched.decorator_type is _CachingService
    assert isinstance(fetched.decorated_target, DecoratorTarget)
    assert fetched.decorated_target.decorator_type is _LoggingService


def test_registrations_after_decoration_are_decorated(registry: TargetRegistry) -> None:
    registry.decorate(_LoggingService, _Service)
    target = ConstructorTarget(_ServiceImpl)
    registry.register(target, _Service)

    fetched = registry.fetch(_Service)

    assert isinstance(fetched, DecoratorTarget)
    assert fetched.decorated_target is target


def test_decorating_node_cannot_combine_twice() -> None:
    node = DecoratingNode(_LoggingService, _Service)
    node.combine_with(TargetList(_Service))

    with pytest.raises(TargetWireInvalidRegistrationError, match="already decorating"):
        node.combine_with(TargetList(_Service))


def test_register_after_freeze_raises(registry: TargetRegistry) -> None:
    registry.register(ObjectTarget(_Base()))
    registry.freeze()

    with pytest.raises(TargetWireRegistrationClosedError):
        registry.register(ObjectTarget(_Base()))
    with pytest.raises(TargetWireRegistrationClosedError):
        registry.decorate(_LoggingService, _Service)


def test_overriding_registry_prefers_own_targets(registry: TargetRegistry) -> None:
    parent_target = ObjectTarget(_ServiceImpl(), _Service)
    registry.register(parent_target)
    registry.register(ObjectTarget(_Base()))
    layer = OverridingTargetRegistry(registry)
    own_target = ObjectTarget(_ServiceImpl(), _Service)
    layer.register(own_target)

    assert layer.fetch(_Service) is own_target
    assert layer.fetch(_Base) is registry.fetch(_Base)
    assert layer.fetch_all(_Service) == [parent_target, own_target]
    assert registry.fetch(_Service) is parent_target


def test_contravariant_registration_is_not_offered_for_base_request(registry: TargetRegistry) -> None:
    registry.register(ConstructorTarget(_DerivedConsumer), _IConsumer[_Derived])

    assert registry.fetch(_IConsumer[_Base]) is None
    assert registry.fetch_all(_IConsumer[_Base]) == []


def test_decorate_rejects_decorator_not_implementing_type(registry: TargetRegistry) -> None:
    target = ConstructorTarget(_ServiceImpl)
    registry.register(target, _Service)

    with pytest.raises(TargetWireInvalidRegistrationError, match="does not implement"):
        registry.decorate(_Derived, _Service)

    assert registry.fetch(_Service) is target


def test_list_request_synthesises_collection(registry: TargetRegistry) -> None:
    first = ObjectTarget(_ServiceImpl(), _Service)
    second = ObjectTarget(_ServiceImpl(), _Service)
    registry.register(first)
    registry.register(second)

    fetched = registry.fetch(list[_Service])

    assert isinstance(fetched, CollectionTarget)
    assert fetched.collection_type is list
    assert fetched.targets == (first, second)
    assert fetched.declared_type == list[_Service]


def test_variadic_tuple_request_synthesises_collection(registry: TargetRegistry) -> None:
    registry.register(ObjectTarget(_ServiceImpl(), _Service))

    fetched = registry.fetch(tuple[_Service, ...])

    assert isinstance(fetched, CollectionTarget)
    assert fetched.collection_type is tuple
    assert registry.fetch(tuple[_Service, _Service]) is None


def test_empty_collection_asks_for_fallback(registry: TargetRegistry) -> None:
    fetched = registry.fetch(list[_Service])

    assert isinstance(fetched, CollectionTarget)
    assert fetched.use_fallback


def test_overriding_registry_collection_spans_layers(registry: TargetRegistry) -> None:
    parent_target = ObjectTarget(_ServiceImpl(), _Service)
    registry.register(parent_target)
    layer = OverridingTargetRegistry(registry)
    own_target = ObjectTarget(_ServiceImpl(), _Service)
    layer.register(own_target)

    fetched = layer.fetch(list[_Service])

    assert isinstance(fetched, CollectionTarget)
    assert fetched.targets == (parent_target, own_target)


def test_overriding_registry_empty_collection_falls_back_to_parent(registry: TargetRegistry) -> None:
    explicit = ObjectTarget([_ServiceImpl()], list[_Service])
    registry.register(explicit)
    layer = OverridingTargetRegistry(registry)

    assert layer.fetch(list[_Service]) is explicit


def test_callable_request_synthesises_auto_factory(registry: TargetRegistry) -> None:
    fetched = registry.fetch(Callable[[], _Service])

    assert isinstance(fetched, AutoFactoryTarget)
    assert fetched.service_type is _Service
    assert registry.fetch_all(Callable[[], _Service]) == []
    assert registry.fetch(Callable[[int], _Service]) is None


def test_explicit_auto_factory_registration_is_returned(registry: TargetRegistry) -> None:
    target = AutoFactoryTarget(_ServiceImpl)
    registry.register(target, Callable[[], _ServiceImpl])

    assert registry.fetch(Callable[[], _ServiceImpl]) is target
    assert registry.fetch_all(Callable[[], _ServiceImpl]) == [target]
