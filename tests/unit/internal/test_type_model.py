from __future__ import annotations

import collections.abc
import typing
from typing import Generic, Protocol, TypeVar

import pytest

from targetwire._internal import type_model
from targetwire._internal.type_model import Variance
from targetwire.exceptions import TargetWireInvalidGenericTypeArgumentError

T = TypeVar("T")
U = TypeVar("U")
T_co = TypeVar("T_co", covariant=True)
T_contra = TypeVar("T_contra", contravariant=True)


class _Base:
    pass


class _Mixin:
    pass


class _Derived(_Base, _Mixin):
    pass


class _MoreDerived(_Derived):
    pass


B = TypeVar("B", bound=_Base)


class _IBox(Generic[T]):
    pass


class _Box(_IBox[T]):
    pass


class _Extra(_IBox[T], Generic[T, U]):
    pass


class _Bounded(Generic[B]):
    pass


class _IProducer(Generic[T_co]):
    pass


class _IConsumer(Generic[T_contra]):
    pass


class _BaseConsumer(_IConsumer[_Base]):
    pass


class _Greeter(Protocol):
    def greet(self) -> str: ...


class _English:
    def greet(self) -> str:
        return "hello"


def test_normalize_type_rebuilds_typing_aliases() -> None:
    assert type_model.normalize_type(typing.List[int]) == list[int]  # noqa: UP006
    assert type_model.normalize_type(typing.List) is list  # noqa: UP006
    assert type_model.normalize_type(_Base) is _Base


def test_normalize_type_collapses_alias_over_own_typevars() -> None:
    assert type_model.normalize_type(_IBox[T]) is _IBox
    assert type_model.normalize_type(_IBox[U]) == _IBox[U]


def test_generic_definition_predicates() -> None:
    assert type_model.is_generic_definition(_IBox)
    assert type_model.is_generic_definition(collections.abc.Iterable)
    assert not type_model.is_generic_definition(_IBox[int])
    assert not type_model.is_generic_definition(_Base)
    assert not type_model.is_generic_definition(list)

    assert type_model.is_closed_generic(_IBox[int])
    assert not type_model.is_closed_generic(_IBox[T])
    assert not type_model.is_closed_generic(_IBox)
    assert not type_model.is_closed_generic(typing.Optional[int])  # noqa: UP045

    assert type_model.generic_definition(_IBox[int]) is _IBox
    assert type_model.generic_definition(_IBox) is _IBox
    assert type_model.generic_definition(_Base) is None
    assert type_model.generic_definition(typing.Optional[int]) is None  # noqa: UP045


def test_type_parameters_reads_typevar_variance() -> None:
    (consumer_parameter,) = type_model.type_parameters(_IConsumer)
    (producer_parameter,) = type_model.type_parameters(_IProducer)
    (box_parameter,) = type_model.type_parameters(_IBox)

    assert consumer_parameter.variance is Variance.CONTRAVARIANT
    assert consumer_parameter.typevar is T_contra
    assert producer_parameter.variance is Variance.COVARIANT
    assert box_parameter.variance is Variance.INVARIANT


def test_type_parameters_uses_builtin_table_and_pads_arity() -> None:
    mapping_parameters = type_model.type_parameters(collections.abc.Mapping, 2)
    tuple_parameters = type_model.type_parameters(tuple, 3)

    assert [parameter.variance for parameter in mapping_parameters] == [
        Variance.INVARIANT,
        Variance.COVARIANT,
    ]
    assert len(tuple_parameters) == 3
    assert all(parameter.variance is Variance.INVARIANT for parameter in tuple_parameters)


def test_base_chain_and_interfaces_split_the_mro() -> None:
    assert type_model.base_chain(_MoreDerived) == [_Derived, _Base]
    assert type_model.interfaces(_MoreDerived) == [_Mixin]
    assert type_model.base_chain(_Base) == []


def test_base_chain_is_parameterised_through_orig_bases() -> None:
    assert type_model.base_chain(_Box[int]) == [_IBox[int]]
    assert type_model.base_chain(_BaseConsumer) == [_IConsumer[_Base]]


def test_is_assignable_follows_variance() -> None:
    assert type_model.is_assignable(_IProducer[_Base], _IProducer[_Derived])
    assert not type_model.is_assignable(_IProducer[_Derived], _IProducer[_Base])

    assert type_model.is_assignable(_IConsumer[_Derived], _IConsumer[_Base])
    assert type_model.is_assignable(_IConsumer[_Derived], _BaseConsumer)
    assert not type_model.is_assignable(_IConsumer[_Base], _IConsumer[_Derived])

    assert type_model.is_assignable(_IBox[_Base], _IBox[_Base])
    assert not type_model.is_assignable(_IBox[_Base], _IBox[_Derived])


def test_is_assignable_nominal_and_object() -> None:
    assert type_model.is_assignable(_Base, _MoreDerived)
    assert type_model.is_assignable(object, _Base)
    assert type_model.is_assignable(typing.Any, _Base)
    assert not type_model.is_assignable(_Derived, _Base)


def test_is_assignable_matches_protocols_structurally() -> None:
    assert type_model.is_assignable(_Greeter, _English)
    assert not type_model.is_assignable(_Greeter, _Base)


def test_match_and_substitute_typevars() -> None:
    assert type_model.match_typevars(_IBox[T], _IBox[int]) == {T: int}
    assert type_model.match_typevars(_IBox[T], _IProducer[int]) is None
    assert type_model.substitute_typevars(dict[str, T], {T: int}) == dict[str, int]
    assert type_model.contains_typevar(list[T])
    assert not type_model.contains_typevar(list[int])


def test_map_generic_arguments_through_generic_base() -> None:
    assert type_model.map_generic_arguments(_Box, _IBox[int]) == (int,)
    assert type_model.map_generic_arguments(_Box, _Box[str]) == (str,)
    assert type_model.map_generic_arguments(_Box, _IProducer[int]) is None


def test_map_generic_arguments_rejects_unmapped_parameters() -> None:
    with pytest.raises(TargetWireInvalidGenericTypeArgumentError, match="cannot be inferred"):
        type_model.map_generic_arguments(_Extra, _IBox[int])


def test_map_generic_arguments_validates_bounds() -> None:
    assert type_model.map_generic_arguments(_Bounded, _Bounded[_Derived]) == (_Derived,)
    with pytest.raises(TargetWireInvalidGenericTypeArgumentError, match="bound"):
        type_model.map_generic_arguments(_Bounded, _Bounded[int])
