"""Candidate type search.

Expands one requested type into the ordered sequence of registered types whose
targets could satisfy it: the type itself, generic decompositions, the bare
definition, and variance-driven alternatives.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace
from enum import Flag, auto
from itertools import islice, product
from typing import TYPE_CHECKING, Any

from targetwire._internal.type_model import (
    TypeParameter,
    base_chain,
    generic_definition,
    interfaces,
    is_closed_generic,
    make_generic,
    normalize_type,
    type_arguments,
    type_parameters,
)

if TYPE_CHECKING:
    from targetwire._internal.known_types import KnownTypesIndex


class Contravariance(Flag):
    """Which related types a contravariant position searches."""

    NONE = 0
    BASES = auto()
    INTERFACES = auto()
    DERIVED = auto()
    BASES_AND_INTERFACES = BASES | INTERFACES


@dataclass(frozen=True, slots=True)
class _SearchParams:
    type: Any
    type_parameter: TypeParameter | None = None
    parent: _SearchParams | None = None
    enable_variance: bool = True
    contravariance: Contravariance = Contravariance.BASES_AND_INTERFACES

    @property
    def is_contravariant_position(self) -> bool:
        return self.type_parameter is not None and self.type_parameter.is_contravariant

    def parameter_chain(self) -> Iterator[TypeParameter]:
        current: _SearchParams | None = self
        while current is not None and current.type_parameter is not None:
            yield current.type_parameter
            current = current.parent


class TargetTypeSelector:
    """Lazily produce the de-duplicated candidate types for ``service_type``.

    Args:
        service_type: The requested type.
        contravariance_enabled: Predicate deciding whether contravariant
            searches may start from a given type. Defaults to always.
        known_types: Index of registered types used for covariant alternatives
            and for the derived-type search.

    """

    def __init__(
        self,
        service_type: Any,
        *,
        contravariance_enabled: Callable[[Any], bool] | None = None,
        known_types: KnownTypesIndex | None = None,
    ) -> None:
        self.service_type = normalize_type(service_type)
        self._contravariance_enabled = contravariance_enabled or (lambda _: True)
        self._known_types = known_types

    def __iter__(self) -> Iterator[Any]:
        root = _SearchParams(
            type=self.service_type,
            contravariance=(
                Contravariance.BASES_AND_INTERFACES
                if self._contravariance_enabled(self.service_type)
                else Contravariance.NONE
            ),
        )
        return _distinct(self._run(root))

    def _child(self, argument: Any, parameter: TypeParameter, parent: _SearchParams) -> _SearchParams:
        enable_variance = parameter.is_variant and parent.enable_variance
        contravariance = Contravariance.NONE
        if (
            enable_variance
            and parent.contravariance is not Contravariance.NONE
            and self._contravariance_enabled(argument)
        ):
            search = _SearchParams(type=argument, type_parameter=parameter, parent=parent)
            count = sum(1 for item in search.parameter_chain() if item.is_contravariant)
            contravariance = (
                Contravariance.BASES_AND_INTERFACES
                if count <= 1 or count % 2 == 1
                else Contravariance.DERIVED
            )
        return _SearchParams(
            type=argument,
            type_parameter=parameter,
            parent=parent,
            enable_variance=enable_variance,
            contravariance=contravariance,
        )

    def _run(self, search: _SearchParams) -> Iterator[Any]:
        yield search.type

        if is_closed_generic(search.type):
            yield from self._run_generic(search)

        if not (search.enable_variance and search.is_contravariant_position):
            return

        if search.contravariance & Contravariance.BASES_AND_INTERFACES:
            add_object = search.type is not object and _is_class_like(search.type)
            if search.contravariance & Contravariance.BASES:
                chain = base_chain(search.type)
                if chain:
                    base_search = replace(search, type=chain[0], contravariance=Contravariance.BASES)
                    yield from (item for item in self._run(base_search) if item is not object)
            if search.contravariance & Contravariance.INTERFACES:
                for interface in interfaces(search.type):
                    interface_search = replace(
                        search,
                        type=interface,
                        contravariance=Contravariance.BASES,
                    )
                    yield from (item for item in self._run(interface_search) if item is not object)
            if add_object:
                yield object
        elif search.contravariance & Contravariance.DERIVED and self._known_types is not None:
            for derived in self._known_types.derived_types(search.type):
                yield from self._run(replace(search, type=derived))

    def _run_generic(self, search: _SearchParams) -> Iterator[Any]:
        definition = generic_definition(search.type)
        top_level = search.type_parameter is None
        if top_level:
            yield from self._covariant_types(search.type)

        arguments = type_arguments(search.type)
        parameters = type_parameters(definition, len(arguments))
        argument_candidates = [
            list(_distinct(self._run(self._child(argument, parameter, search))))
            for argument, parameter in zip(arguments, parameters, strict=True)
        ]
        for combination in islice(product(*argument_candidates), 1, None):
            candidate = make_generic(definition, combination)
            if candidate is None:
                continue
            candidate = normalize_type(candidate)
            yield candidate
            if top_level:
                yield from self._covariant_types(candidate)

        yield definition

    def _covariant_types(self, service_type: Any) -> list[Any]:
        if self._known_types is None:
            return []
        return self._known_types.covariant_types(service_type)


def _distinct(items: Iterable[Any]) -> Iterator[Any]:
    seen: set[Any] = set()
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        yield item


def _is_class_like(value: Any) -> bool:
    return isinstance(value, type) or is_closed_generic(value)
