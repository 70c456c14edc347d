from __future__ import annotations

import threading
from typing import Any

from targetwire._internal.type_model import (
    Variance,
    contains_typevar,
    generic_definition,
    is_assignable,
    is_closed_generic,
    is_generic_definition,
    normalize_type,
    type_arguments,
    type_parameters,
)


class KnownTypesIndex:
    """Ordered record of the types a registry has seen.

    Every registered closed service type is recorded together with the classes
    nested in its generic arguments. The candidate search consults the index for
    covariant alternatives and for more-derived types in doubly contravariant
    positions.
    """

    def __init__(self) -> None:
        self._types: dict[Any, None] = {}
        self._lock = threading.Lock()

    def __contains__(self, service_type: Any) -> bool:
        return normalize_type(service_type) in self._types

    def __len__(self) -> int:
        return len(self._types)

    def add(self, service_type: Any) -> None:
        if is_generic_definition(service_type) or contains_typevar(service_type):
            return
        with self._lock:
            self._add(normalize_type(service_type))

    def covariant_types(self, service_type: Any) -> list[Any]:
        """Return known closed generics of the same definition assignable to ``service_type``.

        The most recently recorded type comes first.
        """
        if not is_closed_generic(service_type):
            return []
        service_type = normalize_type(service_type)
        definition = generic_definition(service_type)
        return [
            known
            for known in reversed(list(self._types))
            if known != service_type
            and is_closed_generic(known)
            and generic_definition(known) == definition
            and _is_covariant_match(service_type, known)
        ]

    def derived_types(self, service_type: Any) -> list[Any]:
        """Return known strict subclasses of ``service_type``, nearest first."""
        if not isinstance(service_type, type):
            return []
        found = [
            known
            for known in list(self._types)
            if isinstance(known, type) and known is not service_type and _is_subclass(known, service_type)
        ]
        return sorted(found, key=lambda known: _mro_distance(known, service_type))

    def _add(self, service_type: Any) -> None:
        if service_type in self._types:
            return
        self._types[service_type] = None
        for argument in type_arguments(service_type):
            if isinstance(argument, type) or is_closed_generic(argument):
                self._add(normalize_type(argument))


def _is_subclass(cls: type, parent: type) -> bool:
    try:
        return issubclass(cls, parent)
    except TypeError:
        return False


def _mro_distance(cls: type, parent: type) -> int:
    mro = getattr(cls, "__mro__", ())
    if parent in mro:
        return mro.index(parent)
    return len(mro)


def _is_covariant_match(requested: Any, known: Any) -> bool:
    # Only covariant parameters may differ; contravariant ones are searched elsewhere.
    arguments = type_arguments(requested)
    known_arguments = type_arguments(known)
    if len(arguments) != len(known_arguments):
        return False
    parameters = type_parameters(generic_definition(requested), len(arguments))
    for parameter, wanted, offered in zip(parameters, arguments, known_arguments, strict=True):
        if wanted == offered:
            continue
        if parameter.variance is not Variance.COVARIANT or not is_assignable(wanted, offered):
            return False
    return True
