"""Descriptor functions over typing objects.

Everything the registry and the candidate search need to know about a type
goes through this module: its open generic definition, its arguments, the
variance of each parameter, its parameterised base chain and interfaces, and
whether an instance of one type can stand in for another.
"""

from __future__ import annotations

import collections.abc
import types
import typing
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Generic, Protocol, TypeVar, get_args, get_origin

from typing_extensions import get_protocol_members, is_protocol

from targetwire.exceptions import TargetWireInvalidGenericTypeArgumentError


class Variance(Enum):
    """Substitutability direction of a generic type parameter."""

    INVARIANT = "invariant"
    COVARIANT = "covariant"
    CONTRAVARIANT = "contravariant"


@dataclass(frozen=True, slots=True)
class TypeParameter:
    """A generic type parameter as seen by the candidate search.

    ``typevar`` is ``None`` for parameters synthesised for builtin origins that
    carry no TypeVars at runtime.
    """

    name: str
    variance: Variance
    typevar: TypeVar | None = None

    @property
    def is_variant(self) -> bool:
        return self.variance is not Variance.INVARIANT

    @property
    def is_contravariant(self) -> bool:
        return self.variance is Variance.CONTRAVARIANT


# Origins that look generic to ``get_origin`` but are type expressions rather
# than parameterised classes.
_ATOMIC_ORIGINS: Final[tuple[Any, ...]] = (
    typing.Annotated,
    typing.ClassVar,
    typing.Final,
    typing.Literal,
    typing.Union,
    types.UnionType,
    collections.abc.Callable,
)

# Runtime ABCs carry no TypeVars, so their variance mirrors typeshed.
_BUILTIN_VARIANCE: Final[dict[Any, tuple[Variance, ...]]] = {
    collections.abc.Iterable: (Variance.COVARIANT,),
    collections.abc.Iterator: (Variance.COVARIANT,),
    collections.abc.Collection: (Variance.COVARIANT,),
    collections.abc.Sequence: (Variance.COVARIANT,),
    collections.abc.Set: (Variance.COVARIANT,),
    collections.abc.Mapping: (Variance.INVARIANT, Variance.COVARIANT),
}

_IGNORED_BASES: Final[tuple[Any, ...]] = (object, Generic, Protocol)


def normalize_type(value: Any) -> Any:
    """Return the canonical registry key for a type expression.

    ``typing.List[int]`` becomes ``list[int]``, and an alias whose arguments
    are exactly the origin's own TypeVars (``Box[T]``) collapses to the open
    definition ``Box``.
    """
    origin = get_origin(value)
    if origin is None or _is_atomic_origin(origin):
        return value

    arguments = get_args(value)
    if not arguments:
        return origin

    normalized = tuple(normalize_type(argument) for argument in arguments)
    own = _own_typevars(origin)
    if own and normalized == own:
        return origin
    return _rebuild_alias(origin=origin, args=normalized, fallback=value)


def is_generic_definition(value: Any) -> bool:
    """Return whether ``value`` is an open generic definition."""
    if not isinstance(value, type) or isinstance(value, types.GenericAlias):
        return False
    return bool(_own_typevars(value)) or value in _BUILTIN_VARIANCE


def is_closed_generic(value: Any) -> bool:
    """Return whether ``value`` is a subscripted generic without TypeVars."""
    origin = get_origin(value)
    if origin is None or _is_atomic_origin(origin):
        return False
    arguments = get_args(value)
    if not arguments:
        return False
    return not any(contains_typevar(argument) for argument in arguments)


def generic_definition(value: Any) -> Any | None:
    """Return the open definition of a closed generic, or the definition itself."""
    if is_generic_definition(value):
        return value
    origin = get_origin(value)
    if origin is None or _is_atomic_origin(origin) or not get_args(value):
        return None
    return origin


def type_arguments(value: Any) -> tuple[Any, ...]:
    if get_origin(value) is None:
        return ()
    return get_args(value)


def type_parameters(definition: Any, arity: int | None = None) -> tuple[TypeParameter, ...]:
    """Describe the parameters of an open definition.

    Args:
        definition: Open generic definition.
        arity: Number of arguments the caller holds. Builtin origins without
            TypeVars are padded with invariant parameters up to this count.

    """
    typevars = _own_typevars(definition)
    parameters = [
        TypeParameter(name=typevar.__name__, variance=_variance_of(typevar), typevar=typevar)
        for typevar in typevars
    ]
    if not parameters:
        parameters = [
            TypeParameter(name=f"T{index}", variance=variance)
            for index, variance in enumerate(_BUILTIN_VARIANCE.get(definition, ()))
        ]

    if arity is not None:
        while len(parameters) < arity:
            parameters.append(
                TypeParameter(name=f"T{len(parameters)}", variance=Variance.INVARIANT),
            )
        del parameters[arity:]
    return tuple(parameters)


def make_generic(definition: Any, arguments: tuple[Any, ...]) -> Any | None:
    """Close ``definition`` over ``arguments``, or return ``None`` if Python refuses."""
    return _rebuild_alias(origin=definition, args=tuple(arguments), fallback=None)


def contains_typevar(value: Any) -> bool:
    """Return whether a type expression still contains a ``TypeVar``."""
    if isinstance(value, TypeVar):
        return True

    origin = get_origin(value)
    if origin is not None:
        return any(contains_typevar(argument) for argument in get_args(value))

    if isinstance(value, (list, tuple)):
        return any(contains_typevar(item) for item in value)
    return False


def substitute_typevars(value: Any, mapping: Mapping[TypeVar, Any]) -> Any:
    """Substitute TypeVars in a type expression using a resolved mapping."""
    if isinstance(value, TypeVar):
        return mapping.get(value, value)

    origin = get_origin(value)
    if origin is None:
        return value

    arguments = get_args(value)
    if not arguments:
        return value

    substituted = tuple(substitute_typevars(argument, mapping) for argument in arguments)
    if substituted == arguments:
        return value
    if origin is typing.Union or origin is types.UnionType:
        return typing.Union[substituted]  # noqa: UP007
    return _rebuild_alias(origin=origin, args=substituted, fallback=value)


def match_typevars(template: Any, concrete: Any) -> dict[TypeVar, Any] | None:
    """Bind the TypeVars of ``template`` by structurally matching ``concrete``."""
    mapping: dict[TypeVar, Any] = {}
    if _match_node(template=template, concrete=concrete, mapping=mapping):
        return mapping
    return None


def base_chain(value: Any) -> list[Any]:
    """Return the parameterised primary base chain, nearest first.

    The primary base of a class is its first declared base. ``object``,
    ``Generic`` and ``Protocol`` are never included.
    """
    origin = _class_of(value)
    if origin is None:
        return []

    supertypes = _parameterized_supertypes(value)
    chain: list[Any] = []
    current = origin
    while True:
        primary = next(
            (base for base in current.__bases__ if base not in _IGNORED_BASES),
            None,
        )
        if primary is None or primary not in supertypes:
            return chain
        chain.append(supertypes[primary])
        current = primary


def interfaces(value: Any) -> list[Any]:
    """Return the parameterised supertypes outside the base chain, in MRO order."""
    supertypes = _parameterized_supertypes(value)
    in_chain = {_class_of(base) for base in base_chain(value)}
    return [parameterized for cls, parameterized in supertypes.items() if cls not in in_chain]


def supertypes(value: Any) -> list[Any]:
    """Return every parameterised supertype of ``value`` in MRO order."""
    return list(_parameterized_supertypes(value).values())


def find_generic_base(definition: Any, base_definition: Any) -> Any | None:
    """Return how ``definition`` parameterises ``base_definition``.

    For ``class Handler(IHandler[T])`` and ``IHandler`` this is ``IHandler[T]``
    with ``Handler``'s own TypeVars; ``None`` when there is no such base.
    """
    if definition == base_definition:
        own = _own_typevars(definition)
        return make_generic(definition, own) if own else definition
    for parameterized in _parameterized_supertypes(definition).values():
        if generic_definition(parameterized) == base_definition:
            return parameterized
    return None


def map_generic_arguments(definition: Any, requested: Any) -> tuple[Any, ...] | None:
    """Map a requested closed type's arguments back onto ``definition``'s TypeVars.

    Returns ``None`` when ``definition`` does not derive from the requested
    generic. Raises ``TargetWireInvalidGenericTypeArgumentError`` when a TypeVar
    of ``definition`` remains unmapped or an argument violates its bound.
    """
    requested = normalize_type(requested)
    if not is_closed_generic(requested):
        return None

    typevars = _own_typevars(definition)
    template = find_generic_base(definition, generic_definition(requested))
    if template is None:
        return None

    mapping = match_typevars(template=template, concrete=requested)
    if mapping is None:
        return None

    unmapped = [typevar.__name__ for typevar in typevars if typevar not in mapping]
    if unmapped:
        msg = (
            f"Cannot bind {definition!r} to {requested!r}: "
            f"type parameter(s) {', '.join(unmapped)} cannot be inferred from the requested type."
        )
        raise TargetWireInvalidGenericTypeArgumentError(msg)

    validate_typevar_arguments({typevar: mapping[typevar] for typevar in typevars})
    return tuple(mapping[typevar] for typevar in typevars)


def validate_typevar_arguments(typevar_map: Mapping[TypeVar, Any]) -> None:
    """Validate closed generic arguments against TypeVar constraints and bounds.

    Raises:
        TargetWireInvalidGenericTypeArgumentError: If any argument violates
            TypeVar constraints or bound requirements.

    """
    for typevar, argument in typevar_map.items():
        constraints = getattr(typevar, "__constraints__", ())
        bound = getattr(typevar, "__bound__", None)
        if constraints:
            if any(is_assignable(constraint, argument) for constraint in constraints):
                continue
            formatted = ", ".join(repr(item) for item in constraints)
            msg = (
                f"Generic argument {argument!r} for TypeVar '{typevar.__name__}' must satisfy "
                f"one of: {formatted}."
            )
            raise TargetWireInvalidGenericTypeArgumentError(msg)
        if bound is not None and not is_assignable(bound, argument):
            msg = (
                f"Generic argument {argument!r} for TypeVar '{typevar.__name__}' must satisfy "
                f"bound {bound!r}."
            )
            raise TargetWireInvalidGenericTypeArgumentError(msg)


def is_assignable(target: Any, source: Any) -> bool:
    """Return whether an instance of ``source`` can satisfy a request for ``target``."""
    if target is Any or target is object:
        return True

    target = normalize_type(target)
    source = normalize_type(source)
    if target == source:
        return True

    if is_closed_generic(target):
        definition = generic_definition(target)
        return any(
            _arguments_assignable(target=target, candidate=candidate)
            for candidate in [source, *supertypes(source)]
            if generic_definition(candidate) == definition and is_closed_generic(candidate)
        )

    if not isinstance(target, type):
        return False

    source_class = _class_of(source)
    if source_class is None:
        return False

    if is_protocol(target) and target not in source_class.__mro__:
        if getattr(target, "_is_runtime_protocol", False):
            try:
                return issubclass(source_class, target)
            except TypeError:
                return False
        return all(hasattr(source_class, member) for member in get_protocol_members(target))

    try:
        return issubclass(source_class, target)
    except TypeError:
        return False


def _arguments_assignable(*, target: Any, candidate: Any) -> bool:
    target_arguments = get_args(target)
    candidate_arguments = get_args(candidate)
    if len(target_arguments) != len(candidate_arguments):
        return False

    parameters = type_parameters(generic_definition(target), len(target_arguments))
    for parameter, wanted, offered in zip(
        parameters,
        target_arguments,
        candidate_arguments,
        strict=True,
    ):
        if parameter.variance is Variance.COVARIANT:
            compatible = is_assignable(wanted, offered)
        elif parameter.variance is Variance.CONTRAVARIANT:
            compatible = is_assignable(offered, wanted)
        else:
            compatible = wanted is Any or normalize_type(wanted) == normalize_type(offered)
        if not compatible:
            return False
    return True


def _parameterized_supertypes(value: Any) -> dict[type, Any]:
    origin = _class_of(value)
    if origin is None:
        return {}

    found: dict[type, Any] = {}
    _collect_supertypes(cls=origin, mapping=_typevar_mapping(value), found=found)
    return {cls: found[cls] for cls in origin.__mro__[1:] if cls in found}


def _collect_supertypes(*, cls: type, mapping: Mapping[TypeVar, Any], found: dict[type, Any]) -> None:
    declared = cls.__dict__.get("__orig_bases__", cls.__bases__)
    for base in declared:
        base_origin = get_origin(base) or base
        if not isinstance(base_origin, type) or base_origin in _IGNORED_BASES:
            continue
        if base_origin in found:
            continue
        parameterized = substitute_typevars(base, mapping)
        # Keep ``Base[T]`` as an alias; only closed bases get the canonical form.
        if not contains_typevar(parameterized):
            parameterized = normalize_type(parameterized)
        found[base_origin] = parameterized
        _collect_supertypes(
            cls=base_origin,
            mapping=_typevar_mapping(parameterized),
            found=found,
        )


def _typevar_mapping(value: Any) -> dict[TypeVar, Any]:
    origin = get_origin(value)
    if origin is None:
        return {}
    return dict(zip(_own_typevars(origin), get_args(value), strict=False))


def _class_of(value: Any) -> type | None:
    if isinstance(value, type) and not isinstance(value, types.GenericAlias):
        return value
    origin = get_origin(value)
    if isinstance(origin, type) and not _is_atomic_origin(origin):
        return origin
    return None


def _own_typevars(value: Any) -> tuple[TypeVar, ...]:
    if not isinstance(value, type) or isinstance(value, types.GenericAlias):
        return ()
    return tuple(
        parameter
        for parameter in value.__dict__.get("__parameters__", ())
        if isinstance(parameter, TypeVar)
    )


def _variance_of(typevar: TypeVar) -> Variance:
    if getattr(typevar, "__contravariant__", False):
        return Variance.CONTRAVARIANT
    if getattr(typevar, "__covariant__", False):
        return Variance.COVARIANT
    return Variance.INVARIANT


def _is_atomic_origin(origin: Any) -> bool:
    return any(origin is atomic for atomic in _ATOMIC_ORIGINS)


def _match_node(*, template: Any, concrete: Any, mapping: dict[TypeVar, Any]) -> bool:
    if isinstance(template, TypeVar):
        known = mapping.get(template)
        if known is None:
            mapping[template] = concrete
            return True
        return known == concrete

    template_origin = get_origin(template)
    if template_origin is None:
        return template == concrete

    if get_origin(concrete) != template_origin:
        return False

    template_arguments = get_args(template)
    concrete_arguments = get_args(concrete)
    if len(template_arguments) != len(concrete_arguments):
        return False

    return all(
        _match_node(template=template_argument, concrete=concrete_argument, mapping=mapping)
        for template_argument, concrete_argument in zip(
            template_arguments,
            concrete_arguments,
            strict=True,
        )
    )


def _rebuild_alias(*, origin: Any, args: tuple[Any, ...], fallback: Any) -> Any:
    try:
        if len(args) == 1:
            return origin[args[0]]
        return origin[args]
    except TypeError:
        return fallback
