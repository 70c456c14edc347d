from __future__ import annotations

from typing import Any


class TargetWireError(Exception):
    """Represent a base class for all targetwire-specific failures.

    Catch this type when you want to handle any targetwire error path without
    matching each concrete exception class individually.
    """


class TargetWireInvalidRegistrationError(TargetWireError):
    """Signal an invalid registration.

    Raised by ``TargetRegistry.register`` and ``Container.register`` when a
    target does not support the service type it is registered against, when a
    non-generic type is used where an open generic definition is required, when
    a decorating node is combined twice, or when multiple registrations are
    disabled and a second target is added for the same type.

    Typical fixes include registering the target under a type it can actually
    produce, or chaining decorators through ``Container.register_decorator``.
    """


class TargetWireRegistrationClosedError(TargetWireInvalidRegistrationError):
    """Signal a registration attempted after the registry was frozen.

    Containers freeze their registry on first resolution. Register everything
    up front, or create an ``OverridingContainer`` for late registrations.
    """


class TargetWireInvalidGenericTypeArgumentError(TargetWireError):
    """Signal that a generic target cannot be bound to the requested type.

    Raised at compile time when a generic constructor target is asked for a
    closed type whose arguments leave some of its TypeVars unmapped, or when an
    argument violates a TypeVar bound or constraint.
    """


class TargetWireCircularDependencyError(TargetWireError):
    """Signal a dependency cycle detected while compiling a target.

    The compile stack already contains the same target for the same type, so
    the graph cannot be built. Break the cycle, for example by depending on a
    factory function instead of the instance.
    """

    def __init__(self, target_type: Any, path: list[Any]) -> None:
        self.target_type = target_type
        self.path = path
        formatted = " -> ".join(_format_type(item) for item in [*path, target_type])
        super().__init__(f"Circular dependency detected while compiling {formatted}.")


class TargetWireCompileDepthError(TargetWireCircularDependencyError):
    """Signal a dependency graph that keeps expanding while it is compiled.

    Raised when the compile stack grows past the compiler's depth limit without
    repeating an entry, typically a generic class whose dependency closes over
    an ever larger type (``Node[T]`` depending on ``Node[list[T]]``). ``path``
    holds the types on the stack.
    """

    def __init__(self, target_type: Any, path: list[Any], max_depth: int) -> None:
        self.target_type = target_type
        self.path = path
        self.max_depth = max_depth
        TargetWireError.__init__(
            self,
            f"Compile depth limit of {max_depth} exceeded while compiling {_format_type(target_type)}; "
            f"the dependency graph starting at {_format_type(path[0]) if path else '?'} never closes.",
        )


class TargetWireResolutionError(TargetWireError):
    """Signal that a requested type has no matching target.

    Raised only when an unresolved factory is invoked, which lets
    ``Container.try_resolve`` report a miss without raising.
    """

    def __init__(self, requested_type: Any) -> None:
        self.requested_type = requested_type
        super().__init__(f"Could not resolve type {_format_type(requested_type)}.")


class TargetWireDependencyExtractionError(TargetWireError):
    """Signal that constructor or factory dependencies cannot be inferred.

    Common triggers are forward references that cannot be evaluated. Typical
    fixes include importing the referenced names at module level or passing
    explicit ``bindings``.
    """

    def __init__(self, owner: Any, error: Exception) -> None:
        self.owner = owner
        self.error = error
        super().__init__(f"Failed to extract dependencies for {owner!r}: {error}")


def _format_type(value: Any) -> str:
    if isinstance(value, type):
        return value.__qualname__
    return repr(value)
