"""Compilation of targets into factories.

A ``CompileContext`` carries what a target needs while it builds its factory:
the compiling container, the requested type, a layer of override
registrations and, shared by the whole tree of contexts, the compile stack
and a cache of shared sub-results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from targetwire.exceptions import TargetWireCircularDependencyError, TargetWireCompileDepthError
from targetwire.registry import OverridingTargetRegistry, TargetSource

if TYPE_CHECKING:
    from targetwire.compiled_targets import CompiledFactory
    from targetwire.container_interface import IContainer
    from targetwire.targets import Target

logger = logging.getLogger(__name__)

_INHERIT: Any = object()
DEFAULT_MAX_COMPILE_DEPTH = 128


class CompileStackEntry:
    """A target being compiled for a type.

    Two entries are equal when they hold the same target object and equal
    types.
    """

    __slots__ = ("target", "target_type")

    def __init__(self, target: Target, target_type: Any) -> None:
        self.target = target
        self.target_type = target_type

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompileStackEntry):
            return NotImplemented
        return self.target is other.target and self.target_type == other.target_type

    def __hash__(self) -> int:
        return hash((id(self.target), self.target_type))

    def __repr__(self) -> str:
        return f"CompileStackEntry({self.target!r}, {self.target_type!r})"


@dataclass(frozen=True, slots=True)
class SharedKey:
    """Key of a sub-result shared by every factory of one compilation."""

    target_type: Any
    name: str
    requesting_type: Any = None


class CompileContext:
    """State for compiling one target, possibly nested inside another.

    Args:
        container: The container the compilation runs for.
        targets: Source of registered targets. Only used by root contexts;
            children fetch through their parent.
        target_type: The type being compiled for.
        parent: Context this one is nested in.
        suppress_scope_tracking: Whether produced instances must not be
            handed to the active scope by the factories built here.

    """

    def __init__(
        self,
        container: IContainer,
        targets: TargetSource | None,
        target_type: Any = None,
        *,
        parent: CompileContext | None = None,
        suppress_scope_tracking: bool = False,
    ) -> None:
        if parent is None and targets is None:
            msg = "A root compile context needs a target source."
            raise ValueError(msg)
        self._container = container
        self._parent = parent
        self._target_type = target_type
        self._suppress_scope_tracking = suppress_scope_tracking
        self._source: TargetSource = targets if parent is None else parent  # type: ignore[assignment]
        self._overrides: OverridingTargetRegistry | None = None
        if parent is None:
            self._compile_stack: list[CompileStackEntry] = []
            self._shared: dict[SharedKey, Any] = {}
        else:
            self._compile_stack = parent._compile_stack
            self._shared = parent._shared

    @property
    def container(self) -> IContainer:
        return self._container

    @property
    def parent(self) -> CompileContext | None:
        return self._parent

    @property
    def target_type(self) -> Any:
        return self._target_type

    @property
    def suppress_scope_tracking(self) -> bool:
        return self._suppress_scope_tracking

    @property
    def compile_stack(self) -> tuple[CompileStackEntry, ...]:
        return tuple(self._compile_stack)

    @property
    def compile_depth(self) -> int:
        return len(self._compile_stack)

    def new_context(
        self,
        target_type: Any = _INHERIT,
        *,
        suppress_scope_tracking: bool | None = None,
    ) -> CompileContext:
        """Create a child context sharing this context's stack and shared results."""
        return CompileContext(
            self._container,
            None,
            self._target_type if target_type is _INHERIT or target_type is None else target_type,
            parent=self,
            suppress_scope_tracking=(
                self._suppress_scope_tracking if suppress_scope_tracking is None else suppress_scope_tracking
            ),
        )

    def register(self, target: Target, service_type: Any = None) -> None:
        """Override ``service_type`` for this context and its children."""
        if self._overrides is None:
            self._overrides = OverridingTargetRegistry(self._source)
        self._overrides.register(target, service_type)

    def fetch(self, service_type: Any) -> Target | None:
        if self._overrides is not None:
            return self._overrides.fetch(service_type)
        return self._source.fetch(service_type)

    def fetch_all(self, service_type: Any) -> list[Target]:
        if self._overrides is not None:
            return self._overrides.fetch_all(service_type)
        return self._source.fetch_all(service_type)

    def push_compile_stack(self, target: Target, target_type: Any = None) -> bool:
        """Push an entry; return ``False`` if an equal entry is already on the stack."""
        entry = CompileStackEntry(target, target_type if target_type is not None else self.entry_type(target))
        if entry in self._compile_stack:
            return False
        self._compile_stack.append(entry)
        return True

    def pop_compile_stack(self) -> CompileStackEntry:
        return self._compile_stack.pop()

    def get_or_add_shared(
        self,
        name: str,
        factory: Callable[[], Any],
        *,
        target_type: Any,
        requesting_type: Any = None,
    ) -> Any:
        """Return the shared sub-result for the key, creating it once per compilation."""
        key = SharedKey(target_type=target_type, name=name, requesting_type=requesting_type)
        try:
            return self._shared[key]
        except KeyError:
            value = factory()
            self._shared[key] = value
            return value

    def entry_type(self, target: Target) -> Any:
        return self._target_type if self._target_type is not None else target.declared_type


class TargetCompiler:
    """Compile targets into factories, detecting dependency cycles.

    Args:
        max_depth: Largest number of entries the compile stack may hold.
            Graphs that keep expanding without repeating an entry, such as a
            generic closing its own dependency over a growing type, stop here.

    """

    def __init__(self, *, max_depth: int = DEFAULT_MAX_COMPILE_DEPTH) -> None:
        self.max_depth = max_depth

    def compile(self, target: Target, context: CompileContext) -> CompiledFactory:
        if context.compile_depth >= self.max_depth:
            raise TargetWireCompileDepthError(
                context.entry_type(target),
                _stack_types(context.compile_stack),
                self.max_depth,
            )
        if not context.push_compile_stack(target):
            entry_type = context.entry_type(target)
            raise TargetWireCircularDependencyError(
                entry_type,
                _cycle_path(context.compile_stack, CompileStackEntry(target, entry_type)),
            )

        try:
            factory = target.build(context, self)
        finally:
            context.pop_compile_stack()

        logger.debug("Compiled %r for %r", target, context.target_type)
        return factory


def _stack_types(stack: tuple[CompileStackEntry, ...]) -> list[Any]:
    path: list[Any] = []
    for entry in stack:
        # Lookups and the targets they bind to share a type; show it once.
        if not path or path[-1] != entry.target_type:
            path.append(entry.target_type)
    return path


def _cycle_path(stack: tuple[CompileStackEntry, ...], repeated: CompileStackEntry) -> list[Any]:
    path = _stack_types(stack[stack.index(repeated) :])
    if len(path) > 1 and path[-1] == repeated.target_type:
        path.pop()
    return path
