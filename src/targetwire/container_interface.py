from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from targetwire.resolve_context import ResolveContext
    from targetwire.scope import ContainerScope


class IContainer(ABC):
    """Interface for container-like objects.

    Compiled factories only talk to the container through this interface, so a
    factory compiled by one container can be executed on behalf of another.
    """

    @abstractmethod
    def can_resolve(self, service_type: Any) -> bool:
        """Return whether a target is available for ``service_type``."""

    @abstractmethod
    def resolve(self, service_type: Any) -> Any:
        """Resolve an instance of ``service_type``."""

    @abstractmethod
    def try_resolve(self, service_type: Any) -> tuple[bool, Any]:
        """Resolve ``service_type`` if possible, returning ``(found, value)``."""

    @abstractmethod
    def resolve_context(self, context: ResolveContext) -> Any:
        """Resolve ``context.requested_type`` using the scope carried by ``context``."""

    @abstractmethod
    def create_scope(self) -> ContainerScope:
        """Create a child scope of the container's root scope."""
