from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from targetwire.container_interface import IContainer
    from targetwire.scope import ContainerScope

_UNSET: Any = object()


@dataclass(frozen=True, slots=True)
class ResolveContext:
    """Call-time information passed to every compiled factory.

    ``container`` is the container the call came through, which may differ from
    the one that compiled the factory.
    """

    container: IContainer
    requested_type: Any
    scope: ContainerScope | None = None

    def new_context(
        self,
        *,
        requested_type: Any = _UNSET,
        container: IContainer | None = None,
        scope: ContainerScope | None = None,
    ) -> ResolveContext:
        return ResolveContext(
            container=container if container is not None else self.container,
            requested_type=self.requested_type if requested_type is _UNSET else requested_type,
            scope=scope if scope is not None else self.scope,
        )
