import inspect
import threading
from dataclasses import dataclass
from typing import Any, get_type_hints

from targetwire.exceptions import TargetWireDependencyExtractionError


@dataclass(frozen=True, slots=True)
class ParameterInfo:
    """Information about a constructor/function parameter."""

    name: str
    annotation: Any
    kind: inspect._ParameterKind
    default: Any = inspect.Parameter.empty

    @property
    def has_default(self) -> bool:
        return self.default is not inspect.Parameter.empty

    @property
    def is_positional_only(self) -> bool:
        return self.kind is inspect.Parameter.POSITIONAL_ONLY


class DependenciesExtractor:
    """Extract type-hinted dependencies from classes and functions."""

    def __init__(self) -> None:
        self._parameters_cache: dict[Any, tuple[ParameterInfo, ...]] = {}
        self._lock = threading.Lock()

    def get_parameters(self, owner: Any) -> tuple[ParameterInfo, ...]:
        """Get the injectable parameters of a class constructor or a function.

        Variadic parameters are skipped. Parameters without an annotation are
        skipped when they have a default and rejected otherwise.
        """
        cached = self._parameters_cache.get(owner)
        if cached is not None:
            return cached

        func = self._get_init_func(owner)
        if func is None:
            result: tuple[ParameterInfo, ...] = ()
        else:
            result = self._extract(owner, func)

        with self._lock:
            self._parameters_cache[owner] = result
        return result

    def get_return_annotation(self, func: Any) -> Any | None:
        try:
            type_hints = get_type_hints(func)
        except (TypeError, NameError) as e:
            raise TargetWireDependencyExtractionError(func, e) from e
        return type_hints.get("return")

    def _extract(self, owner: Any, func: Any) -> tuple[ParameterInfo, ...]:
        try:
            type_hints = get_type_hints(func)
        except (TypeError, NameError) as e:
            raise TargetWireDependencyExtractionError(owner, e) from e
        try:
            signature = inspect.signature(func)
        except (ValueError, TypeError) as e:
            raise TargetWireDependencyExtractionError(owner, e) from e

        parameters = list(signature.parameters.values())
        if inspect.isclass(owner):
            # Drop ``self`` of the unbound ``__init__``.
            parameters = parameters[1:]

        result = []
        for parameter in parameters:
            if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            annotation = type_hints.get(parameter.name, inspect.Parameter.empty)
            if annotation is inspect.Parameter.empty:
                if parameter.default is inspect.Parameter.empty:
                    error = TypeError(f"parameter '{parameter.name}' has no type annotation")
                    raise TargetWireDependencyExtractionError(owner, error)
                continue
            result.append(
                ParameterInfo(
                    name=parameter.name,
                    annotation=annotation,
                    kind=parameter.kind,
                    default=parameter.default,
                ),
            )
        return tuple(result)

    def _get_init_func(self, owner: Any) -> Any | None:
        if inspect.isclass(owner):
            init = owner.__init__
            if init is object.__init__:
                return None
            return init
        return owner
