from targetwire._internal.type_selector import Contravariance, TargetTypeSelector
from targetwire.compilation import CompileContext, CompileStackEntry, SharedKey, TargetCompiler
from targetwire.container import Container, OverridingContainer, ResolutionCache
from targetwire.exceptions import (
    TargetWireCircularDependencyError,
    TargetWireCompileDepthError,
    TargetWireDependencyExtractionError,
    TargetWireError,
    TargetWireInvalidGenericTypeArgumentError,
    TargetWireInvalidRegistrationError,
    TargetWireRegistrationClosedError,
    TargetWireResolutionError,
)
from targetwire.registry import (
    AutoFactoryTargetFamily,
    CollectionTargetFamily,
    DecoratingNode,
    GenericTargetFamily,
    OverridingTargetRegistry,
    TargetList,
    TargetRegistry,
    TargetRegistryOptions,
)
from targetwire.resolve_context import ResolveContext
from targetwire.scope import ContainerScope
from targetwire.targets import (
    AutoFactoryTarget,
    CollectionTarget,
    CompiledTarget,
    ConstructorTarget,
    DecoratorTarget,
    DelegateTarget,
    EnumerableTarget,
    GenericConstructorTarget,
    ObjectTarget,
    ResolvedTarget,
    ScopedTarget,
    SingletonTarget,
    Target,
    VariantMatchTarget,
)

__all__ = [
    "AutoFactoryTarget",
    "AutoFactoryTargetFamily",
    "CollectionTarget",
    "CollectionTargetFamily",
    "CompileContext",
    "CompileStackEntry",
    "CompiledTarget",
    "ConstructorTarget",
    "Container",
    "ContainerScope",
    "Contravariance",
    "DecoratingNode",
    "DecoratorTarget",
    "DelegateTarget",
    "EnumerableTarget",
    "GenericConstructorTarget",
    "GenericTargetFamily",
    "ObjectTarget",
    "OverridingContainer",
    "OverridingTargetRegistry",
    "ResolutionCache",
    "ResolveContext",
    "ResolvedTarget",
    "ScopedTarget",
    "SharedKey",
    "SingletonTarget",
    "Target",
    "TargetCompiler",
    "TargetList",
    "TargetRegistry",
    "TargetRegistryOptions",
    "TargetTypeSelector",
    "TargetWireCircularDependencyError",
    "TargetWireCompileDepthError",
    "TargetWireDependencyExtractionError",
    "TargetWireError",
    "TargetWireInvalidGenericTypeArgumentError",
    "TargetWireInvalidRegistrationError",
    "TargetWireRegistrationClosedError",
    "TargetWireResolutionError",
    "VariantMatchTarget",
]
