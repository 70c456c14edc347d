"""Shared pytest fixtures for targetwire tests."""

import pytest

from targetwire._internal.dependencies import DependenciesExtractor
from targetwire.compilation import TargetCompiler
from targetwire.container import Container
from targetwire.registry import TargetRegistry, TargetRegistryOptions


@pytest.fixture()
def container() -> Container:
    """Default container."""
    return Container()


@pytest.fixture()
def container_single() -> Container:
    """Container that rejects a second registration for the same type."""
    return Container(allow_multiple=False)


@pytest.fixture()
def registry() -> TargetRegistry:
    """Empty target registry with default options."""
    return TargetRegistry()


@pytest.fixture()
def registry_all_generics() -> TargetRegistry:
    """Registry gathering fetch_all results from every matching generic candidate."""
    return TargetRegistry(TargetRegistryOptions(fetch_all_matching_generics=True))


@pytest.fixture()
def compiler() -> TargetCompiler:
    return TargetCompiler()


@pytest.fixture()
def dependencies_extractor() -> DependenciesExtractor:
    """DependenciesExtractor instance."""
    return DependenciesExtractor()
