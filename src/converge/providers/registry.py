"""Map resource types to provider plugins."""

import importlib
from typing import Any, Dict, Optional
from .base import Provider, ResourceSchema
from ..utils.errors import ConfigError, ProviderError
from ..utils.logging import get_logger

logger = get_logger("providers.registry")

FALLBACK = "*"


def load_provider_class(import_path: str) -> type:
    """
    Import a provider class from a ``package.module:ClassName`` path.

    Raises:
        ConfigError: If the path is malformed or does not name a Provider subclass
    """
    module_name, sep, class_name = import_path.partition(":")
    if not sep or not module_name or not class_name:
        raise ConfigError(f"Provider path must look like 'package.module:ClassName', got {import_path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import provider module '{module_name}': {e}")

    provider_class = getattr(module, class_name, None)
    if not isinstance(provider_class, type) or not issubclass(provider_class, Provider):
        raise ConfigError(f"{import_path} is not a Provider class")
    return provider_class


class ProviderRegistry:
    """
    Provider plugins by name.

    A resource type is handled by the provider named by its prefix before the
    first underscore (``aws_vpc`` -> ``aws``); ``*`` registers a fallback.
    """

    def __init__(self, providers: Optional[Dict[str, Provider]] = None):
        self._providers: Dict[str, Provider] = dict(providers or {})
        self._schemas: Dict[str, ResourceSchema] = {}

    @classmethod
    def from_config(
        cls,
        providers: Dict[str, str],
        options: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> "ProviderRegistry":
        """
        Build a registry from ``name -> import path`` configuration.

        Args:
            providers: Provider name to ``package.module:ClassName``
            options: Provider name to keyword arguments for its constructor
        """
        options = options or {}
        registry = cls()
        for name, import_path in providers.items():
            provider_class = load_provider_class(import_path)
            try:
                registry.register(name, provider_class(**options.get(name, {})))
            except TypeError as e:
                raise ConfigError(f"Invalid options for provider '{name}': {e}")
        return registry

    def register(self, name: str, provider: Provider) -> None:
        self._providers[name] = provider
        logger.debug(f"Registered provider '{name}' ({type(provider).__name__})")

    def names(self):
        return sorted(self._providers)

    def for_type(self, resource_type: str) -> Provider:
        """
        Provider responsible for a resource type.

        Raises:
            ProviderError: If no provider handles the type
        """
        prefix = resource_type.split("_", 1)[0]
        provider = self._providers.get(prefix) or self._providers.get(FALLBACK)
        if provider is None:
            raise ProviderError(f"No provider registered for resource type '{resource_type}'")
        return provider

    def schema(self, resource_type: str) -> ResourceSchema:
        """Schema of a resource type (cached for the lifetime of the registry)."""
        if resource_type not in self._schemas:
            provider = self.for_type(resource_type)
            try:
                self._schemas[resource_type] = provider.get_schema(resource_type)
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Provider failed to describe '{resource_type}': {e}") from e
        return self._schemas[resource_type]

    def close(self) -> None:
        """Close every registered provider."""
        for name, provider in self._providers.items():
            try:
                provider.close()
            except Exception as e:
                logger.warning(f"Provider '{name}' failed to close: {e}")
