"""Provider plugin interface, registry and the simulated cloud."""

from .base import AttributeSchema, Provider, ResourceSchema
from .registry import ProviderRegistry, load_provider_class
from .simulated import SimulatedProvider

__all__ = [
    "AttributeSchema",
    "Provider",
    "ResourceSchema",
    "ProviderRegistry",
    "load_provider_class",
    "SimulatedProvider",
]
