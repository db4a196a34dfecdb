"""Tests for provider lookup and loading."""

import pytest
from converge.providers.registry import ProviderRegistry, load_provider_class
from converge.providers.simulated import SimulatedProvider
from converge.utils.errors import ConfigError, ProviderError


class TestProviderRegistry:
    """Test mapping resource types to providers."""

    def test_lookup_by_prefix(self, provider):
        """Test the type prefix selects the provider."""
        registry = ProviderRegistry({"test": provider})
        assert registry.for_type("test_thing") is provider

    def test_fallback_provider(self, provider):
        """Test '*' handles types no other provider claims."""
        registry = ProviderRegistry({"*": provider})
        assert registry.for_type("other_thing") is provider

    def test_unknown_type(self):
        """Test a type without a provider is a ProviderError."""
        with pytest.raises(ProviderError):
            ProviderRegistry().for_type("gcp_network")

    def test_schema_cached(self, provider):
        """Test schemas are fetched once per type."""
        calls = []
        original = provider.get_schema

        def counting(resource_type):
            calls.append(resource_type)
            return original(resource_type)

        provider.get_schema = counting
        registry = ProviderRegistry({"test": provider})
        registry.schema("test_thing")
        registry.schema("test_thing")
        assert calls == ["test_thing"]

    def test_from_config(self):
        """Test providers are constructed from import paths and options."""
        registry = ProviderRegistry.from_config(
            {"aws": "converge.providers.simulated:SimulatedProvider"},
            {"aws": {"region": "eu-west-1"}},
        )
        provider = registry.for_type("aws_vpc")
        assert isinstance(provider, SimulatedProvider)
        assert provider.region == "eu-west-1"

    def test_from_config_bad_options(self):
        """Test unknown constructor options are configuration errors."""
        with pytest.raises(ConfigError):
            ProviderRegistry.from_config(
                {"aws": "converge.providers.simulated:SimulatedProvider"},
                {"aws": {"colour": "blue"}},
            )

    @pytest.mark.parametrize("path", [
        "converge.providers.simulated",
        "converge.providers.missing:Provider",
        "converge.providers.simulated:SCHEMAS",
    ])
    def test_bad_import_paths(self, path):
        """Test malformed or wrong import paths raise ConfigError."""
        with pytest.raises(ConfigError):
            load_provider_class(path)
