"""Configuration management for the relay."""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import Any

import yaml
from dotenv import load_dotenv

from evalrelay.llm.models import (
    GenerationParameters,
    HttpClientSettings,
    ProviderSettings,
    ProviderType,
    RelaySettings,
)

# Environment variable holding each provider's credential
PROVIDER_KEY_MAP: dict[ProviderType, str] = {
    ProviderType.OPENAI: "OPENAI_API_KEY",
    ProviderType.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderType.DEEPSEEK: "DEEPSEEK_API_KEY",
    ProviderType.PERPLEXITY: "PERPLEXITY_API_KEY",
}

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Manages configuration and environment variables for the relay."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self.config_path = config_path or os.getenv(
            "EVALRELAY_CONFIG", DEFAULT_CONFIG_PATH
        )
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(self.config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    @staticmethod
    def get_api_key(provider: ProviderType) -> str | None:
        """Get a provider credential from the environment.

        Returns None when the variable is unset or blank; the relay reports
        that as a configuration error only when the provider is requested.
        """
        api_key = os.getenv(PROVIDER_KEY_MAP[provider], "").strip()
        return api_key or None

    def get_providers_config(self) -> dict[str, dict[str, Any]]:
        """Get per-provider endpoint configuration from YAML.

        Raises:
            ValueError: If a provider section or one of its keys is missing.
        """
        providers = self._config.get("providers", {})
        if not isinstance(providers, dict):
            raise ValueError("providers must be a mapping in config.yaml")

        result = {}
        for provider in ProviderType:
            section = providers.get(provider.value)
            if not isinstance(section, dict):
                raise ValueError(
                    f"providers.{provider.value} must be explicitly configured "
                    "in config.yaml"
                )
            for key in ("base_url", "model"):
                if not section.get(key):
                    raise ValueError(
                        f"providers.{provider.value}.{key} must be explicitly "
                        "configured in config.yaml"
                    )
            extra_headers = section.get("extra_headers") or {}
            if not isinstance(extra_headers, dict):
                raise ValueError(
                    f"providers.{provider.value}.extra_headers must be a mapping"
                )
            result[provider.value] = {**section, "extra_headers": extra_headers}
        return result

    def get_http_client_config(self) -> dict[str, Any]:
        """Get upstream HTTP client configuration.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self._config.get("http_client", {})

        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured in config.yaml"
                )

        for key in ("connect_timeout", "write_timeout", "pool_timeout"):
            if http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        # null disables the idle read timeout
        read_timeout = http_config["read_timeout"]
        if read_timeout is not None and read_timeout <= 0:
            raise ValueError("http_client.read_timeout must be positive or null")

        return http_config

    def get_generation_config(self) -> dict[str, Any]:
        """Get default generation parameters.

        Raises:
            ValueError: If max_tokens or temperature is missing or out of range.
        """
        generation = self._config.get("relay", {}).get("generation", {})

        for key in ("max_tokens", "temperature"):
            if key not in generation:
                raise ValueError(
                    f"relay.generation.{key} must be explicitly configured "
                    "in config.yaml"
                )

        max_tokens = generation["max_tokens"]
        if not isinstance(max_tokens, int) or max_tokens < 1:
            raise ValueError("relay.generation.max_tokens must be a positive integer")
        temperature = generation["temperature"]
        if isinstance(temperature, bool) or not isinstance(temperature, int | float):
            raise ValueError("relay.generation.temperature must be a number")
        if not 0 <= temperature <= 2:
            raise ValueError("relay.generation.temperature must be between 0 and 2")

        return generation

    def get_default_provider(self) -> str:
        """Get the provider used when the client names none."""
        return self._config.get("relay", {}).get("default_provider", "zhi1")

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML.

        Raises:
            ValueError: If host or port is missing.
        """
        server_config = self._config.get("server", {})
        for key in ("host", "port"):
            if key not in server_config:
                raise ValueError(
                    f"server.{key} must be explicitly configured in config.yaml"
                )
        if not 0 < server_config["port"] < 65536:
            raise ValueError("server.port must be between 1 and 65535")
        return server_config

    def build_settings(self) -> RelaySettings:
        """Resolve the immutable settings shared by every relay session."""
        providers = {}
        for name, section in self.get_providers_config().items():
            provider = ProviderType(name)
            providers[provider] = ProviderSettings(
                provider=provider,
                base_url=section["base_url"],
                model=section["model"],
                api_key=self.get_api_key(provider),
                extra_headers=MappingProxyType(
                    {str(k): str(v) for k, v in section["extra_headers"].items()}
                ),
            )

        http_config = self.get_http_client_config()
        generation = self.get_generation_config()

        return RelaySettings(
            providers=providers,
            http_client=HttpClientSettings(
                connect_timeout=http_config["connect_timeout"],
                read_timeout=http_config["read_timeout"],
                write_timeout=http_config["write_timeout"],
                pool_timeout=http_config["pool_timeout"],
            ),
            generation=GenerationParameters(
                max_tokens=generation["max_tokens"],
                temperature=float(generation["temperature"]),
            ),
            default_provider=self.get_default_provider(),
        )
