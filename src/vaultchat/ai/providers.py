"""Provider resolver mapping a provider id and model id to a configured client."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List

from ..services.settings import ProviderSettings, Settings, redact_secret
from .client import AIClient, ClientSettings
from .orchestration.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ClientSettings], AIClient]


class ProviderResolver:
    """Builds and caches :class:`AIClient` instances per provider and model.

    Every supported provider is reached through an OpenAI-compatible base URL,
    so one client class covers them all.
    """

    def __init__(self, settings: Settings, *, client_factory: ClientFactory | None = None) -> None:
        self._settings = settings
        self._client_factory = client_factory or AIClient
        self._clients: Dict[tuple[str, str], AIClient] = {}

    @property
    def settings(self) -> Settings:
        return self._settings

    def has_credential(self, provider_id: str) -> bool:
        """Return ``True`` when *provider_id* is configured well enough to call."""

        config = self._settings.provider_settings(provider_id)
        if config is None or not config.base_url.strip():
            return False
        if not config.requires_api_key:
            return True
        return bool(config.api_key.strip())

    def available_providers(self) -> List[str]:
        return [provider_id for provider_id in sorted(self._settings.providers) if self.has_credential(provider_id)]

    def resolve(self, provider_id: str | None = None, model_id: str | None = None) -> AIClient:
        """Return a client for the explicit selection, or the configured default.

        Raises:
            ConfigurationError: when the provider is unknown, has no credential,
                or no model can be determined.
        """

        provider = (provider_id or self._settings.default_provider or "").strip().lower()
        if not provider:
            raise ConfigurationError("No AI provider selected")
        config = self._settings.provider_settings(provider)
        if config is None:
            raise ConfigurationError(f"Unknown AI provider '{provider}'", provider_id=provider)
        if not self.has_credential(provider):
            raise ConfigurationError(
                f"No API key configured for provider '{provider}'",
                provider_id=provider,
                model_id=model_id,
            )
        model = self._resolve_model(config, model_id)
        if not model:
            raise ConfigurationError(f"No model configured for provider '{provider}'", provider_id=provider)

        key = (provider, model)
        cached = self._clients.get(key)
        if cached is not None:
            return cached
        client_settings = ClientSettings(
            base_url=config.base_url,
            api_key=config.api_key,
            model=model,
            provider_id=provider,
            request_timeout=self._settings.request_timeout,
            max_retries=self._settings.max_retries,
            retry_min_seconds=self._settings.retry_min_seconds,
            retry_max_seconds=self._settings.retry_max_seconds,
            debug_logging=self._settings.debug_logging,
        )
        LOGGER.debug(
            "Creating AI client for %s/%s at %s (key=%s)",
            provider,
            model,
            config.base_url,
            redact_secret(config.api_key),
        )
        client = self._client_factory(client_settings)
        self._clients[key] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    @staticmethod
    def _resolve_model(config: ProviderSettings, model_id: str | None) -> str:
        if model_id and model_id.strip():
            return model_id.strip()
        if config.default_model:
            return config.default_model
        return config.models[0] if config.models else ""


__all__ = ["ProviderResolver", "ClientFactory"]
