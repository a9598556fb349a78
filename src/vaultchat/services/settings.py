"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping

from ..utils.file_io import write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "ContextPolicySettings",
    "ProviderSettings",
    "AiScope",
    "default_providers",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".vaultchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "VAULTCHAT_API_KEY": "api_key",
    "VAULTCHAT_BASE_URL": "base_url",
    "VAULTCHAT_MODEL": "model",
    "VAULTCHAT_PROVIDER": "default_provider",
    "VAULTCHAT_VAULT_ROOT": "vault_root",
    "VAULTCHAT_TEAM_DOCS_PATH": "team_docs_path",
    "VAULTCHAT_AI_SCOPE": "ai_scope",
    "VAULTCHAT_STORAGE_DIR": "storage_dir",
    "VAULTCHAT_LOG_DIR": "log_dir",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "VAULTCHAT_DEBUG_LOGGING": "debug_logging",
    "VAULTCHAT_LOG_CONSOLE": "log_to_console",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "VAULTCHAT_REQUEST_TIMEOUT": "request_timeout",
    "VAULTCHAT_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "VAULTCHAT_MAX_TOOL_STEPS": "max_tool_steps",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

AiScope = Literal["team-docs", "vault-wide"]


@dataclass(slots=True)
class ContextPolicySettings:
    """Context budget policy configuration persisted with the settings."""

    max_input_tokens: int | None = None
    summarize_over_tokens: int = 6_000
    history_max_messages: int = 20
    retrieval_enabled: bool = True
    retrieval_k: int = 5
    snippet_length: int = 500
    include_mcp_overview: bool = True
    mcp_tools_per_client: int = 5
    summary_target_tokens: int = 400


@dataclass(slots=True)
class ProviderSettings:
    """Connection details for one OpenAI-compatible provider endpoint."""

    base_url: str
    api_key: str = ""
    models: list[str] = field(default_factory=list)
    default_model: str | None = None
    requires_api_key: bool = True


def default_providers() -> dict[str, ProviderSettings]:
    return {
        "openai": ProviderSettings(
            base_url="https://api.openai.com/v1",
            models=["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"],
            default_model="gpt-4o-mini",
        ),
        "anthropic": ProviderSettings(
            base_url="https://api.anthropic.com/v1/",
            models=["claude-sonnet-4-5", "claude-haiku-4-5"],
            default_model="claude-haiku-4-5",
        ),
        "google": ProviderSettings(
            base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
            models=["gemini-2.5-flash", "gemini-2.5-pro"],
            default_model="gemini-2.5-flash",
        ),
        "ollama": ProviderSettings(
            base_url="http://localhost:11434/v1",
            models=[],
            requires_api_key=False,
        ),
    }


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    default_provider: str = "openai"
    temperature: float = 0.2
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_steps: int = 15
    vault_root: str = "."
    team_docs_path: str = "TeamDocs"
    ai_scope: AiScope = "team-docs"
    storage_dir: str | None = None
    pinned_files: list[str] = field(default_factory=list)
    debug_logging: bool = False
    log_dir: str | None = None
    log_to_console: bool = True
    providers: dict[str, ProviderSettings] = field(default_factory=default_providers)
    context_policy: ContextPolicySettings = field(default_factory=ContextPolicySettings)

    def provider_settings(self, provider_id: str) -> ProviderSettings | None:
        """Return the effective settings for *provider_id*.

        The top-level ``api_key``/``base_url``/``model`` fields fill in the
        default provider's entry so a single env var is enough to get going.
        """

        key = (provider_id or "").strip().lower()
        configured = self.providers.get(key)
        if key != self.default_provider:
            return configured
        if configured is None:
            return ProviderSettings(
                base_url=self.base_url,
                api_key=self.api_key,
                models=[self.model] if self.model else [],
                default_model=self.model or None,
            )
        return replace(
            configured,
            api_key=configured.api_key or self.api_key,
            default_model=configured.default_model or self.model or None,
        )

    def resolved_storage_dir(self) -> Path:
        if self.storage_dir:
            return Path(self.storage_dir).expanduser()
        return _SETTINGS_DIR / "sessions"

    def resolved_log_dir(self) -> Path:
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return _SETTINGS_DIR / "logs"


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            policy_payload = data.get("context_policy")
            if isinstance(policy_payload, Mapping):
                try:
                    data["context_policy"] = ContextPolicySettings(**policy_payload)
                except TypeError:
                    LOGGER.warning("Ignoring malformed context_policy settings payload")
                    data["context_policy"] = ContextPolicySettings()
            providers_payload = data.get("providers")
            if isinstance(providers_payload, Mapping):
                data["providers"] = self._load_providers(providers_payload)
            else:
                data.pop("providers", None)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
        LOGGER.debug("Settings loaded from %s (providers=%s)", self._path, sorted(settings.providers))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        write_text(self._path, body)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            return json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _load_providers(self, payload: Mapping[str, Any]) -> dict[str, ProviderSettings]:
        providers = default_providers()
        for provider_id, entry in payload.items():
            if not isinstance(entry, Mapping):
                continue
            try:
                providers[str(provider_id).lower()] = ProviderSettings(**entry)
            except TypeError:
                LOGGER.warning("Ignoring malformed provider settings for %s", provider_id)
        return providers

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def redact_secret(value: str) -> str:
    """Return a display-safe hint for *value* (last four characters only)."""

    if not value:
        return ""
    tail = value[-4:] if len(value) > 4 else ""
    return f"…{tail}" if tail else "…"
