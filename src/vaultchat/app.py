"""Command-line entry point running one chat turn against a local vault."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.orchestration.background import BackgroundTaskRunner
from .ai.orchestration.chat_orchestrator import SUPPORTED_MODES, ChatOrchestrator
from .ai.orchestration.context_manager import ContextBudgetManager
from .ai.orchestration.errors import ConfigurationError, ProviderError
from .ai.orchestration.types import ChatResult
from .ai.providers import ProviderResolver
from .ai.services.summarizer import SummarizerService
from .ai.tools.planning import build_planning_tools
from .ai.tools.registry import InMemoryToolRegistry, merge_tool_sets
from .ai.tools.vault import build_vault_tools
from .services.chat_sessions import ChatSessionStore
from .services.context_storage import ContextStorage
from .services.plan_writer import PlanWriter
from .services.retrieval import VaultIndex, VaultRetriever, scope_root_for
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(settings: Settings, *, debug: bool = False) -> Path:
    """Configure logging for the command-line run from *settings*."""

    level = logging.DEBUG if debug else logging.WARNING
    log_path = logging_utils.setup_logging(level, settings.resolved_log_dir(), console=settings.log_to_console)
    _LOGGER.debug("Logging to %s (level=%s)", log_path, logging.getLevelName(level))
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - defensive path
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_orchestrator(settings: Settings) -> tuple[ChatOrchestrator, ChatSessionStore, VaultIndex]:
    """Wire the vault index, tools, storage, and provider resolver into an orchestrator."""

    index = VaultIndex(settings.vault_root)
    index.refresh()
    scope_root = scope_root_for(settings.ai_scope, settings.team_docs_path)
    storage = ContextStorage(settings.resolved_storage_dir())
    session_store = ChatSessionStore(storage)
    resolver = ProviderResolver(settings)
    plan_writer = PlanWriter(storage)
    base_tools = merge_tool_sets(
        build_vault_tools(index, scope_root=scope_root),
        build_planning_tools(storage, plan_writer),
    )
    registry = InMemoryToolRegistry(base_tools.values())
    orchestrator = ChatOrchestrator(
        settings,
        resolver,
        context_manager=ContextBudgetManager(
            retriever=VaultRetriever(index, scope_root=scope_root),
            storage=storage,
        ),
        tool_registry=registry,
        storage=storage,
        plan_writer=plan_writer,
        session_store=session_store,
        summarizer=SummarizerService(resolver),
        runner=BackgroundTaskRunner(),
    )
    return orchestrator, session_store, index


async def run_turn(
    orchestrator: ChatOrchestrator,
    session_store: ChatSessionStore,
    prompt: str,
    *,
    session_id: str,
    mode: str,
    provider_id: str | None = None,
    model_id: str | None = None,
    stream: TextIO | None = None,
    show_thoughts: bool = False,
) -> ChatResult:
    """Run one turn, stream the answer to *stream*, and persist the exchange."""

    destination = stream or sys.stdout
    history = await session_store.load(session_id)
    user_message = {"role": "user", "content": prompt}

    def _on_delta(text: str) -> None:
        destination.write(text)
        destination.flush()

    def _on_status(text: str) -> None:
        _LOGGER.info("%s", text)

    def _on_thought(text: str) -> None:
        if show_thoughts:
            sys.stderr.write(text)

    try:
        result = await orchestrator.stream_chat(
            [*history, user_message],
            mode,
            _on_delta,
            on_status=_on_status,
            on_thought=_on_thought,
            provider_id=provider_id,
            model_id=model_id,
            session_id=session_id,
        )
    finally:
        destination.write("\n")
    await session_store.save(
        session_id,
        [*history, user_message, {"role": "assistant", "content": result.text}],
    )
    _print_activity(result, destination)
    await orchestrator.wait_for_background()
    return result


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `vaultchat` console script."""

    args = _parse_cli_args(argv)

    settings_path = args.settings_path or os.environ.get("VAULTCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.vault:
        cli_overrides["vault_root"] = args.vault
    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    debug = args.debug or _env_flag("VAULTCHAT_DEBUG", default=False) or settings.debug_logging
    configure_logging(settings, debug=debug)
    if debug and not settings.debug_logging:
        settings = replace(settings, debug_logging=True)

    if not args.prompt and not args.list_models:
        print("A prompt is required (see --help).", file=sys.stderr)
        raise SystemExit(2)

    try:
        asyncio.run(_run_cli(settings, args))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    except ProviderError as exc:
        print(f"Provider error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def _run_cli(settings: Settings, args: argparse.Namespace) -> None:
    orchestrator, session_store, _ = build_orchestrator(settings)
    try:
        if args.list_models:
            client = orchestrator.resolver.resolve(args.provider, args.model)
            for model in await client.list_models():
                print(model)
            return
        await run_turn(
            orchestrator,
            session_store,
            " ".join(args.prompt),
            session_id=args.session,
            mode=args.mode,
            provider_id=args.provider,
            model_id=args.model,
            show_thoughts=args.thoughts,
        )
    finally:
        await orchestrator.aclose()


def _print_activity(result: ChatResult, destination: TextIO) -> None:
    if result.sources:
        destination.write("\nSources:\n")
        for path in result.sources:
            destination.write(f"  - {path}\n")
    for label, records in (("Proposed edits", result.proposals), ("Created documents", result.creations)):
        if records:
            destination.write(f"\n{label}:\n")
            for record in records:
                destination.write(f"  - {record.path} ({len(record.content)} chars)\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vaultchat",
        add_help=True,
        description="Ask a question about a markdown vault and stream the answer.",
    )
    parser.add_argument("prompt", nargs="*", help="The message to send.")
    parser.add_argument("--session", default="default", help="Session id used for history and notes.")
    parser.add_argument("--mode", choices=SUPPORTED_MODES, default="compose", help="Chat mode.")
    parser.add_argument("--provider", default=None, help="Provider id (defaults to the configured provider).")
    parser.add_argument("--model", default=None, help="Model id (defaults to the provider's default model).")
    parser.add_argument("--vault", metavar="PATH", default=None, help="Vault root directory.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("--thoughts", action="store_true", help="Echo reasoning and tool activity to stderr.")
    parser.add_argument("--list-models", action="store_true", help="List models offered by the provider and exit.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.vaultchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is type(None) or normalized.lower() in {"none", "null"}:
        return None
    if is_dataclass(target):
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dataclass overrides must be valid JSON") from exc
        if isinstance(target, type):
            return target(**payload)
        raise ValueError("Dataclass override target is not instantiable")
    if target is list:
        try:
            return json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is list:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    for provider in payload.get("providers", {}).values():
        provider["api_key"] = redact_secret(provider.get("api_key", ""))
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("VAULTCHAT_"))


__all__ = ["main", "build_orchestrator", "run_turn", "load_settings", "configure_logging"]
