"""Builds the orchestration components from :mod:`parley.config` settings."""

import logging
from pathlib import Path
from typing import Optional

from parley.agent.answers import AnswersAgent
from parley.agent.events import NotificationSink
from parley.agent.hosted import OpenAIAssistantsProvider
from parley.agent.provider import load_provider
from parley.agent.run_poller import RunStatusPoller
from parley.config import Settings
from parley.core.session import SessionConfig
from parley.memory.memory_store import ConversationStore
from parley.memory.settings_store import SettingsStore
import parley.tools.files  # noqa: F401  # registers the file tools
from parley.tools import TOOL_REGISTRY
from parley.tools.notes import (
    NotesStore,
    StrategiesStore,
    planner_registries,
)

logger = logging.getLogger(__name__)


def _api_key(settings: Settings) -> Optional[str]:
    if settings.PROVIDER.lower() == "anthropic":
        return settings.ANTHROPIC_API_KEY
    return settings.OPENAI_API_KEY


def conversation_store(settings: Settings) -> ConversationStore:
    return ConversationStore(Path(settings.DATA_DIR) / "conversations")


def notes_store(settings: Settings) -> NotesStore:
    return NotesStore(Path(settings.DATA_DIR) / "notes.jsonl")


def build_answers_agent(
    settings: Settings, sink: Optional[NotificationSink] = None
) -> AnswersAgent:
    """Direct-protocol agent wired with the default tools, notes and conversation store."""
    provider = load_provider(
        settings.PROVIDER, api_key=_api_key(settings), timeout=settings.API_TIMEOUT
    )
    notes = notes_store(settings)
    strategies = StrategiesStore(Path(settings.DATA_DIR) / "strategies.jsonl")
    logger.debug("Using provider '%s' with model '%s'", settings.PROVIDER, settings.MODEL)
    return AnswersAgent(
        provider,
        TOOL_REGISTRY,
        config=SessionConfig.from_settings(settings),
        store=conversation_store(settings),
        planner_registries=planner_registries(notes, strategies),
        sink=sink,
    )


def build_run_poller(settings: Settings, sink: Optional[NotificationSink] = None) -> RunStatusPoller:
    """Hosted-protocol poller; requires ``ASSISTANT_ID``."""
    if not settings.ASSISTANT_ID:
        raise ValueError("ASSISTANT_ID must be set to use the hosted protocol.")
    config = SessionConfig.from_settings(settings)
    return RunStatusPoller(
        OpenAIAssistantsProvider(api_key=settings.OPENAI_API_KEY, timeout=settings.API_TIMEOUT),
        TOOL_REGISTRY,
        assistant_id=settings.ASSISTANT_ID,
        settings_store=SettingsStore(settings.SETTINGS_FILE),
        sink=sink,
        max_workers=config.tool_workers,
        tool_timeout=config.tool_timeout,
        poll_interval=config.poll_interval,
        poll_timeout=config.poll_timeout,
    )
