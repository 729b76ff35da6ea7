"""
The answering workflow: one question in, one answer out.

Opens a session (fresh, or continued from a stored conversation), drives it through the turn
engine with the planner checkpoints attached, and persists the final transcript.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import (
    Mapping,
    Optional,
    Sequence,
)

from parley.agent.agent_loop import TurnEngine
from parley.agent.events import NotificationSink
from parley.agent.planner import PlannerController
from parley.agent.prompts import COORDINATOR_PROMPT
from parley.agent.provider import ChatProvider
from parley.core.schema import (
    Message,
    PlannerPhase,
    SystemMessage,
    UserMessage,
)
from parley.core.session import (
    Session,
    SessionConfig,
)
from parley.memory.memory_store import ConversationStore
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

INCLUDE_PREAMBLE = "The user has included the following file for context"


def included_files(paths: Sequence[str]) -> str:
    """
    Render each file in *paths* as a fenced block introduced by :data:`INCLUDE_PREAMBLE`.

    Raises
    ------
    OSError
        If a file cannot be read; nothing is sent in that case.
    """
    blocks = []
    for name in paths:
        content = Path(name).expanduser().read_text(encoding="utf-8")
        blocks.append(f"{INCLUDE_PREAMBLE}: {name}\n```\n{content}\n```")
    return "\n\n".join(blocks)


def user_prompt(question: str, includes: str = "") -> str:
    return f"{question}\n{includes}" if includes else question


class AnswersAgent:
    """Coordinating agent answering user questions with tools and planner guidance."""

    def __init__(
        self,
        provider: ChatProvider,
        registry: ToolRegistry,
        config: Optional[SessionConfig] = None,
        store: Optional[ConversationStore] = None,
        planner_registries: Optional[Mapping[PlannerPhase, ToolRegistry]] = None,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.registry = registry
        self.store = store
        self.sink = sink
        self.engine = TurnEngine(
            provider,
            sink=sink,
            max_workers=self.config.tool_workers,
            tool_timeout=self.config.tool_timeout,
        )
        self.planner = PlannerController(
            self.engine,
            planner_registries or {},
            model=self.config.planner_model,
            max_tokens=self.config.planner_max_tokens,
            sink=sink,
        )

    def build_session(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        use_planner: bool = True,
        includes: str = "",
    ) -> Session:
        """Fresh session, or the stored conversation with *question* (and *includes*) appended."""
        messages: list[Message]
        if conversation_id and self.store is not None and self.store.exists(conversation_id):
            messages = self.store.load(conversation_id, self.sink)
            logger.info("Continuing conversation %s (%d messages)", conversation_id, len(messages))
        else:
            messages = [SystemMessage(content=COORDINATOR_PROMPT)]
        messages.append(UserMessage(content=user_prompt(question, includes)))
        return Session(
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            tools=self.registry,
            use_planner=use_planner,
            messages=messages,
        )

    def ask(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        use_planner: bool = True,
        cancel_event: Optional[threading.Event] = None,
        include: Sequence[str] = (),
    ) -> tuple[str, Session]:
        """
        Answer *question*; returns the conversation id used and the finished session.

        Files named in *include* are read up front and attached to the question.  An unreadable
        file raises :class:`OSError` before anything is sent.
        """
        includes = included_files(include)
        conversation_id = conversation_id or uuid.uuid4().hex
        session = self.build_session(question, conversation_id, use_planner, includes)
        self.engine.run(session, checkpoints=self.planner, cancel_event=cancel_event)

        label, usage = session.context_window_usage()
        logger.info("%s: %s", label, usage)

        if self.store is not None:
            path = self.store.save(conversation_id, session.messages)
            logger.info("Conversation %s saved to %s", conversation_id, path)
        return conversation_id, session
