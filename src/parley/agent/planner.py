"""
Planner checkpoint controller.

The planner is a sub-agent consulted at three checkpoints of the turn loop:

* **initial** - before the first turn; its research plan is injected as a user message.
* **checkin** - after every completed tool-call round; its guidance is injected as a user message
  and may tell the coordinating agent to proceed to answering.
* **finish** - after the final answer; its durable notes are appended as a system message, which
  keeps them out of replay narration while leaving them in the model-facing history.

Every consultation is an independent, nested turn-engine run over a fresh session with its own
system prompt and small tool registry.  Nested runs never get checkpoints, so planning never
recurses.
"""

import json
import logging
from typing import (
    Mapping,
    Optional,
)

from parley.agent.agent_loop import (
    Checkpoints,
    TurnEngine,
)
from parley.agent.events import (
    TOOL_ERROR,
    TOOL_REQUEST,
    TOOL_RESULT,
    NotificationSink,
    notify,
)
from parley.agent.prompts import PLANNER_PROMPTS
from parley.core.schema import (
    PlannerPhase,
    SystemMessage,
    UserMessage,
    dump_messages,
)
from parley.core.session import Session
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

PLANNER_PREFIX = "From the Planner Agent: "

_STEPS = {
    PlannerPhase.INITIAL: "Building a research plan",
    PlannerPhase.CHECKIN: "Evaluating research and planning next steps",
    PlannerPhase.FINISH: "Consolidating lessons learned from the research",
}


def build_transcript(session: Session) -> str:
    """Planner input: the coordinating agent's tools and its non-system messages."""
    tools = "\n".join(f"`{spec.name}`: {spec.description}" for spec in session.tools.specs())
    msgs = [m for m in session.messages if not isinstance(m, SystemMessage)]
    transcript = json.dumps(dump_messages(msgs), indent=2, ensure_ascii=False)
    return (
        "# Tools available to the Coordinating Agent:\n"
        f"```\n{tools}\n```\n"
        "# Conversation and research transcript:\n"
        f"```\n{transcript}\n```\n"
    )


class PlannerController(Checkpoints):
    """Consults the planner at each checkpoint when the session has planning enabled."""

    def __init__(
        self,
        engine: TurnEngine,
        registries: Mapping[PlannerPhase, ToolRegistry],
        model: str,
        max_tokens: int = 128_000,
        prompts: Optional[Mapping[PlannerPhase, str]] = None,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self.engine = engine
        self.registries = registries
        self.model = model
        self.max_tokens = max_tokens
        self.prompts = prompts or PLANNER_PROMPTS
        self.sink = sink

    def initial(self, session: Session) -> None:
        response = self.consult(PlannerPhase.INITIAL, session)
        if response is not None:
            session.append(UserMessage(content=PLANNER_PREFIX + response))

    def checkin(self, session: Session) -> None:
        response = self.consult(PlannerPhase.CHECKIN, session)
        if response is not None:
            session.append(UserMessage(content=PLANNER_PREFIX + response))

    def finish(self, session: Session) -> None:
        response = self.consult(PlannerPhase.FINISH, session)
        if response is not None:
            session.append(SystemMessage(content=response))

    def consult(self, phase: PlannerPhase, session: Session) -> Optional[str]:
        """Run the planner for *phase*; *None* when disabled or when the planner failed."""
        if not session.planner_enabled():
            return None

        notify(self.sink, TOOL_REQUEST, "planner", {"phase": phase.value, "step": _STEPS[phase]})
        nested = Session(
            model=self.model,
            max_tokens=self.max_tokens,
            tools=self.registries.get(phase) or ToolRegistry(),
            use_planner=False,
            messages=[
                SystemMessage(content=self.prompts[phase]),
                UserMessage(content=build_transcript(session)),
            ],
        )
        response = self.engine.run(nested)
        if nested.error is not None:
            logger.warning("Planner %s checkpoint failed: %s", phase.value, nested.error)
            notify(self.sink, TOOL_ERROR, "planner", {"phase": phase.value}, nested.error)
            return None

        logger.debug("Planner %s response: %s", phase.value, response)
        notify(self.sink, TOOL_RESULT, "planner", {"phase": phase.value}, response)
        return response
