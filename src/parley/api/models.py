"""
Pydantic models for Parley API requests and responses.
This module defines the request and response schemas used by the Parley API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class AskRequest(BaseModel):
    """Incoming user question."""

    question: str = Field(..., description="User question for Parley")
    conversation_id: Optional[str] = Field(
        None, description="Continue this stored conversation (created if unknown)"
    )
    use_planner: bool = Field(True, description="Consult the planner at each checkpoint")


class AskResponse(BaseModel):
    """API response returned to the caller."""

    answer: str
    conversation_id: str
    events: List[Tuple[str, str, Any]] = Field(default_factory=list)
    tools_used: Dict[str, int] = Field(default_factory=dict)
    usage: str


class ConversationResponse(BaseModel):
    """A stored transcript in generic field form."""

    conversation_id: str
    timestamp: float
    messages: List[Dict[str, Any]]
