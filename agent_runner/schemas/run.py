from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateRunRequest(BaseModel):
    user_id: str = Field(..., description="Owner of the agent; identity is established upstream")
    agent_id: str = Field(..., description="Agent that executes the run")
    user_message: str = Field(..., min_length=1, description="The triggering user message")
    session_id: Optional[str] = Field(None, description="Continue an existing session")
    session_title: Optional[str] = Field(None, description="Title when a new session is created")
    new_session: bool = Field(False, description="Start a new session for this run")


class RunResponse(BaseModel):
    id: str
    project_id: str
    agent_id: str
    session_id: Optional[str] = None
    status: str
    input: dict
    output_json: Optional[dict] = None
    error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RunEventResponse(BaseModel):
    runId: str
    seq: int
    type: str
    createdAt: str
    payload: Any


class RunEventsResponse(BaseModel):
    events: List[RunEventResponse]


class CancelRunResponse(BaseModel):
    ok: bool = True
    run_id: str
    status: str
