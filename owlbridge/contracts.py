"""Core data contracts for owlbridge jobs and tracking records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_PAGE_CONTEXT


class JobState(str, Enum):
    """Orchestration states, in the order a job moves through them."""

    CREATED = "created"
    CONVERSATION_RESOLVED = "conversation_resolved"
    INPUT_SUBMITTED = "input_submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """One orchestration request. Identity is ``external_record_key``.

    Direct chat requests carry no tracking record and leave the key unset.
    """

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_record_key: Optional[str] = None
    auth_credential: str
    conversation_id: Optional[str] = None
    prompt_input: Optional[str] = None
    page_context: str = DEFAULT_PAGE_CONTEXT
    is_prod: bool = True
    record_id: Optional[str] = None
    is_existing: bool = False
    crm_token: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TrackingRecord(BaseModel):
    """CRM-resident state for one external key."""

    record_id: str
    external_key: Optional[str] = None
    conversation_id: Optional[str] = None
    history: str = ""
    done: bool = False
    latest_response: Optional[str] = None


class ConversationRun(BaseModel):
    conversation_id: str
    run_id: str


class RunPending(BaseModel):
    status: Literal["pending"] = "pending"


class RunDone(BaseModel):
    status: Literal["done"] = "done"
    payload: Any = None


RunStatus = Union[RunPending, RunDone]


class JobResult(BaseModel):
    """Outcome of a single orchestration run."""

    job_id: str
    state: JobState
    conversation_id: Optional[str] = None
    run_id: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.COMPLETED


# ----------------------------------------------------------------------
# Inbound request bodies. Field names follow the public wire format.


class ChatRequest(BaseModel):
    """Body of the synchronous ``POST /`` endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: Optional[str] = None
    input: Optional[str] = None
    context: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    is_prod: bool = Field(default=True, alias="isProd")


class JobRequest(BaseModel):
    """Body of the asynchronous ``POST /jobs`` endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sfdc_token: Optional[str] = Field(default=None, alias="sfdcToken")
    access_token: Optional[str] = None
    input: Optional[str] = None
    message: Optional[str] = None
    context: Optional[str] = None
    record_id: Optional[str] = Field(default=None, alias="recordId")
    parent_record_id: Optional[str] = Field(default=None, alias="parentRecordId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    is_prod: bool = Field(default=True, alias="isProd")

    @property
    def prompt_message(self) -> Optional[str]:
        return self.input or self.message

    @property
    def parent_key(self) -> Optional[str]:
        return self.parent_record_id or self.record_id
