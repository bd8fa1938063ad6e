"""Pydantic models for Jupyter protocol messages and typed operation results."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROTOCOL_VERSION = "5.3"

ReplyStatus = Literal["ok", "error", "aborted"]


class KernelStatus(str, Enum):
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "KernelStatus":
        # Kernels also report states such as "restarting" or "dead".
        return cls.UNKNOWN


class MessageHeader(BaseModel):
    model_config = ConfigDict(extra="allow")

    msg_id: str
    msg_type: str
    session: str
    username: str = "kernelmux"
    date: str | None = None
    version: str = PROTOCOL_VERSION


class Message(BaseModel):
    """A single protocol message as carried on a kernel channel."""

    model_config = ConfigDict(extra="allow")

    header: MessageHeader
    parent_header: MessageHeader | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    content: dict[str, Any] = Field(default_factory=dict)
    channel: str | None = None

    @field_validator("parent_header", mode="before")
    @classmethod
    def _empty_parent_is_none(cls, value: Any) -> Any:
        if not value:
            return None
        return value


class ExecuteOptions(BaseModel):
    """Flags sent with every execute request unless overridden by the caller."""

    model_config = ConfigDict(frozen=True)

    store_history: bool = True
    silent: bool = False
    allow_stdin: bool = False


class KernelInfo(BaseModel):
    """Content of a ``kernel_info_reply``, captured when a session connects."""

    model_config = ConfigDict(extra="allow")

    status: ReplyStatus = "ok"
    protocol_version: str
    implementation: str | None = None
    implementation_version: str | None = None
    language_info: dict[str, Any] = Field(default_factory=dict)
    banner: str = ""


class ExecutionResult(BaseModel):
    stdout: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    text: str | None = None
    execution_count: int | None = None
    status: ReplyStatus | None = None
    ename: str | None = None
    evalue: str | None = None
    traceback: list[str] = Field(default_factory=list)


class EvaluationResult(BaseModel):
    """One entry of ``user_expressions`` in an execute reply."""

    status: ReplyStatus
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    text: str | None = None
    ename: str | None = None
    evalue: str | None = None
    traceback: list[str] = Field(default_factory=list)


class InspectionContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: ReplyStatus
    found: bool = False
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompletionContent(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: ReplyStatus
    matches: list[str]
    cursor_start: int
    cursor_end: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    """A reshaped history line.

    ``output`` is only set when the history request asked for output; check
    ``model_fields_set`` to tell an unrequested output from an empty one.
    """

    session: int | str
    line_number: int
    input: str
    output: str | None = None


class ExecuteReplyContent(BaseModel):
    """Content of an ``execute_reply``."""

    model_config = ConfigDict(extra="allow")

    status: ReplyStatus
    execution_count: int | None = None
    ename: str | None = None
    evalue: str | None = None
    traceback: list[str] = Field(default_factory=list)
