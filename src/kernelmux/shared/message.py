"""Builders and accessors for Jupyter protocol messages.

Requests are created as `Message` models addressed to the shell channel.
Inbound messages are classified into direct replies (which conclude a
request) and broadcast notifications (status, streams, display data).
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from kernelmux.types import Message, MessageHeader

# Protocol session id stamped on every request sent by this process.
CLIENT_SESSION = uuid4().hex

SHELL_CHANNEL = "shell"
IOPUB_CHANNEL = "iopub"


def make_message(
    msg_type: str,
    content: dict[str, Any],
    session: str | None = None,
    parent: Message | None = None,
    channel: str = SHELL_CHANNEL,
) -> Message:
    header = MessageHeader(
        msg_id=uuid4().hex,
        msg_type=msg_type,
        session=session or CLIENT_SESSION,
        date=datetime.now(timezone.utc).isoformat(),
    )
    return Message(
        header=header,
        parent_header=parent.header if parent is not None else None,
        content=content,
        channel=channel,
    )


def make_kernel_info_message() -> Message:
    return make_message("kernel_info_request", {})


def make_execute_message(
    code: str,
    silent: bool,
    store_history: bool,
    user_expressions: dict[str, str],
    allow_stdin: bool,
) -> Message:
    return make_message(
        "execute_request",
        {
            "code": code,
            "silent": silent,
            "store_history": store_history,
            "user_expressions": user_expressions,
            "allow_stdin": allow_stdin,
            "stop_on_error": True,
        },
    )


def make_inspect_message(code: str, cursor_pos: int, detail_level: int = 0) -> Message:
    return make_message(
        "inspect_request",
        {"code": code, "cursor_pos": cursor_pos, "detail_level": detail_level},
    )


def make_complete_message(code: str, cursor_pos: int) -> Message:
    return make_message("complete_request", {"code": code, "cursor_pos": cursor_pos})


def make_history_message(
    output: bool,
    raw: bool,
    hist_access_type: str,
    start: int | None = None,
    stop: int | None = None,
    n: int | None = None,
    pattern: str | None = None,
    unique: bool = False,
) -> Message:
    """Build a ``history_request``.

    Args:
        output: Whether the reply should carry the output of each line
        raw: Whether to return raw input rather than transformed input
        hist_access_type: One of ``range``, ``tail`` or ``search``
        start: First line of a ``range`` request
        stop: Line after the last one of a ``range`` request
        n: Number of lines for ``tail`` and ``search`` requests
        pattern: Glob pattern for ``search`` requests
        unique: Drop duplicate entries from ``search`` results
    """
    content: dict[str, Any] = {
        "output": output,
        "raw": raw,
        "hist_access_type": hist_access_type,
        "session": 0,
        "unique": unique,
    }
    if start is not None:
        content["start"] = start
    if stop is not None:
        content["stop"] = stop
    if n is not None:
        content["n"] = n
    if pattern is not None:
        content["pattern"] = pattern
    return make_message("history_request", content)


def get_message_type(message: Message) -> str:
    return message.header.msg_type


def get_content(message: Message) -> dict[str, Any]:
    return message.content


def get_session(message: Message) -> str:
    return message.header.session


def get_msg_id(message: Message) -> str:
    return message.header.msg_id


def get_parent_id(message: Message) -> str | None:
    if message.parent_header is None:
        return None
    return message.parent_header.msg_id


def is_reply(message: Message) -> bool:
    """Whether ``message`` is a direct reply rather than a broadcast notification."""
    if message.channel not in (None, SHELL_CHANNEL):
        return False
    return get_message_type(message).endswith("_reply")
