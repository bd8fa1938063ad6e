from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar, overload

from pydantic import BaseModel, ValidationError

import kernelmux.shared.message as codec
from kernelmux.client.control import KernelControlClient
from kernelmux.client.registry import Session, SessionRegistry
from kernelmux.settings import KernelClientSettings
from kernelmux.shared.channel import ChannelOpener, ChannelRegistry
from kernelmux.shared.exceptions import KernelError, ProtocolMismatch
from kernelmux.types import (
    CompletionContent,
    EvaluationResult,
    ExecuteOptions,
    ExecuteReplyContent,
    ExecutionResult,
    HistoryEntry,
    InspectionContent,
    Message,
)
from kernelmux.utilities.logging import configure_logging

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

StdoutFnT = Callable[[str], Awaitable[None]]

# execute_silent keeps the line out of history but still publishes output.
SILENT_EXECUTE_OPTIONS = ExecuteOptions(store_history=False, silent=False, allow_stdin=False)


def _require(content: dict[str, Any], key: str, msg_type: str) -> Any:
    if key not in content:
        raise ProtocolMismatch(f"{msg_type} is missing {key!r}")
    return content[key]


def _validate(model: type[ModelT], content: dict[str, Any], msg_type: str) -> ModelT:
    try:
        return model.model_validate(content)
    except ValidationError as e:
        raise ProtocolMismatch(f"malformed {msg_type}: {e}") from e


def _merge_output(result: ExecutionResult, content: dict[str, Any], msg_type: str) -> None:
    data = _require(content, "data", msg_type)
    if not isinstance(data, dict):
        raise ProtocolMismatch(f"{msg_type} data is not a mime bundle")
    result.data.update(data)
    result.metadata.update(content.get("metadata") or {})
    if content.get("execution_count") is not None:
        result.execution_count = content["execution_count"]
    if "text/plain" in data:
        result.text = data["text/plain"]


def _evaluation_result(expression: str, raw: Any) -> EvaluationResult:
    if not isinstance(raw, dict):
        raise ProtocolMismatch(f"result for {expression!r} is not an object")
    result = _validate(EvaluationResult, raw, "user_expressions")
    if result.status == "ok":
        if "text/plain" not in result.data:
            raise ProtocolMismatch(f"result for {expression!r} has no text/plain representation")
        result.text = result.data["text/plain"]
    return result


def _history_entry(line: Any, has_output: bool) -> HistoryEntry:
    if not isinstance(line, list | tuple) or len(line) != 3:
        raise ProtocolMismatch(f"malformed history line {line!r}")
    session, line_number, source = line
    try:
        if not has_output:
            return HistoryEntry(session=session, line_number=line_number, input=source)
        if not isinstance(source, list | tuple) or len(source) != 2:
            raise ProtocolMismatch(f"history line {line!r} has no output")
        return HistoryEntry(session=session, line_number=line_number, input=source[0], output=source[1])
    except ValidationError as e:
        raise ProtocolMismatch(f"malformed history line {line!r}") from e


class KernelClient:
    """
    Typed operations against kernels, addressed by caller-chosen kernel ids.

    Each operation resolves the kernel's session, sends one request through
    the session registry's dispatcher and builds a result from the reply and
    the notifications that preceded it.

    Example:
        async with ChannelRegistry(opener) as channels:
            client = KernelClient(channels, KernelControlClient("http://localhost:8888"))
            await client.start_kernel("main")
            result = await client.execute("main", "print('hi')")
    """

    def __init__(
        self,
        channels: ChannelRegistry,
        control: KernelControlClient | None = None,
        settings: KernelClientSettings | None = None,
    ) -> None:
        self.settings = settings or KernelClientSettings()
        self.control = control or KernelControlClient(self.settings.base_url, timeout=self.settings.http_timeout)
        self.channels = channels
        self.sessions = SessionRegistry(channels, self.control)

    # Lifecycle

    async def retrieve_started_kernels(self) -> list[str]:
        return await self.control.list_kernels()

    async def start_kernel(self, kernel_id: str, kernel_spec: str | None = None) -> Session:
        return await self.sessions.start_session(kernel_id, kernel_spec)

    async def connect_kernel(self, kernel_id: str, channel_id: str) -> Session:
        return await self.sessions.connect_session(kernel_id, channel_id)

    async def get_kernel(self, kernel_id: str) -> Session:
        return await self.sessions.get_session(kernel_id)

    async def get_or_start_kernel(self, kernel_id: str, kernel_spec: str | None = None) -> Session:
        return await self.sessions.get_or_start(kernel_id, kernel_spec)

    async def interrupt_kernel(self, kernel_id: str) -> None:
        session = await self.sessions.resolve(kernel_id)
        await self.control.interrupt_kernel(session.channel_id)

    async def restart_kernel(self, kernel_id: str) -> None:
        session = await self.sessions.resolve(kernel_id)
        await self.control.restart_kernel(session.channel_id)

    def handle(self, kernel_id: str) -> KernelHandle:
        return KernelHandle(self, kernel_id)

    async def _send(
        self,
        kernel_id: str,
        message: Message,
        notification_callback: Callable[[Message], Awaitable[None]] | None = None,
    ) -> Message:
        session = await self.sessions.resolve(kernel_id)
        return await self.sessions.dispatcher.send_request(session.channel_id, message, notification_callback)

    # Operations

    async def execute(
        self,
        kernel_id: str,
        code: str,
        options: ExecuteOptions | None = None,
        stdout_callback: StdoutFnT | None = None,
    ) -> ExecutionResult:
        """
        Run ``code`` and collect what it printed and displayed.

        Only notifications whose parent is this request are accumulated;
        output of other requests running on the same kernel is ignored.
        ``stdout_callback`` receives each stdout chunk as it arrives.

        Raises:
            KernelError: If the request fails; output collected up to that
                point is attached as ``partial_result``
        """
        options = options or self.settings.execute
        message = codec.make_execute_message(code, options.silent, options.store_history, {}, options.allow_stdin)
        msg_id = codec.get_msg_id(message)
        result = ExecutionResult()

        async def on_notification(notification: Message) -> None:
            if codec.get_parent_id(notification) != msg_id:
                return
            msg_type = codec.get_message_type(notification)
            content = codec.get_content(notification)
            if msg_type == "stream":
                if content.get("name") != "stdout":
                    return
                text = _require(content, "text", msg_type)
                result.stdout.append(text)
                if stdout_callback is not None:
                    await stdout_callback(text)
            elif msg_type in ("execute_result", "display_data"):
                _merge_output(result, content, msg_type)

        try:
            reply = await self._send(kernel_id, message, on_notification)
            content = _validate(ExecuteReplyContent, codec.get_content(reply), "execute_reply")
        except KernelError as e:
            e.partial_result = result
            raise

        result.status = content.status
        if content.execution_count is not None:
            result.execution_count = content.execution_count
        if content.status == "error":
            result.ename = content.ename
            result.evalue = content.evalue
            result.traceback = content.traceback
        return result

    async def execute_silent(self, kernel_id: str, code: str) -> ExecutionResult:
        return await self.execute(kernel_id, code, SILENT_EXECUTE_OPTIONS)

    @overload
    async def evaluate(self, kernel_id: str, expressions: str) -> EvaluationResult: ...

    @overload
    async def evaluate(self, kernel_id: str, expressions: Sequence[str]) -> list[EvaluationResult]: ...

    async def evaluate(
        self, kernel_id: str, expressions: str | Sequence[str]
    ) -> EvaluationResult | list[EvaluationResult]:
        """
        Evaluate expressions without touching history.

        A single expression yields a single result; a sequence yields a list
        in the same order.
        """
        single = isinstance(expressions, str)
        items = [expressions] if isinstance(expressions, str) else list(expressions)
        user_expressions = {str(index): expression for index, expression in enumerate(items)}
        message = codec.make_execute_message("", True, False, user_expressions, False)

        reply = await self._send(kernel_id, message)
        raw = _require(codec.get_content(reply), "user_expressions", "execute_reply")
        if not isinstance(raw, dict):
            raise ProtocolMismatch("execute_reply user_expressions is not an object")

        results: list[EvaluationResult] = []
        for key, expression in user_expressions.items():
            if key not in raw:
                raise ProtocolMismatch(f"execute_reply has no result for {expression!r}")
            results.append(_evaluation_result(expression, raw[key]))
        return results[0] if single else results

    async def inspect(self, kernel_id: str, code: str, cursor_pos: int, detail_level: int = 0) -> InspectionContent:
        reply = await self._send(kernel_id, codec.make_inspect_message(code, cursor_pos, detail_level))
        return _validate(InspectionContent, codec.get_content(reply), "inspect_reply")

    async def complete(self, kernel_id: str, code: str, cursor_pos: int) -> CompletionContent:
        reply = await self._send(kernel_id, codec.make_complete_message(code, cursor_pos))
        return _validate(CompletionContent, codec.get_content(reply), "complete_reply")

    async def get_history(self, kernel_id: str, message: Message) -> list[HistoryEntry]:
        """Send a prebuilt history request and reshape the lines of its reply."""
        has_output = bool(codec.get_content(message).get("output"))
        reply = await self._send(kernel_id, message)
        lines = _require(codec.get_content(reply), "history", "history_reply")
        if not isinstance(lines, list):
            raise ProtocolMismatch("history_reply history is not a list")
        return [_history_entry(line, has_output) for line in lines]

    async def history_search(
        self,
        kernel_id: str,
        pattern: str,
        n: int | None = None,
        unique: bool = False,
        output: bool = True,
        raw: bool = True,
    ) -> list[HistoryEntry]:
        message = codec.make_history_message(output, raw, "search", n=n, pattern=pattern, unique=unique)
        return await self.get_history(kernel_id, message)

    async def history_range(
        self,
        kernel_id: str,
        start: int,
        stop: int,
        output: bool = False,
        raw: bool = False,
    ) -> list[HistoryEntry]:
        message = codec.make_history_message(output, raw, "range", start=start, stop=stop)
        return await self.get_history(kernel_id, message)

    async def history_tail(self, kernel_id: str, n: int, output: bool = True, raw: bool = True) -> list[HistoryEntry]:
        message = codec.make_history_message(output, raw, "tail", n=n)
        return await self.get_history(kernel_id, message)


class KernelHandle:
    """The operations of a `KernelClient` bound to one kernel id."""

    def __init__(self, client: KernelClient, kernel_id: str) -> None:
        self.client = client
        self.kernel_id = kernel_id

    async def start(self, kernel_spec: str | None = None) -> Session:
        return await self.client.start_kernel(self.kernel_id, kernel_spec)

    async def session(self) -> Session:
        return await self.client.get_kernel(self.kernel_id)

    async def interrupt(self) -> None:
        await self.client.interrupt_kernel(self.kernel_id)

    async def restart(self) -> None:
        await self.client.restart_kernel(self.kernel_id)

    async def execute(
        self, code: str, options: ExecuteOptions | None = None, stdout_callback: StdoutFnT | None = None
    ) -> ExecutionResult:
        return await self.client.execute(self.kernel_id, code, options, stdout_callback)

    async def execute_silent(self, code: str) -> ExecutionResult:
        return await self.client.execute_silent(self.kernel_id, code)

    @overload
    async def evaluate(self, expressions: str) -> EvaluationResult: ...

    @overload
    async def evaluate(self, expressions: Sequence[str]) -> list[EvaluationResult]: ...

    async def evaluate(self, expressions: str | Sequence[str]) -> EvaluationResult | list[EvaluationResult]:
        return await self.client.evaluate(self.kernel_id, expressions)

    async def inspect(self, code: str, cursor_pos: int, detail_level: int = 0) -> InspectionContent:
        return await self.client.inspect(self.kernel_id, code, cursor_pos, detail_level)

    async def complete(self, code: str, cursor_pos: int) -> CompletionContent:
        return await self.client.complete(self.kernel_id, code, cursor_pos)

    async def history_search(
        self, pattern: str, n: int | None = None, unique: bool = False, output: bool = True, raw: bool = True
    ) -> list[HistoryEntry]:
        return await self.client.history_search(self.kernel_id, pattern, n, unique, output, raw)

    async def history_range(self, start: int, stop: int, output: bool = False, raw: bool = False) -> list[HistoryEntry]:
        return await self.client.history_range(self.kernel_id, start, stop, output, raw)

    async def history_tail(self, n: int, output: bool = True, raw: bool = True) -> list[HistoryEntry]:
        return await self.client.history_tail(self.kernel_id, n, output, raw)


@asynccontextmanager
async def open_kernel_client(
    opener: ChannelOpener,
    settings: KernelClientSettings | None = None,
    control: KernelControlClient | None = None,
) -> AsyncIterator[KernelClient]:
    """
    Create a `KernelClient` together with the channel registry it runs on.

    Logging is configured from ``settings.log_level``. All channels are torn
    down, and a control client created here is closed, on exit.
    """
    settings = settings or KernelClientSettings()
    configure_logging(settings.log_level)
    owns_control = control is None
    async with ChannelRegistry(opener) as channels:
        client = KernelClient(channels, control, settings)
        try:
            yield client
        finally:
            if owns_control:
                await client.control.aclose()
