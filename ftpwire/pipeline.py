"""Correlation of FTP commands with the responses the server sends back.

The control channel carries exactly one command at a time. Commands wait in
a FIFO queue; the head is written to the server and stays at the head until a
final (non-mark) response arrives for it. Only then the next command is
written.

A transfer command is answered twice: a 125/150 mark when the data
connection is accepted, and a status line once the data has moved. Its
completion fires on the mark, but the command stays in flight until the
status line arrives, which goes to ``ExpectedMarks.on_status`` and never to
a later command.

Completions are plain callables taking ``(error, response)``. The pipeline
never raises across that boundary: protocol errors, lost connections and
closed sessions are all delivered as the ``error`` argument.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, FrozenSet, Iterable, Optional, Protocol

from ftpwire.exceptions import (
    ClientConnectionError,
    ProtocolError,
    SessionClosedError,
)
from ftpwire.response import (
    GREETING_CODE,
    MARK_CODES,
    TRANSFER_COMPLETE_CODE,
    Response,
)

logger = logging.getLogger(__name__)

Completion = Callable[[Optional[Exception], Optional[Response]], None]
ReadyCallback = Callable[[Optional[Exception]], None]
Authenticator = Callable[[ReadyCallback], None]

# Commands that may be sent before the session is logged in
LOGIN_VERBS = frozenset({"FEAT", "USER", "PASS", "ACCT"})


class ControlChannel(Protocol):
    """What the pipeline needs from the control connection."""

    def is_writable(self) -> bool: ...

    def write(self, data: bytes) -> None: ...

    def reconnect(self, on_ready: ReadyCallback) -> None: ...


@dataclass(frozen=True)
class ExpectedMarks:
    """Marks a command accepts as acknowledgment that its transfer started.

    ``ignore_code`` is armed when one of the marks arrives; it is the
    status line expected to close the transfer, which is then swallowed
    quietly. ``on_status`` receives whatever status line closes the
    transfer, with a :class:`ProtocolError` for failure codes, or only an
    error when the connection goes away first.
    """

    marks: FrozenSet[int]
    ignore_code: Optional[int] = None
    on_mark: Optional[Callable[[Response], None]] = field(default=None, compare=False)
    on_status: Optional[Completion] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "marks", frozenset(self.marks))


def transfer_marks(
    on_mark: Optional[Callable[[Response], None]] = None,
    on_status: Optional[Completion] = None,
    marks: Iterable[int] = MARK_CODES,
) -> ExpectedMarks:
    """Expected marks for LIST/RETR/STOR style commands."""
    return ExpectedMarks(
        marks=frozenset(marks),
        ignore_code=TRANSFER_COMPLETE_CODE,
        on_mark=on_mark,
        on_status=on_status,
    )


@dataclass(frozen=True)
class QueuedCommand:
    action: str
    completion: Completion = field(compare=False)
    expected_marks: Optional[ExpectedMarks] = None
    setup: bool = False

    @property
    def verb(self) -> str:
        return self.action.split(" ", 1)[0].upper()

    @property
    def is_login(self) -> bool:
        return self.setup or self.verb in LOGIN_VERBS


def resolve_future(future: "asyncio.Future[Response]") -> Completion:
    """Completion settling ``future``; later calls are no-ops."""

    def completion(error: Optional[Exception], response: Optional[Response]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(response)  # type: ignore[arg-type]

    return completion


def sanitize(action: str) -> str:
    """Hide the argument of PASS commands."""
    verb, _, argument = action.partition(" ")
    if verb.upper() == "PASS" and argument:
        return f"{verb} {'*' * len(argument)}"
    return action


@dataclass
class SessionState:
    authenticated: bool = False
    authenticating: bool = False
    features: Optional[FrozenSet[str]] = None
    system_type: Optional[str] = None
    ignore_code: Optional[int] = None
    current_type: Optional[str] = None
    use_list: bool = False

    def reset(self) -> None:
        """Forget everything tied to the current control connection.

        ``use_list`` describes the server rather than the connection and
        survives reconnects.
        """
        self.authenticated = False
        self.authenticating = False
        self.features = None
        self.system_type = None
        self.ignore_code = None
        self.current_type = None


class CommandPipeline:
    """FIFO correlator between issued commands and framed responses.

    Args:
        channel: The control connection commands are written to
        authenticator: Called with a ``done`` callback when a command needs a
            logged-in session and there is none. It is expected to
            :meth:`splice` the login commands and call ``done`` with None or
            with the error that prevented login.
        encoding: Encoding of the command lines
    """

    def __init__(
        self,
        channel: ControlChannel,
        authenticator: Optional[Authenticator] = None,
        encoding: str = "utf-8",
    ) -> None:
        self.channel = channel
        self.state = SessionState()
        self.encoding = encoding
        self._authenticator = authenticator
        self._queue: Deque[QueuedCommand] = deque()
        self._in_flight = False
        self._reconnecting = False
        self._retried: Optional[QueuedCommand] = None
        self._closed = False
        # The head has been acknowledged by a mark and waits for its status line
        self._started = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def transfer_started(self) -> bool:
        return self._started

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(
        self,
        action: str,
        completion: Completion,
        expected_marks: Optional[ExpectedMarks] = None,
    ) -> QueuedCommand:
        """Queue a command; its completion fires after every earlier one."""
        command = QueuedCommand(action, completion, expected_marks)
        if self._closed:
            self._complete(command, SessionClosedError("Session is closed"), None)
            return command
        self._queue.append(command)
        self._dispatch()
        return command

    def splice(
        self,
        action: str,
        completion: Completion,
        expected_marks: Optional[ExpectedMarks] = None,
    ) -> QueuedCommand:
        """Put a session setup command in front of every queued command."""
        command = QueuedCommand(action, completion, expected_marks, setup=True)
        if self._closed:
            self._complete(command, SessionClosedError("Session is closed"), None)
            return command
        self._queue.insert(1 if self._in_flight else 0, command)
        self._dispatch()
        return command

    def on_response(self, response: Response) -> None:
        """Match a framed response against the command in flight."""
        if not self._queue or not self._in_flight or response.code == GREETING_CODE:
            logger.debug("Dropping response %d, no command is waiting for it", response.code)
            return

        head = self._queue[0]
        if self._started:
            if response.is_mark:
                logger.debug("Dropping mark %d, %s already started", response.code, head.verb)
                return
            self._end_transfer(head, response)
            return

        if response.is_mark:
            marks = head.expected_marks
            if marks is None or response.code not in marks.marks:
                logger.debug("Dropping unexpected mark %d for %s", response.code, head.verb)
                return
            self._started = True
            self.state.ignore_code = marks.ignore_code
            if marks.on_mark is not None:
                try:
                    marks.on_mark(response)
                except Exception:
                    logger.exception("Mark handler for %s raised", head.verb)
            self._complete(head, None, response)
            return

        self._queue.popleft()
        self._in_flight = False
        error = ProtocolError(response.code, response.text) if response.is_error else None
        self._complete(head, error, response)
        self._dispatch()

    def _end_transfer(self, head: QueuedCommand, response: Response) -> None:
        self._queue.popleft()
        self._in_flight = False
        self._started = False
        ignore_code, self.state.ignore_code = self.state.ignore_code, None

        error = None
        if response.code == ignore_code:
            logger.debug("Ignoring %d closing %s", response.code, head.verb)
        elif response.is_error:
            logger.warning("%s failed after it started: %s", head.verb, response.text)
            error = ProtocolError(response.code, response.text)
        self._notify_status(head, error, response)
        self._dispatch()

    def connection_lost(self, exc: Optional[Exception] = None) -> None:
        """Fail the command in flight; queued ones go out after a reconnect."""
        if self._closed:
            return
        self.state.reset()
        if self._in_flight and self._queue:
            head = self._queue.popleft()
            started, self._started = self._started, False
            self._in_flight = False
            reason = f": {exc}" if exc else ""
            self._fail(head, ClientConnectionError(f"Connection lost{reason}"), started)
        self._in_flight = False
        self._started = False
        self._dispatch()

    def close(self, exc: Optional[Exception] = None) -> None:
        """Refuse new commands and fail every command still queued."""
        if self._closed:
            return
        self._closed = True
        pending = list(self._queue)
        started, self._started = self._started and self._in_flight, False
        self._queue.clear()
        self._in_flight = False
        for index, command in enumerate(pending):
            error = exc or SessionClosedError("Session closed")
            self._fail(command, error, started and index == 0)

    def _dispatch(self) -> None:
        while self._queue and not (self._in_flight or self._reconnecting or self._closed):
            head = self._queue[0]
            if self._needs_login(head):
                if self.state.authenticating:
                    return
                assert self._authenticator is not None
                self.state.authenticating = True
                self._authenticator(self._login_done)
                continue

            if self._write(head):
                self._in_flight = True
                self._retried = None
                return

            if self._retried is head:
                self._retried = None
                self._queue.popleft()
                self._complete(
                    head,
                    ClientConnectionError(f"Could not send {head.verb}: connection is down"),
                    None,
                )
                continue

            self._retried = head
            self._start_reconnect()
            return

    def _needs_login(self, command: QueuedCommand) -> bool:
        return (
            self._authenticator is not None
            and not self.state.authenticated
            and not command.is_login
        )

    def _write(self, command: QueuedCommand) -> bool:
        if not self.channel.is_writable():
            return False
        try:
            self.channel.write(f"{command.action}\r\n".encode(self.encoding))
        except OSError as e:
            logger.warning("Writing %s failed: %s", command.verb, e)
            return False
        logger.debug("-> %s", sanitize(command.action))
        return True

    def _start_reconnect(self) -> None:
        logger.info("Control connection is not writable, reconnecting")
        self.state.reset()
        self._reconnecting = True
        self.channel.reconnect(self._reconnected)

    def _reconnected(self, exc: Optional[Exception]) -> None:
        self._reconnecting = False
        if exc is not None and self._queue and not self._closed:
            head = self._queue.popleft()
            self._retried = None
            self._complete(head, ClientConnectionError(f"Reconnect failed: {exc}"), None)
        self._dispatch()

    def _login_done(self, exc: Optional[Exception]) -> None:
        self.state.authenticating = False
        if exc is None:
            self.state.authenticated = True
        else:
            waiting = [command for command in self._queue if not command.is_login]
            self._queue = deque(command for command in self._queue if command.is_login)
            for command in waiting:
                self._complete(command, exc, None)
        self._dispatch()

    @staticmethod
    def _complete(
        command: QueuedCommand,
        error: Optional[Exception],
        response: Optional[Response],
    ) -> None:
        try:
            command.completion(error, response)
        except Exception:
            logger.exception("Completion for %s raised", sanitize(command.action))

    def _fail(self, command: QueuedCommand, error: Exception, started: bool = False) -> None:
        if started:
            self._notify_status(command, error, None)
        else:
            self._complete(command, error, None)

    @staticmethod
    def _notify_status(
        command: QueuedCommand,
        error: Optional[Exception],
        response: Optional[Response],
    ) -> None:
        marks = command.expected_marks
        if marks is None or marks.on_status is None:
            return
        try:
            marks.on_status(error, response)
        except Exception:
            logger.exception("Status handler for %s raised", command.verb)
