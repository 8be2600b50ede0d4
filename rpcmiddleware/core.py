"""Call primitives shared by the middleware: status codes, errors, contexts and streams."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

_MISSING = object()
_NEVER = threading.Event()


class Code(IntEnum):
    """Status codes of a remote call."""

    OK = 0
    CANCELED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    def __str__(self) -> str:
        if self is Code.OK:
            return "OK"
        return "".join(part.capitalize() for part in self.name.split("_"))

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


class RpcError(Exception):
    """An error carrying a status code and a description."""

    def __init__(self, code: Code, message: str = "") -> None:
        super().__init__(code, message)
        self.code = Code(code)
        self.message = message

    def __str__(self) -> str:
        return f"rpc error: code = {str(self.code)} desc = {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RpcError):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.code, self.message))


class ContextCancelled(Exception):
    """Raised or reported when a context was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class ContextDeadlineExceeded(Exception):
    """Raised or reported when a context's deadline has passed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class EndOfStream(Exception):
    """Raised by ``recv_msg`` when a stream has no more messages."""


def code_of(err: BaseException | None) -> Code:
    """Return the status code of an error; context errors map to their codes."""
    if err is None:
        return Code.OK
    if isinstance(err, RpcError):
        return err.code
    if isinstance(err, ContextDeadlineExceeded):
        return Code.DEADLINE_EXCEEDED
    if isinstance(err, ContextCancelled):
        return Code.CANCELED
    return Code.UNKNOWN


class _Scope:
    """Cancellation state shared by a context and the contexts derived from it."""

    def __init__(self, parent: _Scope | None, deadline: float | None) -> None:
        self.event = threading.Event()
        self.err: BaseException | None = None
        self.children: list[_Scope] = []
        self.lock = threading.Lock()
        self.parent = parent
        parent_deadline = parent.deadline if parent is not None else None
        if deadline is None:
            self.deadline = parent_deadline
        elif parent_deadline is None:
            self.deadline = deadline
        else:
            self.deadline = min(deadline, parent_deadline)
        if parent is not None:
            parent.attach(self)

    def attach(self, child: _Scope) -> None:
        err = self.error()
        if err is None:
            with self.lock:
                if self.err is None:
                    self.children.append(child)
                    return
                err = self.err
        child.cancel(err)

    def detach(self, child: _Scope) -> None:
        with self.lock:
            if child in self.children:
                self.children.remove(child)

    def cancel(self, err: BaseException) -> None:
        with self.lock:
            if self.err is not None:
                return
            self.err = err
            children, self.children = self.children, []
            self.event.set()
        for child in children:
            child.cancel(err)
        if self.parent is not None:
            self.parent.detach(self)

    def error(self) -> BaseException | None:
        if self.err is None and self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel(ContextDeadlineExceeded())
        return self.err


class Context:
    """Carries values, cancellation and a deadline across a call."""

    def __init__(self) -> None:
        self._parent: Context | None = None
        self._key: Any = _MISSING
        self._value: Any = None
        self._scope: _Scope | None = None
        self._owns_scope = False

    @classmethod
    def background(cls) -> Context:
        """Return an empty context that is never cancelled."""
        return cls()

    def _derive(self, *, key: Any = _MISSING, value: Any = None, scope: _Scope | None = None) -> Context:
        child = type(self).__new__(type(self))
        child._parent = self
        child._key = key
        child._value = value
        child._scope = scope if scope is not None else self._scope
        child._owns_scope = scope is not None
        return child

    def with_value(self, key: Any, value: Any) -> Context:
        """Return a child context that carries ``value`` under ``key``."""
        return self._derive(key=key, value=value)

    def value(self, key: Any) -> Any:
        """Return the value stored under ``key`` here or in an ancestor, or None."""
        ctx: Context | None = self
        while ctx is not None:
            if ctx._key is not _MISSING and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return None

    def with_cancel(self) -> Context:
        """Return a child context that can be cancelled with ``cancel()``."""
        return self._derive(scope=_Scope(self._scope, None))

    def with_timeout(self, timeout: float) -> Context:
        """Return a cancellable child context that expires after ``timeout`` seconds."""
        return self._derive(scope=_Scope(self._scope, time.monotonic() + timeout))

    def cancel(self) -> None:
        """Cancel this context and every context derived from it."""
        if not self._owns_scope or self._scope is None:
            raise RuntimeError("context cannot be cancelled; derive one with with_cancel()")
        self._scope.error()
        self._scope.cancel(ContextCancelled())

    def error(self) -> BaseException | None:
        """Return why the context is done, or None while it is still live."""
        if self._scope is None:
            return None
        return self._scope.error()

    def remaining(self) -> float | None:
        """Return the seconds left until the deadline, or None without one."""
        if self._scope is None or self._scope.deadline is None:
            return None
        return max(0.0, self._scope.deadline - time.monotonic())

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or ``timeout`` passes; return whether it is done."""
        if self._scope is None:
            _NEVER.wait(timeout)
            return False
        scope = self._scope
        end = None if timeout is None else time.monotonic() + timeout
        while True:
            if scope.error() is not None:
                return True
            limits = [limit for limit in (end, scope.deadline) if limit is not None]
            wait_for = None if not limits else max(0.0, min(limits) - time.monotonic())
            if scope.event.wait(wait_for):
                return True
            if end is not None and time.monotonic() >= end:
                return scope.error() is not None


@dataclass(frozen=True)
class StreamDesc:
    """Describes the shape of a streaming call."""

    stream_name: str = ""
    client_streams: bool = False
    server_streams: bool = False


class ServerStream(ABC):
    """The server side of a streaming call."""

    @abstractmethod
    def context(self) -> Context:
        """Return the call's context."""

    @abstractmethod
    def send_msg(self, message: Any) -> None:
        """Send one message to the client."""

    @abstractmethod
    def recv_msg(self) -> Any:
        """Receive one message; raise EndOfStream when there are no more."""


class ClientStream(ABC):
    """The client side of a streaming call."""

    @abstractmethod
    def context(self) -> Context:
        """Return the call's context."""

    @abstractmethod
    def send_msg(self, message: Any) -> None:
        """Send one message to the server."""

    @abstractmethod
    def recv_msg(self) -> Any:
        """Receive one message; raise EndOfStream when there are no more."""

    @abstractmethod
    def close_send(self) -> None:
        """Signal that no more messages will be sent."""

    @abstractmethod
    def header(self) -> Any:
        """Return the header metadata sent by the server."""

    @abstractmethod
    def trailer(self) -> Any:
        """Return the trailer metadata sent by the server."""


class WrappedServerStream(ServerStream):
    """A server stream whose context can be replaced."""

    def __init__(self, stream: ServerStream, wrapped_context: Context | None = None) -> None:
        self.stream = stream
        self.wrapped_context = stream.context() if wrapped_context is None else wrapped_context

    def context(self) -> Context:
        return self.wrapped_context

    def send_msg(self, message: Any) -> None:
        self.stream.send_msg(message)

    def recv_msg(self) -> Any:
        return self.stream.recv_msg()

    def __getattr__(self, name: str) -> Any:
        if name == "stream":
            raise AttributeError(name)
        return getattr(self.stream, name)


def wrap_server_stream(stream: ServerStream) -> WrappedServerStream:
    """Wrap a server stream so its context can be replaced; wrapping twice is a no-op."""
    if isinstance(stream, WrappedServerStream):
        return stream
    return WrappedServerStream(stream)