from __future__ import annotations

import contextlib
import logging
import threading
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

from .errors import ErrorCode, HandlerFault, UnregisteredRequestType
from .messages import Request, Result


logger = logging.getLogger(__name__)

Handler = Callable[[Any], Result]


class _DispatchLock:
    """
    Readers-writer lock: many queries at once, or one command alone.

    Both sides are re-entrant for the thread that holds them: a command
    handler may dispatch nested commands or queries, and a query handler may
    dispatch nested queries even while a writer is waiting. A query handler
    may not dispatch a command; that raises ``RuntimeError``.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._reader_depth: dict[int, int] = {}
        self._writer: int | None = None
        self._writer_depth = 0
        self._writers_waiting = 0

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
            elif me in self._reader_depth:
                raise RuntimeError("cannot dispatch a command from inside a query handler")
            else:
                self._writers_waiting += 1
                try:
                    while self._writer is not None or self._readers > 0:
                        self._cond.wait()
                finally:
                    self._writers_waiting -= 1
                self._writer = me
                self._writer_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        me = threading.get_ident()
        if self._writer == me:
            # already exclusive on this thread
            yield
            return
        with self._cond:
            depth = self._reader_depth.get(me, 0)
            if depth == 0:
                while self._writer is not None or self._writers_waiting > 0:
                    self._cond.wait()
                self._readers += 1
            self._reader_depth[me] = depth + 1
        try:
            yield
        finally:
            with self._cond:
                depth = self._reader_depth[me] - 1
                if depth:
                    self._reader_depth[me] = depth
                else:
                    del self._reader_depth[me]
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()


class Mediator:
    """
    Routes each request to the single handler registered for its type.

    Registration is open until the first dispatch (or ``freeze()``); after that
    the table is read-only. Commands are serialized; queries may overlap each
    other but never a command.
    """

    def __init__(self, *, raise_faults: bool = False) -> None:
        self._handlers: dict[type, Handler] = {}
        self._frozen: Mapping[type, Handler] | None = None
        self._lock = _DispatchLock()
        self.raise_faults = raise_faults

    def register(self, request_type: type, handler: Handler) -> None:
        if self._frozen is not None:
            raise RuntimeError("Mediator registrations are frozen")
        if not (isinstance(request_type, type) and issubclass(request_type, Request)):
            raise TypeError(f"{request_type!r} is not a Request type")
        if request_type in self._handlers:
            raise ValueError(f"Handler already registered for {request_type.__name__}")
        self._handlers[request_type] = handler

    def freeze(self) -> Mapping[type, Handler]:
        if self._frozen is None:
            self._frozen = MappingProxyType(dict(self._handlers))
        return self._frozen

    @property
    def registered_types(self) -> tuple[type, ...]:
        return tuple(self.freeze().keys())

    def is_registered(self, request_type: type) -> bool:
        return request_type in self.freeze()

    def dispatch(self, request: Request) -> Result:
        handlers = self.freeze()
        request_type = type(request)
        handler = handlers.get(request_type)
        if handler is None:
            raise UnregisteredRequestType(request_type)

        guard = self._lock.read() if request_type.is_query else self._lock.write()
        with guard:
            try:
                result = handler(request)
            except Exception as exc:
                logger.exception("handler fault for %s", request_type.__name__)
                if self.raise_faults:
                    raise HandlerFault(request_type, exc) from exc
                return request_type.result_type.failed(ErrorCode.HANDLER_FAULT, detail=repr(exc))
        if not isinstance(result, request_type.result_type):
            fault = TypeError(
                f"handler for {request_type.__name__} returned {type(result).__name__}, "
                f"expected {request_type.result_type.__name__}"
            )
            logger.error("%s", fault)
            if self.raise_faults:
                raise HandlerFault(request_type, fault)
            return request_type.result_type.failed(ErrorCode.HANDLER_FAULT, detail=str(fault))
        return result
