"""Per-iteration execution contexts and the seed stream that seeds them.

An ``ExecutionContext`` is the isolated unit of runtime state handed to the
pipeline suggester and the iteration runner for exactly one iteration. It
owns a private cancellation flag, a pseudo-random generator seeded from
its own seed, and a list of log subscribers. Cancelling one context never
affects the experiment or any other iteration.

``SeedStream`` derives one child seed per iteration from the experiment's
parent seed so that repeated experiments with the same parent seed see the
same sequence of child seeds.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
import logging
import random
import threading

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# Child seeds span the non-negative 32-bit signed integer range.
_MAX_CHILD_SEED = 2**31 - 1


class OperationCancelledError(Exception):
    """Raised by training code that observed a cancelled execution context."""


class MessageKind(StrEnum):
    """Severity of a message emitted on an execution context's log stream."""

    TRACE = "trace"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogMessage(BaseModel):
    """A single message emitted on an execution context's log stream.

    Attributes:
        kind: Message severity.
        message: Fully formatted message text.
        source: Name of the component that emitted the message.
    """

    model_config = ConfigDict(frozen=True)

    kind: MessageKind
    message: str
    source: str | None = None


LogHandler = Callable[[LogMessage], None]


class ExecutionContext:
    """Isolated, independently cancellable runtime state for one iteration.

    Attributes:
        seed: Seed of this context, or ``None`` when unseeded.
        random: Generator seeded with ``seed`` (OS entropy when unseeded).
    """

    def __init__(self, seed: int | None = None) -> None:
        """Create a fresh context.

        Args:
            seed: Seed for the context's generator, or ``None`` for a
                non-deterministic generator.
        """
        self.seed = seed
        self.random = random.Random(seed)
        self._cancelled = threading.Event()
        self._handlers: list[LogHandler] = []
        self._handlers_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ExecutionContext(seed={self.seed!r}, cancelled={self.is_cancelled})"

    # -- cancellation -------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation. Idempotent and safe from any thread."""
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._cancelled.is_set()

    def check_cancelled(self) -> None:
        """Raise if cancellation was requested.

        Training code calls this at its yield points.

        Raises:
            OperationCancelledError: If the context has been cancelled.
        """
        if self._cancelled.is_set():
            msg = "Operation was cancelled"
            raise OperationCancelledError(msg)

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to *timeout* seconds, waking early on cancellation.

        Args:
            timeout: Maximum seconds to wait, or ``None`` to wait until
                cancelled.

        Returns:
            ``True`` if the context was cancelled.
        """
        return self._cancelled.wait(timeout)

    # -- log stream ---------------------------------------------------------

    def subscribe(self, handler: LogHandler) -> None:
        """Register *handler* to receive every message emitted on this context."""
        with self._handlers_lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: LogHandler) -> None:
        """Remove a previously registered handler. Unknown handlers are ignored."""
        with self._handlers_lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def log(
        self,
        kind: MessageKind,
        message: str,
        *args: object,
        source: str | None = None,
    ) -> None:
        """Emit a message to every subscriber.

        Args:
            kind: Message severity.
            message: Message text, ``%``-formatted with *args* when given.
            *args: Positional formatting arguments.
            source: Optional name of the emitting component.
        """
        text = message % args if args else message
        entry = LogMessage.model_construct(kind=kind, message=text, source=source)
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(entry)

    def trace(self, message: str, *args: object) -> None:
        self.log(MessageKind.TRACE, message, *args)

    def info(self, message: str, *args: object) -> None:
        self.log(MessageKind.INFO, message, *args)

    def warning(self, message: str, *args: object) -> None:
        self.log(MessageKind.WARNING, message, *args)

    def error(self, message: str, *args: object) -> None:
        self.log(MessageKind.ERROR, message, *args)


def make_log_relay(target: logging.Logger) -> LogHandler:
    """Build a handler forwarding context messages verbatim to *target*.

    Trace messages map to ``DEBUG``; the remaining kinds map to the
    logging level of the same name.

    Args:
        target: The experiment's logger.

    Returns:
        A handler suitable for ``ExecutionContext.subscribe``.
    """

    def relay(entry: LogMessage) -> None:
        match entry.kind:
            case MessageKind.TRACE:
                target.debug("%s", entry.message)
            case MessageKind.INFO:
                target.info("%s", entry.message)
            case MessageKind.WARNING:
                target.warning("%s", entry.message)
            case MessageKind.ERROR:
                target.error("%s", entry.message)
            case _:
                msg = f"MessageKind.{entry.kind} is not yet implemented."
                raise NotImplementedError(msg)

    return relay


class SeedStream:
    """Deterministic source of per-iteration child seeds.

    With a parent seed, a single generator seeded from it yields one child
    seed per call, in call order. Without one every child seed is ``None``.
    """

    def __init__(self, parent_seed: int | None) -> None:
        self.parent_seed = parent_seed
        self._rng = random.Random(parent_seed) if parent_seed is not None else None

    @property
    def is_seeded(self) -> bool:
        return self._rng is not None

    def next_seed(self) -> int | None:
        """Return the next child seed, or ``None`` when the stream is unseeded."""
        if self._rng is None:
            return None
        return self._rng.randrange(_MAX_CHILD_SEED)

    def new_context(self) -> ExecutionContext:
        """Create a fresh context seeded with the next child seed."""
        return ExecutionContext(seed=self.next_seed())
