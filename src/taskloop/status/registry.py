"""Status registry — validates, serializes, and records lifecycle transitions."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, Union

from taskloop.errors import InvalidTransitionError
from taskloop.status.rules import RuleTable, StatusLike, default_rule_table
from taskloop.status.statuses import StatusEntity, is_valid_status, status_value

if TYPE_CHECKING:
    from taskloop.config import StatusConfig

logger = logging.getLogger(__name__)

TransitionCallback = Callable[["StatusTransition"], Union[None, Awaitable[None]]]


class StatusErrorKind(enum.Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATE = "INVALID_STATE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONCURRENT_TRANSITION = "CONCURRENT_TRANSITION"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class TransitionRequest:
    """What a caller asked for; handed to rule validators."""

    entity: StatusEntity
    entity_id: str
    from_status: str
    to_status: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusTransition:
    """A committed transition. Append-only record."""

    entity: StatusEntity
    entity_id: str
    from_status: str
    to_status: str
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class StatusError:
    """A rejected transition. Returned, never raised, by the registry."""

    kind: StatusErrorKind
    message: str
    request: TransitionRequest
    fatal: bool = False

    ok: bool = field(default=False, init=False)

    def to_exception(self) -> InvalidTransitionError:
        return InvalidTransitionError(
            f"{self.kind.value}: {self.message}",
            entity=self.request.entity.value,
            entity_id=self.request.entity_id,
            from_status=self.request.from_status,
            to_status=self.request.to_status,
        )


TransitionOutcome = Union[StatusTransition, StatusError]


class StatusSubject(Protocol):
    """Anything with an id and a mutable status (agents, tasks)."""

    id: str
    status: Any


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class StatusRegistry:
    """Validates and records status transitions for named entities.

    Requests for the same ``(entity, entity_id)`` are serialized with a
    per-key lock; requests for different ids proceed independently. A
    request that cannot get the lock within ``lock_timeout`` is rejected
    with ``CONCURRENT_TRANSITION``.

    Committed transitions are kept in a bounded history and broadcast to
    subscribers. Subscriber errors are logged and never reach the caller.
    """

    def __init__(
        self,
        rules: RuleTable | None = None,
        *,
        max_history: int = 1000,
        validation_timeout: float | None = 5.0,
        lock_timeout: float | None = 5.0,
        allow_concurrent: bool = False,
    ) -> None:
        self.rules = rules if rules is not None else default_rule_table()
        self.validation_timeout = validation_timeout
        self.lock_timeout = lock_timeout
        self.allow_concurrent = allow_concurrent
        self._history: deque[StatusTransition] = deque(maxlen=max_history)
        self._current: dict[tuple[StatusEntity, str], str] = {}
        self._locks: dict[tuple[StatusEntity, str], asyncio.Lock] = {}
        self._subscribers: list[tuple[StatusEntity | None, TransitionCallback]] = []

    @classmethod
    def from_config(
        cls, config: StatusConfig, rules: RuleTable | None = None
    ) -> StatusRegistry:
        if rules is None:
            rules = default_rule_table(config.strict_entities)
        return cls(
            rules,
            max_history=config.max_history,
            validation_timeout=config.validation_timeout,
            lock_timeout=config.lock_timeout,
            allow_concurrent=config.allow_concurrent_transitions,
        )

    # --- Transitions ---

    async def transition(
        self,
        entity: StatusEntity | str,
        entity_id: str,
        from_status: StatusLike,
        to_status: StatusLike,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionOutcome:
        """Validate and commit ``from_status -> to_status`` for one entity.

        Returns the committed ``StatusTransition`` or a ``StatusError``.
        """
        try:
            kind = StatusEntity(entity)
        except ValueError:
            kind = None
        request = TransitionRequest(
            entity=kind or StatusEntity.AGENT,
            entity_id=str(entity_id),
            from_status=status_value(from_status),
            to_status=status_value(to_status),
            metadata=dict(metadata or {}),
        )

        if kind is None:
            return self._reject(
                StatusErrorKind.INVALID_TRANSITION,
                f"Unknown entity kind: {entity}",
                request,
            )
        if not entity_id:
            return self._reject(
                StatusErrorKind.INVALID_TRANSITION,
                f"An entity id is required for {kind.value} transitions",
                request,
            )
        for status in (request.from_status, request.to_status):
            if not is_valid_status(kind, status):
                return self._reject(
                    StatusErrorKind.INVALID_TRANSITION,
                    f"'{status}' is not a {kind.value} status",
                    request,
                )

        if self.allow_concurrent:
            outcome = await self._commit(request)
        else:
            lock = self._locks.setdefault((kind, request.entity_id), asyncio.Lock())
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError:
                return self._reject(
                    StatusErrorKind.CONCURRENT_TRANSITION,
                    f"Another transition for {kind.value} {request.entity_id} "
                    f"is still in flight",
                    request,
                )
            try:
                outcome = await self._commit(request)
            finally:
                lock.release()

        if isinstance(outcome, StatusTransition):
            await self._notify(outcome)
        return outcome

    async def advance(
        self,
        entity: StatusEntity | str,
        subject: StatusSubject,
        to_status: StatusLike,
        **metadata: Any,
    ) -> TransitionOutcome:
        """Transition ``subject`` from its current status, updating it on commit."""
        current = subject.status
        outcome = await self.transition(
            entity, subject.id, current, to_status, metadata
        )
        if isinstance(outcome, StatusTransition):
            enum_type = type(current) if isinstance(current, enum.Enum) else None
            subject.status = (
                enum_type(outcome.to_status) if enum_type else outcome.to_status
            )
        return outcome

    async def _commit(self, request: TransitionRequest) -> TransitionOutcome:
        key = (request.entity, request.entity_id)
        recorded = self._current.get(key)
        if recorded is not None and recorded != request.from_status:
            return self._reject(
                StatusErrorKind.INVALID_STATE,
                f"{request.entity.value} {request.entity_id} is {recorded}, "
                f"not {request.from_status}",
                request,
            )

        rule = self.rules.find(request.entity, request.from_status, request.to_status)
        if rule is None:
            return self._reject(
                StatusErrorKind.INVALID_TRANSITION,
                f"Transition from {request.from_status} to {request.to_status} "
                f"not allowed for {request.entity.value}",
                request,
            )

        if rule.validate is not None:
            try:
                valid = await asyncio.wait_for(
                    _maybe_await(rule.validate(request)),
                    timeout=self.validation_timeout,
                )
            except asyncio.TimeoutError:
                return self._reject(
                    StatusErrorKind.TIMEOUT,
                    f"Validation exceeded {self.validation_timeout}s",
                    request,
                )
            except Exception as e:
                return self._reject(
                    StatusErrorKind.VALIDATION_FAILED,
                    f"Validator raised: {e}",
                    request,
                )
            if not valid:
                return self._reject(
                    StatusErrorKind.VALIDATION_FAILED,
                    f"Validation rejected {request.from_status} -> {request.to_status}",
                    request,
                )

        transition = StatusTransition(
            entity=request.entity,
            entity_id=request.entity_id,
            from_status=request.from_status,
            to_status=request.to_status,
            metadata=request.metadata,
        )

        if rule.on_commit is not None:
            try:
                await asyncio.wait_for(
                    _maybe_await(rule.on_commit(transition)),
                    timeout=self.validation_timeout,
                )
            except asyncio.TimeoutError:
                return self._reject(
                    StatusErrorKind.TIMEOUT,
                    f"Commit hook exceeded {self.validation_timeout}s",
                    request,
                )
            except Exception as e:
                return self._reject(
                    StatusErrorKind.VALIDATION_FAILED,
                    f"Commit hook raised: {e}",
                    request,
                )

        self._current[key] = transition.to_status
        self._history.append(transition)
        logger.debug(
            "%s %s: %s -> %s",
            request.entity.value,
            request.entity_id,
            request.from_status,
            request.to_status,
        )
        return transition

    def _reject(
        self, kind: StatusErrorKind, message: str, request: TransitionRequest
    ) -> StatusError:
        if kind in (StatusErrorKind.VALIDATION_FAILED, StatusErrorKind.TIMEOUT):
            fatal = True
        elif kind in (StatusErrorKind.INVALID_TRANSITION, StatusErrorKind.INVALID_STATE):
            fatal = self.rules.is_strict(request.entity)
        else:
            fatal = False
        logger.warning("Status transition rejected (%s): %s", kind.value, message)
        return StatusError(kind=kind, message=message, request=request, fatal=fatal)

    # --- Queries ---

    def register(
        self, entity: StatusEntity | str, entity_id: str, status: StatusLike
    ) -> None:
        """Record an entity's starting status without a transition."""
        kind = StatusEntity(entity)
        if not is_valid_status(kind, status):
            raise ValueError(f"'{status_value(status)}' is not a {kind.value} status")
        self._current[(kind, str(entity_id))] = status_value(status)

    def current(self, entity: StatusEntity | str, entity_id: str) -> str | None:
        """Last committed (or registered) status, or None if unknown."""
        return self._current.get((StatusEntity(entity), str(entity_id)))

    def history(
        self,
        entity: StatusEntity | str | None = None,
        entity_id: str | None = None,
    ) -> list[StatusTransition]:
        kind = StatusEntity(entity) if entity is not None else None
        return [
            t
            for t in self._history
            if (kind is None or t.entity == kind)
            and (entity_id is None or t.entity_id == entity_id)
        ]

    def clear_history(self) -> None:
        self._history.clear()

    def available_transitions(
        self, entity: StatusEntity | str, status: StatusLike
    ) -> list[str]:
        return self.rules.available(entity, status)

    # --- Subscriptions ---

    def subscribe(
        self,
        callback: TransitionCallback,
        entity: StatusEntity | str | None = None,
    ) -> Callable[[], None]:
        """Call ``callback`` for every committed transition (optionally one kind).

        Returns a function that removes the subscription.
        """
        entry = (StatusEntity(entity) if entity is not None else None, callback)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return _unsubscribe

    async def _notify(self, transition: StatusTransition) -> None:
        for kind, callback in list(self._subscribers):
            if kind is not None and kind != transition.entity:
                continue
            try:
                await _maybe_await(callback(transition))
            except Exception as e:
                logger.error("Status subscriber failed: %s", e, exc_info=True)
