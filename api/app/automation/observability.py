"""Circuit breaker and metrics tracking for action collaborators.

Collaborators (mailer, chat webhook, work-item store, ...) are tracked per
collaborator name and per action kind so the health endpoint can surface
repeated failures.

Two kinds of collaborator errors are told apart:

- ``ActionExecutionError`` is a rejection of the request itself (bad
  recipient, duplicate dedupe key, unknown record). It is counted as
  ``rejected`` and never moves a circuit.
- Anything else (transport errors, 5xx after retries, database outages) is an
  infrastructure failure. It is counted as ``failed`` and advances the circuit.

Each collaborator has a ``CircuitPolicy``. Tenant-scoped collaborators keep
one circuit per organization, so one tenant's outage cannot block another.
Global collaborators share one upstream (the Slack webhook) and one circuit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, DefaultDict, Literal, Mapping

from app.automation.errors import ActionExecutionError

logger = logging.getLogger("app.automation.collaborators")

CircuitScope = Literal["tenant", "global"]


class CircuitOpenError(Exception):
    """Raised when a collaborator circuit is open and calls are temporarily blocked."""


@dataclass(frozen=True)
class CircuitPolicy:
    scope: CircuitScope = "tenant"
    threshold: int = 3
    base_backoff_seconds: float = 15.0
    max_backoff_seconds: float = 300.0


# Collaborators backed by one shared upstream; everything else is per tenant.
GLOBAL_COLLABORATORS = frozenset({"chat"})


@dataclass
class CircuitBreakerState:
    """Track failure streaks and cooldown windows for one circuit."""
    threshold: int = 3
    base_backoff_seconds: float = 15.0
    max_backoff_seconds: float = 300.0
    failure_streak: int = 0
    open_until: float = 0.0
    current_backoff: float = field(init=False)
    opened_count: int = 0

    def __post_init__(self) -> None:
        self.current_backoff = self.base_backoff_seconds

    @classmethod
    def from_policy(cls, policy: CircuitPolicy) -> "CircuitBreakerState":
        return cls(
            threshold=policy.threshold,
            base_backoff_seconds=policy.base_backoff_seconds,
            max_backoff_seconds=policy.max_backoff_seconds,
        )

    def can_call(self) -> bool:
        return time.monotonic() >= self.open_until

    def remaining_cooldown(self) -> float:
        if self.can_call():
            return 0.0
        return self.open_until - time.monotonic()

    def record_success(self) -> None:
        self.failure_streak = 0
        self.open_until = 0.0
        self.current_backoff = self.base_backoff_seconds

    def record_failure(self) -> None:
        """Advance circuit state and open on threshold breaches."""
        self.failure_streak += 1
        if self.failure_streak < self.threshold:
            return
        self.open_until = time.monotonic() + self.current_backoff
        self.failure_streak = 0
        self.opened_count += 1
        self.current_backoff = min(self.current_backoff * 2, self.max_backoff_seconds)

    def snapshot(self) -> dict[str, Any]:
        return {
            "failure_streak": self.failure_streak,
            "open_until": self.open_until,
            "remaining_cooldown": self.remaining_cooldown(),
            "current_backoff": self.current_backoff,
            "opened_count": self.opened_count,
        }


@dataclass
class ActionMetrics:
    """Aggregated counters for one action kind on one collaborator."""
    started: int = 0
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0
    skipped: int = 0
    last_latency_ms: float | None = None
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "rejected": self.rejected,
            "skipped": self.skipped,
            "last_latency_ms": self.last_latency_ms,
            "last_error": self.last_error,
        }


def _aggregate(circuits: list[CircuitBreakerState], policy: CircuitPolicy) -> dict[str, Any]:
    """Summarize tenant circuits as one: open if any tenant is open."""
    if not circuits:
        return CircuitBreakerState.from_policy(policy).snapshot()
    snaps = [circuit.snapshot() for circuit in circuits]
    return {
        "failure_streak": max(snap["failure_streak"] for snap in snaps),
        "open_until": max(snap["open_until"] for snap in snaps),
        "remaining_cooldown": max(snap["remaining_cooldown"] for snap in snaps),
        "current_backoff": max(snap["current_backoff"] for snap in snaps),
        "opened_count": sum(snap["opened_count"] for snap in snaps),
        "open_tenants": sum(1 for snap in snaps if snap["remaining_cooldown"] > 0),
    }


class CollaboratorMonitor:
    """Track collaborator calls and enforce circuit breaking."""

    def __init__(
        self,
        *,
        circuit_threshold: int = 3,
        base_backoff_seconds: float = 15.0,
        max_backoff_seconds: float = 300.0,
        policies: Mapping[str, CircuitPolicy] | None = None,
    ) -> None:
        self._default_policy = CircuitPolicy(
            threshold=circuit_threshold,
            base_backoff_seconds=base_backoff_seconds,
            max_backoff_seconds=max_backoff_seconds,
        )
        self._policies: dict[str, CircuitPolicy] = {
            name: CircuitPolicy(
                scope="global",
                threshold=circuit_threshold,
                base_backoff_seconds=base_backoff_seconds,
                max_backoff_seconds=max_backoff_seconds,
            )
            for name in GLOBAL_COLLABORATORS
        }
        self._policies.update(policies or {})
        self._metrics: DefaultDict[str, DefaultDict[str, ActionMetrics]] = defaultdict(
            lambda: defaultdict(ActionMetrics)
        )
        # collaborator -> tenant key (None for global scope) -> circuit
        self._circuits: dict[str, dict[str | None, CircuitBreakerState]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def policy_for(self, collaborator: str) -> CircuitPolicy:
        return self._policies.get(collaborator, self._default_policy)

    def _circuit(self, collaborator: str, tenant: str | None) -> CircuitBreakerState:
        policy = self.policy_for(collaborator)
        key = tenant if policy.scope == "tenant" else None
        circuits = self._circuits[collaborator]
        if key not in circuits:
            circuits[key] = CircuitBreakerState.from_policy(policy)
        return circuits[key]

    def allow_call(self, collaborator: str, tenant: str | None = None) -> bool:
        return self._circuit(collaborator, tenant).can_call()

    async def record_skip(
        self,
        collaborator: str,
        action_type: str,
        *,
        reason: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Count an action that never reached its collaborator (e.g. dedupe hit)."""
        async with self._lock:
            self._metrics[collaborator][action_type].skipped += 1
            payload = {
                "event": "collaborator_skip",
                "collaborator": collaborator,
                "action_type": action_type,
                "reason": reason,
                "context": context or {},
            }
        logger.info(json.dumps(payload, default=str))

    async def track(
        self,
        collaborator: str,
        action_type: str,
        func: Callable[[], Awaitable[Any]],
        *,
        tenant: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> Any:
        """Run a collaborator call while tracking metrics and circuit state.

        Implementation notes:
        - An open circuit raises CircuitOpenError without calling the collaborator.
        - ActionExecutionError is re-raised as a rejection; the circuit is untouched.
        - Other exceptions count toward the circuit for ``tenant`` (or the
          shared circuit for global collaborators) and are re-raised.
        """
        context = context or {}
        async with self._lock:
            circuit = self._circuit(collaborator, tenant)
            metrics = self._metrics[collaborator][action_type]
            if not circuit.can_call():
                remaining = circuit.remaining_cooldown()
                metrics.skipped += 1
                payload = {
                    "event": "collaborator_circuit_open",
                    "collaborator": collaborator,
                    "action_type": action_type,
                    "tenant": tenant,
                    "context": context,
                    "remaining_cooldown": remaining,
                }
                logger.warning(json.dumps(payload, default=str))
                raise CircuitOpenError(f"{collaborator} circuit open for {remaining:.2f}s")
            metrics.started += 1

        start = time.monotonic()
        try:
            result = await func()
        except ActionExecutionError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            async with self._lock:
                metrics = self._metrics[collaborator][action_type]
                metrics.rejected += 1
                metrics.last_latency_ms = latency_ms
                metrics.last_error = str(exc)
                payload = {
                    "event": "collaborator_rejected",
                    "collaborator": collaborator,
                    "action_type": action_type,
                    "tenant": tenant,
                    "error": str(exc),
                    "context": context,
                }
            logger.info(json.dumps(payload, default=str))
            raise
        except Exception as exc:  # noqa: BLE001
            latency_ms = (time.monotonic() - start) * 1000
            async with self._lock:
                metrics = self._metrics[collaborator][action_type]
                metrics.failed += 1
                metrics.last_latency_ms = latency_ms
                metrics.last_error = str(exc) or type(exc).__name__
                circuit = self._circuit(collaborator, tenant)
                circuit.record_failure()
                payload = {
                    "event": "collaborator_failure",
                    "collaborator": collaborator,
                    "action_type": action_type,
                    "tenant": tenant,
                    "error": metrics.last_error,
                    "latency_ms": round(latency_ms, 2),
                    "context": context,
                    "circuit": circuit.snapshot(),
                }
            logger.warning(json.dumps(payload, default=str))
            raise

        latency_ms = (time.monotonic() - start) * 1000
        async with self._lock:
            metrics = self._metrics[collaborator][action_type]
            metrics.succeeded += 1
            metrics.last_latency_ms = latency_ms
            metrics.last_error = None
            self._circuit(collaborator, tenant).record_success()
            payload = {
                "event": "collaborator_success",
                "collaborator": collaborator,
                "action_type": action_type,
                "tenant": tenant,
                "latency_ms": round(latency_ms, 2),
                "context": context,
            }
        logger.info(json.dumps(payload, default=str))
        return result

    async def snapshot(self) -> dict[str, Any]:
        """Return a snapshot of all tracked collaborator metrics.

        ``circuit`` is the shared circuit for global collaborators and an
        aggregate over tenants otherwise; ``tenants`` lists the open ones.
        """
        async with self._lock:
            snap: dict[str, Any] = {}
            for collaborator, actions in self._metrics.items():
                policy = self.policy_for(collaborator)
                circuits = self._circuits.get(collaborator, {})
                entry: dict[str, Any] = {
                    "scope": policy.scope,
                    "operations": {name: metrics.as_dict() for name, metrics in actions.items()},
                }
                if policy.scope == "global":
                    shared = circuits.get(None) or CircuitBreakerState.from_policy(policy)
                    entry["circuit"] = shared.snapshot()
                else:
                    entry["circuit"] = _aggregate(list(circuits.values()), policy)
                    entry["tenants"] = {
                        tenant: circuit.snapshot()
                        for tenant, circuit in circuits.items()
                        if not circuit.can_call()
                    }
                snap[collaborator] = entry
            return snap


collaborator_monitor = CollaboratorMonitor()
