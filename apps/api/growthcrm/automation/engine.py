"""Rule-driven cascades from one CRM record to the next stage of the pipeline.

A cascade is best effort relative to the mutation that triggered it: every outcome,
failures included, comes back as a ``CascadeResult`` rather than an exception.
At-most-once delivery rests on two things: the conditional ``cascade_fired`` claim
on the source and the unique ``source_record_id`` on the target.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from opentelemetry import trace

from growthcrm import audit, events
from growthcrm.automation.stores import DuplicateSource, IncidentRecorder, Record, StoreError, StoreFactory
from growthcrm.context import get_cascade_depth, reset_cascade_depth, set_cascade_depth
from growthcrm.core.config import Settings, get_settings
from growthcrm.metrics import observe_cascade, observe_cascade_partial_failure


logger = logging.getLogger("growthcrm.automation")
tracer = trace.get_tracer("growthcrm.automation")

Predicate = Callable[[Record], bool]
TargetBuilder = Callable[[Record], Record]


def field_equals(name: str, expected: Any) -> Predicate:
    def predicate(record: Record) -> bool:
        return record.get(name) is expected if isinstance(expected, bool) else record.get(name) == expected

    return predicate


def field_in(name: str, allowed: Iterable[Any]) -> Predicate:
    values = frozenset(allowed)

    def predicate(record: Record) -> bool:
        return record.get(name) in values

    return predicate


def field_at_least(name: str, threshold: int | float) -> Predicate:
    def predicate(record: Record) -> bool:
        value = record.get(name)
        return value is not None and value >= threshold

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    def predicate(record: Record) -> bool:
        return all(check(record) for check in predicates)

    return predicate


@dataclass(frozen=True)
class CascadeRule:
    name: str
    source_type: str
    target_type: str
    trigger: Predicate
    build_target: TargetBuilder


class CascadeOutcome(StrEnum):
    FIRED = "fired"
    ALREADY_FIRED = "already_fired"
    NOT_QUALIFIED = "not_qualified"
    RECONCILED = "reconciled"
    TARGET_FAILED = "target_failed"
    PARTIAL_FAILURE = "partial_failure"
    SUPPRESSED = "suppressed"


@dataclass(frozen=True)
class CascadeResult:
    rule: str
    outcome: CascadeOutcome
    source_id: str
    target_type: str
    target_id: str | None = None
    error: str | None = None
    incident_id: str | None = None

    @property
    def created(self) -> bool:
        return self.outcome in {CascadeOutcome.FIRED, CascadeOutcome.RECONCILED}

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule,
            "outcome": str(self.outcome),
            "created": self.created,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "error": self.error,
        }


def _id(value: Any) -> str | None:
    return str(value) if value is not None else None


class AutomationEngine:
    def __init__(
        self,
        store_for: StoreFactory,
        incidents: IncidentRecorder | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store_for = store_for
        self.incidents = incidents
        self.settings = settings or get_settings()

    def maybe_cascade(
        self,
        before: Record | None,
        after: Record,
        rule: CascadeRule,
        *,
        actor_user_id: str = "system",
    ) -> CascadeResult:
        started = time.perf_counter()
        with tracer.start_as_current_span("automation.cascade") as span:
            span.set_attribute("rule", rule.name)
            span.set_attribute("source_id", str(after.get("id")))
            result = self._evaluate(before, after, rule, actor_user_id)
            span.set_attribute("outcome", str(result.outcome))
        observe_cascade(rule.name, str(result.outcome), time.perf_counter() - started)
        return result

    def reconcile(self, source: Record, rule: CascadeRule, *, actor_user_id: str = "system") -> CascadeResult:
        """Finish a cascade left half done: claim an existing target, or re-run the rule."""

        if source.get("cascade_fired"):
            return self._result(rule, CascadeOutcome.ALREADY_FIRED, source, source.get("dependent_record_id"))
        existing = self.store_for(rule.target_type).find_by_source(source["id"])
        if existing is None:
            return self.maybe_cascade(source, source, rule, actor_user_id=actor_user_id)
        return self._claim_existing(source, existing, rule, actor_user_id)

    def _evaluate(self, before: Record | None, after: Record, rule: CascadeRule, actor_user_id: str) -> CascadeResult:
        depth = get_cascade_depth()
        if depth >= self.settings.automation_max_hops:
            logger.info(
                "cascade.suppressed",
                extra={"rule": rule.name, "source_id": _id(after.get("id")), "reason": "max_hops"},
            )
            return self._result(rule, CascadeOutcome.SUPPRESSED, after)

        if after.get("cascade_fired"):
            return self._result(rule, CascadeOutcome.ALREADY_FIRED, after, after.get("dependent_record_id"))

        if not rule.trigger(after):
            return self._result(rule, CascadeOutcome.NOT_QUALIFIED, after)

        target_store = self.store_for(rule.target_type)
        existing = target_store.find_by_source(after["id"])
        if existing is not None:
            return self._claim_existing(after, existing, rule, actor_user_id)

        values = rule.build_target(after)
        values["source_record_id"] = after["id"]
        values["tenant_id"] = after.get("tenant_id")

        token = set_cascade_depth(depth + 1)
        try:
            target = target_store.insert(values)
        except DuplicateSource as exc:
            # a concurrent cascade inserted first
            existing = target_store.find_by_source(after["id"])
            if existing is None:
                logger.error(
                    "cascade.target_failed",
                    extra={"rule": rule.name, "source_id": _id(after.get("id")), "error": str(exc)},
                )
                return self._result(rule, CascadeOutcome.TARGET_FAILED, after, error=str(exc))
            return self._claim_existing(after, existing, rule, actor_user_id)
        except StoreError as exc:
            logger.exception(
                "cascade.target_failed",
                extra={"rule": rule.name, "source_id": _id(after.get("id")), "error": str(exc)},
            )
            return self._result(rule, CascadeOutcome.TARGET_FAILED, after, error=str(exc))
        finally:
            reset_cascade_depth(token)

        source_store = self.store_for(rule.source_type)
        try:
            claimed = source_store.mark_cascade_fired(after["id"], target["id"])
        except StoreError as exc:
            return self._partial_failure(after, target, rule, actor_user_id, str(exc))

        if not claimed:
            return self._lost_claim(after, target, rule)

        self._announce(before, after, target, rule, actor_user_id, CascadeOutcome.FIRED)
        return self._result(rule, CascadeOutcome.FIRED, after, target["id"])

    def _claim_existing(self, source: Record, existing: Record, rule: CascadeRule, actor_user_id: str) -> CascadeResult:
        try:
            claimed = self.store_for(rule.source_type).mark_cascade_fired(source["id"], existing["id"])
        except StoreError as exc:
            return self._partial_failure(source, existing, rule, actor_user_id, str(exc))
        if not claimed:
            return self._result(rule, CascadeOutcome.ALREADY_FIRED, source, existing["id"])

        self._resolve_incident(rule, source)
        self._announce(None, source, existing, rule, actor_user_id, CascadeOutcome.RECONCILED)
        return self._result(rule, CascadeOutcome.RECONCILED, source, existing["id"])

    def _resolve_incident(self, rule: CascadeRule, source: Record) -> None:
        if self.incidents is None:
            return
        try:
            self.incidents.resolve(rule_name=rule.name, source_id=source["id"])
        except StoreError as exc:
            logger.exception(
                "cascade.incident_resolve_failed",
                extra={"rule": rule.name, "source_id": _id(source["id"]), "error": str(exc)},
            )

    def _lost_claim(self, source: Record, target: Record, rule: CascadeRule) -> CascadeResult:
        current = self.store_for(rule.source_type).get(source["id"]) or {}
        winner_id = current.get("dependent_record_id")
        if _id(winner_id) != _id(target["id"]):
            try:
                self.store_for(rule.target_type).delete(target["id"])
            except StoreError as exc:
                logger.exception(
                    "cascade.orphan_target",
                    extra={
                        "rule": rule.name,
                        "source_id": _id(source["id"]),
                        "target_id": _id(target["id"]),
                        "error": str(exc),
                    },
                )
        return self._result(rule, CascadeOutcome.ALREADY_FIRED, source, winner_id)

    def _partial_failure(
        self,
        source: Record,
        target: Record,
        rule: CascadeRule,
        actor_user_id: str,
        error: str,
    ) -> CascadeResult:
        logger.error(
            "cascade.partial_failure",
            extra={
                "rule": rule.name,
                "source_id": _id(source["id"]),
                "target_id": _id(target["id"]),
                "tenant_id": _id(source.get("tenant_id")),
                "error": error,
            },
        )
        observe_cascade_partial_failure(rule.name)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=f"automation.{rule.source_type}",
            entity_id=str(source["id"]),
            action="cascade.partial_failure",
            before=None,
            after={"rule": rule.name, "target_id": _id(target["id"]), "error": error},
            tenant_id=_id(source.get("tenant_id")),
        )
        incident_id = None
        if self.incidents is not None:
            # never fails the already committed triggering write
            try:
                incident_id = self.incidents.record_partial_failure(
                    rule_name=rule.name,
                    source_type=rule.source_type,
                    source_id=source["id"],
                    target_id=target["id"],
                    error=error,
                    tenant_id=source.get("tenant_id"),
                )
            except StoreError as exc:
                logger.exception(
                    "cascade.incident_write_failed",
                    extra={"rule": rule.name, "source_id": _id(source["id"]), "error": str(exc)},
                )
        return CascadeResult(
            rule=rule.name,
            outcome=CascadeOutcome.PARTIAL_FAILURE,
            source_id=str(source["id"]),
            target_type=rule.target_type,
            target_id=_id(target["id"]),
            error=error,
            incident_id=incident_id,
        )

    def _announce(
        self,
        before: Record | None,
        source: Record,
        target: Record,
        rule: CascadeRule,
        actor_user_id: str,
        outcome: CascadeOutcome,
    ) -> None:
        logger.info(
            "cascade.fired",
            extra={
                "rule": rule.name,
                "outcome": str(outcome),
                "source_id": _id(source["id"]),
                "target_id": _id(target["id"]),
                "tenant_id": _id(source.get("tenant_id")),
            },
        )
        audit.record(
            actor_user_id=actor_user_id,
            entity_type=f"automation.{rule.source_type}",
            entity_id=str(source["id"]),
            action=f"cascade.{outcome}",
            before={"cascade_fired": bool((before or {}).get("cascade_fired"))},
            after={"cascade_fired": True, "rule": rule.name, "target_id": _id(target["id"])},
            tenant_id=_id(source.get("tenant_id")),
        )
        events.publish(
            {
                "event_type": "automation.cascade_fired",
                "rule": rule.name,
                "outcome": str(outcome),
                "source_type": rule.source_type,
                "source_id": _id(source["id"]),
                "target_type": rule.target_type,
                "target_id": _id(target["id"]),
                "tenant_id": _id(source.get("tenant_id")),
            }
        )

    def _result(
        self,
        rule: CascadeRule,
        outcome: CascadeOutcome,
        source: Record,
        target_id: Any = None,
        *,
        error: str | None = None,
    ) -> CascadeResult:
        return CascadeResult(
            rule=rule.name,
            outcome=outcome,
            source_id=str(source.get("id")),
            target_type=rule.target_type,
            target_id=_id(target_id),
            error=error,
        )
