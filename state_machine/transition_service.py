"""
Transition service: the only code that changes a request's stored state.

execute_transition():
  1. validate the edge against the transition table (nothing is written on failure);
     only a doctor with an actor_id may move a request into approved / declined / needs_info
  2. derive status / payment_status for the target state; review outcomes
     stamp reviewed_at / reviewed_by
  3. update the request row (conditional on the stored state and version)
  4. insert the audit_logs row
  5. report the email trigger for the target state, if any

Steps 3 and 4 share one database transaction, so a status change is never
left unaudited. The whole sequence runs under the request's distributed lock
unless the caller already holds it.

execute_transition_path() runs several consecutive edges the same way, in a
single transaction: all of them are kept or none is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from db.database import SessionLocal, utcnow
from db.models import AuditLog, ServiceRequest
from stability.distributed_lock import LOCK_RETRIES, with_lock
from stability.errors import PrescribingBoundaryViolation
from stability.invariants import assert_approval_invariants, assert_prescribing_boundary
from stability.optimistic import optimistic_update
from state_machine.request_states import (
    STATE_TO_DB_STATUS,
    STATE_TO_PAYMENT_STATUS,
    RequestState,
    StateLike,
    coerce_state,
    get_email_trigger,
    get_transition_trigger,
    get_valid_next_states,
)

logger = logging.getLogger(__name__)


class ActorType(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SYSTEM = "system"


# Only an identified doctor moves a request into these states; the move records the reviewer
REVIEW_OUTCOME_STATES = frozenset({RequestState.APPROVED, RequestState.DECLINED, RequestState.NEEDS_INFO})


@dataclass(frozen=True)
class TransitionContext:
    request_id: str
    actor_type: ActorType
    actor_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class TransitionParams:
    context: TransitionContext
    from_state: StateLike
    to_state: StateLike


@dataclass(frozen=True)
class TransitionResult:
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    new_state: Optional[RequestState] = None
    email_triggered: Optional[str] = None

    @classmethod
    def fail(cls, error: str, code: str) -> "TransitionResult":
        return cls(success=False, error=error, code=code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "code": self.code,
            "new_state": self.new_state.value if self.new_state else None,
            "email_triggered": self.email_triggered,
        }


@dataclass(frozen=True)
class AuditEntry:
    id: int
    request_id: str
    actor_id: Optional[str]
    actor_type: str
    action: str
    from_state: Optional[str]
    to_state: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Legacy rows
# ---------------------------------------------------------------------------


def infer_state(status: Optional[str], payment_status: Optional[str], script_sent: bool) -> RequestState:
    """
    Reconstruct the internal state of a row written before the state column
    existed, from the simplified status / payment_status / script_sent fields.
    """
    if payment_status != "paid":
        return RequestState.DRAFT
    if status == "approved":
        return RequestState.COMPLETED if script_sent else RequestState.APPROVED
    if status == "declined":
        return RequestState.DECLINED
    if status == "needs_follow_up":
        return RequestState.NEEDS_INFO
    if status == "pending":
        return RequestState.AWAITING_REVIEW
    return RequestState.DRAFT


def resolve_state(row: ServiceRequest) -> RequestState:
    stored = coerce_state(row.state) if row.state else None
    return stored or infer_state(row.status, row.payment_status, bool(row.script_sent))


def get_request_state(request_id: str, *, session_factory: Optional[sessionmaker] = None) -> Optional[RequestState]:
    factory = session_factory or SessionLocal
    with factory() as session:
        row = session.get(ServiceRequest, request_id)
        return resolve_state(row) if row is not None else None


def create_request(
    request_id: str,
    request_type: str,
    *,
    patient_id: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> RequestState:
    """Insert a new intake in draft, with its creation audited."""
    factory = session_factory or SessionLocal
    initial = RequestState.DRAFT
    with factory() as session, session.begin():
        session.add(ServiceRequest(
            id=request_id,
            request_type=request_type,
            patient_id=patient_id,
            state=initial.value,
            status=STATE_TO_DB_STATUS[initial],
            payment_status=STATE_TO_PAYMENT_STATUS[initial],
            version=1,
        ))
        session.add(AuditLog(
            request_id=request_id,
            actor_id=patient_id,
            actor_type=ActorType.PATIENT.value if patient_id else ActorType.SYSTEM.value,
            action="CREATE",
            from_state=None,
            to_state=initial.value,
            metadata_={"request_type": request_type},
        ))
    logger.info("request %s created (%s)", request_id, request_type)
    return initial


# ---------------------------------------------------------------------------
# Transition
# ---------------------------------------------------------------------------


def _apply_transition(
    session: Session,
    ctx: TransitionContext,
    from_state: RequestState,
    to_state: RequestState,
    trigger: str,
) -> TransitionResult:
    row = session.get(ServiceRequest, ctx.request_id)
    if row is None:
        return TransitionResult.fail(f"Request {ctx.request_id} not found", "NOT_FOUND")

    current = resolve_state(row)
    if current != from_state:
        return TransitionResult.fail(
            f"Request {ctx.request_id} is in state {current.value}, not {from_state.value}",
            "STALE_STATE",
        )

    if from_state == RequestState.APPROVED and to_state == RequestState.COMPLETED:
        assert_approval_invariants(row)

    now = utcnow()
    updates: Dict[str, Any] = {
        "state": to_state.value,
        "status": STATE_TO_DB_STATUS[to_state],
        "payment_status": STATE_TO_PAYMENT_STATUS[to_state],
        "updated_at": now,
    }
    if ctx.actor_type == ActorType.DOCTOR and to_state in REVIEW_OUTCOME_STATES:
        updates["reviewed_at"] = now
        updates["reviewed_by"] = ctx.actor_id
    if trigger == "DOCUMENT_SENT":
        updates["script_sent"] = True

    outcome = optimistic_update(session, ServiceRequest, row.id, row.version, updates)
    if outcome.conflict:
        return TransitionResult.fail(
            f"Request {ctx.request_id} was modified concurrently; reload and retry",
            "VERSION_CONFLICT",
        )

    session.add(AuditLog(
        request_id=ctx.request_id,
        actor_id=ctx.actor_id,
        actor_type=ActorType(ctx.actor_type).value,
        action=trigger,
        from_state=from_state.value,
        to_state=to_state.value,
        metadata_=dict(ctx.metadata or {}),
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    ))

    return TransitionResult(success=True, new_state=to_state, email_triggered=get_email_trigger(to_state))


class _PathAborted(Exception):
    def __init__(self, result: TransitionResult) -> None:
        super().__init__(result.code)
        self.result = result


def _check_edge(ctx: TransitionContext, from_state: StateLike, to_state: StateLike) -> Tuple[Optional[str], Optional[TransitionResult]]:
    """Return (trigger, None) for a permitted edge, else (None, failure)."""
    src, dst = coerce_state(from_state), coerce_state(to_state)

    trigger = get_transition_trigger(from_state, to_state)
    if trigger is None:
        valid = ", ".join(s.value for s in get_valid_next_states(from_state)) or "none"
        logger.warning("request %s: rejected transition %s -> %s", ctx.request_id, from_state, to_state)
        return None, TransitionResult.fail(
            f"Invalid transition: {getattr(src, 'value', from_state)} -> "
            f"{getattr(dst, 'value', to_state)}. Valid next states: {valid}",
            "INVALID_TRANSITION",
        )

    if dst in REVIEW_OUTCOME_STATES and not (ctx.actor_type == ActorType.DOCTOR and ctx.actor_id):
        logger.warning("request %s: %s actor may not record %s",
                       ctx.request_id, ActorType(ctx.actor_type).value, dst.value)
        return None, TransitionResult.fail(
            f"Only an identified doctor can move a request into {dst.value}",
            "ACTOR_NOT_PERMITTED",
        )

    return trigger, None


def execute_transition_path(
    context: TransitionContext,
    path: Sequence[StateLike],
    *,
    session_factory: Optional[sessionmaker] = None,
    lock: bool = True,
    lock_retries: int = LOCK_RETRIES,
) -> TransitionResult:
    """
    Walk path[0] -> path[1] -> ... -> path[-1] in a single database
    transaction. Every edge is validated before anything is written; if any
    step fails, none of the steps is kept. The result is that of the last step.

    Pass lock=False only when the caller already holds "request:<id>".
    """
    if len(path) < 2:
        raise ValueError("A transition path needs at least two states")

    factory = session_factory or SessionLocal
    ctx = context

    steps = []
    for from_state, to_state in zip(path, path[1:]):
        trigger, failure = _check_edge(ctx, from_state, to_state)
        if failure is not None:
            return failure
        steps.append((coerce_state(from_state), coerce_state(to_state), trigger))

    platform_action = (ctx.metadata or {}).get("platform_action")
    if platform_action is not None:
        try:
            assert_prescribing_boundary(platform_action)
        except PrescribingBoundaryViolation as e:
            return TransitionResult.fail(e.message, e.code)

    def _run() -> TransitionResult:
        try:
            with factory() as session, session.begin():
                result = None
                for src, dst, trigger in steps:
                    result = _apply_transition(session, ctx, src, dst, trigger)
                    if not result.success:
                        raise _PathAborted(result)
                return result
        except _PathAborted as aborted:
            return aborted.result

    if lock:
        locked = with_lock(f"request:{ctx.request_id}", _run,
                           session_factory=factory, retries=lock_retries)
        if not locked.success:
            return TransitionResult.fail(locked.error, locked.code)
        result = locked.data
    else:
        result = _run()

    route = " -> ".join(src.value for src, _, _ in steps) + f" -> {steps[-1][1].value}"
    if result.success:
        logger.info("request %s: %s (%s by %s:%s) email=%s",
                    ctx.request_id, route, ", ".join(t for _, _, t in steps),
                    ActorType(ctx.actor_type).value, ctx.actor_id, result.email_triggered)
    else:
        logger.info("request %s: transition %s failed: %s", ctx.request_id, route, result.code)
    return result


def execute_transition(
    params: TransitionParams,
    *,
    session_factory: Optional[sessionmaker] = None,
    lock: bool = True,
    lock_retries: int = LOCK_RETRIES,
) -> TransitionResult:
    """
    Validate and execute one state transition. Expected failures come back as
    a TransitionResult with success=False and a code; InvariantError is not
    caught here.

    Pass lock=False only when the caller already holds "request:<id>".
    """
    return execute_transition_path(
        params.context,
        [params.from_state, params.to_state],
        session_factory=session_factory,
        lock=lock,
        lock_retries=lock_retries,
    )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


def get_audit_history(request_id: str, *, session_factory: Optional[sessionmaker] = None) -> List[AuditEntry]:
    """Audit rows for one request, oldest first."""
    factory = session_factory or SessionLocal
    with factory() as session:
        rows = session.scalars(
            select(AuditLog)
            .where(AuditLog.request_id == request_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        ).all()
        return [
            AuditEntry(
                id=r.id,
                request_id=r.request_id,
                actor_id=r.actor_id,
                actor_type=r.actor_type,
                action=r.action,
                from_state=r.from_state,
                to_state=r.to_state,
                metadata=r.metadata_ or {},
                ip_address=r.ip_address,
                user_agent=r.user_agent,
                created_at=r.created_at,
            )
            for r in rows
        ]
