"""
Request lifecycle API routes.
POST /requests                       - create a draft request
GET  /requests/{id}                  - current state and stored triage result
POST /requests/{id}/triage           - run the rules engine (no state change)
POST /requests/{id}/review           - triage + clinician decision + transition (LangGraph workflow)
POST /requests/{id}/transitions      - execute one state transition (Idempotency-Key honoured)
GET  /requests/{id}/audit            - audit trail, oldest first
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from clinical.triage_types import RequestType
from db.database import get_db, get_session_factory
from db.models import ServiceRequest
from orchestrator.graph import build_graph
from stability.circuit_breaker import CircuitBreakerRegistry
from stability.idempotency import idempotent
from state_machine.request_states import RequestState
from state_machine.transition_service import (
    ActorType,
    TransitionContext,
    TransitionParams,
    create_request,
    execute_transition,
    get_audit_history,
    get_request_state,
    resolve_state,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/requests", tags=["requests"])

# Failure code → HTTP status
_STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "INVALID_TRANSITION": 409,
    "STALE_STATE": 409,
    "VERSION_CONFLICT": 409,
    "LOCK_NOT_ACQUIRED": 409,
    "PRESCRIBING_BOUNDARY": 403,
    "ACTOR_NOT_PERMITTED": 403,
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_breakers(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.breakers


def get_notifier():
    """Outbound email hand-off. None until an email provider is wired in."""
    return None


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class CreateRequestBody(BaseModel):
    request_id: Optional[str] = None
    request_type: RequestType
    patient_id: Optional[str] = None


class AdditionalContextBody(BaseModel):
    is_new_diagnosis: bool = False
    is_new_long_term_med: bool = False
    has_symptom_escalation: bool = False
    has_ambiguous_history: bool = False


class TriageBody(BaseModel):
    request_type: RequestType
    patient_id: Optional[str] = None
    free_text_symptoms: Optional[str] = None
    is_first_request: bool = False
    is_controlled_substance: bool = False
    is_first_time_high_risk: bool = False
    is_outside_scope: bool = False
    has_call_happened: bool = False
    additional_context: Optional[AdditionalContextBody] = None


class ReviewBody(TriageBody):
    clinician_id: str
    decision: str = Field(description="approved | needs_call | declined")
    clinician_is_unsure: bool = False


class TransitionBody(BaseModel):
    from_state: RequestState
    to_state: RequestState
    actor_type: ActorType
    actor_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RequestRecord(BaseModel):
    id: str
    request_type: str
    patient_id: Optional[str]
    state: Optional[str]
    status: str
    payment_status: str
    script_sent: bool
    reviewed_at: Optional[datetime]
    reviewed_by: Optional[str]
    triage_result: Optional[dict]
    version: int

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    request_id: str
    new_state: Optional[str]
    email_triggered: Optional[str]
    replayed: bool = False


class ReviewResponse(BaseModel):
    request_id: str
    suggested_outcome: Optional[str]
    final_outcome: Optional[str]
    decision_warnings: list[str]
    new_state: Optional[str]
    email_triggered: Optional[str]
    notification_sent: bool = False


class AuditEntryRecord(BaseModel):
    id: int
    actor_id: Optional[str]
    actor_type: str
    action: str
    from_state: Optional[str]
    to_state: Optional[str]
    metadata: dict
    created_at: Optional[datetime]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _initial_state(request_id: str, body: TriageBody) -> dict:
    state = body.model_dump(exclude={"additional_context", "decision", "clinician_is_unsure", "clinician_id"})
    state["request_type"] = body.request_type.value
    state["request_id"] = request_id
    if body.additional_context is not None:
        state["additional_context"] = body.additional_context.model_dump()
    return state


def _raise_for_failure(code: Optional[str], error: Optional[str]) -> None:
    raise HTTPException(status_code=_STATUS_BY_CODE.get(code, 500), detail={"code": code, "error": error})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
def create(body: CreateRequestBody, session_factory: sessionmaker = Depends(get_session_factory)):
    """Create a new request in draft."""
    request_id = body.request_id or str(uuid.uuid4())
    try:
        state = create_request(
            request_id, body.request_type.value, patient_id=body.patient_id, session_factory=session_factory
        )
    except IntegrityError:
        raise HTTPException(status_code=409, detail=f"Request {request_id!r} already exists.")
    return {"request_id": request_id, "state": state.value}


@router.get("/{request_id}", response_model=RequestRecord)
def get_request(request_id: str, db: Session = Depends(get_db)):
    """Retrieve a request; legacy rows report their inferred state."""
    row = db.get(ServiceRequest, request_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Request {request_id!r} not found.")
    record = RequestRecord.model_validate(row)
    record.state = resolve_state(row).value
    return record


@router.post("/{request_id}/triage")
def triage(
    request_id: str,
    body: TriageBody,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """Evaluate the triage rules for an intake. The result is stored on the request if it exists."""
    final_state = build_graph(session_factory=session_factory).compile().invoke(_initial_state(request_id, body))
    if final_state.get("processing_status") != "triaged":
        raise HTTPException(status_code=422, detail="Triage could not be evaluated for this intake.")
    return final_state["triage_result"]


@router.post("/{request_id}/review", response_model=ReviewResponse)
def review(
    request_id: str,
    body: ReviewBody,
    session_factory: sessionmaker = Depends(get_session_factory),
    breakers: CircuitBreakerRegistry = Depends(get_breakers),
    notifier=Depends(get_notifier),
):
    """Run triage, record the clinician decision, and transition the request."""
    initial_state = {
        **_initial_state(request_id, body),
        "clinician_id": body.clinician_id,
        "clinician_decision": body.decision,
        "clinician_is_unsure": body.clinician_is_unsure,
    }
    workflow = build_graph(session_factory=session_factory, notifier=notifier, breakers=breakers).compile()

    try:
        final_state = workflow.invoke(initial_state)
    except Exception as e:
        logger.exception("Review workflow failed for request %s: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Review workflow error.")

    status = final_state.get("processing_status")
    if status == "triage_failed":
        raise HTTPException(status_code=422, detail="Triage could not be evaluated for this intake.")
    if status == "review_failed":
        raise HTTPException(status_code=422, detail=f"Invalid decision value: {body.decision!r}.")
    if not final_state.get("transition_success"):
        _raise_for_failure(final_state.get("transition_code"), final_state.get("transition_error"))

    return ReviewResponse(
        request_id=request_id,
        suggested_outcome=final_state.get("suggested_outcome"),
        final_outcome=final_state.get("final_outcome"),
        decision_warnings=final_state.get("decision_warnings") or [],
        new_state=final_state.get("new_state"),
        email_triggered=final_state.get("email_triggered"),
        notification_sent=bool(final_state.get("notification_sent")),
    )


@router.post("/{request_id}/transitions", response_model=TransitionResponse)
def transition(
    request_id: str,
    body: TransitionBody,
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
    idempotency_key: Optional[str] = Header(None),
):
    """Execute a single transition. Repeating an Idempotency-Key replays the first result."""
    params = TransitionParams(
        context=TransitionContext(
            request_id=request_id,
            actor_type=body.actor_type,
            actor_id=body.actor_id,
            metadata=body.metadata,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        ),
        from_state=body.from_state,
        to_state=body.to_state,
    )

    def run() -> dict:
        # failures raise, so only committed transitions are stored under the key
        result = execute_transition(params, session_factory=session_factory)
        if not result.success:
            _raise_for_failure(result.code, result.error)
        return result.to_dict()

    if idempotency_key:
        outcome = idempotent(f"transition:{request_id}:{idempotency_key}", run, session_factory=session_factory)
        result, replayed = outcome.result, not outcome.was_executed
    else:
        result, replayed = run(), False

    return TransitionResponse(
        request_id=request_id,
        new_state=result["new_state"],
        email_triggered=result["email_triggered"],
        replayed=replayed,
    )


@router.get("/{request_id}/audit", response_model=list[AuditEntryRecord])
def audit(request_id: str, session_factory: sessionmaker = Depends(get_session_factory)):
    """Audit trail for one request, oldest first."""
    if get_request_state(request_id, session_factory=session_factory) is None:
        raise HTTPException(status_code=404, detail=f"Request {request_id!r} not found.")
    return [
        AuditEntryRecord(
            id=e.id,
            actor_id=e.actor_id,
            actor_type=e.actor_type,
            action=e.action,
            from_state=e.from_state,
            to_state=e.to_state,
            metadata=e.metadata,
            created_at=e.created_at,
        )
        for e in get_audit_history(request_id, session_factory=session_factory)
    ]
