"""
Clinical triage types.

The platform is an intake, triage and documentation system, not a
prescribing system. Everything here is data: outcomes, flag and result
contracts, auto-reject categories, async/sync boundaries and per-request-type
configuration.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TriageOutcome(str, Enum):
    """Every request ends in exactly one of these; there is no silent default."""
    APPROVED = "approved"
    NEEDS_CALL = "needs_call"
    DECLINED = "declined"


LEGACY_TO_TRIAGE_OUTCOME: Dict[str, TriageOutcome] = {
    "approved": TriageOutcome.APPROVED,
    "approve": TriageOutcome.APPROVED,
    "needs_call": TriageOutcome.NEEDS_CALL,
    "requires_consult": TriageOutcome.NEEDS_CALL,
    "consult": TriageOutcome.NEEDS_CALL,
    "declined": TriageOutcome.DECLINED,
    "decline": TriageOutcome.DECLINED,
    "rejected": TriageOutcome.DECLINED,
    "reject": TriageOutcome.DECLINED,
}


def normalize_to_triage_outcome(decision: str) -> TriageOutcome:
    """Map a decision value, including legacy spellings, onto a TriageOutcome."""
    if isinstance(decision, TriageOutcome):
        return decision
    outcome = LEGACY_TO_TRIAGE_OUTCOME.get(str(decision).strip().lower())
    if outcome is None:
        raise ValueError(
            f"Invalid decision value: {decision!r}. Must be approved, needs_call, or declined."
        )
    return outcome


@dataclass(frozen=True)
class OutcomeDefinition:
    outcome: TriageOutcome
    description: str
    requires_rationale: bool
    allows_async_completion: bool


OUTCOME_DEFINITIONS: Dict[TriageOutcome, OutcomeDefinition] = {
    TriageOutcome.APPROVED: OutcomeDefinition(
        TriageOutcome.APPROVED,
        "Clinician is satisfied the request is clinically appropriate. No synchronous contact required.",
        requires_rationale=False,
        allows_async_completion=True,
    ),
    TriageOutcome.NEEDS_CALL: OutcomeDefinition(
        TriageOutcome.NEEDS_CALL,
        "New, unclear, or escalating presentation. Conflicting or incomplete information. Any clinician uncertainty.",
        requires_rationale=True,
        allows_async_completion=False,
    ),
    TriageOutcome.DECLINED: OutcomeDefinition(
        TriageOutcome.DECLINED,
        "Outside scope, unsafe, inappropriate for online care, red-flag presentation, or repeated misuse.",
        requires_rationale=True,
        allows_async_completion=True,
    ),
}


# ---------------------------------------------------------------------------
# Auto-reject categories
# ---------------------------------------------------------------------------


class AutoRejectCategory(str, Enum):
    EMERGENCY_SYMPTOMS = "emergency_symptoms"
    RED_FLAG_PRESENTATION = "red_flag_presentation"
    CONTROLLED_SUBSTANCE = "controlled_substance"
    FIRST_TIME_HIGH_RISK = "first_time_high_risk"
    OUTSIDE_GP_SCOPE = "outside_gp_scope"


@dataclass(frozen=True)
class AutoRejectRule:
    category: AutoRejectCategory
    description: str
    user_message: str
    clinician_note: str
    redirect_advice: str


AUTO_REJECT_RULES: Dict[AutoRejectCategory, AutoRejectRule] = {
    AutoRejectCategory.EMERGENCY_SYMPTOMS: AutoRejectRule(
        AutoRejectCategory.EMERGENCY_SYMPTOMS,
        description="Emergency or urgent symptoms requiring immediate care",
        user_message="Your symptoms may require urgent medical attention. Please call 000 or visit your nearest emergency department.",
        clinician_note="Auto-declined: Emergency/urgent symptoms detected",
        redirect_advice="Call 000 for emergencies, or visit your nearest emergency department",
    ),
    AutoRejectCategory.RED_FLAG_PRESENTATION: AutoRejectRule(
        AutoRejectCategory.RED_FLAG_PRESENTATION,
        description="Red-flag clinical presentation requiring in-person assessment",
        user_message="Based on your symptoms, we recommend an in-person consultation with your GP or urgent care clinic.",
        clinician_note="Auto-declined: Red-flag presentation requiring physical examination",
        redirect_advice="See your regular GP or visit an urgent care clinic",
    ),
    AutoRejectCategory.CONTROLLED_SUBSTANCE: AutoRejectRule(
        AutoRejectCategory.CONTROLLED_SUBSTANCE,
        description="Request for controlled or restricted substances",
        user_message="This medication isn't available through our service. Please see your regular prescriber for this medication.",
        clinician_note="Auto-declined: Controlled/restricted substance request",
        redirect_advice="Continue with your regular prescriber",
    ),
    AutoRejectCategory.FIRST_TIME_HIGH_RISK: AutoRejectRule(
        AutoRejectCategory.FIRST_TIME_HIGH_RISK,
        description="First-time request for high-risk treatment",
        user_message="For first-time prescriptions of this medication, we recommend a consultation with your GP.",
        clinician_note="Auto-declined: First-time high-risk treatment request",
        redirect_advice="Book a consultation with your regular GP",
    ),
    AutoRejectCategory.OUTSIDE_GP_SCOPE: AutoRejectRule(
        AutoRejectCategory.OUTSIDE_GP_SCOPE,
        description="Request clearly outside GP scope",
        user_message="This request is outside the scope of our service. Please consult an appropriate specialist.",
        clinician_note="Auto-declined: Outside GP scope",
        redirect_advice="Consult with an appropriate specialist",
    ),
}


# ---------------------------------------------------------------------------
# Async / sync boundaries
# ---------------------------------------------------------------------------


class NeverAsyncCategory(str, Enum):
    """Reasons a case can never be completed without synchronous contact."""
    CLINICIAN_DISCOMFORT = "clinician_discomfort"
    NEW_DIAGNOSIS = "new_diagnosis"
    NEW_LONG_TERM_MEDICATION = "new_long_term_medication"
    SYMPTOM_ESCALATION = "symptom_escalation"
    AMBIGUOUS_HISTORY = "ambiguous_history"


NEVER_ASYNC_CATEGORIES: Dict[NeverAsyncCategory, str] = {
    NeverAsyncCategory.NEW_DIAGNOSIS: "New diagnoses require synchronous clinical assessment",
    NeverAsyncCategory.NEW_LONG_TERM_MEDICATION: "New long-term medications require clinician discussion",
    NeverAsyncCategory.SYMPTOM_ESCALATION: "Symptom escalation requires immediate clinician review",
    NeverAsyncCategory.AMBIGUOUS_HISTORY: "Ambiguous or conflicting histories require clarification",
    NeverAsyncCategory.CLINICIAN_DISCOMFORT: "Clinician uncertainty always requires synchronous contact",
}

# Categories where async completion is at clinician discretion
MAY_BE_ASYNC_CATEGORIES: Dict[str, str] = {
    "administrative_documentation": "Administrative documentation (med certs, referral letters)",
    "repeat_stable_treatment": "Repeat treatment requests with reported stability",
    "low_risk_defined_presentation": "Low-risk, clearly defined presentations",
}


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------


class RequestType(str, Enum):
    MED_CERT = "med_cert"
    REPEAT_RX = "repeat_rx"
    GENERAL_CONSULT = "general_consult"
    REFERRAL = "referral"


@dataclass(frozen=True)
class RequestTypeConfig:
    type: RequestType
    display_name: str
    default_async_eligible: bool
    requires_prescribing: bool  # prescribing itself happens in an external system


REQUEST_TYPE_CONFIGS: Dict[RequestType, RequestTypeConfig] = {
    RequestType.MED_CERT: RequestTypeConfig(RequestType.MED_CERT, "Medical Certificate", True, False),
    RequestType.REPEAT_RX: RequestTypeConfig(RequestType.REPEAT_RX, "Repeat Prescription", True, True),
    RequestType.GENERAL_CONSULT: RequestTypeConfig(RequestType.GENERAL_CONSULT, "General Consultation", False, False),
    RequestType.REFERRAL: RequestTypeConfig(RequestType.REFERRAL, "Referral Letter", True, False),
}


# ---------------------------------------------------------------------------
# Flags, context, result
# ---------------------------------------------------------------------------


class FlagSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class ClinicalFlag:
    code: str
    severity: FlagSeverity
    category: str
    description: str
    clinician_guidance: str
    forces_needs_call: bool
    forces_decline: bool

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["severity"] = self.severity.value
        return d


@dataclass(frozen=True)
class AdditionalContext:
    is_new_diagnosis: bool = False
    is_new_long_term_med: bool = False
    has_symptom_escalation: bool = False
    has_ambiguous_history: bool = False


@dataclass(frozen=True)
class TriageInput:
    request_id: str
    request_type: RequestType
    patient_id: Optional[str] = None
    free_text_symptoms: Optional[str] = None
    structured_answers: Optional[Dict[str, Any]] = None
    is_first_request: bool = False
    is_controlled_substance: bool = False
    is_first_time_high_risk: bool = False
    is_outside_scope: bool = False
    has_call_happened: bool = False
    additional_context: Optional[AdditionalContext] = None


@dataclass(frozen=True)
class TriageContext:
    request_id: str
    request_type: RequestType
    patient_id: Optional[str]
    is_first_request: bool
    has_red_flags: bool
    red_flag_count: int
    critical_flag_count: int
    is_async_eligible: bool
    blocked_async_reason: Optional[NeverAsyncCategory] = None
    auto_reject_category: Optional[AutoRejectCategory] = None


@dataclass(frozen=True)
class TriageResult:
    """
    Output of one triage evaluation. Never mutated: a change to the patient's
    text produces a new result that supersedes this one.
    """
    context: TriageContext
    suggested_outcome: TriageOutcome
    reasoning: str
    is_auto_rejected: bool
    async_blocked: bool
    flags: List[ClinicalFlag] = field(default_factory=list)
    auto_reject_rule: Optional[AutoRejectRule] = None
    async_blocked_reason: Optional[str] = None
    rules_version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "suggested_outcome": self.suggested_outcome.value,
            "reasoning": self.reasoning,
            "is_auto_rejected": self.is_auto_rejected,
            "async_blocked": self.async_blocked,
            "async_blocked_reason": self.async_blocked_reason,
            "flags": [f.to_dict() for f in self.flags],
            "auto_reject_rule": (
                {
                    "category": self.auto_reject_rule.category.value,
                    "user_message": self.auto_reject_rule.user_message,
                    "clinician_note": self.auto_reject_rule.clinician_note,
                    "redirect_advice": self.auto_reject_rule.redirect_advice,
                }
                if self.auto_reject_rule
                else None
            ),
            "context": {
                "request_id": ctx.request_id,
                "request_type": ctx.request_type.value,
                "patient_id": ctx.patient_id,
                "is_first_request": ctx.is_first_request,
                "has_red_flags": ctx.has_red_flags,
                "red_flag_count": ctx.red_flag_count,
                "critical_flag_count": ctx.critical_flag_count,
                "is_async_eligible": ctx.is_async_eligible,
                "blocked_async_reason": ctx.blocked_async_reason.value if ctx.blocked_async_reason else None,
                "auto_reject_category": ctx.auto_reject_category.value if ctx.auto_reject_category else None,
            },
            "rules_version": self.rules_version,
        }
