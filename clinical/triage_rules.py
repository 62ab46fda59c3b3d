"""
Clinical triage rules engine.

Deterministic, logic-only rules over the patient's free text and the intake
flags. No AI/ML and no fuzzy matching: a rule fires when one of its exact
phrases occurs (case-insensitively) in the text, so every result can be
explained by pointing at the phrase.

The rule tables are immutable and versioned by RULES_VERSION; every
TriageResult records the version that produced it. Bump the version whenever
a table changes.

This does not replace clinician judgement; see clinical.decision for how the
clinician's decision is checked against the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from clinical.triage_types import (
    AUTO_REJECT_RULES,
    NEVER_ASYNC_CATEGORIES,
    REQUEST_TYPE_CONFIGS,
    AdditionalContext,
    AutoRejectCategory,
    ClinicalFlag,
    FlagSeverity,
    NeverAsyncCategory,
    RequestType,
    RequestTypeConfig,
    TriageContext,
    TriageInput,
    TriageOutcome,
    TriageResult,
)

logger = logging.getLogger(__name__)

RULES_VERSION = "2024.1"


# ---------------------------------------------------------------------------
# Emergency keywords (grouped by category)
# ---------------------------------------------------------------------------

EMERGENCY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "cardiac": ("chest pain", "heart attack"),
    "respiratory": ("can't breathe", "cannot breathe", "difficulty breathing", "choking", "drowning"),
    "neurological": ("stroke", "seizure", "unconscious", "head injury", "spinal injury"),
    "mental_health": ("suicidal", "suicide", "self harm", "self-harm", "overdose"),
    "allergic": ("anaphylaxis", "allergic reaction severe"),
    "trauma": ("severe bleeding", "severe burn", "poisoning"),
}


# ---------------------------------------------------------------------------
# Red-flag patterns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RedFlagRule:
    code: str
    keywords: Tuple[str, ...]
    severity: FlagSeverity
    category: str
    description: str
    clinician_guidance: str
    forces_needs_call: bool
    forces_decline: bool

    def to_flag(self) -> ClinicalFlag:
        return ClinicalFlag(
            code=self.code,
            severity=self.severity,
            category=self.category,
            description=self.description,
            clinician_guidance=self.clinician_guidance,
            forces_needs_call=self.forces_needs_call,
            forces_decline=self.forces_decline,
        )


RED_FLAG_RULES: Tuple[RedFlagRule, ...] = (
    # Cardiovascular
    RedFlagRule(
        code="RF_CHEST_PAIN",
        keywords=("chest pain", "chest tightness", "crushing chest"),
        severity=FlagSeverity.EMERGENCY,
        category="cardiovascular",
        description="Chest pain reported",
        clinician_guidance="Potential cardiac event. Requires immediate assessment.",
        forces_needs_call=False,
        forces_decline=True,
    ),
    RedFlagRule(
        code="RF_PALPITATIONS_SYNCOPE",
        keywords=("palpitations with fainting", "blackout", "syncope"),
        severity=FlagSeverity.CRITICAL,
        category="cardiovascular",
        description="Palpitations with syncope",
        clinician_guidance="Arrhythmia with hemodynamic compromise. Needs urgent workup.",
        forces_needs_call=True,
        forces_decline=False,
    ),
    # Neurological
    RedFlagRule(
        code="RF_STROKE_SYMPTOMS",
        keywords=("sudden weakness", "facial droop", "slurred speech", "sudden confusion"),
        severity=FlagSeverity.EMERGENCY,
        category="neurological",
        description="Stroke-like symptoms",
        clinician_guidance="Potential stroke. Time-critical. Redirect to emergency.",
        forces_needs_call=False,
        forces_decline=True,
    ),
    RedFlagRule(
        code="RF_SEVERE_HEADACHE",
        keywords=("worst headache", "thunderclap headache", "sudden severe headache"),
        severity=FlagSeverity.CRITICAL,
        category="neurological",
        description="Sudden severe headache",
        clinician_guidance="Possible SAH or other intracranial pathology. Needs urgent assessment.",
        forces_needs_call=True,
        forces_decline=False,
    ),
    # Respiratory
    RedFlagRule(
        code="RF_BREATHING_DIFFICULTY",
        keywords=("can't breathe", "severe shortness of breath", "gasping"),
        severity=FlagSeverity.EMERGENCY,
        category="respiratory",
        description="Severe breathing difficulty",
        clinician_guidance="Respiratory distress. Redirect to emergency.",
        forces_needs_call=False,
        forces_decline=True,
    ),
    # Mental health
    RedFlagRule(
        code="RF_SUICIDAL_IDEATION",
        keywords=("suicidal", "suicide", "want to die", "end my life", "kill myself"),
        severity=FlagSeverity.EMERGENCY,
        category="mental_health",
        description="Suicidal ideation expressed",
        clinician_guidance="Immediate safety risk. Redirect to crisis services.",
        forces_needs_call=False,
        forces_decline=True,
    ),
    RedFlagRule(
        code="RF_SELF_HARM",
        keywords=("self harm", "self-harm", "cutting myself", "hurting myself"),
        severity=FlagSeverity.CRITICAL,
        category="mental_health",
        description="Self-harm reported",
        clinician_guidance="Safety risk. Requires synchronous assessment.",
        forces_needs_call=True,
        forces_decline=False,
    ),
    # Abdominal
    RedFlagRule(
        code="RF_ACUTE_ABDOMEN",
        keywords=("severe abdominal pain", "rigid abdomen", "abdominal guarding"),
        severity=FlagSeverity.CRITICAL,
        category="gastrointestinal",
        description="Acute abdominal presentation",
        clinician_guidance="Potential surgical abdomen. Needs urgent assessment.",
        forces_needs_call=True,
        forces_decline=False,
    ),
    # Infection
    RedFlagRule(
        code="RF_SEPSIS_SIGNS",
        keywords=("fever with confusion", "high fever shaking", "mottled skin"),
        severity=FlagSeverity.CRITICAL,
        category="infectious",
        description="Possible sepsis",
        clinician_guidance="Sepsis screen required. Time-critical intervention.",
        forces_needs_call=False,
        forces_decline=True,
    ),
    # Pregnancy
    RedFlagRule(
        code="RF_PREGNANCY_BLEEDING",
        keywords=("pregnant bleeding", "vaginal bleeding pregnant", "pregnancy bleeding"),
        severity=FlagSeverity.CRITICAL,
        category="obstetric",
        description="Vaginal bleeding in pregnancy",
        clinician_guidance="Possible threatened abortion or ectopic. Needs urgent assessment.",
        forces_needs_call=False,
        forces_decline=True,
    ),
)

_BLOCKING_SEVERITIES = frozenset({FlagSeverity.CRITICAL, FlagSeverity.EMERGENCY})


# ---------------------------------------------------------------------------
# Rule results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmergencyCheck:
    is_emergency: bool
    matched_keywords: List[str]


@dataclass(frozen=True)
class AutoRejectCheck:
    should_reject: bool
    category: Optional[AutoRejectCategory] = None


@dataclass(frozen=True)
class AsyncCheck:
    blocked: bool
    reason: Optional[NeverAsyncCategory] = None
    explanation: Optional[str] = None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def check_emergency_symptoms(text: Optional[str]) -> EmergencyCheck:
    """Case-insensitive phrase match against EMERGENCY_KEYWORDS."""
    lowered = (text or "").lower()
    matched: List[str] = []
    for keywords in EMERGENCY_KEYWORDS.values():
        for keyword in keywords:
            if keyword in lowered and keyword not in matched:
                matched.append(keyword)
    return EmergencyCheck(is_emergency=bool(matched), matched_keywords=matched)


def check_red_flag_patterns(text: Optional[str]) -> List[ClinicalFlag]:
    """Each rule contributes at most one flag, however many of its phrases occur."""
    lowered = (text or "").lower()
    if not lowered:
        return []
    return [
        rule.to_flag()
        for rule in RED_FLAG_RULES
        if any(keyword in lowered for keyword in rule.keywords)
    ]


def check_auto_reject(
    flags: Sequence[ClinicalFlag],
    emergency: EmergencyCheck,
    is_controlled_substance: bool,
    is_first_time_high_risk: bool,
    is_outside_scope: bool,
) -> AutoRejectCheck:
    """
    Any single condition is enough to reject. When several hold, the reported
    category is the first in this order; it is informational only.
    """
    if emergency.is_emergency:
        return AutoRejectCheck(True, AutoRejectCategory.EMERGENCY_SYMPTOMS)
    if any(f.forces_decline for f in flags):
        return AutoRejectCheck(True, AutoRejectCategory.RED_FLAG_PRESENTATION)
    if is_controlled_substance:
        return AutoRejectCheck(True, AutoRejectCategory.CONTROLLED_SUBSTANCE)
    if is_first_time_high_risk:
        return AutoRejectCheck(True, AutoRejectCategory.FIRST_TIME_HIGH_RISK)
    if is_outside_scope:
        return AutoRejectCheck(True, AutoRejectCategory.OUTSIDE_GP_SCOPE)
    return AutoRejectCheck(False)


def _request_type_config(request_type: Union[RequestType, str]) -> Optional[RequestTypeConfig]:
    try:
        return REQUEST_TYPE_CONFIGS[RequestType(request_type)]
    except ValueError:
        return None


def check_async_blocked(
    flags: Sequence[ClinicalFlag],
    has_call_happened: bool,
    request_type: Union[RequestType, str],
    additional_context: Optional[AdditionalContext] = None,
) -> AsyncCheck:
    """
    Decide whether text-only (async) review is off the table.

    Clinical blockers always apply. The request type's default only blocks
    until a call has actually happened.
    """
    blocking = [f for f in flags if f.severity in _BLOCKING_SEVERITIES]
    if blocking:
        return AsyncCheck(
            True,
            NeverAsyncCategory.CLINICIAN_DISCOMFORT,
            f"Critical clinical flags present: {', '.join(f.code for f in blocking)}",
        )

    ctx = additional_context or AdditionalContext()
    for present, reason in (
        (ctx.is_new_diagnosis, NeverAsyncCategory.NEW_DIAGNOSIS),
        (ctx.is_new_long_term_med, NeverAsyncCategory.NEW_LONG_TERM_MEDICATION),
        (ctx.has_symptom_escalation, NeverAsyncCategory.SYMPTOM_ESCALATION),
        (ctx.has_ambiguous_history, NeverAsyncCategory.AMBIGUOUS_HISTORY),
    ):
        if present:
            return AsyncCheck(True, reason, NEVER_ASYNC_CATEGORIES[reason])

    if not has_call_happened:
        config = _request_type_config(request_type)
        if config is None:
            return AsyncCheck(
                True,
                NeverAsyncCategory.CLINICIAN_DISCOMFORT,
                f"Unknown request type {request_type!r} requires synchronous review",
            )
        if not config.default_async_eligible:
            return AsyncCheck(
                True,
                NeverAsyncCategory.CLINICIAN_DISCOMFORT,
                f"{config.display_name} requests require synchronous review by default",
            )

    return AsyncCheck(False)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate_triage(triage_input: TriageInput) -> TriageResult:
    """
    Run every rule over one intake and derive the suggested outcome.

    Precedence: auto-reject → declined; async blocked or call-forcing flag →
    needs_call; any other flag → needs_call; otherwise approved. The clinician
    still decides.
    """
    request_type = RequestType(triage_input.request_type)  # ValueError on an unknown type
    text = triage_input.free_text_symptoms or ""

    emergency = check_emergency_symptoms(text)
    flags = check_red_flag_patterns(text)
    critical_count = sum(1 for f in flags if f.severity in _BLOCKING_SEVERITIES)

    auto_reject = check_auto_reject(
        flags,
        emergency,
        triage_input.is_controlled_substance,
        triage_input.is_first_time_high_risk,
        triage_input.is_outside_scope,
    )
    async_check = check_async_blocked(
        flags,
        triage_input.has_call_happened,
        request_type,
        triage_input.additional_context,
    )

    call_flags = [f for f in flags if f.forces_needs_call]
    if auto_reject.should_reject:
        outcome = TriageOutcome.DECLINED
        reasoning = AUTO_REJECT_RULES[auto_reject.category].clinician_note
    elif async_check.blocked:
        outcome = TriageOutcome.NEEDS_CALL
        reasoning = async_check.explanation or "Synchronous clinician contact required"
    elif call_flags:
        outcome = TriageOutcome.NEEDS_CALL
        reasoning = "Flags requiring call: " + "; ".join(f.description for f in call_flags)
    elif flags:
        outcome = TriageOutcome.NEEDS_CALL
        reasoning = "Clinical flags present require clinician review before approval"
    else:
        outcome = TriageOutcome.APPROVED
        reasoning = "No red flags detected. Eligible for async approval pending clinician review."

    context = TriageContext(
        request_id=triage_input.request_id,
        request_type=request_type,
        patient_id=triage_input.patient_id,
        is_first_request=triage_input.is_first_request,
        has_red_flags=bool(flags),
        red_flag_count=len(flags),
        critical_flag_count=critical_count,
        is_async_eligible=not async_check.blocked,
        blocked_async_reason=async_check.reason,
        auto_reject_category=auto_reject.category,
    )

    result = TriageResult(
        context=context,
        suggested_outcome=outcome,
        reasoning=reasoning,
        is_auto_rejected=auto_reject.should_reject,
        async_blocked=async_check.blocked,
        flags=flags,
        auto_reject_rule=AUTO_REJECT_RULES[auto_reject.category] if auto_reject.category else None,
        async_blocked_reason=async_check.explanation,
        rules_version=RULES_VERSION,
    )

    logger.info(
        "triage %s: outcome=%s auto_rejected=%s async_blocked=%s flags=[%s] emergency=[%s]",
        triage_input.request_id,
        outcome.value,
        auto_reject.should_reject,
        async_check.blocked,
        ", ".join(f.code for f in flags),
        ", ".join(emergency.matched_keywords),
    )
    return result
