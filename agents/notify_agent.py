"""
Notify Agent: LangGraph node.
Hands the email trigger of a committed transition to the outbound notifier,
through the email_provider circuit breaker. Composing and sending the email
is the notifier's job; a failed hand-off never undoes the transition.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from orchestrator.state import ReviewState
from stability.circuit_breaker import CircuitBreakerRegistry
from stability.safe_action import SAFE_ACTION_TIMEOUT_SECONDS, safe_action

logger = logging.getLogger(__name__)

# notifier(request_id, email_trigger)
Notifier = Callable[[str, str], None]


def notify_agent(
    state: ReviewState,
    *,
    notifier: Optional[Notifier] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
) -> ReviewState:
    """
    LangGraph node: dispatch state['email_triggered'].

    Writes: state['notification_sent']
    """
    request_id = state.get("request_id")
    trigger = state.get("email_triggered")
    if notifier is None or not trigger:
        return {**state, "notification_sent": False}

    if breakers is None:
        logger.warning("notify_agent: no circuit breaker registry; %s for %s not sent", trigger, request_id)
        return {**state, "notification_sent": False}

    breaker = breakers.get("email_provider")
    outcome = safe_action(
        breaker.execute,
        notifier,
        request_id,
        trigger,
        timeout_seconds=SAFE_ACTION_TIMEOUT_SECONDS,
        action_name="notify",
    )
    if outcome.success:
        logger.info("notify_agent: %s sent for %s", trigger, request_id)
    else:
        logger.warning("notify_agent: %s for %s not sent (%s)", trigger, request_id, outcome.code)
    return {**state, "notification_sent": outcome.success}
