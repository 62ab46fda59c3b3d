"""
LangGraph StateGraph definition for the request review workflow.

Flow:
  triage_agent
       ↓
  route_after_triage ── no clinician decision ──→ END
       ↓
  review_agent
       ↓
  route_after_review ── unresolved decision ──→ END
       ↓
  transition_agent
       ↓
  route_after_transition ── failed / no email trigger ──→ END
       ↓
  notify_agent → END
"""

from __future__ import annotations

from functools import partial
from typing import Optional

from langgraph.graph import END, StateGraph
from sqlalchemy.orm import sessionmaker

from agents.notify_agent import Notifier, notify_agent
from agents.review_agent import review_agent
from agents.transition_agent import transition_agent
from agents.triage_agent import triage_agent
from orchestrator.router import route_after_review, route_after_transition, route_after_triage
from orchestrator.state import ReviewState
from stability.circuit_breaker import CircuitBreakerRegistry


def build_graph(
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
) -> StateGraph:
    """Build the review StateGraph; call .compile() on the result before invoking."""
    if notifier is not None and breakers is None:
        # shared by every invocation of the compiled graph
        breakers = CircuitBreakerRegistry.default()

    workflow = StateGraph(ReviewState)

    # ---- nodes -------------------------------------------------------
    workflow.add_node("triage_agent",     partial(triage_agent, session_factory=session_factory))
    workflow.add_node("review_agent",     review_agent)
    workflow.add_node("transition_agent", partial(transition_agent, session_factory=session_factory))
    workflow.add_node("notify_agent",     partial(notify_agent, notifier=notifier, breakers=breakers))

    # ---- entry point -------------------------------------------------
    workflow.set_entry_point("triage_agent")

    # ---- conditional edges -------------------------------------------
    workflow.add_conditional_edges(
        "triage_agent",
        route_after_triage,
        {"review_agent": "review_agent", "__end__": END},
    )
    workflow.add_conditional_edges(
        "review_agent",
        route_after_review,
        {"transition_agent": "transition_agent", "__end__": END},
    )
    workflow.add_conditional_edges(
        "transition_agent",
        route_after_transition,
        {"notify_agent": "notify_agent", "__end__": END},
    )

    workflow.add_edge("notify_agent", END)

    return workflow


# Compiled graph on the default session factory, without a notifier
graph = build_graph().compile()
