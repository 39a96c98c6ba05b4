"""Request orchestration: outbound sanitation, tool loop and answer rendering."""

from parley.agent.orchestrator import ModelParams, Orchestrator, TurnResult, TurnState
from parley.agent.outbound import sanitize_outbound
from parley.agent.pseudo_calls import extract_pseudo_call
from parley.agent.rendering import render_answer

__all__ = [
    "ModelParams",
    "Orchestrator",
    "TurnResult",
    "TurnState",
    "sanitize_outbound",
    "extract_pseudo_call",
    "render_answer",
]
