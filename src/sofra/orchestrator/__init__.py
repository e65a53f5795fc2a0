"""
Sofra - Multi-meal "first ready" orchestrator.
"""

from sofra.orchestrator.session import DayPlanner, DayPlanSession, pick_sample_day

__all__ = [
    "DayPlanSession",
    "DayPlanner",
    "pick_sample_day",
]
