"""
Sofra - Daily meal planning core.

Plans personalised daily meals through a two-stage, schema-constrained
generation pipeline (menu decision, then recipe expansion) and resolves
results through a tiered cache: durable store, live generation, then a
stale local fallback.
"""

__version__ = "0.3.0"
