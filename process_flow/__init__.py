"""
Process Flow

Multi-step business process engine: templates of ordered steps with
per-step dynamic forms, process instances run against client companies,
and order-gated step execution with a full report trail.
"""

__version__ = "1.0.0"
