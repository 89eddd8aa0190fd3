"""
Lifeline Safety: Trust-and-Safety Decision Pipeline for Crisis Support

Scores every inbound message for risk with an ensemble of models and a
crisis lexicon, escalates ambiguous or high-stakes decisions to human
experts, and records every decision in a compliance-grade audit trail.
"""

__version__ = "0.1.0"
