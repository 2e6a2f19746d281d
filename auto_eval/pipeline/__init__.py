"""Evaluation pipeline stages and the orchestrator that wires them."""

from auto_eval.pipeline.orchestrator import (
    EvaluationPipeline,
    build_audit_dispatcher,
    open_pipeline,
)

__all__ = ["EvaluationPipeline", "build_audit_dispatcher", "open_pipeline"]
