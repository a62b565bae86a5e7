"""Batch pipeline: checkpointed record store, dataset emitter, orchestrator."""

from .runner import BatchOrchestrator, main

__all__ = ["BatchOrchestrator", "main"]
