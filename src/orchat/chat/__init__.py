"""Chat pipeline: content shaping, provider transforms, tools, orchestration."""

from .orchestrator import CompletionOrchestrator

__all__ = ["CompletionOrchestrator"]
