"""
Orchestration module for dbstage.
"""

from dbstage.orchestrator.orchestrator import BatchRunner, OperationPipeline, StageFailed

__all__ = ["BatchRunner", "OperationPipeline", "StageFailed"]
