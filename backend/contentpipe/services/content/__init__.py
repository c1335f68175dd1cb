"""
Content pipeline services.

- store: persistence of sources, jobs and chunks
- file_storage: uploaded document bytes
- orchestrator: the extraction → chunking → embedding job state machine
- status: per-source status aggregation
- progress: progress reporting for running stages
- search: per-owner similarity search
"""

from contentpipe.services.content.orchestrator import (
    ProcessingJobOrchestrator,
    build_orchestrator,
)
from contentpipe.services.content.search import ContentSearchService

__all__ = [
    "ProcessingJobOrchestrator",
    "build_orchestrator",
    "ContentSearchService",
]
