"""
Service layer for the Error Monitor.

Contains the decision logic: stack trace parsing, repository resolution and
the fix workflow that drives every external collaborator.
"""

from .stack_trace_parser import StackTraceParser
from .repository_resolver import RepositoryResolver
from .fix_workflow import FixWorkflow

__all__ = [
    "StackTraceParser",
    "RepositoryResolver",
    "FixWorkflow",
]
