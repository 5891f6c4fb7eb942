"""
Error taxonomy for the mentor knowledge graph.

Three failure kinds cross component boundaries: the graph store being
unreachable, a required entity being absent, and the LLM collaborator
returning unusable output. The last one never reaches callers of the
analysis collaborator, which substitutes documented defaults instead.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class MentorErrorType(str, Enum):
    """Types of errors raised by the mentor components."""

    STORE_UNAVAILABLE = "store_unavailable"
    NOT_FOUND = "not_found"
    ANALYSIS_FAILURE = "analysis_failure"
    INVALID_INPUT = "invalid_input"


class MentorError(Exception):
    """Base class carrying structured context for logging."""

    error_type: MentorErrorType = MentorErrorType.INVALID_INPUT

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            'error_type': self.error_type.value,
            'message': self.message,
            'context': self.context,
            'timestamp': self.timestamp.isoformat(),
        }


class StoreUnavailableError(MentorError):
    """The graph store could not be reached or the session was lost."""

    error_type = MentorErrorType.STORE_UNAVAILABLE


class NotFoundError(MentorError):
    """A required entity does not exist."""

    error_type = MentorErrorType.NOT_FOUND

    def __init__(self, entity_kind: str, key: str):
        super().__init__(
            f"{entity_kind} '{key}' not found",
            context={'entity_kind': entity_kind, 'key': key},
        )
        self.entity_kind = entity_kind
        self.key = key


class AnalysisFailureError(MentorError):
    """The LLM collaborator produced no usable result."""

    error_type = MentorErrorType.ANALYSIS_FAILURE
