# Structured exception hierarchy for the Cosmos client

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class CosmosClientException(Exception):
    """Base exception for all Cosmos client specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for structured logs and CLI output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }


class TransientError(CosmosClientException):
    """Errors that may succeed if the caller tries again later"""
    pass


class PermanentError(CosmosClientException):
    """Errors that will not go away by retrying the same call"""
    pass
