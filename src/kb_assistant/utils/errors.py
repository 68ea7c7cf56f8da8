"""Custom exception classes for the knowledge-base assistant."""

from typing import Any, Dict, Optional


class KBAssistantException(Exception):
    """Base exception for all knowledge-base assistant errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ValidationError(KBAssistantException):
    """Exception raised for validation errors."""

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if errors:
            error_details["validation_errors"] = errors
        super().__init__(
            message=message,
            status_code=422,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class NotFoundError(KBAssistantException):
    """Exception raised when a resource is not found.

    Also used for resources owned by another caller, so existence never leaks.
    """

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        error_details = details or {}
        error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=404,
            code="NOT_FOUND",
            details=error_details,
        )


class AuthenticationError(KBAssistantException):
    """Exception raised for missing or invalid API keys."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="AUTHENTICATION_ERROR",
            details=details,
        )


class RateLimitError(KBAssistantException):
    """Exception raised when a caller exceeds a concurrency or rate limit."""

    def __init__(
        self,
        message: str = "Too many concurrent requests",
        limit: Optional[int] = None,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if limit is not None:
            error_details["limit"] = limit
        if retry_after:
            error_details["retry_after"] = retry_after
        self.retry_after = retry_after
        super().__init__(
            message=message,
            status_code=429,
            code="RATE_LIMIT_EXCEEDED",
            details=error_details,
        )


class ParsingError(KBAssistantException):
    """Exception raised for document text extraction errors."""

    def __init__(
        self,
        message: str = "Document parsing failed",
        file_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if file_type:
            error_details["file_type"] = file_type
        super().__init__(
            message=message,
            status_code=422,
            code="PARSING_ERROR",
            details=error_details,
        )


class ChunkingError(KBAssistantException):
    """Exception raised for text chunking errors."""

    def __init__(
        self,
        message: str = "Text chunking failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="CHUNKING_ERROR",
            details=details,
        )


class EmbeddingError(KBAssistantException):
    """Exception raised for embedding generation errors."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(
            message=message,
            status_code=502,
            code="EMBEDDING_ERROR",
            details=error_details,
        )


class LLMError(KBAssistantException):
    """Exception raised for chat-completion provider errors."""

    def __init__(
        self,
        message: str = "LLM call failed",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(
            message=message,
            status_code=502,
            code="LLM_ERROR",
            details=error_details,
        )


class RetrievalError(KBAssistantException):
    """Exception raised when similarity search fails."""

    def __init__(
        self,
        message: str = "Retrieval failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="RETRIEVAL_ERROR",
            details=details,
        )


class JobQueueError(KBAssistantException):
    """Exception raised for job queue operation errors."""

    def __init__(
        self,
        message: str = "Job queue operation failed",
        job_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if job_type:
            error_details["job_type"] = job_type
        super().__init__(
            message=message,
            status_code=500,
            code="JOB_QUEUE_ERROR",
            details=error_details,
        )


class DatabaseError(KBAssistantException):
    """Exception raised for database operation errors."""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="DATABASE_ERROR",
            details=details,
        )
