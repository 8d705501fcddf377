"""Exception hierarchy for formextract.

All errors inherit from BaseError and carry structured information
(code, category, details, retryability) so that callers such as an HTTP
layer can report them uniformly.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Error categories for classification and monitoring."""

    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    EXTERNAL_SERVICE = "external_service"
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"


class BaseError(Exception):
    """Base exception for all formextract errors.

    Attributes:
        message: Human-readable error message
        error_code: Application-specific error code
        category: Error category for classification
        details: Additional context (dict)
        retryable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem-details style mapping.

        Returns:
            Dict containing standardized error information
        """
        return {
            "type": f"/errors/{self.error_code}",
            "title": self.message,
            "code": self.error_code,
            "detail": self.details.get("detail"),
            "category": self.category.value,
            "retryable": self.retryable,
        }


class ClientError(BaseError):
    """Base for errors caused by invalid caller input.

    These are not retryable.
    """

    def __init__(self, message: str, error_code: str, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            category=kwargs.pop("category", ErrorCategory.CLIENT_ERROR),
            retryable=False,
            **kwargs,
        )


class InvalidPageCountError(ClientError):
    """Document page count is not a positive integer.

    Raised by the batch planner before any extraction happens.

    Args:
        total_pages: The rejected page count
    """

    def __init__(self, total_pages: Any):
        super().__init__(
            message=f"Document must have at least one page, got {total_pages!r}",
            error_code="INVALID_PAGE_COUNT",
            category=ErrorCategory.VALIDATION,
            details={"total_pages": total_pages},
        )
        self.total_pages = total_pages


class InputFormatError(ClientError):
    """Run-result input for variance analysis is missing or malformed.

    Args:
        message: What is wrong with the input
        source: File path or description of the input, if known
    """

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        additional_details = kwargs.pop("details", {})
        if source is not None:
            additional_details["source"] = source
        super().__init__(
            message=message,
            error_code="INPUT_FORMAT_ERROR",
            category=ErrorCategory.VALIDATION,
            details=additional_details,
            **kwargs,
        )


class ServerError(BaseError):
    """Base for internal failures or failures of external dependencies."""

    def __init__(self, message: str, error_code: str, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            category=kwargs.pop("category", ErrorCategory.SERVER_ERROR),
            retryable=kwargs.pop("retryable", False),
            **kwargs,
        )


class ExternalServiceError(ServerError):
    """External service failure.

    Raised when the upstream extraction service fails or times out.
    Retryable unless the upstream rejected the request itself.

    Args:
        service_name: Name of the external service
        error_type: Type of error ("timeout", "unavailable", "rate_limit", "error", ...)
        details: Additional error context
    """

    def __init__(self, service_name: str, error_type: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update(
            {
                "service": service_name,
                "error_type": error_type,
            }
        )

        super().__init__(
            message=kwargs.pop("message", f"{service_name} service {error_type}"),
            error_code=f"{service_name.upper()}_{error_type.upper()}",
            category=ErrorCategory.EXTERNAL_SERVICE,
            retryable=kwargs.pop("retryable", True),
            details=additional_details,
            **kwargs,
        )
        self.service_name = service_name
        self.error_type = error_type


class ExtractionFailure(ExternalServiceError):
    """Field extraction for one batch failed for good.

    Raised by extractor implementations once upstream retries are
    exhausted or the response cannot be used. The batch extractor records
    it on the BatchResult instead of aborting the run.

    Args:
        error_type: "token_limit", "parse_error", "empty_response", "exhausted", ...
        message: Human-readable description
    """

    def __init__(self, error_type: str, message: Optional[str] = None, **kwargs):
        super().__init__(
            service_name="EXTRACTOR",
            error_type=error_type,
            message=message or f"Field extraction failed: {error_type}",
            retryable=False,
            **kwargs,
        )


class RunTimeoutError(ServerError):
    """A whole extraction run exceeded its deadline.

    In-flight batch calls are abandoned and no partial result is returned.

    Args:
        run_id: Identifier of the abandoned run
        timeout_seconds: Deadline that was exceeded
    """

    def __init__(self, run_id: str, timeout_seconds: float):
        super().__init__(
            message=f"Extraction run {run_id} timed out after {timeout_seconds}s",
            error_code="RUN_TIMEOUT",
            retryable=True,
            details={"run_id": run_id, "timeout_seconds": timeout_seconds},
        )


class MergeAmbiguity(BaseError):
    """Duplicate descriptors disagree on options or confidence.

    Never raised: the merger resolves the conflict by its tie-break policy
    and logs this error for auditability.

    Args:
        signature: Signature shared by the conflicting descriptors
        conflicts: Names of the attributes that disagree
    """

    def __init__(self, signature: str, conflicts: list[str], **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update({"signature": signature, "conflicts": conflicts})
        super().__init__(
            message=f"Conflicting duplicates for {signature}: {', '.join(conflicts)}",
            error_code="MERGE_AMBIGUITY",
            category=ErrorCategory.BUSINESS_LOGIC,
            details=additional_details,
            **kwargs,
        )
        self.signature = signature
        self.conflicts = conflicts
