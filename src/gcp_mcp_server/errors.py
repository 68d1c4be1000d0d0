import inspect
import logging
from typing import Any, Callable, List, Optional

import anyio
from google.api_core import exceptions as gcp_exceptions
from google.api_core import retry as gcp_retry

logger = logging.getLogger(__name__)


class GCPToolError(Exception):
    """Base class for failures reported back to the client as tool errors."""

    error_type = "tool_error"
    suggestions: List[str] = []

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class BigQueryAuthError(GCPToolError):
    error_type = "authentication_error"
    suggestions = [
        "Run: gcloud auth application-default login",
        "Check that GOOGLE_APPLICATION_CREDENTIALS points to a valid key file",
        "Verify the service account has the BigQuery User role",
    ]


class BigQueryPermissionError(GCPToolError):
    error_type = "permission_error"
    suggestions = [
        "Verify IAM permissions in the Cloud Console: https://console.cloud.google.com/iam-admin/iam",
        "The caller needs roles/bigquery.dataViewer and roles/bigquery.jobUser",
        "Check that the project ID is correct",
    ]


class BigQueryAPIError(GCPToolError):
    error_type = "api_error"
    suggestions = [
        "Enable the API: https://console.cloud.google.com/apis/library/bigquery.googleapis.com",
        "Run: gcloud services enable bigquery.googleapis.com",
        "Wait a few minutes after enabling the API and retry",
    ]


class ResourceNotFoundError(GCPToolError):
    error_type = "not_found"
    suggestions = [
        "Check the spelling of the dataset, table or job ID",
        "Confirm the resource exists in the selected project and location",
    ]


class ToolValidationError(GCPToolError):
    error_type = "validation_error"


class ConfigurationError(GCPToolError):
    error_type = "configuration_error"
    suggestions = [
        "Set GOOGLE_CLOUD_PROJECT or run: gcloud config set project PROJECT_ID",
    ]


class UnknownToolError(Exception):
    """Raised by the dispatcher when no tool is registered under a name."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


_API_DISABLED_MARKERS = ("API has not been used", "has not been enabled", "is disabled")


def classify_error(error: BaseException) -> BaseException:
    """Map a Google API exception onto the tool error hierarchy.

    Errors that are already tool errors, and errors that are not Google API
    call errors, are returned unchanged.
    """
    if isinstance(error, GCPToolError):
        return error
    if not isinstance(error, gcp_exceptions.GoogleAPICallError):
        return error

    message = getattr(error, "message", None) or str(error)
    if any(marker in message for marker in _API_DISABLED_MARKERS):
        return BigQueryAPIError(f"BigQuery API is not enabled: {message}", error)
    if isinstance(error, gcp_exceptions.Unauthenticated):
        return BigQueryAuthError(f"Authentication failed: {message}", error)
    if isinstance(error, gcp_exceptions.Forbidden):
        return BigQueryPermissionError(f"Permission denied: {message}", error)
    if isinstance(error, gcp_exceptions.NotFound):
        return ResourceNotFoundError(f"Resource not found: {message}", error)
    return error


def error_suggestions(error: BaseException) -> List[str]:
    if isinstance(error, GCPToolError):
        return list(error.suggestions)
    return []


def format_error_message(error: BaseException) -> str:
    """Render an error with its remediation hints, the way it is shown to users."""
    classified = classify_error(error)
    message = getattr(classified, "message", None) or str(classified)
    lines = [f"BigQuery Error: {message}"]

    suggestions = error_suggestions(classified)
    if suggestions:
        lines.append("")
        lines.append("Suggestions:")
        lines.extend(f"- {suggestion}" for suggestion in suggestions)

    original = getattr(classified, "original_error", None)
    if original is not None:
        lines.append("")
        lines.append(f"Original error: {original}")
    return "\n".join(lines)


is_transient_error = gcp_retry.if_exception_type(
    gcp_exceptions.TooManyRequests,
    gcp_exceptions.InternalServerError,
    gcp_exceptions.BadGateway,
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.GatewayTimeout,
    gcp_exceptions.DeadlineExceeded,
    ConnectionError,
)


async def with_retry(
    func: Callable[..., Any],
    *args: Any,
    attempts: int = 3,
    delay: float = 1.0,
    **kwargs: Any,
) -> Any:
    """Call ``func`` and retry transient failures with linear backoff.

    ``func`` may be a plain callable or a coroutine function. The sleep
    before retry ``n`` is ``delay * n`` seconds.
    """
    for attempt in range(1, attempts + 1):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as error:
            if attempt >= attempts or not is_transient_error(error):
                raise
            wait = delay * attempt
            logger.warning(f"Transient error on attempt {attempt}/{attempts}, retrying in {wait}s: {error}")
            await anyio.sleep(wait)
