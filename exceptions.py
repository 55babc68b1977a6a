"""Custom exception hierarchy for the CUA test harness."""
from __future__ import annotations

from typing import Any, Iterable, Optional


class HarnessError(Exception):
    """Base exception for all harness errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Session-related exceptions
class SessionError(HarnessError):
    """Base exception for device session lifecycle errors."""

    pass


class ProfileNotFound(SessionError):
    """Raised when a device name is absent from the catalog."""

    def __init__(self, device_name: str, available: Iterable[str] = ()):
        available = list(available)
        message = f"Device {device_name} not found."
        if available:
            message += f" Available devices: {', '.join(available)}"
        super().__init__(message, {"device_name": device_name})
        self.device_name = device_name
        self.available = available


class LaunchFailure(SessionError):
    """Raised when the underlying browser engine cannot be started."""

    def __init__(self, message: str, engine: Optional[str] = None, device_name: Optional[str] = None):
        details = {}
        if engine:
            details["engine"] = engine
        if device_name:
            details["device_name"] = device_name
        super().__init__(message, details)
        self.engine = engine
        self.device_name = device_name


class CaptureFailure(SessionError):
    """Raised when screenshot capture keeps failing after all retries."""

    def __init__(self, message: str, attempts: Optional[int] = None):
        details = {"attempts": attempts} if attempts else {}
        super().__init__(message, details)
        self.attempts = attempts


class LoginFailure(SessionError):
    """Raised when the login form cannot be filled or submitted."""

    def __init__(self, message: str, selector: Optional[str] = None):
        details = {"selector": selector} if selector else {}
        super().__init__(message, details)
        self.selector = selector


# Action-related exceptions
class ActionError(HarnessError):
    """Base exception for action descriptor errors."""

    pass


class ActionTranslationError(ActionError):
    """Raised when a descriptor cannot be validated or executed against the target."""

    def __init__(self, message: str, action: Optional[dict[str, Any]] = None):
        details = {"action": action} if action else {}
        super().__init__(message, details)
        self.action = action


class UnknownActionVariant(ActionError):
    """Raised when a descriptor's type tag is not part of the vocabulary."""

    def __init__(self, action_type: Optional[str], vocabulary: Optional[str] = None):
        message = f"Unrecognized action type: {action_type!r}"
        details = {"vocabulary": vocabulary} if vocabulary else {}
        super().__init__(message, details)
        self.action_type = action_type
        self.vocabulary = vocabulary


class SafetyCheckTriggered(HarnessError):
    """A pending safety check on a computer call; forces the session to fail."""

    def __init__(self, message: str, code: Optional[str] = None, call_id: Optional[str] = None):
        details = {}
        if code:
            details["code"] = code
        if call_id:
            details["call_id"] = call_id
        super().__init__(f"Safety check detected: {message}", details)
        self.code = code
        self.call_id = call_id


# Model-related exceptions
class DecisionServiceError(HarnessError):
    """Base exception for decision-service (computer-use model) errors."""

    pass


class DecisionResponseError(DecisionServiceError):
    """Raised when the decision service returns an unusable response."""

    def __init__(self, message: str, response: Optional[str] = None):
        details = {"response_preview": response[:200] if response else None}
        super().__init__(message, details)
        self.response = response


class ReviewError(HarnessError):
    """Raised when the reviewer agent cannot produce a review."""

    pass


class TestCaseAgentError(HarnessError):
    """Raised when the test case agent cannot turn a test case into steps."""

    __test__ = False


# Test definition exceptions
class TestDefinitionError(HarnessError):
    """Base exception for session request loading errors."""

    pass


class TaskLoadError(TestDefinitionError):
    """Raised when a request file cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class TaskValidationError(TestDefinitionError):
    """Raised when a request definition is invalid."""

    def __init__(self, message: str, task_id: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if task_id:
            details["task_id"] = task_id
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.task_id = task_id
        self.field = field
