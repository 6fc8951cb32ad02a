# overskill: Error taxonomy. File store and registry errors are recovered inside a turn and reported back to the model as tool results; a ProviderError that survives the fallback, a cancellation or a store I/O error fails the run.

from typing import Any, Dict, Optional


class OverskillError(Exception):
    """Base exception carrying a machine-readable code."""

    code = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(OverskillError):
    """Raised when a path does not exist in the file store."""

    code = "not_found"

    def __init__(self, path: str):
        super().__init__(f"File not found: {path}", details={"path": path})
        self.path = path


class EmptyContentError(OverskillError):
    """Raised when a write carries empty content."""

    code = "empty_content"

    def __init__(self, path: str):
        super().__init__(f"Refusing to write empty content to {path}", details={"path": path})
        self.path = path


class RangeError(OverskillError):
    """Raised when a line range is inverted or exceeds the file's line count."""

    code = "invalid_range"

    def __init__(self, path: str, first_line: int, last_line: int, line_count: int):
        super().__init__(
            f"Invalid line range {first_line}-{last_line} for {path} ({line_count} lines)",
            details={
                "path": path,
                "first_line": first_line,
                "last_line": last_line,
                "line_count": line_count,
            },
        )


class ConflictError(OverskillError):
    """Raised when a rename target already exists."""

    code = "conflict"

    def __init__(self, path: str):
        super().__init__(f"Target already exists: {path}", details={"path": path})
        self.path = path


class InvalidToolArguments(OverskillError):
    """Raised when tool arguments fail schema validation."""

    code = "invalid_arguments"

    def __init__(self, tool: str, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message, details={"tool": tool, "fields": fields or {}})
        self.tool = tool
        self.fields = fields or {}


class UnknownTool(OverskillError):
    """Raised when the model asks for a tool that is not registered."""

    code = "unknown_tool"

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", details={"tool": name})
        self.name = name


class ToolRegistrationError(OverskillError):
    """Raised at registration time for duplicate or malformed tool handlers."""

    code = "invalid_tool"


class ProviderError(OverskillError):
    """Raised when an LLM provider call fails or times out."""

    code = "provider_error"

    def __init__(self, message: str, provider: str = "", status: Optional[int] = None, retryable: bool = True):
        super().__init__(message, details={"provider": provider, "status": status})
        self.provider = provider
        self.status = status
        self.retryable = retryable


class TurnLimitExceeded(OverskillError):
    """Signals that the run hit its turn limit; the run finalizes with partial results."""

    code = "turn_limit"

    def __init__(self, max_turns: int):
        super().__init__(f"Turn limit of {max_turns} reached", details={"max_turns": max_turns})
        self.max_turns = max_turns


class RunCancelled(OverskillError):
    """Signals that a run was cancelled between turns."""

    code = "cancelled"

    def __init__(self, run_id: str = ""):
        super().__init__("Run cancelled", details={"run_id": run_id})


class ExternalServiceError(OverskillError):
    """Raised when an image or search collaborator fails or is not configured."""

    code = "external_error"

    def __init__(self, service: str, message: str, status: Optional[int] = None):
        super().__init__(message, details={"service": service, "status": status})
        self.service = service
        self.status = status


class InvalidManifest(OverskillError):
    """Raised when package.json exists but is not a JSON object."""

    code = "invalid_manifest"

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path} is not a valid package manifest: {reason}", details={"path": path})
        self.path = path


class UnknownVersion(OverskillError):
    """Raised when a version number has no snapshot."""

    code = "not_found"

    def __init__(self, version: str):
        super().__init__(f"Version not found: {version}", details={"version": version})
        self.version = version
