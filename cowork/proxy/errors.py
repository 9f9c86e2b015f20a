"""Exceptions raised by Cowork clients and the orchestration core."""


class CoworkError(Exception):
    """Base class for all Cowork errors."""


class ServiceError(CoworkError):
    """An external service (router, skills, tasks, runtime) failed a request."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class SkillTimeoutError(CoworkError):
    """A capability call did not answer within the configured bound."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"{method} timed out after {timeout:g}s")


class PlanParseError(CoworkError):
    """Machine-generated plan text could not be parsed."""
