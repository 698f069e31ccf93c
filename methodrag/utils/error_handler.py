from typing import Any, Optional
import logging
from functools import wraps
from typing import Callable, TypeVar

F = TypeVar('F', bound=Callable[..., Any])

class MethodologyError(Exception):
    """Base exception class for methodology catalog errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

class FormatError(MethodologyError):
    """Exception raised when a version string is not MAJOR.MINOR.PATCH."""
    pass

class InvalidRecordError(MethodologyError):
    """Exception raised when a candidate methodology fails validation.

    ``rule`` names the first validation rule that failed.
    """
    def __init__(self, rule: str, message: str, details: dict = None):
        super().__init__(message, details)
        self.rule = rule

class ProviderError(MethodologyError):
    """Base class for optional-service outages (embedding, vector search, remote)."""
    def __init__(self, provider: str, message: str, details: dict = None):
        super().__init__(message, details)
        self.provider = provider

class ProviderUnavailableError(ProviderError):
    """Exception raised on network, auth or timeout failures of a provider."""
    pass

class RateLimitedError(ProviderError):
    """Exception raised when a provider throttles the caller."""
    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None,
                 details: dict = None):
        super().__init__(provider, message, details)
        self.retry_after = retry_after

class RemoteNotFoundError(MethodologyError):
    """Exception raised when a remote repository path does not exist."""
    pass

class BadQueryError(MethodologyError):
    """Exception raised for structurally invalid caller queries."""
    pass

class PersistenceError(MethodologyError):
    """Exception raised when the local catalog cannot be written."""
    pass

class ConfigurationError(MethodologyError):
    """Exception raised for configuration-related errors."""
    pass

class OperationCancelledError(MethodologyError):
    """Exception raised when a caller's cancellation signal stops a remote call."""
    pass

def log_errors(logger: logging.Logger) -> Callable[[F], F]:
    """Decorator to handle errors and log them consistently."""
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except MethodologyError as e:
                logger.error(f"Error in {func.__name__}: {str(e)}",
                           extra={"error_details": e.details})
                raise
            except Exception as e:
                logger.error(f"Unexpected error in {func.__name__}: {str(e)}")
                raise MethodologyError(f"Unexpected error: {str(e)}") from e
        return wrapper
    return decorator
