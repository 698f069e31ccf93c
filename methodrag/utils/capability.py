from typing import Optional
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

class ProviderCapability:
    """Availability flag for one optional provider within one operation.

    A fresh flag is created per find call or sync run. The first failure
    disables the provider for the rest of that operation, so later steps skip
    it instead of repeating a failing call.
    """

    def __init__(self, name: str, available: bool = True, reason: Optional[str] = None):
        self.name = name
        self.available = available
        self.reason = reason if not available else None
        if not available:
            logger.debug(f"{name} unavailable: {reason or 'not configured'}")

    @classmethod
    def for_provider(cls, name: str, provider) -> 'ProviderCapability':
        """Build a flag from an optional provider instance."""
        if provider is None:
            return cls(name, available=False, reason="not configured")
        is_available = getattr(provider, "is_available", None)
        if callable(is_available) and not is_available():
            return cls(name, available=False, reason="provider reports unavailable")
        return cls(name)

    def disable(self, reason: str) -> None:
        if self.available:
            logger.warning(f"Disabling {self.name} for this operation: {reason}")
        self.available = False
        self.reason = reason

    def __bool__(self) -> bool:
        return self.available

    def __repr__(self) -> str:
        state = "on" if self.available else f"off ({self.reason})"
        return f"ProviderCapability({self.name}: {state})"
