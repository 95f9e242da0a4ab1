"""
Domain Exceptions for the Trust Engine

All engine errors derive from BaseTrustException.
A normal eligibility denial is NOT an exception - it is an EligibilityResult
with allowed=False. Only storage and configuration failures are raised.
"""


class BaseTrustException(Exception):
    """Base class for all trust engine errors"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        """Serialize for API responses"""
        return {
            "error": {
                "code": self.__class__.__name__,
                "message": self.message,
                "details": self.details
            }
        }


# =============================================================================
# Lookup / configuration
# =============================================================================

class UnknownAction(BaseTrustException):
    """No policy entry for the action code (never silently allowed)"""

    def __init__(self, action_code: str):
        self.action_code = action_code
        super().__init__(
            message=f"unknown action: {action_code!r} has no policy entry",
            details={"action_code": action_code}
        )


class PolicyConfigurationError(BaseTrustException):
    """Policy table input is malformed"""

    def __init__(self, problem: str, source: str = None):
        super().__init__(
            message=f"Invalid action policy configuration: {problem}",
            details={"problem": problem, "source": source}
        )


# =============================================================================
# Storage
# =============================================================================

class TransientStorageError(BaseTrustException):
    """Backing store unavailable or timed out; callers deny and may retry"""

    def __init__(self, operation: str, cause: str = None):
        super().__init__(
            message=f"Trust storage unavailable during {operation}",
            details={"operation": operation, "cause": cause}
        )


class ConcurrentUpdateConflict(BaseTrustException):
    """Conditional update matched no row because the record moved underneath it"""

    def __init__(self, website_id: str, action_category: str, expected_level: int):
        super().__init__(
            message="Trust record changed concurrently; retry the mutation",
            details={
                "website_id": website_id,
                "action_category": action_category,
                "expected_level": expected_level
            }
        )


class InvariantViolation(BaseTrustException):
    """An update would break a ledger invariant; rejected before persistence"""

    def __init__(self, invariant: str, website_id: str = None, action_category: str = None):
        super().__init__(
            message=f"Trust invariant violated: {invariant}",
            details={
                "invariant": invariant,
                "website_id": website_id,
                "action_category": action_category
            }
        )


# =============================================================================
# HTTP Status Mapping
# =============================================================================

EXCEPTION_TO_STATUS = {
    UnknownAction: 404,
    PolicyConfigurationError: 500,
    TransientStorageError: 503,
    ConcurrentUpdateConflict: 409,
    InvariantViolation: 422,
}
