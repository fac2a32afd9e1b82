# /gottadoit/errors.py

from typing import Optional


class OnboardingError(Exception):
    pass


class NodeNotFound(OnboardingError):
    """Raised when an editor or runtime operation references an unknown node id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' not found in onboarding flow")


class FlowNotFound(OnboardingError):
    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"No onboarding flow published for organization '{org_id}'")


class ValidationRejected(OnboardingError):
    """Raised when an editor operation would break a flow invariant. The tree is left untouched."""

    def __init__(self, error_code: Optional[str], message: Optional[str]):
        self.error_code = error_code
        self.message = message
        super().__init__(message or error_code or "Validation rejected")


class StoreUnavailable(OnboardingError):
    """Raised when a persistence read or write fails. Callers may retry."""
    pass


class VersionConflict(OnboardingError):
    """Raised when a progress record changed between read and conditional write."""

    def __init__(self, org_id: str, user_id: str, expected_version: Optional[int]):
        self.org_id = org_id
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            f"Progress record for {org_id}/{user_id} is no longer at version {expected_version}"
        )


class FlowVersionConflict(OnboardingError):
    def __init__(self, org_id: str, expected_version: int):
        self.org_id = org_id
        self.expected_version = expected_version
        super().__init__(
            f"Onboarding flow for '{org_id}' was published after version {expected_version}; reload before publishing"
        )


class CircuitOpenError(StoreUnavailable):
    pass
