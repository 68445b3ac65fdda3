# deployment_service/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class DeploymentServiceError(Exception):
    """Base class for all deployment service errors."""
    pass


# -----------------------------
# Validation / Domain Errors
# -----------------------------

class ValidationError(DeploymentServiceError):
    """Malformed request or unsupported provider type."""
    pass


class ConfigurationError(ValidationError):
    """Provider configuration is missing required fields."""

    def __init__(self, provider: str, missing_fields):
        self.provider = provider
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Missing required configuration field(s) for {provider}: "
            f"{', '.join(self.missing_fields)}"
        )


class InvalidStateError(DeploymentServiceError):
    """Illegal status transition attempted."""
    pass


# -----------------------------
# Provider Errors
# -----------------------------

class ProviderError(DeploymentServiceError):
    """Backend SDK call failed on a write path."""

    def __init__(self, provider: str, operation: str, message: str):
        self.provider = provider
        self.operation = operation
        super().__init__(f"{provider} {operation} failed: {message}")


# -----------------------------
# Persistence Errors
# -----------------------------

class PersistenceError(DeploymentServiceError):
    pass


class NotFoundError(PersistenceError):
    pass


class AlreadyExistsError(PersistenceError):
    pass


class ConcurrencyError(PersistenceError):
    pass
