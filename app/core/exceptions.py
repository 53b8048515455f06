"""Custom exception types for the refund daemon and its integrations."""


class AppError(Exception):
    """Base app exception."""


class ConfigError(AppError):
    """Malformed or unusable configuration. Fatal at startup."""


class IntegrationError(AppError):
    """External integration call failure."""


class TransientInfraError(IntegrationError):
    """Store, ledger or transport hiccup. Retried on the next cycle."""


class InvalidRecipientError(IntegrationError):
    """Recipient address rejected. Terminal until the contact data changes."""

    def __init__(self, address: str, message: str | None = None):
        self.address = address
        super().__init__(message or f"Invalid recipient address: {address!r}")
