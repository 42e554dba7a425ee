"""Custom exceptions for the admission gateway."""


class AdmissionError(Exception):
    """Base class for admission gateway exceptions.

    All custom exceptions inherit from this class so callers embedding the
    gateway can catch a single type.
    """

    def __init__(self, message: str = "Admission error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(AdmissionError):
    """Raised when startup configuration cannot be loaded.

    Covers malformed tier tables, invalid address ranges and pattern rules
    that fail to compile. Initialization is refused.
    """

    def __init__(self, message: str = "Invalid configuration", setting: str | None = None):
        self.setting = setting
        if setting:
            message = f"{setting}: {message}"
        super().__init__(message)


class LedgerUnavailable(AdmissionError):
    """Raised when the quota ledger backend cannot be reached.

    Recoverable. The admission pipeline maps it to a decision according to
    the configured failure mode instead of guessing allow or deny.
    """

    def __init__(self, backend: str = "unknown", detail: str | None = None):
        self.backend = backend
        self.detail = detail
        message = f"Quota ledger backend '{backend}' unavailable"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class InvalidAddress(AdmissionError):
    """Raised when a caller network address cannot be parsed.

    The address policy converts this into a deny verdict.
    """

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid network address: {address!r}")
