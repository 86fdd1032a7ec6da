"""
Error Types

Exception hierarchy shared by the session controller, storage adapters,
Gateway and the feature controllers.

    ResonextError
    ├── ConfigurationError      missing or invalid backend credentials (fatal at startup)
    ├── AuthError               bad credentials, duplicate sign-up
    ├── DataLoadError           remote document could not be fetched (fatal for the session)
    ├── DataSaveError           remote document could not be written (logged only)
    │   └── VersionConflictError   remote copy changed since it was loaded
    ├── GatewayError            Gateway call failed (network, SDK)
    │   └── GatewayResponseError   response could not be parsed into the expected shape
    └── InputValidationError    caught before any network call
        ├── ProfileLimitError
        └── LastProfileError
"""


class ResonextError(Exception):
    """Base class for all application errors."""

    pass


class ConfigurationError(ResonextError):
    """Raised when backend configuration is missing or invalid."""

    pass


class AuthError(ResonextError):
    """Raised when sign-in, sign-up or sign-out fails."""

    pass


class DataLoadError(ResonextError):
    """Raised when the account document cannot be fetched."""

    pass


class DataSaveError(ResonextError):
    """Raised when the account document cannot be written."""

    pass


class VersionConflictError(DataSaveError):
    """Raised when a write targets a stale document version.

    Attributes:
        account_id: Account whose document was rejected
        expected_version: Version the writer believed was current
    """

    def __init__(self, account_id: str, expected_version: int):
        self.account_id = account_id
        self.expected_version = expected_version
        super().__init__(
            f"Document for {account_id} changed remotely "
            f"(expected version {expected_version})"
        )


class GatewayError(ResonextError):
    """Raised when a Gateway call fails."""

    pass


class GatewayResponseError(GatewayError):
    """Raised when a Gateway response does not match the expected shape."""

    pass


class InputValidationError(ResonextError):
    """Raised when user input is rejected before any network call."""

    pass


class ProfileLimitError(InputValidationError):
    """Raised when creating a profile would exceed the per-account limit."""

    pass


class LastProfileError(InputValidationError):
    """Raised when deleting the only remaining profile."""

    pass
