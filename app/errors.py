"""Domain exceptions."""


class AuthServiceError(Exception):
    """Remote auth service rejected a call, or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StorageError(Exception):
    """The key-value store could not be read or written."""


class PendingVerificationMissing(Exception):
    """
    No pending verification exists for the flow.

    Raised when the verification screen starts without a record: the caller
    must abort and send the user back to the entry flow.
    """

    def __init__(self, message: str = "No verification data found. Please try again.",
                 redirect_to: str = "/login"):
        super().__init__(message)
        self.message = message
        self.redirect_to = redirect_to


class FlowValidationError(Exception):
    """Entry-flow input (registration / recovery / reset form) is invalid."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
