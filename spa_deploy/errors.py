"""Exceptions raised by spa-deploy."""


class SpaDeployError(Exception):
    """Base exception for all spa-deploy errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PreconditionError(SpaDeployError):
    """Raised when the local or remote state does not allow the deploy to go on."""


class UserDeclinedError(SpaDeployError):
    """Raised when the user refuses an operation that requires consent."""


class WaitTimeoutError(SpaDeployError):
    """Raised when a resource did not reach the expected state in time."""

    def __init__(self, message: str, resource: str = "", max_wait: int = 0):
        super().__init__(message)
        self.resource = resource
        self.max_wait = max_wait
