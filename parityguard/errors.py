"""Exception types shared across parityguard."""


class ParityGuardError(Exception):
    """Base class for all parityguard errors."""


class ConfigError(ParityGuardError):
    """Raised when a configuration file cannot be loaded."""


class UserInputError(ParityGuardError):
    """Raised when request parameters are missing or invalid."""


class ItemNotFoundError(UserInputError):
    """Raised when a protected item or operation does not exist."""


class ProtectionConflictError(UserInputError):
    """Raised when a protect request collides with an existing protection."""


class CommandBuildError(UserInputError):
    """Raised when a par2 command cannot be built from the given options."""


class AlreadyProtectedError(ParityGuardError):
    """Raised when the path and selector already carry parity data."""


class PersistenceError(ParityGuardError):
    """Raised when a database operation fails after rollback."""


class Par2NotFoundError(ParityGuardError):
    """Raised when the par2 executable is not installed."""


class ExternalToolExecutionError(ParityGuardError):
    """Raised when par2 exits in a way the classification table does not cover."""

    def __init__(
        self,
        message: str,
        argv: list[str] | None = None,
        returncode: int | None = None,
        output: str = "",
    ):
        super().__init__(message)
        self.argv = argv or []
        self.returncode = returncode
        self.output = output

    def __str__(self) -> str:
        text = super().__str__()
        if self.returncode is not None:
            text += f" (exit code {self.returncode})"
        if self.output:
            text += f"\n{self.output.strip()}"
        return text
