"""Exception types shared by panelkit services."""


class PanelKitError(Exception):
    """Base exception for panelkit errors."""

    def __init__(self, code: str, message: str, suggestion: str | None = None):
        self.code = code
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class _KindError(PanelKitError):
    """PanelKitError whose code is fixed by the subclass."""

    code = "PANELKIT_ERROR"

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(self.code, message, suggestion)


class RecordNotFoundError(_KindError):
    """A required settings or backup record is missing."""

    code = "RECORD_NOT_FOUND"


class StructTransformError(_KindError):
    """A record could not be copied into its transfer form."""

    code = "STRUCT_TRANSFORM"


class ConfigIOError(_KindError, OSError):
    """The daemon config document could not be read or written."""

    code = "CONFIG_IO_ERROR"


class ConfigJSONError(_KindError):
    """The daemon config document holds malformed JSON."""

    code = "CONFIG_JSON_ERROR"


class ConfigValidationError(_KindError):
    """dockerd rejected the rewritten config document."""

    code = "CONFIG_INVALID"


class ServiceCommandError(_KindError):
    """A service manager command failed."""

    code = "SERVICE_COMMAND_FAILED"


class ServiceTimeoutError(_KindError, TimeoutError):
    """A service did not become active within its restart budget."""

    code = "SERVICE_TIMEOUT"


class StartupError(_KindError):
    """A fatal step of startup reconciliation failed."""

    code = "STARTUP_FAILED"
