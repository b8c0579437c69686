"""Error kinds raised while packaging.

Filesystem failures are not wrapped: any ``OSError`` raised while copying,
reading or writing propagates to the caller unchanged.
"""


class PackagingError(RuntimeError):
    """Base class for fatal packaging errors."""


class ConfigurationError(PackagingError):
    """Raised when a packaging request is invalid (e.g. missing entry file)."""


class MandatoryAssetMissing(PackagingError):
    """Raised when a required runtime asset (qode, ``@nodegui``) is absent."""


class CompileStepFailure(PackagingError):
    """Raised when the launcher source could not be compiled.

    The orchestrator downgrades this to a warning.
    """
