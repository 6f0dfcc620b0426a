"""Exception taxonomy for the commit engine.

Fatal errors abort the current commit cycle and surface an ``error`` status;
none of them disable the engine.
"""


class ScribeError(Exception):
    """Base class for all Git Scribe errors."""


class VcsError(ScribeError):
    """A git invocation exited non-zero or could not be started.

    Attributes:
        args_list (list[str]): The git arguments that failed.
        stderr (str): The captured error output (falls back to stdout).
    """

    def __init__(self, message: str, args_list: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.args_list = args_list or []
        self.stderr = stderr


class StagingError(ScribeError):
    """Staging a single path failed.

    Attributes:
        path (str): The path that could not be staged.
        skippable (bool): True when the failure is expected (submodule path,
            ignored file, unmatched pathspec) and staging may continue.
    """

    def __init__(self, path: str, message: str, skippable: bool = False):
        super().__init__(f"Failed to stage {path}: {message}")
        self.path = path
        self.skippable = skippable


class DiffError(ScribeError):
    """The staged diff could not be read, so no AI message can be produced."""


class CommitError(ScribeError):
    """`git commit` failed."""


class ProviderError(ScribeError):
    """Base class for AI provider failures."""


class NoProviderConfigured(ProviderError):
    """No AI provider is enabled."""


class ProviderUnavailable(ProviderError):
    """The selected provider has no usable credentials."""


class ProviderTimeout(ProviderError):
    """The provider did not answer within the request timeout."""


class ProviderRequestError(ProviderError):
    """The provider (or its CLI) returned an error or an empty response."""
