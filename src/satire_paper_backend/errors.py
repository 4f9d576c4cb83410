"""Exception classes for the satire paper backend."""


class SatirePaperError(Exception):
    """Base exception for all application errors."""

    pass


class ConfigurationError(SatirePaperError):
    """Required configuration or credentials are missing or invalid."""

    pass


class GenerationError(SatirePaperError):
    """The text-generation backend could not produce output."""

    pass


class CompilationError(SatirePaperError):
    """pdflatex did not produce a PDF, even after the fixup retry."""

    def __init__(self, reason: str, attempts: int) -> None:
        self.reason = reason
        self.attempts = attempts
        super().__init__(reason)


class StorageError(SatirePaperError):
    """Uploading an artifact to the storage backend failed."""

    pass
