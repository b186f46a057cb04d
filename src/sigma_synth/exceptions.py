"""Error types raised by Sigma Synth."""


class SigmaSynthError(Exception):
    """Base class for all Sigma Synth errors."""


class CatalogueError(SigmaSynthError):
    """The log-source catalogue is missing or cannot be parsed."""


class SourceUnavailableError(SigmaSynthError):
    """An optional upstream source could not be fetched or parsed."""

    def __init__(self, location: str, reason: str) -> None:
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class InvalidTechniqueError(SigmaSynthError, ValueError):
    """A technique identifier does not look like T1234 or T1234.001."""

    def __init__(self, technique_id: str) -> None:
        super().__init__(f"Invalid ATT&CK technique identifier: {technique_id!r}")
        self.technique_id = technique_id
