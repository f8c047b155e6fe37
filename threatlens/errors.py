# threatlens/errors.py
"""
Error taxonomy for the threat engine.

Only InvalidInputError crosses the engine boundary. Collector-level errors
are raised inside collectors and absorbed by the orchestrator, which turns
them into failed opinions.
"""


class ThreatLensError(Exception):
    """Base class for all engine errors"""


class InvalidInputError(ThreatLensError):
    """Input contains no extractable host component"""


class CollectorError(ThreatLensError):
    """A signal collector could not produce an opinion"""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class CollectorTimeout(CollectorError):
    """A signal collector exceeded its time budget"""


class MalformedExternalResponse(CollectorError):
    """An external service answered with something we cannot parse"""
