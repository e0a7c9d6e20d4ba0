"""Exception hierarchy for the lifetime pipeline.

Resource/state errors are raised synchronously when a job is started or a
frame is regenerated. Provider and assembly errors surface inside background
jobs and end up on the job record as its failure message.
"""


class LifepipeError(Exception):
    """Base class for all pipeline errors."""


class InvalidSessionError(LifepipeError):
    """Session id is malformed or its manifest is corrupt."""


class SessionNotFoundError(LifepipeError):
    """No manifest exists for the requested session."""


class FrameNotFoundError(LifepipeError):
    """Requested age has no frame in the session."""


class MissingFramesError(LifepipeError):
    """Session does not yet have every frame required for video creation."""


class JobConflictError(LifepipeError):
    """Another job is already active for the session."""


class JobNotFoundError(LifepipeError):
    """Job id is unknown or its record was already evicted."""


class ProviderError(LifepipeError):
    """An external synthesis or classification service failed."""


class AssemblyError(LifepipeError):
    """ffmpeg failed to produce the final video."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr
