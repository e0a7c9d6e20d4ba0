"""State machine constants for frame and video jobs.

Job statuses are shared by both job kinds. The video job additionally walks
an ordered assembly stage machine while it builds the final video.
"""

# Job statuses in lifecycle order
JOB_STATES = {
    "queued": "Job accepted, background task not yet running",
    "running": "Background task is executing",
    "completed": "Job finished successfully",
    "failed": "Job encountered unrecoverable error",
}

# Statuses that block a second video job (and regeneration) for a session
ACTIVE_JOB_STATES = {"queued", "running"}

TERMINAL_JOB_STATES = {"completed", "failed"}

ASSEMBLY_STAGES = {
    "idle": "Reconciling transitions, assembly not started",
    "editing": "Scaling, padding and concatenating transitions",
    "retiming": "Speeding up and trimming to the target duration",
    "finalizing": "Persisting final video to the session manifest",
    "done": "Final video ready",
}

# Stage transitions for the assembly step
STAGE_TRANSITIONS = {
    "idle": "editing",
    "editing": "retiming",
    "retiming": "finalizing",
    "finalizing": "done",
}


def is_active(status: str) -> bool:
    """Check if a job with given status still owns its session."""
    return status in ACTIVE_JOB_STATES


def next_stage(stage: str) -> str:
    """Return the assembly stage following ``stage``.

    Raises:
        ValueError: If ``stage`` is terminal or unknown.
    """
    try:
        return STAGE_TRANSITIONS[stage]
    except KeyError:
        raise ValueError(f"No assembly stage follows '{stage}'") from None
