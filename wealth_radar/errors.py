"""Exception types raised across pipeline stages."""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class PreflightError(PipelineError):
    """Infrastructure check failed. The run aborts before scraping."""


class CommitError(PipelineError):
    """Articles or events could not be committed. Notifications are skipped."""


class RunCancelledError(PipelineError):
    """Raised by work items that start after the run was cancelled."""


class StoreError(PipelineError):
    """Document store write failed after all retries."""
