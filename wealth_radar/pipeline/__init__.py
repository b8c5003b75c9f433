# Stage pipeline
from .context import RunContext
from .runner import run_pipeline

__all__ = ["RunContext", "run_pipeline"]
