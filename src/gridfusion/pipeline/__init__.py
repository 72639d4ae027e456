"""Pipeline orchestration package for grid reconstruction.

Provides the reconstruction context, builder, and runner used to turn a
configuration into a persisted, world-aligned volume.
"""

from .builder import build_reconstruction_context, create_engine, resolve_device
from .context import ReconstructionContext
from .interfaces import FusionEngine
from .runner import Pipeline, run_pipeline, run_reconstruction

__all__ = [
    "FusionEngine",
    "Pipeline",
    "ReconstructionContext",
    "build_reconstruction_context",
    "create_engine",
    "resolve_device",
    "run_pipeline",
    "run_reconstruction",
]
