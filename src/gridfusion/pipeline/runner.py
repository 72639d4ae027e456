"""Pipeline runner: orchestrates the reconstruction and provides public API."""

import logging
from pathlib import Path

from ..config import PipelineConfig
from ..io import save_structured_grid
from ..volume import allocate_volume, apply_grid_matrix
from .builder import build_reconstruction_context
from .context import ReconstructionContext
from .interfaces import FusionEngine

logger = logging.getLogger(__name__)


def run_reconstruction(ctx: ReconstructionContext) -> Path:
    """Fuse, align and persist the volume described by a context.

    Stages fail fast: nothing is written unless fusion and alignment both
    succeeded. The catalog is released when the call returns, whether it
    succeeded or not.

    Args:
        ctx: Context from build_reconstruction_context().

    Returns:
        Path of the written structured grid.
    """
    config = ctx.config
    try:
        # Scratch volume in the local grid frame (axis aligned)
        volume = allocate_volume(ctx.grid_spec)

        logger.info(
            "Launching reconstruction of %d depth maps on %s",
            len(ctx.catalog),
            ctx.device,
        )
        result = ctx.engine.fuse(volume, ctx.catalog, ctx.grid_matrix, config.fusion)
        logger.info("Execution time: %.3f s", result.elapsed_seconds)

        logger.info("Applying grid matrix to the reconstruction output")
        aligned = apply_grid_matrix(result.volume, ctx.grid_matrix)

        output_path = Path(config.output_path)
        logger.info("Saving output to %s", output_path)
        save_structured_grid(aligned, output_path)
    finally:
        ctx.catalog.clear()

    return output_path


def run_pipeline(config: PipelineConfig, engine: FusionEngine | None = None) -> Path:
    """Run the full reconstruction pipeline.

    Builds the catalog and grid matrix, invokes the fusion engine once,
    applies the grid matrix to the fused volume, and writes it to
    ``config.output_path``.

    Args:
        config: Full pipeline configuration.
        engine: Optional fusion engine (defaults to the ray potential engine
            on the resolved device).

    Returns:
        Path of the written structured grid.
    """
    logger.info("---START---")
    ctx = build_reconstruction_context(config, engine=engine)
    output_path = run_reconstruction(ctx)
    logger.info("---END---")
    return output_path


class Pipeline:
    """Grid reconstruction pipeline.

    Primary programmatic entry point for GridFusion.

    Example:
        pipeline = Pipeline(config)
        pipeline.run()
    """

    def __init__(self, config: PipelineConfig, engine: FusionEngine | None = None):
        """Initialize the pipeline with configuration.

        Args:
            config: Full pipeline configuration.
            engine: Optional fusion engine override.
        """
        self.config = config
        self.engine = engine

    def run(self) -> Path:
        """Run the full reconstruction pipeline.

        Equivalent to calling run_pipeline(config, engine).
        """
        return run_pipeline(self.config, engine=self.engine)
