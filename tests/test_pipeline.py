"""Tests for pipeline orchestration."""

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import pyvista as pv

from gridfusion.catalog import EmptyCatalogError
from gridfusion.config import PipelineConfig
from gridfusion.fusion import FusionResult, RayPotentialFusionEngine
from gridfusion.io import DepthMapReadError
from gridfusion.pipeline import (
    FusionEngine,
    Pipeline,
    build_reconstruction_context,
    create_engine,
    resolve_device,
    run_pipeline,
    run_reconstruction,
)

ROTATED = {"vec_x": [0, 1, 0], "vec_y": [-1, 0, 0], "vec_z": [0, 0, 1]}


@pytest.fixture
def make_config(tmp_path):
    """Factory for a CPU-only PipelineConfig reading from ``data_folder``."""

    def _make(data_folder, **grid_overrides) -> PipelineConfig:
        grid = {
            "dimensions": [2, 3, 4],
            "spacing": [0.1, 0.1, 1.0],
            "origin": [-0.1, -0.1, 1.0],
        }
        grid.update(grid_overrides)
        return PipelineConfig.from_dict(
            {
                "output_path": str(tmp_path / "out" / "grid.vts"),
                "grid": grid,
                "inputs": {"data_folder": str(data_folder)},
                "fusion": {"use_accelerated": False},
                "runtime": {"quiet": True},
            }
        )

    return _make


@pytest.fixture
def mock_engine():
    """Engine stub recording the catalog size it was handed."""
    engine = MagicMock()
    engine.seen_catalog_sizes = []

    def _fuse(volume, catalog, grid_matrix, params):
        engine.seen_catalog_sizes.append(len(catalog))
        output = volume.copy()
        output.point_data[params.scalar_name] = np.arange(volume.n_points, dtype=float)
        return FusionResult(volume=output, elapsed_seconds=0.25)

    engine.fuse.side_effect = _fuse
    return engine


def _three_views(dataset):
    return dataset(["a.npy", "b.npy", "c.npy"], ["a.krtd", "b.krtd", "c.krtd"])


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_engine_called_once_with_full_catalog(self, dataset, make_config, mock_engine):
        config = make_config(_three_views(dataset))

        run_pipeline(config, engine=mock_engine)

        assert mock_engine.fuse.call_count == 1
        assert mock_engine.seen_catalog_sizes == [3]
        volume, _, grid_matrix, params = mock_engine.fuse.call_args.args
        assert isinstance(volume, pv.ImageData)
        assert tuple(volume.dimensions) == (2, 3, 4)
        np.testing.assert_array_equal(grid_matrix, np.eye(4))
        assert params == config.fusion

    def test_output_written_and_aligned(self, dataset, make_config, mock_engine):
        """Test that the saved grid is the fused volume moved by the grid matrix."""
        config = make_config(_three_views(dataset), **ROTATED)

        output_path = run_pipeline(config, engine=mock_engine)

        assert output_path == Path(config.output_path)
        assert output_path.exists()
        saved = pv.read(str(output_path))
        assert isinstance(saved, pv.StructuredGrid)

        local = pv.ImageData(dimensions=(2, 3, 4), spacing=(0.1, 0.1, 1.0), origin=(-0.1, -0.1, 1.0))
        expected = local.points @ np.array([[0, 1, 0], [-1, 0, 0], [0, 0, 1]], dtype=float).T
        np.testing.assert_allclose(saved.points, expected, atol=1e-12)
        np.testing.assert_array_equal(
            saved.point_data["reconstruction_scalar"], np.arange(24)
        )

    def test_logs_start_and_end(self, dataset, make_config, mock_engine, caplog):
        config = make_config(_three_views(dataset))
        with caplog.at_level(logging.INFO, logger="gridfusion"):
            run_pipeline(config, engine=mock_engine)

        assert "---START---" in caplog.text
        assert "3 depth maps have been loaded" in caplog.text
        assert "Execution time" in caplog.text
        assert "---END---" in caplog.text

    def test_empty_catalog_stops_before_fusion(self, dataset, make_config, mock_engine):
        folder = dataset(["a.npy", "b.npy"], ["missing_a.krtd", "missing_b.krtd"])
        config = make_config(folder)

        with pytest.raises(EmptyCatalogError):
            run_pipeline(config, engine=mock_engine)

        mock_engine.fuse.assert_not_called()
        assert not (folder.parent / "out" / "grid.vts").exists()

    def test_unreadable_depth_map_is_fatal(self, dataset, make_config, mock_engine):
        folder = dataset(["a.npy", "missing.npy"], ["a.krtd", "b.krtd"])

        with pytest.raises(DepthMapReadError):
            run_pipeline(make_config(folder), engine=mock_engine)

        mock_engine.fuse.assert_not_called()

    def test_real_engine_end_to_end(self, dataset, make_config):
        """Test a small CPU reconstruction through the default engine."""
        config = make_config(_three_views(dataset))

        output_path = run_pipeline(config)

        saved = pv.read(str(output_path))
        assert saved.n_points == 24
        assert "reconstruction_scalar" in saved.point_data
        assert "observation_count" in saved.point_data
        assert np.isfinite(saved.point_data["reconstruction_scalar"]).all()


class TestRunReconstruction:
    """Tests for run_reconstruction."""

    def test_catalog_released(self, dataset, make_config, mock_engine):
        ctx = build_reconstruction_context(
            make_config(_three_views(dataset)), engine=mock_engine
        )
        assert len(ctx.catalog) == 3

        run_reconstruction(ctx)

        assert len(ctx.catalog) == 0

    def test_catalog_released_on_failure(self, dataset, make_config):
        engine = MagicMock()
        engine.fuse.side_effect = RuntimeError("device lost")
        config = make_config(_three_views(dataset))
        ctx = build_reconstruction_context(config, engine=engine)

        with pytest.raises(RuntimeError, match="device lost"):
            run_reconstruction(ctx)

        assert len(ctx.catalog) == 0
        assert not Path(config.output_path).exists()


class TestBuildReconstructionContext:
    """Tests for build_reconstruction_context."""

    def test_contents(self, dataset, make_config):
        config = make_config(_three_views(dataset), **ROTATED)

        ctx = build_reconstruction_context(config)

        assert ctx.config is config
        assert len(ctx.catalog) == 3
        assert ctx.grid_spec.dimensions == (2, 3, 4)
        assert ctx.grid_matrix[0, :3].tolist() == [0.0, 1.0, 0.0]
        assert ctx.grid_matrix[1, :3].tolist() == [-1.0, 0.0, 0.0]
        assert ctx.device == "cpu"
        assert isinstance(ctx.engine, RayPotentialFusionEngine)

    def test_catalog_order(self, dataset, make_config):
        ctx = build_reconstruction_context(make_config(_three_views(dataset)))
        names = [record.depth_map_path.name for record in ctx.catalog]
        assert names == ["a.npy", "b.npy", "c.npy"]


class TestResolveDevice:
    """Tests for resolve_device and create_engine."""

    def test_no_cuda_flag(self, tmp_path, make_config):
        assert resolve_device(make_config(tmp_path)) == "cpu"

    def test_fallback_without_cuda(self, tmp_path, make_config, caplog):
        config = make_config(tmp_path).with_overrides(fusion={"use_accelerated": True})
        with patch("gridfusion.pipeline.builder.torch.cuda.is_available", return_value=False):
            with caplog.at_level(logging.WARNING, logger="gridfusion.pipeline.builder"):
                device = resolve_device(config)

        assert device == "cpu"
        assert "Falling back to CPU" in caplog.text

    def test_accelerated_with_cuda(self, tmp_path, make_config):
        config = make_config(tmp_path).with_overrides(fusion={"use_accelerated": True})
        with patch("gridfusion.pipeline.builder.torch.cuda.is_available", return_value=True):
            assert resolve_device(config) == "cuda"

    def test_runtime_device_wins(self, tmp_path, make_config):
        config = make_config(tmp_path).with_overrides(
            fusion={"use_accelerated": True}, runtime={"device": "cpu"}
        )
        assert resolve_device(config) == "cpu"

    def test_create_engine(self, tmp_path, make_config):
        engine = create_engine(make_config(tmp_path), "cpu")
        assert isinstance(engine, FusionEngine)
        assert engine.show_progress is False


class TestPipelineClass:
    """Tests for the Pipeline class."""

    def test_run_delegates(self, tmp_path, make_config):
        config = make_config(tmp_path)
        engine = MagicMock()
        with patch("gridfusion.pipeline.runner.run_pipeline") as mock_run:
            Pipeline(config, engine=engine).run()

        mock_run.assert_called_once_with(config, engine=engine)
