"""Command-line interface for GridFusion."""

import argparse
import logging
import sys
from pathlib import Path

import yaml

from gridfusion.config import ConfigurationError, PipelineConfig

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("pyvista", "vtk")


def _configure_logging(verbose: bool) -> None:
    """Configure root logging for a CLI command.

    Args:
        verbose: If True, log at DEBUG level, else INFO.
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    """Build a PipelineConfig from parsed grid/input flags.

    Args:
        args: Namespace produced by a parser set up with _add_grid_arguments.

    Returns:
        Validated configuration.

    Raises:
        ConfigurationError: If the flags describe an invalid configuration.
    """
    data = {
        "output_path": str(args.output),
        "grid": {
            "dimensions": args.grid_dims,
            "spacing": args.grid_spacing,
            "origin": args.grid_origin,
            "vec_x": args.grid_vec_x,
            "vec_y": args.grid_vec_y,
            "vec_z": args.grid_vec_z,
            "orthogonality_tolerance": args.orthogonality_tolerance,
        },
        "inputs": {
            "data_folder": str(args.data_folder),
            "depth_map_manifest": args.depth_map_file,
            "calibration_manifest": args.krt_file,
            "pairing_policy": "strict-pairing" if args.strict_pairing else "legacy-skip",
        },
        "fusion": {
            "ray_thickness": args.ray_thick,
            "ray_rho": args.ray_rho,
            "use_accelerated": not args.no_cuda,
        },
        "runtime": {
            "verbose": args.verbose,
        },
    }
    return PipelineConfig.from_dict(data)


def _execute(config: PipelineConfig) -> None:
    """Run the pipeline, turning any failure into one error line and exit 1.

    Args:
        config: Validated configuration.
    """
    # Lazy import to avoid loading torch/pyvista at CLI parse time
    from gridfusion.catalog import EmptyCatalogError, ManifestOpenError
    from gridfusion.io import DepthMapReadError
    from gridfusion.pipeline import run_pipeline

    try:
        output_path = run_pipeline(config)
    except (ManifestOpenError, DepthMapReadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except EmptyCatalogError as e:
        print(
            f"Error: Failed to build the reconstruction catalog: {e}", file=sys.stderr
        )
        sys.exit(1)
    except Exception as e:
        print(f"Error: Reconstruction failed: {e}", file=sys.stderr)
        if config.runtime.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)

    print(f"\nReconstruction saved to: {output_path}\n")


def reconstruct_command(args: argparse.Namespace) -> None:
    """Run a reconstruction directly from command-line flags.

    Args:
        args: Parsed command-line arguments.
    """
    _configure_logging(args.verbose)

    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    _execute(config)


def init_command(args: argparse.Namespace) -> PipelineConfig:
    """Validate command-line flags and save them as a config YAML.

    Args:
        args: Parsed command-line arguments (grid flags plus ``config``).

    Returns:
        The generated PipelineConfig.
    """
    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    config.to_yaml(args.config)
    print(f"[OK] Configuration saved to: {args.config}")
    return config


def run_command(
    config_path: Path, verbose: bool = False, device: str | None = None
) -> None:
    """Execute the reconstruction pipeline from a config file.

    Args:
        config_path: Path to the pipeline config YAML file.
        verbose: If True, set logging to DEBUG level.
        device: Optional device override (replaces config.runtime.device).
    """
    # 1. Load config
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        config = PipelineConfig.from_yaml(config_path)
    except ConfigurationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)

    # 2. Apply CLI overrides
    overrides = {}
    if device is not None:
        overrides["device"] = device
    if verbose:
        overrides["verbose"] = True
    if overrides:
        try:
            config = config.with_overrides(runtime=overrides)
        except ConfigurationError as e:
            print(f"Error: Invalid configuration: {e}", file=sys.stderr)
            sys.exit(1)

    # 3. Configure logging
    _configure_logging(config.runtime.verbose)

    # 4. Run pipeline
    _execute(config)


def _vector(name: str):
    """argparse kwargs for a 3-component float vector option."""
    return {"type": float, "nargs": 3, "metavar": ("X", "Y", "Z"), "dest": name}


def _add_grid_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the reconstruction flags shared by `reconstruct` and `init`."""
    parser.add_argument(
        "--grid-dims",
        type=int,
        nargs=3,
        required=True,
        metavar=("NX", "NY", "NZ"),
        help="Input grid dimensions (required)",
    )
    parser.add_argument(
        "--grid-spacing",
        required=True,
        help="Input grid spacing (required)",
        **_vector("grid_spacing"),
    )
    parser.add_argument(
        "--grid-origin",
        required=True,
        help="Input grid origin (required)",
        **_vector("grid_origin"),
    )
    parser.add_argument(
        "--grid-vec-x",
        default=[1.0, 0.0, 0.0],
        help="Input grid direction X (default: 1 0 0)",
        **_vector("grid_vec_x"),
    )
    parser.add_argument(
        "--grid-vec-y",
        default=[0.0, 1.0, 0.0],
        help="Input grid direction Y (default: 0 1 0)",
        **_vector("grid_vec_y"),
    )
    parser.add_argument(
        "--grid-vec-z",
        default=[0.0, 0.0, 1.0],
        help="Input grid direction Z (default: 0 0 1)",
        **_vector("grid_vec_z"),
    )
    parser.add_argument(
        "--orthogonality-tolerance",
        type=float,
        default=0.0,
        help="Largest |dot product| accepted between grid directions (default: 0, exact)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Output grid filename, .vts or .vtk (required)",
    )
    parser.add_argument(
        "--data-folder",
        type=Path,
        required=True,
        help="Folder which contains all data (required)",
    )
    parser.add_argument(
        "--depth-map-file",
        type=str,
        default="vtiList.txt",
        help="File which contains all the depth map paths (default: vtiList.txt)",
    )
    parser.add_argument(
        "--krt-file",
        type=str,
        default="kList.txt",
        help="File which contains all the KRTD paths (default: kList.txt)",
    )
    parser.add_argument(
        "--strict-pairing",
        action="store_true",
        help="Skip the calibration line too when a depth map line is blank",
    )
    parser.add_argument(
        "--ray-thick",
        type=float,
        default=2.0,
        help="Ray potential thickness (default: 2)",
    )
    parser.add_argument(
        "--ray-rho",
        type=float,
        default=3.0,
        help="Ray potential rho (default: 3)",
    )
    parser.add_argument(
        "--no-cuda",
        action="store_true",
        help="Run the fusion on the CPU",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the top-level argument parser."""
    parser = argparse.ArgumentParser(
        prog="gridfusion",
        description="Fuse calibrated depth maps into a world-aligned scalar volume.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # reconstruct subcommand
    reconstruct_parser = subparsers.add_parser(
        "reconstruct",
        help="Run a reconstruction from command-line flags",
    )
    _add_grid_arguments(reconstruct_parser)

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a config YAML from command-line flags",
    )
    _add_grid_arguments(init_parser)
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )

    # run subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run a reconstruction from a config YAML",
    )
    run_parser.add_argument(
        "config",
        type=Path,
        help="Path to pipeline config YAML file",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    run_parser.add_argument(
        "--device",
        type=str,
        choices=["cpu", "cuda"],
        default=None,
        help="Override device (e.g., 'cpu' or 'cuda')",
    )

    return parser


def main() -> None:
    """Main entry point for the GridFusion CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Dispatch
    if args.command == "reconstruct":
        reconstruct_command(args)
    elif args.command == "init":
        init_command(args)
    elif args.command == "run":
        run_command(
            config_path=args.config,
            verbose=args.verbose,
            device=args.device,
        )
    else:
        parser.print_help()
        sys.exit(1)
