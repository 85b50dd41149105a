"""rigsync CLI -- rig file tools and video replay through the sync engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click

from rigsync.calibration import CameraRig, load_rig, save_rig
from rigsync.engine import (
    ConsoleObserver,
    FrameSyncEngine,
    RigSyncConfig,
    SyncStatsObserver,
    UndistortingProcessor,
    load_config,
    serialize_config,
)
from rigsync.engine.observers import Observer
from rigsync.io import VideoSet, replay_into_engine


def _load_rig_or_fail(path: str) -> CameraRig:
    rig = load_rig(path)
    if rig is None:
        raise click.ClickException(f"'{path}' is not a valid rig file (see log).")
    return rig


def _parse_overrides(overrides: tuple[str, ...]) -> dict[str, Any]:
    cli_overrides: dict[str, Any] = {}
    for item in overrides:
        key, sep, value = item.partition("=")
        if not key or not sep:
            raise click.BadParameter(f"expected key=val, got {item!r}", param_hint="--set")
        cli_overrides[key] = value
    return cli_overrides


# ---------------------------------------------------------------------------
# CLI definition
# ---------------------------------------------------------------------------


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging.")
def cli(verbose: bool) -> None:
    """rigsync -- multi-camera rig calibration and frame synchronization."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("rig_path", type=click.Path(exists=True, dir_okay=False))
def inspect(rig_path: str) -> None:
    """Print a summary of a rig file."""
    rig = _load_rig_or_fail(rig_path)
    click.echo(f"label: {rig.label}")
    click.echo(f"id:    {rig.rig_id}")
    click.echo(f"cameras: {rig.num_cameras}")
    for index, camera in enumerate(rig.cameras):
        fx, fy, cu, cv = camera.intrinsics.tolist()
        params = ", ".join(f"{v:.6g}" for v in camera.distortion.parameters.tolist())
        p_B_C = rig.get_T_C_B(index).inverse().position.tolist()
        click.echo(f"  [{index}] {camera.label or '-'} ({camera.camera_id})")
        click.echo(
            f"      {camera.image_width}x{camera.image_height}  "
            f"f=({fx:.2f}, {fy:.2f})  c=({cu:.2f}, {cv:.2f})"
        )
        click.echo(f"      distortion: {camera.distortion.TYPE.value} [{params}]")
        click.echo("      p_B_C: [" + ", ".join(f"{v:.4f}" for v in p_B_C) + "]")


@cli.command("strip-distortion")
@click.argument("rig_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("output", type=click.Path(dir_okay=False))
@click.option("--force", is_flag=True, default=False, help="Overwrite existing file.")
def strip_distortion(rig_path: str, output: str, force: bool) -> None:
    """Write a distortion-free copy of a rig with fresh ids."""
    output_path = Path(output)
    if output_path.exists() and not force:
        raise click.ClickException(
            f"'{output}' already exists. Use --force to overwrite."
        )
    rig = _load_rig_or_fail(rig_path)
    save_rig(output_path, rig.clone_rig_without_distortion())
    click.echo(f"Distortion-free rig written to {output}")


@cli.command()
@click.argument("rig_a", type=click.Path(exists=True, dir_okay=False))
@click.argument("rig_b", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--tolerance", default=1e-9, show_default=True, help="Comparison tolerance."
)
def compare(rig_a: str, rig_b: str, tolerance: float) -> None:
    """Compare two rig files; exit status 1 if they differ."""
    difference = _load_rig_or_fail(rig_a).comparison_string(
        _load_rig_or_fail(rig_b), tolerance
    )
    if difference:
        click.echo(difference)
        sys.exit(1)
    click.echo("Rigs are equal.")


@cli.command("init-config")
@click.option(
    "--output",
    "-o",
    default="rigsync.yaml",
    type=click.Path(),
    help="Output file path (default: rigsync.yaml).",
)
@click.option("--force", is_flag=True, default=False, help="Overwrite existing file.")
def init_config(output: str, force: bool) -> None:
    """Generate a default config YAML with all replay defaults."""
    output_path = Path(output)
    if output_path.exists() and not force:
        raise click.ClickException(
            f"'{output}' already exists. Use --force to overwrite."
        )
    output_path.write_text(serialize_config(RigSyncConfig()))
    click.echo(f"Config written to {output}")


@cli.command()
@click.argument(
    "videos", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False)
)
@click.option(
    "--config",
    "-c",
    default=None,
    type=click.Path(exists=True),
    help="Path to replay config YAML.",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    help="Config override as key=val (e.g. --set sync.match_tolerance_ns=2000000).",
)
@click.option("--rig", "rig_path", default=None, help="Rig file (overrides rig_path).")
@click.option("--verbose", is_flag=True, default=False, help="Per-bundle output.")
def replay(
    videos: tuple[str, ...],
    config: str | None,
    overrides: tuple[str, ...],
    rig_path: str | None,
    verbose: bool,
) -> None:
    """Replay one video per rig camera through the sync engine."""
    cli_overrides = _parse_overrides(overrides)
    if rig_path is not None:
        cli_overrides["rig_path"] = rig_path
    try:
        replay_config = load_config(yaml_path=config, cli_overrides=cli_overrides)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    if not replay_config.rig_path:
        raise click.ClickException("no rig file given (use --rig or rig_path).")

    rig = _load_rig_or_fail(replay_config.rig_path)
    output_dir = Path(replay_config.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "config.yaml").write_text(serialize_config(replay_config))

    stats = SyncStatsObserver(rig.num_cameras, output_path=output_dir / "sync.txt")
    observers: list[Observer] = [ConsoleObserver(verbose=verbose), stats]
    processor = None
    if replay_config.undistortion.enabled:
        processor = UndistortingProcessor(
            rig, interpolation=replay_config.undistortion.interpolation_flag
        )

    try:
        engine = FrameSyncEngine(
            rig, replay_config.sync, processor=processor, observers=observers
        )
        with VideoSet([Path(v) for v in videos]) as video_set:
            count = replay_into_engine(video_set, engine)
        engine.flush()
    except (RuntimeError, ValueError) as exc:
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)

    click.echo(f"Replayed {count} images")
    click.echo(stats.finalize())


def main() -> None:
    """Entry point for the ``rigsync`` console script."""
    cli()
