#!/usr/bin/env python3
"""Command-line interface for tennis serve analysis."""

import sys
from pathlib import Path

import click
import yaml

# Add the package root to path for imports
sys.path.insert(0, str(Path(__file__).parent))


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file."""
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            return yaml.safe_load(f) or {}
    return {}


def _setup_logging(ctx: click.Context) -> None:
    from serve_analysis.utils.logging_config import setup_logging_from_config

    setup_logging_from_config(ctx.obj["config"], verbose=ctx.obj["verbose"])


def _pipeline_config(ctx: click.Context, **overrides):
    from dataclasses import replace

    from serve_analysis.pipeline.orchestrator import PipelineConfig

    config = PipelineConfig.from_dict(ctx.obj["config"])
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **overrides) if overrides else config


def _database_url(ctx: click.Context) -> str:
    try:
        return _pipeline_config(ctx).database_url
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _echo_results(pipeline) -> None:
    result = pipeline.analyzer.result
    click.echo()
    if result is None:
        click.echo("No serve metrics computed (hitting arm never visible)")
        return

    click.echo("Serve Analysis:")
    click.echo(f"  Phase: {result.phase.value}")
    click.echo(f"  Similarity: {result.similarity:.1f}")
    for name, value in result.metrics.to_dict().items():
        click.echo(f"  {name}: {value:.1f}")

    summary = pipeline.summary()
    if summary["samples"]:
        click.echo()
        click.echo(f"Session Summary ({summary['samples']} samples):")
        for name, stats in summary["metrics"].items():
            click.echo(
                f"  {name}: mean {stats['mean']:.1f}, "
                f"min {stats['min']:.1f}, max {stats['max']:.1f}"
            )
        phases = ", ".join(f"{phase} {count}" for phase, count in summary["phases"].items())
        click.echo(f"  Phases: {phases}")


def _save(ctx: click.Context, pipeline, source: str) -> None:
    from serve_analysis.database.operations import SessionOperations
    from serve_analysis.database.schema import session_scope

    with session_scope(_database_url(ctx)) as session:
        saved = pipeline.save_session(SessionOperations(session), source=source)
        click.echo(f"Saved session {saved.session_id}")


@click.group()
@click.option(
    "--config",
    "-c",
    default="config/config.yaml",
    help="Path to configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool) -> None:
    """Tennis Serve Analysis System.

    Analyze serve technique from video using pose estimation, racket and
    ball tracking.
    """
    ctx.ensure_object(dict)

    # Load config
    cfg = load_config(config)
    ctx.obj["config"] = cfg
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("video", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--dominant-side",
    "-d",
    type=click.Choice(["right", "left"]),
    default=None,
    help="Hitting arm",
)
@click.option(
    "--camera-angle",
    "-a",
    type=click.Choice(["front", "side", "back"]),
    default=None,
    help="Recording viewpoint",
)
@click.option(
    "--pose-backend",
    "-b",
    type=click.Choice(["mediapipe", "synthetic"]),
    default=None,
    help="Pose estimation backend",
)
@click.option(
    "--exhaustive/--no-exhaustive",
    default=None,
    help="Denser heuristic ball search (slower)",
)
@click.option(
    "--realtime",
    is_flag=True,
    help="Pace analysis at the target FPS instead of analyzing every frame",
)
@click.option(
    "--output-video",
    "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write an annotated copy of the video",
)
@click.option(
    "--save",
    is_flag=True,
    help="Save the session to the database",
)
@click.pass_context
def analyze(
    ctx: click.Context,
    video: str,
    dominant_side: str,
    camera_angle: str,
    pose_backend: str,
    exhaustive: bool,
    realtime: bool,
    output_video: str,
    save: bool,
) -> None:
    """Analyze a serve in a video file."""
    import cv2

    from serve_analysis.pipeline.orchestrator import ServeAnalysisPipeline
    from serve_analysis.utils.overlay import OverlayRenderer
    from serve_analysis.utils.video_utils import VideoFileSource, open_video_writer

    _setup_logging(ctx)

    try:
        config = _pipeline_config(
            ctx,
            dominant_side=dominant_side,
            camera_angle=camera_angle,
            pose_backend=pose_backend,
            exhaustive=exhaustive,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    source = VideoFileSource(video)
    if source.info is None:
        click.echo(f"Error: Could not open video {video}", err=True)
        sys.exit(1)

    click.echo(f"Analyzing: {video}")
    click.echo(f"  {source.info.width}x{source.info.height} @ {source.info.fps:.1f} fps")

    writer = None
    renderer = OverlayRenderer()
    if output_video:
        writer = open_video_writer(output_video, source.info.width, source.info.height, source.fps)

    def on_result(frame, result):
        if writer is not None:
            frame_bgr = cv2.cvtColor(frame.pixels, cv2.COLOR_RGB2BGR)
            writer.write(renderer.draw(frame_bgr, result))

    try:
        source.open()
        with ServeAnalysisPipeline(config) as pipeline:
            processed = pipeline.run(source, on_result=on_result, realtime=realtime, show_progress=True)
            click.echo(f"Processed {processed} frames")
            _echo_results(pipeline)

            if save:
                _save(ctx, pipeline, source=video)
    finally:
        source.close()
        if writer is not None:
            writer.release()
            click.echo(f"Annotated video written to {output_video}")


@cli.command()
@click.option(
    "--index",
    "-i",
    type=int,
    default=0,
    help="Camera device index",
)
@click.option(
    "--display/--no-display",
    default=True,
    help="Show the annotated stream in a window (press q to stop)",
)
@click.option(
    "--save",
    is_flag=True,
    help="Save the session to the database when stopped",
)
@click.pass_context
def camera(ctx: click.Context, index: int, display: bool, save: bool) -> None:
    """Analyze serves live from a camera."""
    import cv2

    from serve_analysis.pipeline.orchestrator import ServeAnalysisPipeline
    from serve_analysis.utils.overlay import OverlayRenderer
    from serve_analysis.utils.video_utils import CameraSource

    _setup_logging(ctx)

    try:
        config = _pipeline_config(ctx)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    renderer = OverlayRenderer()

    with CameraSource(index) as source, ServeAnalysisPipeline(config) as pipeline:

        def on_result(frame, result):
            if not display:
                return
            frame_bgr = cv2.cvtColor(frame.pixels, cv2.COLOR_RGB2BGR)
            cv2.imshow("Serve Analysis", renderer.draw(frame_bgr, result))
            if cv2.waitKey(1) & 0xFF == ord("q"):
                pipeline.stop()

        click.echo(f"Analyzing camera {index} (Ctrl+C to stop)")
        try:
            pipeline.run(source, on_result=on_result, realtime=True)
        except KeyboardInterrupt:
            pipeline.stop()
        finally:
            if display:
                cv2.destroyAllWindows()

        _echo_results(pipeline)
        if save:
            _save(ctx, pipeline, source=f"camera:{index}")


@cli.group()
def db() -> None:
    """Database management commands."""
    pass


@db.command("init")
@click.pass_context
def db_init(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    from serve_analysis.database.schema import init_db

    db_url = _database_url(ctx)

    click.echo(f"Initializing database: {db_url}")
    init_db(db_url)
    click.echo("Database initialized successfully!")


@db.command("stats")
@click.pass_context
def db_stats(ctx: click.Context) -> None:
    """Show database statistics."""
    from serve_analysis.database.operations import SessionOperations
    from serve_analysis.database.schema import session_scope

    with session_scope(_database_url(ctx)) as session:
        stats = SessionOperations(session).get_database_stats()

    click.echo("Database Statistics:")
    click.echo(f"  Sessions: {stats['sessions']}")
    click.echo(f"  Metrics samples: {stats['samples']}")
    if stats["mean_similarity"] is not None:
        click.echo(f"  Mean similarity: {stats['mean_similarity']:.1f}")


@db.command("sessions")
@click.option(
    "--limit",
    "-n",
    type=int,
    default=20,
    help="Number of sessions to list",
)
@click.pass_context
def db_sessions(ctx: click.Context, limit: int) -> None:
    """List saved sessions, most recent first."""
    from serve_analysis.database.operations import SessionOperations
    from serve_analysis.database.schema import session_scope

    with session_scope(_database_url(ctx)) as session:
        sessions = SessionOperations(session).list_sessions(limit)
        if not sessions:
            click.echo("No saved sessions")
            return

        for s in sessions:
            click.echo(
                f"  [{s.session_id}] {s.recorded_at:%Y-%m-%d %H:%M:%S}  {s.camera_angle:<5}  "
                f"phase={s.final_phase}  similarity={s.final_similarity:.1f}"
            )


@db.command("show")
@click.argument("session_id", type=int)
@click.pass_context
def db_show(ctx: click.Context, session_id: int) -> None:
    """Show a saved session and its metrics history."""
    from serve_analysis.database.operations import SessionOperations
    from serve_analysis.database.schema import session_scope

    with session_scope(_database_url(ctx)) as session:
        ops = SessionOperations(session)
        serve_session = ops.get_session(session_id)

        if not serve_session:
            click.echo(f"Session {session_id} not found", err=True)
            return

        click.echo(f"Session {serve_session.session_id} ({serve_session.recorded_at:%Y-%m-%d %H:%M:%S})")
        click.echo(f"  Source: {serve_session.source or 'N/A'}")
        click.echo(f"  Camera angle: {serve_session.camera_angle}")
        click.echo(f"  Final phase: {serve_session.final_phase}")
        click.echo(f"  Final similarity: {serve_session.final_similarity:.1f}")
        click.echo(f"  Duration: {serve_session.duration_estimate:.2f}s")
        for name, value in serve_session.final_metrics().items():
            click.echo(f"  {name}: {value:.1f}")

        history = ops.get_history(session_id)
        click.echo(f"  History samples: {len(history)}")
        for sample in history:
            click.echo(
                f"    t={sample.timestamp:7.2f}s  {sample.phase:<15} "
                f"similarity={sample.similarity:.1f}"
            )


@db.command("delete")
@click.argument("session_id", type=int)
@click.pass_context
def db_delete(ctx: click.Context, session_id: int) -> None:
    """Delete a saved session and its history."""
    from serve_analysis.database.operations import SessionOperations
    from serve_analysis.database.schema import session_scope

    with session_scope(_database_url(ctx)) as session:
        if SessionOperations(session).delete_session(session_id):
            click.echo(f"Deleted session {session_id}")
        else:
            click.echo(f"Session {session_id} not found", err=True)


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from serve_analysis import __version__

    click.echo("Tennis Serve Analysis System")
    click.echo(f"Version: {__version__}")


if __name__ == "__main__":
    cli()
