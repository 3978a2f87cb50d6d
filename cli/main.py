#!/usr/bin/env python3
"""
Live Photo CLI - run the frame and composition pipeline on local files
"""
import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from api.utils.error_handlers import LivePhotoError
from api.utils.logger import setup_logging
from worker.processors.compositor import CompositionSession, VideoCompositor
from worker.processors.frames import FrameExtractor
from worker.utils.media import VideoAsset, format_duration, format_file_size

console = Console()


@click.group()
@click.option("--verbose", is_flag=True, help="Show debug logs")
def cli(verbose):
    """Live Photo doodle cover tools"""
    setup_logging(level="DEBUG" if verbose else "WARNING", console=True)


@cli.command()
@click.argument("video", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Where to write the JPEG (default: <video>-frame.jpg)")
@click.option("--timeout", default=10.0, show_default=True, help="Load timeout in seconds")
def extract(video, output, timeout):
    """Extract the first frame of VIDEO as a JPEG."""
    asset = VideoAsset.from_path(video)
    try:
        frame = asyncio.run(FrameExtractor(load_timeout=timeout).extract(asset))
    except LivePhotoError as e:
        console.print(f"[red]{e.user_message}[/red] ({e.message})")
        sys.exit(1)

    output = output or video.with_name(f"{video.stem}-frame.jpg")
    output.write_bytes(frame.image)

    table = Table(title="Extracted frame")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Source", f"{video.name} ({format_file_size(asset.size)})")
    table.add_row("Size", f"{frame.metadata.width}x{frame.metadata.height}")
    table.add_row("Aspect ratio", frame.metadata.aspect_ratio)
    table.add_row("Duration", format_duration(frame.metadata.duration_seconds))
    table.add_row("Output", str(output))
    console.print(table)


@cli.command()
@click.argument("video", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("cover")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Output path without extension (default: <video>-livephoto)")
@click.option("--hold", default=1.5, show_default=True, help="Cover hold in seconds")
@click.option("--transition", default=0.5, show_default=True, help="Cross-fade in seconds")
@click.option("--fps", default=30, show_default=True, help="Output frame rate")
@click.option("--realtime/--offline", default=False, help="Pace rendering to wall-clock time")
def compose(video, cover, output, hold, transition, fps, realtime):
    """Compose VIDEO behind COVER (an image path or URL)."""
    asset = VideoAsset.from_path(video)
    session = CompositionSession(VideoCompositor(target_fps=fps, realtime=realtime))

    async def run(progress, task_id):
        def on_progress(value):
            progress.update(task_id, completed=value)
        return await session.compose(asset, cover, cover_hold_seconds=hold,
                                     transition_seconds=transition, on_progress=on_progress)

    with Progress(TextColumn("[bold]{task.description}"), BarColumn(),
                  TextColumn("{task.percentage:>3.0f}%"), console=console) as progress:
        task_id = progress.add_task("Composing", total=100)
        try:
            result = asyncio.run(run(progress, task_id))
        except LivePhotoError as e:
            console.print(f"[red]{e.user_message}[/red] ({e.message})")
            sys.exit(1)

    base = output or video.with_name(f"{video.stem}-livephoto")
    target = base.with_suffix(result.container_extension)
    target.write_bytes(result.data)
    size = result.size
    session.release()

    console.print(
        f"[green]Wrote {target}[/green] ({format_file_size(size)}, {result.codec}, "
        f"{result.frame_count} frames, {format_duration(result.duration_seconds)})"
    )


def main():
    """Main entry point for the Live Photo CLI."""
    cli()


if __name__ == "__main__":
    main()
