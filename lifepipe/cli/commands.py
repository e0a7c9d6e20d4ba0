"""CLI commands for lifepipe using Typer and Rich.

Implements 5 CLI commands:
- run: Generate all age frames from a photo (optionally the final video too)
- regenerate: Regenerate one age frame of a session
- create-video: Assemble the final video for a session
- status: Show session frames, transitions and final video
- serve: Run the HTTP API
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lifepipe import validate_dependencies
from lifepipe.config import settings
from lifepipe.errors import LifepipeError
from lifepipe.orchestrator.service import Orchestrator

app = typer.Typer(name="lifepipe", help="AI age-progression frames, transitions and final video")
console = Console()

_POLL_SECONDS = 0.5


def _parse_ages(ages: Optional[str]) -> Optional[list[int]]:
    if not ages:
        return None
    try:
        return [int(part) for part in ages.split(",") if part.strip()]
    except ValueError:
        console.print(f"[red]Error:[/red] --ages must be comma-separated integers, got {ages!r}")
        raise typer.Exit(code=1)


def _orchestrator() -> Orchestrator:
    try:
        return Orchestrator.from_settings()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {str(e)}")
        raise typer.Exit(code=1)


def _check_ffmpeg() -> None:
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


async def _follow(orchestrator: Orchestrator, job_id: str, get_snapshot, label: str) -> dict:
    """Show a live status line until the job leaves queued/running."""
    with console.status(f"[bold green]{label}...") as status:
        while True:
            snapshot = get_snapshot(job_id)
            progress = snapshot["progress"]
            status.update(
                f"[bold green]{progress['message']}[/bold green] "
                f"({progress['completed']}/{progress['total']})"
            )
            if snapshot["status"] in ("completed", "failed"):
                break
            await asyncio.sleep(_POLL_SECONDS)
    await orchestrator.join(job_id)
    return snapshot


async def _create_video(orchestrator: Orchestrator, session_id: str, duration: Optional[float]) -> None:
    started = orchestrator.start_video_job(session_id, duration)
    console.print(f"[green]Video job:[/green] {started['job_id']} (target {started['target_duration_sec']}s)")
    snapshot = await _follow(orchestrator, started["job_id"], orchestrator.get_video_job, "Creating video")
    if snapshot["status"] == "failed":
        console.print(f"[red]✗ Video creation failed:[/red] {snapshot['error']}")
        raise typer.Exit(code=1)
    final = snapshot["final_video"]
    console.print(f"[green]✓[/green] Final video: {final['path']} ({final['duration_sec']}s, x{final['speed_factor']})")


@app.command()
def run(
    image: str = typer.Argument(..., help="Reference photo path or http(s) URL"),
    background_mode: str = typer.Option("flat", "--mode", "-m", help="flat or narrative"),
    gender_hint: str = typer.Option("auto", "--gender", "-g", help="auto, male or female"),
    ages: Optional[str] = typer.Option(None, "--ages", help="Comma-separated ages, first is the anchor"),
    narrative_track: Optional[str] = typer.Option(None, "--track", help="Narrative track (narrative mode)"),
    video: bool = typer.Option(False, "--video/--no-video", help="Also assemble the final video"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Final video length in seconds"),
):
    """Generate every age frame from a reference photo."""
    if video:
        _check_ffmpeg()
    asyncio.run(_run_async(image, background_mode, gender_hint, _parse_ages(ages), narrative_track, video, duration))


async def _run_async(
    image: str,
    background_mode: str,
    gender_hint: str,
    ages: Optional[list[int]],
    narrative_track: Optional[str],
    video: bool,
    duration: Optional[float],
):
    orchestrator = _orchestrator()
    try:
        try:
            started = orchestrator.start_frame_job(image, background_mode, gender_hint, ages, narrative_track)
        except (LifepipeError, ValueError) as e:
            console.print(f"[red]Error:[/red] {str(e)}")
            raise typer.Exit(code=1)

        console.print(f"[green]Frame job:[/green] {started['job_id']} ({started['total_steps']} steps, ages {started['ages']})")
        snapshot = await _follow(orchestrator, started["job_id"], orchestrator.get_frame_job, "Generating frames")
        session_id = snapshot["session_id"]

        if snapshot["status"] == "failed":
            console.print(f"[red]✗ Frame generation failed:[/red] {snapshot['error']}")
            if session_id:
                console.print(f"[yellow]Partial session:[/yellow] {session_id}")
            raise typer.Exit(code=1)

        console.print(f"[green]✓[/green] Frames complete for session {session_id}")
        if video:
            await _create_video(orchestrator, session_id, duration)
        else:
            console.print(f"[yellow]Create the video with:[/yellow] lifepipe create-video {session_id}")
    finally:
        await orchestrator.close()


@app.command()
def regenerate(
    session_id: str = typer.Argument(..., help="Session id"),
    age: int = typer.Argument(..., help="Age of the frame to regenerate"),
    gender_hint: Optional[str] = typer.Option(None, "--gender", "-g", help="male or female"),
):
    """Regenerate one frame; transitions and the final video are discarded."""
    asyncio.run(_regenerate_async(session_id, age, gender_hint))


async def _regenerate_async(session_id: str, age: int, gender_hint: Optional[str]):
    orchestrator = _orchestrator()
    try:
        with console.status(f"[bold green]Regenerating age {age}..."):
            snapshot = await orchestrator.regenerate_frame(session_id, age, gender_hint)
    except (LifepipeError, ValueError) as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    finally:
        await orchestrator.close()
    console.print(f"[green]✓[/green] Regenerated age {age}")
    _print_session(snapshot)


@app.command("create-video")
def create_video(
    session_id: str = typer.Argument(..., help="Session id"),
    duration: Optional[float] = typer.Option(None, "--duration", "-d", help="Final video length in seconds"),
):
    """Generate missing transitions and assemble the final video."""
    _check_ffmpeg()
    asyncio.run(_create_video_async(session_id, duration))


async def _create_video_async(session_id: str, duration: Optional[float]):
    orchestrator = _orchestrator()
    try:
        try:
            await _create_video(orchestrator, session_id, duration)
        except LifepipeError as e:
            console.print(f"[red]Error:[/red] {str(e)}")
            raise typer.Exit(code=1)
    finally:
        await orchestrator.close()


@app.command()
def status(
    session_id: str = typer.Argument(..., help="Session id"),
):
    """Show session frames, transitions and final video."""
    orchestrator = _orchestrator()
    try:
        snapshot = orchestrator.get_session(session_id)
    except LifepipeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)
    _print_session(snapshot)


def _print_session(snapshot: dict) -> None:
    transitions = {(t["from_age"], t["to_age"]): t for t in snapshot["transitions"]}
    track = f", track {snapshot['narrative_track']}" if snapshot["narrative_track"] else ""
    console.print(Panel(
        f"Mode: {snapshot['background_mode']}{track}\n"
        f"Gender hint: {snapshot['gender_hint']}\n"
        f"Frames: {len(snapshot['frames'])}/{len(snapshot['ages'])}\n"
        f"Updated: {snapshot['updated_at']}",
        title=f"Session {snapshot['session_id']}",
    ))

    table = Table(title="Timeline")
    table.add_column("Age", justify="right", style="cyan")
    table.add_column("Frame")
    table.add_column("Transition to next")
    frames = snapshot["frames"]
    for i, frame in enumerate(frames):
        next_age = frames[i + 1]["age"] if i + 1 < len(frames) else None
        transition = transitions.get((frame["age"], next_age))
        table.add_row(
            str(frame["age"]),
            Path(frame["image_path"]).name,
            Path(transition["video_path"]).name if transition else "-" if next_age is None else "[yellow]missing[/yellow]",
        )
    console.print(table)

    final = snapshot["final_video"]
    if final:
        console.print(f"[green]Final video:[/green] {final['path']} ({final['duration_sec']}s)")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "lifepipe.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
