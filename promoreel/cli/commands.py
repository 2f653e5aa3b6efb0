"""CLI commands for promoreel using Typer and Rich.

Commands:
- generate: Create a project from a brief and run the whole pipeline
- resume: Continue a project from its first unfinished stage
- status: Show a project's shots, versions and exports
- list: List all projects in a table
- regenerate: New keyframe and/or clip for one shot
- rollback: Point a shot's keyframe or clip at an earlier version
- export: Concatenate the ready clips into a new export
- costs: Estimated spend per backend for the next run
- serve: Run the HTTP API
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from promoreel import validate_dependencies
from promoreel.config import settings
from promoreel.db import init_database
from promoreel.errors import PromoreelError
from promoreel.orchestrator.pipeline import (
    PipelineContext,
    regenerate_shot,
    rollback_shot,
    run_export_stage,
    run_pipeline,
)
from promoreel.orchestrator.state import PIPELINE_STATES
from promoreel.pipeline.continuity import normalize_mode
from promoreel.pipeline.storyboard import shot_duration
from promoreel.schemas.project import Project, ProjectCreate
from promoreel.services.costs import estimate_project_cost

app = typer.Typer(name="promoreel", help="Resilient AI marketing video pipeline")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _context() -> PipelineContext:
    await init_database()
    return PipelineContext.create()


def _print_run_summary(ctx: PipelineContext, project: Project) -> None:
    console.print(f"[green]Status:[/green] {project.status}")
    if project.exports:
        latest = project.exports[-1]
        console.print(f"[green]Output:[/green] {latest.path}")
        if latest.warning:
            console.print(f"[yellow]Warning:[/yellow] {latest.warning}")
    placeholders = [
        entry
        for shot in project.shots
        for entry in shot.history
        if entry.provider == "placeholder"
    ]
    if placeholders:
        console.print(
            f"[yellow]{len(placeholders)} asset(s) are placeholders; "
            f"regenerate them once backends are available.[/yellow]"
        )
    console.print(f"[green]Estimated spend:[/green] {ctx.ledger.summary()['formatted']}")


@app.command()
def generate(
    brief: str = typer.Argument(..., help="Short product or campaign brief"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name"),
    aspect_ratio: str = typer.Option(settings.pipeline.default_aspect_ratio, "--aspect-ratio", "-a", help="Video aspect ratio"),
    duration: int = typer.Option(settings.pipeline.default_target_duration, "--duration", "-d", help="Target total duration in seconds"),
    continuity: str = typer.Option(
        settings.pipeline.continuity_mode, "--continuity", "-c",
        help="independent, last_frame or bridging",
    ),
    style_pack: Optional[str] = typer.Option(None, "--style-pack", help="Style pack id"),
    run_through: Optional[str] = typer.Option(
        None, "--run-through", help="Stop after this stage (e.g. keyframing)"
    ),
):
    """Create a project from a brief and run the full pipeline.

    Backends that fail or are not configured degrade to placeholders, so the
    run completes; affected assets are reported at the end.
    """
    try:
        mode = normalize_mode(continuity)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    if run_through is not None and run_through not in PIPELINE_STATES:
        console.print(f"[red]Error:[/red] Unknown stage: {run_through}")
        raise typer.Exit(code=1)
    if duration < 2:
        console.print("[red]Error:[/red] Duration must be at least 2 seconds")
        raise typer.Exit(code=1)

    validate_dependencies()
    asyncio.run(
        _generate_async(
            brief,
            ProjectCreate(
                name=name,
                aspect_ratio=aspect_ratio,
                continuity_mode=mode.value,
                target_duration=duration,
                selected_style_pack_id=style_pack,
            ),
            run_through,
        )
    )


async def _generate_async(brief: str, data: ProjectCreate, run_through: Optional[str]):
    ctx = await _context()
    project = await ctx.store.create(data)
    console.print(f"[green]Created project:[/green] {project.id}")

    try:
        with console.status("[bold green]Running pipeline..."):
            project = await run_pipeline(ctx, project.id, brief=brief, run_through=run_through)
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Pipeline interrupted. Continue later with:[/yellow]")
        console.print(f"  promoreel resume {project.id}")
        raise typer.Exit(code=130)
    except PromoreelError as e:
        console.print(f"[red]✗ Pipeline failed:[/red] {e}")
        console.print(f"[yellow]You can retry with:[/yellow] promoreel resume {project.id}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Pipeline finished")
    _print_run_summary(ctx, project)


@app.command()
def resume(project_id: str = typer.Argument(..., help="Project id")):
    """Continue a project from its first stage without stored output."""
    validate_dependencies()
    asyncio.run(_resume_async(project_id))


async def _resume_async(project_id: str):
    ctx = await _context()
    try:
        with console.status("[bold green]Resuming pipeline..."):
            project = await run_pipeline(ctx, project_id)
    except PromoreelError as e:
        console.print(f"[red]✗ Pipeline failed:[/red] {e}")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] Pipeline finished")
    _print_run_summary(ctx, project)


@app.command()
def status(project_id: str = typer.Argument(..., help="Project id")):
    """Show shots, active versions and exports of a project."""
    asyncio.run(_status_async(project_id))


async def _status_async(project_id: str):
    ctx = await _context()
    project = await ctx.store.load(project_id)
    if project is None:
        console.print(f"[red]Error:[/red] Project not found: {project_id}")
        raise typer.Exit(code=1)

    console.print(f"[bold]{project.name}[/bold] ({project.id})")
    console.print(f"Status: {project.status}  Continuity: {project.continuity_mode}  "
                  f"Aspect: {project.aspect_ratio}  Target: {project.target_duration}s")
    if project.error_message:
        console.print(f"[red]Error:[/red] {project.error_message}")

    table = Table(title="Shots")
    table.add_column("Shot", style="cyan")
    table.add_column("Dur", justify="right")
    table.add_column("Keyframe")
    table.add_column("Clip")
    table.add_column("Providers")
    table.add_column("Error", style="red")
    for shot in project.shots:
        cfg = shot.provider_config
        table.add_row(
            shot.id,
            f"{shot.duration_sec}s",
            f"v{shot.keyframe_version}/{shot.latest_version('keyframe')} {shot.status.keyframe_status}",
            f"v{shot.clip_version}/{shot.latest_version('clip')} {shot.status.clip_status}",
            f"{cfg.image_provider or '-'} / {cfg.video_provider or '-'}",
            (shot.status.error or "")[:60],
        )
    console.print(table)

    for index, record in enumerate(project.exports, start=1):
        line = f"Export {index}: {record.path}"
        if record.warning:
            line += f" [yellow]({record.warning})[/yellow]"
        console.print(line)


@app.command("list")
def list_projects():
    """List all projects."""
    asyncio.run(_list_async())


async def _list_async():
    ctx = await _context()
    projects = await ctx.store.list()
    if not projects:
        console.print("No projects yet.")
        return

    table = Table(title="Projects")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Shots", justify="right")
    table.add_column("Updated")
    for project in projects:
        table.add_row(
            project.id,
            project.name,
            project.status,
            str(len(project.shots)),
            project.last_updated.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def regenerate(
    project_id: str = typer.Argument(..., help="Project id"),
    shot_id: str = typer.Argument(..., help="Shot id, e.g. hook-1"),
    keyframe: bool = typer.Option(True, "--keyframe/--no-keyframe", help="Regenerate the keyframe"),
    clip: bool = typer.Option(True, "--clip/--no-clip", help="Regenerate the clip"),
):
    """Generate a new keyframe and/or clip version for one shot."""
    if not (keyframe or clip):
        console.print("[red]Error:[/red] Nothing to regenerate")
        raise typer.Exit(code=1)
    asyncio.run(_regenerate_async(project_id, shot_id, keyframe, clip))


async def _regenerate_async(project_id: str, shot_id: str, keyframe: bool, clip: bool):
    ctx = await _context()
    try:
        with console.status(f"[bold green]Regenerating {shot_id}..."):
            shot = await regenerate_shot(ctx, project_id, shot_id, keyframe=keyframe, clip=clip)
    except PromoreelError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]✓[/green] {shot.id}: keyframe v{shot.keyframe_version}, clip v{shot.clip_version}"
    )


@app.command()
def rollback(
    project_id: str = typer.Argument(..., help="Project id"),
    shot_id: str = typer.Argument(..., help="Shot id"),
    kind: str = typer.Argument(..., help="keyframe or clip"),
    version: int = typer.Argument(..., help="Version to make active"),
):
    """Point a shot's keyframe or clip at an earlier version."""
    if kind not in ("keyframe", "clip"):
        console.print("[red]Error:[/red] kind must be keyframe or clip")
        raise typer.Exit(code=1)
    asyncio.run(_rollback_async(project_id, shot_id, kind, version))


async def _rollback_async(project_id: str, shot_id: str, kind: str, version: int):
    ctx = await _context()
    try:
        shot = await rollback_shot(ctx, project_id, shot_id, kind, version)
    except PromoreelError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    active = shot.keyframe_version if kind == "keyframe" else shot.clip_version
    console.print(f"[green]✓[/green] {shot.id}: active {kind} is v{active}")


@app.command()
def export(
    project_id: str = typer.Argument(..., help="Project id"),
    audio: Optional[Path] = typer.Option(None, "--audio", help="Soundtrack to record with the export"),
):
    """Concatenate the ready clips into a new export."""
    asyncio.run(_export_async(project_id, audio))


async def _export_async(project_id: str, audio: Optional[Path]):
    ctx = await _context()
    try:
        record = await run_export_stage(ctx, project_id, audio_path=audio)
    except PromoreelError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Exported {len(record.clip_paths)} clip(s) to {record.path}")
    if record.warning:
        console.print(f"[yellow]Warning:[/yellow] {record.warning}")


@app.command()
def costs(
    shots: int = typer.Option(4, "--shots", help="Number of shots"),
    duration: int = typer.Option(30, "--duration", "-d", help="Target total duration in seconds"),
    regenerations: int = typer.Option(0, "--regenerations", help="Extra keyframe+clip rounds"),
):
    """Estimate spend for one run with the backends configured right now."""
    ctx = PipelineContext.create()
    text = ctx.providers.text.select_backends().active
    image = ctx.providers.image.select_backends().active
    video = ctx.providers.video.select_backends().active
    estimate = estimate_project_cost(
        text_provider=text.name,
        text_model=text.model,
        image_provider=image.name,
        image_model=image.model,
        video_provider=video.name,
        video_model=video.model,
        shot_count=shots,
        video_duration=shot_duration(duration, shots),
        regenerations=regenerations,
    )

    table = Table(title="Cost estimate")
    table.add_column("Kind", style="cyan")
    table.add_column("Backend")
    table.add_column("Count", justify="right")
    table.add_column("Cost", justify="right")
    breakdown = estimate["breakdown"]
    table.add_row("text", f"{text.name}/{text.model}", "1", breakdown["text"]["formatted"])
    table.add_row(
        "image", f"{image.name}/{image.model}",
        str(breakdown["images"]["count"]), breakdown["images"]["formatted"],
    )
    table.add_row(
        "video", f"{video.name}/{video.model}",
        str(breakdown["videos"]["count"]), breakdown["videos"]["formatted"],
    )
    console.print(table)
    console.print(f"[bold]{estimate['summary']}[/bold]")


@app.command()
def serve(
    host: str = typer.Option(settings.server.host, "--host", help="Bind address"),
    port: int = typer.Option(settings.server.port, "--port", "-p", help="Port"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("promoreel.api.app:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    app()
