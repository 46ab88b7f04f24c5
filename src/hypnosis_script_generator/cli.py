"""CLI entry point using Hydra.

Usage examples:
  hsg mode=generate prompt="confidence for public speaking"
  hsg mode=generate prompt="help me sleep" provider.kind=openai models.default=gpt-4o-mini
  hsg mode=regenerate script_id=script_123 section="Induction"
  hsg mode=show script_id=script_123
  hsg mode=analyze script_id=script_123
  hsg mode=jobs clear_completed=true
  hsg --config-dir . --config-name config mode=migrate
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

import hydra
from omegaconf import DictConfig, OmegaConf
from rich.markdown import Markdown
from rich.table import Table

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_provider_fallbacks
from .errors import ScriptGeneratorError
from .logging_config import RichCallbacks, console, setup_logging
from .models import JobStatus, ProjectConfig

register_configs()

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    CLI-only keys (``mode``, ``prompt``, etc.) are stripped before validation.
    Provider credential env-var fallbacks are applied afterwards.
    """
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_provider_fallbacks(config)


def _get_config_dir() -> Path:
    """Extract ``--config-dir`` from *sys.argv* (before Hydra consumes it).

    Falls back to the current working directory.
    """
    for i, arg in enumerate(sys.argv):
        if arg == "--config-dir" and i + 1 < len(sys.argv):
            return Path(sys.argv[i + 1])
        if arg.startswith("--config-dir="):
            return Path(arg.split("=", 1)[1])
    return Path.cwd()


def _make_studio(cfg: DictConfig):
    from .studio import ScriptStudio

    studio = ScriptStudio(_to_project_config(cfg), config_dir=_get_config_dir(), callbacks=RichCallbacks())
    loaded = studio.startup()
    if cfg.get("verbose", False):
        console.print(f"[dim]Loaded {loaded} conversation(s)[/]")
    return studio


def _require(cfg: DictConfig, key: str) -> str:
    value = cfg.get(key)
    if not value:
        console.print(f"[red]{key} is required for mode {cfg.mode!r}[/]")
        sys.exit(1)
    return str(value)


def _run_jobs(studio) -> None:
    """Run queued jobs until idle; Ctrl-C stops the current generation."""

    async def _go() -> list:
        abort = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, abort.set)
        except NotImplementedError:
            pass
        return await studio.run_until_idle(abort)

    jobs = asyncio.run(_go())
    failed = [job for job in jobs if job.status == JobStatus.FAILED]
    for job in failed:
        console.print(f"  [red]{job.title}: {job.error}[/]")
    if failed:
        sys.exit(1)


def _print_sections(studio, script_id: str) -> None:
    table = Table(title="Sections", show_lines=False)
    table.add_column("#", style="dim", width=4)
    table.add_column("Section ID", style="cyan")
    table.add_column("Title")
    table.add_column("Words", justify="right")
    for i, section in enumerate(studio.sections(script_id), 1):
        table.add_row(str(i), section.id, section.title, str(section.word_count))
    console.print(table)


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _generate_mode(cfg: DictConfig) -> None:
    prompt = _require(cfg, "prompt")
    studio = _make_studio(cfg)

    script, job = studio.create_script(prompt)
    console.print(f"[bold]Created script {script.id}[/] (job {job.id})")
    if not cfg.get("run_jobs", True):
        return

    _run_jobs(studio)
    script = studio.get_script(script.id) or script
    console.print(f"\n[bold green]{script.title}[/] [dim]({script.length})[/]")
    _print_sections(studio, script.id)


def _regenerate_mode(cfg: DictConfig) -> None:
    script_id = _require(cfg, "script_id")
    section = _require(cfg, "section")
    studio = _make_studio(cfg)

    job = studio.request_manual_regeneration(script_id, section)
    console.print(f"[bold]Queued {job.title}[/] (job {job.id})")
    if cfg.get("run_jobs", True):
        _run_jobs(studio)
        _print_sections(studio, script_id)


def _show_mode(cfg: DictConfig) -> None:
    studio = _make_studio(cfg)
    script_id = cfg.get("script_id")

    if not script_id:
        table = Table(title="Scripts")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Status")
        table.add_column("Length", justify="right")
        for script in studio.list_scripts():
            table.add_row(script.id, script.title, script.status.value, script.length)
        console.print(table)
        return

    script = studio.get_script(script_id)
    if script is None:
        console.print(f"[red]Unknown script: {script_id}[/]")
        sys.exit(1)
    console.print(Markdown(script.content or "_(empty)_"))


def _analyze_mode(cfg: DictConfig) -> None:
    script_id = _require(cfg, "script_id")
    studio = _make_studio(cfg)

    table = Table(title=f"Regeneration analysis: {script_id}", show_lines=True)
    table.add_column("Section", style="cyan")
    table.add_column("Words", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Regenerate")
    table.add_column("Reason")
    for a in studio.analyze(script_id):
        flag = "[yellow]yes[/]" if a.needs_regeneration else "no"
        table.add_row(a.section_title, str(a.word_count), str(a.attempts), flag, a.reason)
    console.print(table)

    stats = studio.policy.stats()
    console.print(
        f"  Tracked: {stats.sections_tracked}  In cooldown: {stats.sections_in_cooldown}  "
        f"At max: {stats.sections_exceeding_max}  Requested: {stats.total_regenerations_requested}"
    )


def _migrate_mode(cfg: DictConfig) -> None:
    studio = _make_studio(cfg)
    count = len(studio.store.list_conversations())
    console.print(f"[green]{count} conversation(s) available after migration[/]")


def _jobs_mode(cfg: DictConfig) -> None:
    studio = _make_studio(cfg)
    if cfg.get("clear_completed", False):
        removed = studio.job_queue.clear_completed_jobs()
        console.print(f"[dim]Removed {removed} finished job(s)[/]")

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Error", style="red")
    for job in studio.job_queue.get_jobs():
        table.add_row(job.id, job.type.value, job.status.value, job.title, job.error or "")
    console.print(table)


_MODE_DISPATCH: dict[str, Any] = {
    "generate": _generate_mode,
    "regenerate": _regenerate_mode,
    "show": _show_mode,
    "analyze": _analyze_mode,
    "migrate": _migrate_mode,
    "jobs": _jobs_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "generate")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    try:
        handler(cfg)
    except ScriptGeneratorError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
