import json
import typer
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.tree import Tree

from mbc.config.loader import load_config
from mbc.config.models import AppConfig
from mbc.domain.errors import AlreadyRunningError, ConversionIOError, ReaperError, SelectionCancelled
from mbc.domain.models import DirEntry, DirTree, FolderEntry
from mbc.infrastructure.logging import setup_logging
from mbc.infrastructure.event_bus import EventBus
from mbc.infrastructure.ffprobe import FFprobeAdapter
from mbc.infrastructure.housekeeping import HousekeepingService
from mbc.infrastructure.process_reaper import is_encoder_active, stop_encoder_processes_by_name
from mbc.infrastructure.tree_walker import TreeWalker
from mbc.pipeline.scheduler import ConversionScheduler
from mbc.ui.console import ConsoleReporter

DEFAULT_CONFIG = Path("conf/mbc.yaml")

app = typer.Typer(help="MBC (Media Batch Conversion) - audio → mp3, video → AV1 mp4, images → AVIF")


def _fail(message: str, code: int = 1):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _load_app_config(config_path: Path) -> AppConfig:
    if config_path.exists():
        return load_config(config_path)
    if config_path == DEFAULT_CONFIG:
        return AppConfig()
    raise FileNotFoundError(f"Config file not found: {config_path}")


def select_inputs(paths: Optional[List[Path]]) -> List[Path]:
    """Selected input paths; prompts when none were given on the command line."""
    if paths:
        return list(paths)
    answer = typer.prompt("Input files or folders (comma-separated)", default="", show_default=False)
    selected = [Path(p.strip()).expanduser() for p in answer.split(",") if p.strip()]
    if not selected:
        raise SelectionCancelled("Selection cancelled by user")
    return selected


def select_output_directory(output: Optional[Path]) -> Path:
    """Output directory; prompts when it was not given on the command line."""
    if output is not None:
        return output
    answer = typer.prompt("Output directory", default="", show_default=False).strip()
    if not answer:
        raise SelectionCancelled("Output directory selection cancelled")
    return Path(answer).expanduser()


def load_tree(tree_path: Path) -> List[DirEntry]:
    """Reads a DirEntry selection from JSON (a list, or {'entries': [...]})."""
    data = json.loads(tree_path.read_text())
    if isinstance(data, list):
        data = {"entries": data}
    return DirTree.model_validate(data).entries


def _render_tree(entries: List[DirEntry]) -> Tree:
    root = Tree("selection")

    def _add(branch: Tree, items: List[DirEntry]):
        for entry in items:
            if isinstance(entry, FolderEntry):
                _add(branch.add(f"[bold]{entry.name}/[/bold] ({entry.size} B)"), entry.children)
            else:
                duration = f", {entry.duration:.1f}s" if entry.duration else ""
                branch.add(f"{entry.name} [dim]{entry.category.value}, {entry.size} B{duration}[/dim]")

    _add(root, entries)
    return root


@app.command()
def convert(
    inputs: Optional[List[Path]] = typer.Argument(None, help="Files or folders to convert"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (files go to <output>/converted)"),
    tree_path: Optional[Path] = typer.Option(None, "--tree", help="Read the selection from a JSON tree instead of scanning"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    max_concurrent: Optional[int] = typer.Option(None, "--max-concurrent", "-j", min=2, max=8, help="Simultaneous encode jobs (2-8)"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log messages in the console"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Convert every supported file of the selection, mirroring folders under the output."""
    try:
        config = _load_app_config(config_path)
        if max_concurrent is not None: config.general.max_concurrent = max_concurrent
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True

        output_dir = select_output_directory(output)
        bus = EventBus()
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(output_dir, debug=config.general.debug, log_path=log_path_value, event_bus=bus)

        if tree_path is not None:
            entries = load_tree(tree_path)
        else:
            ffprobe = FFprobeAdapter(config.general.ffprobe_path) if config.general.probe_durations else None
            entries = TreeWalker(config, ffprobe).detail_paths(select_inputs(inputs))

        output_root = output_dir / config.general.output_subdir
        if output_root.exists():
            housekeeper = HousekeepingService()
            housekeeper.cleanup_temp_files(output_root)
            housekeeper.cleanup_pass_logs(output_root)

        scheduler = ConversionScheduler.from_config(config, bus)
        logger.info(f"MBC started: entries={len(entries)}, output={output_root}, max_concurrent={scheduler.max_concurrent}")
        reporter = ConsoleReporter(bus, show_logs=verbose)

        try:
            with reporter:
                state = scheduler.run_conversion(entries, output_dir)
                while not scheduler.wait(timeout=0.5):
                    pass
        except KeyboardInterrupt:
            logger.info("Interrupt requested (Ctrl+C) - stopping encoders...")
            scheduler.shutdown()
            scheduler.wait(timeout=10.0)
            typer.secho("\n✓ Conversion stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

        if state.failed:
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except SelectionCancelled as e:
        _fail(str(e))
    except (ConversionIOError, AlreadyRunningError, FileNotFoundError, ValueError) as e:
        _fail(str(e))
    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def scan(
    inputs: List[Path] = typer.Argument(..., help="Files or folders to inspect"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    as_json: bool = typer.Option(False, "--json", help="Print the tree as JSON (usable with convert --tree)"),
    probe: bool = typer.Option(True, "--probe/--no-probe", help="Read durations with ffprobe"),
):
    """Show what convert would pick up from the given paths."""
    try:
        config = _load_app_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        _fail(str(e))
    ffprobe = FFprobeAdapter(config.general.ffprobe_path) if probe else None
    entries = TreeWalker(config, ffprobe).detail_paths(inputs)
    if as_json:
        typer.echo(DirTree(entries=entries).model_dump_json(indent=2))
    else:
        Console().print(_render_tree(entries))


@app.command()
def status(name: str = typer.Option("ffmpeg", "--name", help="Encoder process name")):
    """Report whether any encoder process is running on this host."""
    active = is_encoder_active(name)
    typer.echo(f"{name}: {'running' if active else 'not running'}")
    raise typer.Exit(code=0 if active else 1)


@app.command()
def stop(name: str = typer.Option("ffmpeg", "--name", help="Encoder process name")):
    """Kill every encoder process on this host."""
    try:
        typer.echo(stop_encoder_processes_by_name(name))
    except ReaperError as e:
        _fail(str(e))


if __name__ == "__main__":
    app()
