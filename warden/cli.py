"""Warden CLI - risk checks, checkpoints and diffs from the shell."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from warden import __version__
from warden.auto_checkpoint import AutoCheckpointConfig, AutoCheckpointResult, AutoCheckpointService
from warden.checkpoint import CHECKPOINT_REASONS, MANUAL, FileCheckpointStore
from warden.config import (
    PROJECT_DIRNAME,
    WARDEN_DIR,
    WardenConfig,
    detect_project_root,
    get_warden_config,
)
from warden.diff import CURRENT, CheckpointDiffService, DiffOptions, format_diff_summary
from warden.errors import CheckpointNotFoundError
from warden.governor import GovernorThresholds, TokenBudget, compute_governor_state, is_action_allowed
from warden.risk import classify_batch, highest_risk_level

console = Console()

LEVEL_STYLES = {
    "LOW": "green",
    "MEDIUM": "yellow",
    "HIGH": "red",
    "BLOCK": "bold red",
}

MODE_STYLES = {
    "normal": "green",
    "conservative": "yellow",
    "critical": "bold red",
}


def _project_root() -> Path:
    return detect_project_root() or Path.cwd()


def _store(root: Path, cfg: WardenConfig, tokens: int | None = None) -> FileCheckpointStore:
    token_usage = None if tokens is None else (lambda: tokens)
    return FileCheckpointStore(root, token_usage=token_usage, capture_git=cfg.capture_git_changes)


def _thresholds(cfg: WardenConfig) -> GovernorThresholds:
    try:
        return GovernorThresholds(cfg.conservative_threshold, cfg.critical_threshold)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


def _level(level: str) -> str:
    style = LEVEL_STYLES.get(level, "white")
    return f"[{style}]{level}[/{style}]"


def _print_result(result: AutoCheckpointResult) -> None:
    risk = result.risk
    console.print(f"Risk: {_level(risk.level)} ({risk.category}) - {escape(risk.reason)}")

    if result.checkpoint_created and result.checkpoint:
        console.print(f"[green]✓[/green] Checkpoint created: {result.checkpoint.name} ({result.checkpoint.id[:8]})")
    else:
        console.print(f"[dim]No checkpoint: {escape(result.reason)}[/dim]")

    if result.governor and result.governor.mode != "normal":
        style = MODE_STYLES[result.governor.mode]
        console.print(f"Governor: [{style}]{result.governor.mode}[/{style}] - {result.governor.recommendation}")

    if result.blocked:
        console.print(f"[bold red]✗ Action blocked: {escape(result.risk.reason)}[/bold red]")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """Warden: risk-aware checkpoints for AI coding agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# Risk
# =============================================================================


@main.command()
@click.argument("actions", nargs=-1, required=True)
def classify(actions):
    """Classify the risk of one or more commands.

    Examples:
        warden classify "git reset --hard"
        warden classify "git status" "git merge main" "rm -rf ./build"
    """
    classifications = classify_batch(actions)

    table = Table()
    table.add_column("ACTION")
    table.add_column("LEVEL")
    table.add_column("CATEGORY")
    table.add_column("REASON")
    table.add_column("CHECKPOINT", justify="center")

    for action, risk in zip(actions, classifications):
        table.add_row(
            escape(action[:60]),
            _level(risk.level),
            risk.category,
            escape(risk.reason),
            "✓" if risk.should_checkpoint else "",
        )

    console.print(table)

    if len(classifications) > 1:
        console.print(f"Highest risk: {_level(highest_risk_level(classifications))}")


@main.command()
@click.argument("action")
@click.option("--file", "-f", "files", multiple=True, help="File touched by the action")
@click.option("--tokens", type=int, help="Tokens used so far (enables governor checks)")
def check(action, files, tokens):
    """Checkpoint first if ACTION is risky. Exits 1 if it must not run.

    Examples:
        warden check "git reset --hard"
        warden check "git push --force" --file src/app.py --tokens 150000
    """
    cfg = get_warden_config()
    root = _project_root()

    provider = None
    if tokens is not None:
        budget = TokenBudget(
            estimated=cfg.token_budget,
            thresholds=_thresholds(cfg),
            warning_threshold=cfg.warning_threshold,
            pause_threshold=cfg.pause_threshold,
        )
        budget.update(tokens)
        for warning in budget.warnings():
            console.print(f"[yellow]⚠ {warning.message}[/yellow]")
        provider = budget.governor_state

    service = AutoCheckpointService(
        _store(root, cfg, tokens),
        AutoCheckpointConfig.from_config(cfg),
        governor_state_provider=provider,
    )
    try:
        result = asyncio.run(service.check_and_auto_checkpoint(action, files=list(files) or None))
    except OSError as e:
        console.print(f"[red]Checkpoint failed: {e}[/red]")
        sys.exit(1)

    _print_result(result)
    if result.blocked:
        sys.exit(1)


@main.command()
@click.argument("files", nargs=-1, required=True)
@click.option("--lines", "-n", type=int, required=True, help="Total lines about to change")
@click.option("--description", "-d", help="Checkpoint summary")
def edit(files, lines, description):
    """Checkpoint before a large edit.

    Examples:
        warden edit src/a.py src/b.py --lines 250
    """
    cfg = get_warden_config()
    service = AutoCheckpointService(_store(_project_root(), cfg), AutoCheckpointConfig.from_config(cfg))

    try:
        result = asyncio.run(service.check_large_edit(list(files), lines, description))
    except OSError as e:
        console.print(f"[red]Checkpoint failed: {e}[/red]")
        sys.exit(1)

    _print_result(result)


@main.command()
@click.argument("percent", type=float)
@click.option("--action", "-a", "actions", multiple=True, help="Check whether an action is allowed")
def governor(percent, actions):
    """Show the governor mode for a token-usage percentage.

    Examples:
        warden governor 72
        warden governor 90 --action small_patch
    """
    cfg = get_warden_config()
    state = compute_governor_state(percent, _thresholds(cfg))
    style = MODE_STYLES[state.mode]

    console.print(f"Mode: [{style}]{state.mode}[/{style}] ({state.token_percentage:.1f}%)")
    console.print(f"  {state.recommendation}")
    console.print(
        f"  [dim]Thresholds: conservative {state.thresholds.conservative:g}%, "
        f"critical {state.thresholds.critical:g}%[/dim]"
    )
    console.print(f"  Allowed: {', '.join(state.allowed_actions)}")
    if state.blocked_actions:
        console.print(f"  Blocked: {', '.join(state.blocked_actions)}")

    for action in actions:
        allowed, reason = is_action_allowed(action, state)
        if allowed:
            console.print(f"[green]✓[/green] {action}")
        else:
            console.print(f"[red]✗[/red] {action}: {reason}")


# =============================================================================
# Checkpoints
# =============================================================================


@main.group()
def checkpoint():
    """Manage checkpoints."""
    pass


@checkpoint.command("create")
@click.option("--name", help="Checkpoint name")
@click.option("--reason", type=click.Choice(CHECKPOINT_REASONS), default=MANUAL, show_default=True)
@click.option("--summary", "-s", help="What this checkpoint protects")
@click.option("--file", "-f", "files", multiple=True, help="File to record as changed")
@click.option("--tokens", type=int, help="Tokens used so far, recorded on the checkpoint")
def checkpoint_create(name, reason, summary, files, tokens):
    """Create a checkpoint now."""
    cfg = get_warden_config()
    store = _store(_project_root(), cfg, tokens)

    try:
        info = store.create(reason=reason, name=name, files_changed=list(files), summary=summary)
    except OSError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓[/green] Checkpoint created: {info.name}")
    console.print(f"  ID: {info.id}")


@checkpoint.command("list")
@click.option("--limit", "-n", default=10, help="Number of checkpoints to show")
def checkpoint_list(limit):
    """List checkpoints, most recent first."""
    store = _store(_project_root(), get_warden_config())
    checkpoints = store.list_checkpoints(limit=limit)

    if not checkpoints:
        console.print("[yellow]No checkpoints found.[/yellow]")
        console.print("Create one with: warden checkpoint create")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("NAME")
    table.add_column("REASON")
    table.add_column("SIZE", justify="right")
    table.add_column("CREATED")

    for cp in checkpoints:
        table.add_row(
            cp.id[:8],
            escape(cp.name),
            cp.reason,
            str(cp.size),
            cp.created_at[:16].replace("T", " "),
        )

    console.print(table)


@checkpoint.command("show")
@click.argument("checkpoint_id")
def checkpoint_show(checkpoint_id):
    """Show details of a checkpoint (id or unique id prefix)."""
    store = _store(_project_root(), get_warden_config())
    cp = store.load(checkpoint_id)

    if not cp:
        console.print(f"[red]Checkpoint '{escape(checkpoint_id)}' not found[/red]")
        sys.exit(1)

    console.print(f"[bold]{escape(cp.name)}[/bold] ({cp.id})")
    console.print(f"  Created: {cp.created_at}")
    console.print(f"  Reason: {cp.reason}")
    if cp.token_usage is not None:
        console.print(f"  Tokens: {cp.token_usage:,}")
    if cp.summary:
        console.print(f"  Summary: {escape(cp.summary)}")
    console.print(f"  Files changed: {len(cp.files_changed)}")
    for path in cp.files_changed:
        console.print(f"    {escape(path)}")
    if cp.metadata:
        console.print("  Metadata:")
        console.print(json.dumps(cp.metadata, indent=2), markup=False, highlight=False)


# =============================================================================
# Diff
# =============================================================================


@main.command()
@click.argument("from_id")
@click.argument("to_id", required=False, default=CURRENT)
@click.option("--include-unchanged", is_flag=True, help="List unchanged files too")
@click.option("--max-files", type=int, help="Stop after this many files")
@click.option("--exclude", "excludes", multiple=True, help="Glob to skip when scanning (repeatable)")
def diff(from_id, to_id, include_unchanged, max_files, excludes):
    """Diff a checkpoint against another checkpoint or the current tree.

    Examples:
        warden diff 3f2a9c1e
        warden diff 3f2a9c1e 7b0d4e22 --include-unchanged
    """
    cfg = get_warden_config()
    root = _project_root()
    service = CheckpointDiffService(_store(root, cfg), root)
    options = DiffOptions(
        include_unchanged=include_unchanged,
        max_files=max_files,
        exclude_patterns=(*cfg.diff_exclude_patterns, *excludes),
    )

    try:
        result = asyncio.run(service.generate_diff(from_id, to_id, options))
    except CheckpointNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    console.print(format_diff_summary(result), markup=False, highlight=False)


# =============================================================================
# Config
# =============================================================================


@main.group()
def config():
    """Manage configuration.

    Project config (.warden/config.yaml) overrides user config
    (~/.warden/config.yaml).
    """
    pass


@config.command("list")
def config_list():
    """Show effective configuration."""
    effective = get_warden_config()
    defaults = WardenConfig()

    console.print("[bold]Warden Configuration[/bold]")
    console.print()
    for key, value in effective.to_dict().items():
        default = getattr(defaults, key)
        if value != default:
            console.print(f"  {key}: [cyan]{value}[/cyan] [dim](default: {default})[/dim]")
        else:
            console.print(f"  {key}: {value}")

    console.print()
    console.print("[dim]warden config set KEY VALUE            Set a value[/dim]")
    console.print("[dim]warden config set KEY VALUE --project  Set project-level[/dim]")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--project", is_flag=True, help="Set in project-level config")
def config_set(key: str, value: str, project: bool):
    """Set a configuration value.

    Examples:
        warden config set min_interval_ms 10000
        warden config set large_edit_threshold 200 --project
        warden config set diff_exclude_patterns "*.tmp,coverage/**"
    """
    warden_dir = _project_root() / PROJECT_DIRNAME if project else WARDEN_DIR
    current = WardenConfig.load(warden_dir)

    key = key.replace("-", "_")
    fields = WardenConfig.__dataclass_fields__
    if key not in fields:
        console.print(f"[red]Unknown config key: {key}[/red]")
        console.print(f"[dim]Keys: {', '.join(fields)}[/dim]")
        sys.exit(1)

    field_type = fields[key].type
    try:
        typed_value = _coerce(value, field_type)
    except ValueError:
        console.print(f"[red]Invalid value for {key}: {value}[/red]")
        sys.exit(1)

    current_dict = current.to_dict()
    current_dict[key] = typed_value
    WardenConfig(**current_dict).save(warden_dir)

    location = "project" if project else "user"
    console.print(f"[green]✓[/green] Set {key} = {typed_value} ({location}-level)")


def _coerce(value: str, field_type):
    """Convert a CLI string to a config field's type."""
    if field_type is bool:
        lowered = value.lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        raise ValueError(value)
    if field_type is int:
        return int(value)
    if field_type is float:
        return float(value)
    if getattr(field_type, "__origin__", None) is list:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value
