"""CLI entry point for the drink tracker."""

from __future__ import annotations

import click

from .core.errors import PersistenceError


@click.group()
def main() -> None:
    """Drink Tracker: live party consumption dashboard."""


@main.command()
@click.option("--config", default="configs/tracker.toml", help="Config file path")
@click.option("--host", default=None, help="Bind address override")
@click.option("--port", default=None, type=int, help="Port override")
@click.option("--snapshot-dir", default=None, help="Snapshot directory override")
def serve(config: str, host: str | None, port: int | None, snapshot_dir: str | None) -> None:
    """Run the tracker server."""
    import asyncio

    from .main import run

    overrides: dict = {}
    if host:
        overrides.setdefault("server", {})["host"] = host
    if port:
        overrides.setdefault("server", {})["port"] = port
    if snapshot_dir:
        overrides.setdefault("snapshot", {})["directory"] = snapshot_dir

    asyncio.run(run(config_path=config, overrides=overrides))


def _manager(config: str, snapshot_dir: str | None):
    from .core.config import load_settings
    from .persistence.snapshots import SnapshotManager
    from .store.event_store import EventStore

    settings = load_settings(config_path=config)
    directory = snapshot_dir or settings.snapshot.directory
    return SnapshotManager(EventStore(), directory, max_files=settings.snapshot.max_files)


@main.command()
@click.option("--config", default="configs/tracker.toml", help="Config file path")
@click.option("--snapshot-dir", default=None, help="Snapshot directory override")
def snapshots(config: str, snapshot_dir: str | None) -> None:
    """List snapshot artifacts, newest first."""
    manager = _manager(config, snapshot_dir)
    artifacts = manager.list_artifacts()
    if not artifacts:
        click.echo(f"No snapshots in {manager.directory}")
        return
    click.echo(f"{'Filename':<48} {'Created (UTC)':<28} {'Bytes':>10}")
    click.echo("-" * 88)
    for info in artifacts:
        click.echo(
            f"{info.filename:<48} {info.created_at.isoformat():<28} {info.size_bytes:>10}"
        )


@main.command("snapshot-inspect")
@click.option("--config", default="configs/tracker.toml", help="Config file path")
@click.option("--snapshot-dir", default=None, help="Snapshot directory override")
@click.argument("filename", required=False)
def snapshot_inspect(config: str, snapshot_dir: str | None, filename: str | None) -> None:
    """Summarize FILENAME, or the newest valid artifact."""
    manager = _manager(config, snapshot_dir)
    if filename:
        try:
            state = manager.load(manager.directory / filename)
        except PersistenceError as exc:
            raise click.ClickException(str(exc)) from exc
        source = filename
    else:
        found = manager.load_latest()
        if found is None:
            raise click.ClickException(f"No valid snapshot in {manager.directory}")
        path, state = found
        source = path.name

    click.echo(f"Artifact:       {source}")
    click.echo(f"Format version: {state.format_version}")
    click.echo(f"Saved at:       {state.saved_at.isoformat() if state.saved_at else '-'}")
    click.echo(f"Items:          {len(state.items)}")
    click.echo(f"Consumptions:   {len(state.consumptions)}")
    click.echo(f"Markers:        {len(state.markers)}")
    click.echo(f"Participants:   {len(state.participants)}")
    click.echo(f"Predictions:    {len(state.predictions)}")
    click.echo(f"Locked:         {state.settings.predictions_locked}")
    click.echo(f"Passcode set:   {state.settings.passcode_hash is not None}")


if __name__ == "__main__":
    main()
