"""Main CLI implementation using Typer."""

from typing import Any, Callable, Dict, List, Optional

import typer
from rich.console import Console

from kaspa_aio.cli.client import AgentClient, AgentError
from kaspa_aio.cli.commands import (
    add_profile,
    apply_selection,
    backup_usage,
    create_backup,
    delete_backup,
    diff_backups,
    generate_config,
    list_backups,
    list_profiles,
    remove_profile,
    restore_backup,
    rollback,
    service_action,
    show_drift,
    show_history,
    show_removal_impact,
    show_status,
    validate_selection,
)


app = typer.Typer(
    name="kaspa-aioctl",
    help="Kaspa All-in-One - profile-based node and application stack manager",
    add_completion=False,
)

console = Console()

SocketOption = typer.Option(None, "--socket", "-s", help="Agent socket path")
SettingsOption = typer.Option(None, "--set", help="Configuration setting as KEY=VALUE (repeatable)")
TimeoutOption = typer.Option(None, "--timeout", help="Apply timeout in seconds (agent default if omitted)")


def parse_settings(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated ``KEY=VALUE`` options."""
    settings: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--set")
        settings[key.strip()] = value
    return settings


def _run_cli_command(handler: Callable[..., Any], socket: Optional[str], **kwargs: Any):
    """Run a CLI command with an agent client and error handling."""
    try:
        client = AgentClient(socket_path=socket)
        return handler(client, **kwargs)
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e}")
        issues = e.details.get("issues") or []
        for issue in issues:
            field = f"{issue['field']}: " if issue.get("field") else ""
            console.print(f"  [red]•[/red] {field}{issue['message']}")
        if e.remediation:
            console.print(f"[dim]{e.remediation}[/dim]")
        raise typer.Exit(1) from e


@app.command("profiles")
def profiles_command(socket: Optional[str] = SocketOption):
    """List available profiles."""
    _run_cli_command(list_profiles, socket=socket)


@app.command("validate")
def validate_command(
    profiles: List[str] = typer.Argument(..., help="Profile ids to validate"),
    socket: Optional[str] = SocketOption,
):
    """Validate a profile selection without changing anything."""
    _run_cli_command(validate_selection, socket=socket, profiles=profiles)


@app.command("generate")
def generate_command(
    profiles: List[str] = typer.Argument(..., help="Profile ids"),
    settings: Optional[List[str]] = SettingsOption,
    show_env: bool = typer.Option(False, "--env", help="Also print the env file"),
    socket: Optional[str] = SocketOption,
):
    """Preview the compose document for a selection."""
    _run_cli_command(
        generate_config, socket=socket, profiles=profiles, settings=parse_settings(settings), show_env=show_env
    )


@app.command("apply")
def apply_command(
    profiles: List[str] = typer.Argument(..., help="Profile ids to install"),
    settings: Optional[List[str]] = SettingsOption,
    timeout: Optional[float] = TimeoutOption,
    socket: Optional[str] = SocketOption,
):
    """Install or reconfigure to exactly the given profiles."""
    _run_cli_command(
        apply_selection, socket=socket, profiles=profiles, settings=parse_settings(settings), timeout=timeout
    )


@app.command("add")
def add_command(
    profile: str = typer.Argument(..., help="Profile id to add"),
    settings: Optional[List[str]] = SettingsOption,
    timeout: Optional[float] = TimeoutOption,
    socket: Optional[str] = SocketOption,
):
    """Add a profile to the installation."""
    _run_cli_command(add_profile, socket=socket, profile=profile, settings=parse_settings(settings), timeout=timeout)


@app.command("remove")
def remove_command(
    profile: str = typer.Argument(..., help="Profile id to remove"),
    remove_data: bool = typer.Option(False, "--remove-data", help="Also delete the profile's data volumes"),
    force: bool = typer.Option(False, "--force", "-f", help="Remove without confirmation"),
    timeout: Optional[float] = TimeoutOption,
    socket: Optional[str] = SocketOption,
):
    """Remove a profile from the installation."""
    impact = _run_cli_command(show_removal_impact, socket=socket, profile=profile)
    if not impact["can_remove"]:
        raise typer.Exit(1)
    if not force:
        prompt = f"Remove profile {profile}{' and its data' if remove_data else ''}?"
        if not typer.confirm(prompt):
            raise typer.Abort()
    _run_cli_command(remove_profile, socket=socket, profile=profile, remove_data=remove_data, timeout=timeout)


@app.command("status")
def status_command(socket: Optional[str] = SocketOption):
    """Show installation, agent and service status."""
    _run_cli_command(show_status, socket=socket)


@app.command("drift")
def drift_command(socket: Optional[str] = SocketOption):
    """Check services against the committed configuration."""
    _run_cli_command(show_drift, socket=socket)


def _service_command(action: str, name: Optional[str], profiles: Optional[List[str]], socket: Optional[str]):
    if not name and not profiles:
        console.print("[red]Error:[/red] Specify a service name or --profile")
        raise typer.Exit(1)
    _run_cli_command(service_action, socket=socket, action=action, name=name, profiles=profiles or [])


@app.command("start")
def start_command(
    name: Optional[str] = typer.Argument(None, help="Service name"),
    profiles: Optional[List[str]] = typer.Option(None, "--profile", "-p", help="Start a profile's services"),
    socket: Optional[str] = SocketOption,
):
    """Start services."""
    _service_command("start", name, profiles, socket)


@app.command("stop")
def stop_command(
    name: Optional[str] = typer.Argument(None, help="Service name"),
    profiles: Optional[List[str]] = typer.Option(None, "--profile", "-p", help="Stop a profile's services"),
    socket: Optional[str] = SocketOption,
):
    """Stop services."""
    _service_command("stop", name, profiles, socket)


@app.command("restart")
def restart_command(
    name: Optional[str] = typer.Argument(None, help="Service name"),
    profiles: Optional[List[str]] = typer.Option(None, "--profile", "-p", help="Restart a profile's services"),
    socket: Optional[str] = SocketOption,
):
    """Restart services."""
    _service_command("restart", name, profiles, socket)


@app.command("rollback")
def rollback_command(
    backup_id: str = typer.Argument(..., help="Backup id to roll back to"),
    timeout: Optional[float] = TimeoutOption,
    socket: Optional[str] = SocketOption,
):
    """Restore a backup and bring services in line with it."""
    _run_cli_command(rollback, socket=socket, backup_id=backup_id, timeout=timeout)


@app.command("history")
def history_command(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Show only the last N entries"),
    socket: Optional[str] = SocketOption,
):
    """Show the change history."""
    _run_cli_command(show_history, socket=socket, limit=limit)


# Backup subcommands
backup_app = typer.Typer(help="Backup management commands")
app.add_typer(backup_app, name="backup")


@backup_app.command("create")
def backup_create_command(
    reason: str = typer.Option("Manual backup", "--reason", "-r", help="Why the backup was taken"),
    socket: Optional[str] = SocketOption,
):
    """Back up the current configuration."""
    _run_cli_command(create_backup, socket=socket, reason=reason)


@backup_app.command("list")
def backup_list_command(socket: Optional[str] = SocketOption):
    """List backups."""
    _run_cli_command(list_backups, socket=socket)


@backup_app.command("restore")
def backup_restore_command(
    backup_id: str = typer.Argument(..., help="Backup id"),
    force: bool = typer.Option(False, "--force", "-f", help="Restore without confirmation"),
    socket: Optional[str] = SocketOption,
):
    """Restore configuration files from a backup."""
    if not force:
        if not typer.confirm(f"Restore backup {backup_id}?"):
            raise typer.Abort()
    _run_cli_command(restore_backup, socket=socket, backup_id=backup_id)


@backup_app.command("diff")
def backup_diff_command(
    from_id: str = typer.Argument(..., help="Older backup id"),
    to_id: str = typer.Argument(..., help="Newer backup id"),
    socket: Optional[str] = SocketOption,
):
    """Compare two backups."""
    _run_cli_command(diff_backups, socket=socket, from_id=from_id, to_id=to_id)


@backup_app.command("delete")
def backup_delete_command(
    backup_id: str = typer.Argument(..., help="Backup id"),
    force: bool = typer.Option(False, "--force", "-f", help="Delete without confirmation"),
    socket: Optional[str] = SocketOption,
):
    """Delete a backup."""
    if not force:
        if not typer.confirm(f"Delete backup {backup_id}?"):
            raise typer.Abort()
    _run_cli_command(delete_backup, socket=socket, backup_id=backup_id)


@backup_app.command("usage")
def backup_usage_command(socket: Optional[str] = SocketOption):
    """Show backup storage usage."""
    _run_cli_command(backup_usage, socket=socket)


def main():
    """Main entry point for CLI."""
    app()
