"""Command implementations for CLI."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from kaspa_aio.cli.client import AgentClient


console = Console()

STATUS_COLORS = {
    "running": "green",
    "restarting": "yellow",
    "stopped": "yellow",
    "absent": "red",
    "error": "red",
}


def _run_action(
    client: AgentClient,
    description: str,
    command: str,
    args: Dict[str, Any],
    success_msg: Optional[str] = None,
    timeout: Optional[float] = 10.0,
) -> Dict[str, Any]:
    """Run an agent command with a progress spinner."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=None)

        response = client.request(command, args, timeout=timeout)

        progress.update(task, completed=True)

    if success_msg:
        console.print(success_msg)

    return response


def _format_time(value: Optional[str]) -> str:
    if not value:
        return "-"
    return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")


def _format_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _print_issues(issues: List[Dict[str, Any]], style: str = "red") -> None:
    for issue in issues:
        target = issue.get("field") or ", ".join(issue.get("profiles") or [])
        prefix = f"{target}: " if target else ""
        console.print(f"  [{style}]•[/{style}] {prefix}{issue['message']}")
        if issue.get("remediation"):
            console.print(f"    [dim]{issue['remediation']}[/dim]")


def print_result(result: Dict[str, Any]) -> None:
    """Summarize a reconciliation result."""
    delta = result.get("delta") or {}
    for label, key, color in (("Added", "added", "green"), ("Removed", "removed", "red"), ("Changed", "changed", "yellow")):
        if delta.get(key):
            console.print(f"  {label}: [{color}]{', '.join(delta[key])}[/{color}]")
    if result.get("warnings"):
        console.print("[yellow]Warnings:[/yellow]")
        _print_issues(result["warnings"], style="yellow")
    if result.get("snapshot_id"):
        console.print(f"  Backup: {result['snapshot_id']}")


def list_profiles(client: AgentClient):
    """List the profile catalog."""
    response = client.request("profiles")

    table = Table(title="Profiles")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category", style="magenta")
    table.add_column("Services")
    table.add_column("Requires", style="dim")

    for profile in response["profiles"]:
        requires = list(profile["dependencies"])
        if profile["prerequisites"]:
            requires.append(f"one of {'/'.join(profile['prerequisites'])}")
        table.add_row(
            profile["id"],
            profile["name"],
            profile["category"],
            ", ".join(service["name"] for service in profile["services"]),
            ", ".join(requires),
        )

    console.print(table)


def validate_selection(client: AgentClient, profiles: List[str]):
    """Validate a profile selection."""
    response = client.request("validate", {"profiles": profiles})

    if response["valid"]:
        console.print("[green]✓[/green] Selection is valid")
        console.print(f"  Profiles: {', '.join(response['resolved'])}")
        for phase in response["startup_order"]:
            console.print(f"  Phase {phase['order']} ({phase['name']}): {', '.join(phase['services'])}")
        resources = response["resources"]
        console.print(
            f"  Resources: {resources['min_cpu']} CPU, {resources['min_memory']} GB RAM, "
            f"{resources['min_disk']} GB disk minimum"
        )
    else:
        console.print("[red]✗[/red] Selection is invalid")
        _print_issues(response["errors"])

    if response["warnings"]:
        console.print("[yellow]Warnings:[/yellow]")
        _print_issues(response["warnings"], style="yellow")


def generate_config(client: AgentClient, profiles: List[str], settings: Dict[str, str], show_env: bool = False):
    """Preview the configuration a selection would produce."""
    response = client.request("generate", {"profiles": profiles, "settings": settings})
    console.print(response["compose"])
    if show_env:
        console.print(response["env"])
    if response["generated_secrets"]:
        console.print(f"[dim]Generated: {', '.join(response['generated_secrets'])}[/dim]")


def apply_selection(client: AgentClient, profiles: List[str], settings: Dict[str, str], timeout: Optional[float]):
    """Reconcile the installation to a profile selection."""
    result = _run_action(
        client,
        f"Applying {', '.join(profiles)}...",
        "reconcile",
        {"profiles": profiles, "settings": settings, "timeout": timeout},
        timeout=None,
    )
    console.print(f"[green]✓[/green] Configuration applied in {result['duration']:.1f}s")
    print_result(result)


def add_profile(client: AgentClient, profile: str, settings: Dict[str, str], timeout: Optional[float]):
    result = _run_action(
        client,
        f"Adding {profile}...",
        "add_profile",
        {"profile": profile, "settings": settings, "timeout": timeout},
        timeout=None,
    )
    console.print(f"[green]✓[/green] Profile {profile} added")
    print_result(result)


def show_removal_impact(client: AgentClient, profile: str) -> Dict[str, Any]:
    """Print what removing a profile would do and return the impact."""
    impact = client.request("removal_impact", {"profile": profile})

    if impact["services"]:
        console.print(f"Services to remove: {', '.join(impact['services'])}")
    for volume in impact["data"]:
        marker = "[red]critical[/red] " if volume["critical"] else ""
        console.print(f"  Data: {marker}{volume['name']} ({volume['estimated_size']}) {volume['description']}")
    if impact["blockers"]:
        console.print("[red]Removal blocked:[/red]")
        _print_issues(impact["blockers"])
    if impact["warnings"]:
        _print_issues(impact["warnings"], style="yellow")
    return impact


def remove_profile(client: AgentClient, profile: str, remove_data: bool, timeout: Optional[float]):
    result = _run_action(
        client,
        f"Removing {profile}...",
        "remove_profile",
        {"profile": profile, "remove_data": remove_data, "timeout": timeout},
        timeout=None,
    )
    console.print(f"[green]✓[/green] Profile {profile} removed")
    print_result(result)


def service_action(client: AgentClient, action: str, name: Optional[str], profiles: List[str]):
    """Start, stop or restart services by name or profile."""
    args: Dict[str, Any] = {"name": name} if name else {"profiles": profiles}
    response = _run_action(client, f"Running {action}...", action, args, timeout=None)
    console.print(f"[green]✓[/green] {action.capitalize()}: {', '.join(response['services'])}")


def show_status(client: AgentClient):
    """Show installation and agent status."""
    response = client.request("status")

    agent = response["agent"]
    installation = response["installation"]
    console.print("[bold]Installation[/bold]")
    console.print(f"  Mode: {installation['mode']}")
    console.print(f"  Profiles: {', '.join(installation['profiles']) or '-'}")
    console.print(f"  Last Modified: {_format_time(installation['last_modified'])}")
    console.print()
    console.print("[bold]Agent[/bold]")
    console.print(f"  Phase: {agent['phase']}{' (in progress)' if agent['in_progress'] else ''}")
    console.print(f"  Last Reconciliation: {_format_time(agent['last_reconciliation'])}")
    console.print()

    services = response["services"]
    if services:
        table = Table(title="Services")
        table.add_column("Name", style="cyan")
        table.add_column("Status")
        for name, status in services.items():
            color = STATUS_COLORS.get(status, "white")
            table.add_row(name, f"[{color}]{status}[/{color}]")
        console.print(table)


def show_drift(client: AgentClient):
    response = client.request("drift", timeout=None)
    if not response["drift"]:
        console.print("[green]✓[/green] All services match the committed configuration")
        return
    for entry in response["drift"]:
        console.print(f"  [yellow]![/yellow] {entry['service']}: expected {entry['expected']}, found {entry['actual']}")


def create_backup(client: AgentClient, reason: str):
    snapshot = client.request("backup_create", {"reason": reason})
    console.print(f"[green]✓[/green] Backup {snapshot['id']} created ({_format_size(snapshot['total_size'])})")


def list_backups(client: AgentClient):
    """List backups, newest first."""
    response = client.request("backup_list")

    table = Table(title="Backups")
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Reason")
    table.add_column("Profiles", style="magenta")
    table.add_column("Size", justify="right")

    for snapshot in response["backups"]:
        table.add_row(
            snapshot["id"],
            _format_time(snapshot["timestamp"]),
            snapshot["reason"],
            ", ".join(snapshot["selected_profiles"]),
            _format_size(snapshot["total_size"]),
        )

    console.print(table)


def restore_backup(client: AgentClient, backup_id: str):
    result = client.request("backup_restore", {"id": backup_id})
    console.print(f"[green]✓[/green] Restored {', '.join(result['restored_files'])} from {backup_id}")
    if result.get("pre_restore_backup"):
        console.print(f"  Previous configuration saved as {result['pre_restore_backup']}")
    if result.get("requires_restart"):
        console.print("  Run [bold]rollback[/bold] instead to also bring services in line")


def diff_backups(client: AgentClient, from_id: str, to_id: str):
    response = client.request("backup_diff", {"from": from_id, "to": to_id})
    if not response["changes"]:
        console.print("No differences")
        return

    table = Table(title=f"{from_id} → {to_id}")
    table.add_column("Key", style="cyan")
    table.add_column("Change")
    table.add_column("Old", style="red")
    table.add_column("New", style="green")
    for change in response["changes"]:
        table.add_row(change["key"], change["type"], str(change.get("old") or ""), str(change.get("new") or ""))
    console.print(table)


def delete_backup(client: AgentClient, backup_id: str):
    client.request("backup_delete", {"id": backup_id})
    console.print(f"[green]✓[/green] Backup {backup_id} deleted")


def backup_usage(client: AgentClient):
    usage = client.request("backup_usage")
    console.print(f"Backups: {usage['backup_count']}")
    console.print(f"Total size: {_format_size(usage['total_size'])}")
    console.print(f"Oldest: {_format_time(usage['oldest'])}")
    console.print(f"Newest: {_format_time(usage['newest'])}")


def rollback(client: AgentClient, backup_id: str, timeout: Optional[float]):
    result = _run_action(
        client,
        f"Rolling back to {backup_id}...",
        "rollback",
        {"id": backup_id, "timeout": timeout},
        timeout=None,
    )
    console.print(f"[green]✓[/green] Rolled back to {backup_id}")
    print_result(result)


def show_history(client: AgentClient, limit: Optional[int]):
    response = client.request("history", {"limit": limit})

    table = Table(title="History")
    table.add_column("Time")
    table.add_column("Action", style="cyan")
    table.add_column("Outcome")
    table.add_column("Profiles", style="magenta")
    table.add_column("Backup", style="dim")
    for entry in response["history"]:
        color = "green" if entry["outcome"] == "committed" else "yellow"
        table.add_row(
            _format_time(entry["timestamp"]),
            entry["action"],
            f"[{color}]{entry['outcome']}[/{color}]",
            ", ".join(entry["profiles"]),
            entry.get("snapshot_id") or "",
        )
    console.print(table)
