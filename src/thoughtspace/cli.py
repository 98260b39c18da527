"""Admin CLI for a thought space: inspect traffic, lineage, the query log, and run decay."""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import ThoughtSpaceConfig
from .constants import DEFAULT_HIGHWAY_LIMIT, DEFAULT_HIGHWAY_MIN_ACCESS, DEFAULT_HIGHWAY_MIN_USERS
from .engine import ThoughtSpace
from .errors import ThoughtSpaceError
from .timeutil import format_age, parse_since

console = Console()


def _get_space(ctx) -> ThoughtSpace:
    """Thought space for this invocation (injected via ctx.obj in tests)."""
    if ctx.obj.get("space") is None:
        config = ThoughtSpaceConfig.from_env(
            path=ctx.obj.get("data_dir"),
            backend=ctx.obj.get("backend"),
        )
        space = ThoughtSpace.from_config(config)
        ctx.obj["space"] = space
        ctx.call_on_close(space.close)
    return ctx.obj["space"]


def _fail(ctx, error: Exception):
    console.print(f"[red]Error:[/red] {error}")
    ctx.exit(1)


@click.group()
@click.option(
    "--data-dir",
    envvar="THOUGHTSPACE_PATH",
    type=click.Path(path_type=Path),
    help="Path to the thought space data directory",
)
@click.option(
    "--backend",
    envvar="THOUGHTSPACE_BACKEND",
    type=click.Choice(["sqlite", "qdrant", "memory"]),
    help="Vector store backend",
)
@click.pass_context
def cli(ctx, data_dir, backend):
    """Thoughtspace - shared agent memory administration."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("data_dir", data_dir)
    ctx.obj.setdefault("backend", backend)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx, as_json):
    """Show thought and query counts plus decay state."""
    try:
        stats = _get_space(ctx).stats()
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(stats, indent=2))
        return
    console.print(f"Thoughts: [bold]{stats['thoughts']}[/bold]")
    console.print(f"Logged queries: [bold]{stats['queries']}[/bold]")
    last = stats["last_decay"] or "never"
    console.print(f"Decay passes: {stats['decay_passes']} (last: {last})")


@cli.command()
@click.option("--min-access", type=int, default=DEFAULT_HIGHWAY_MIN_ACCESS, help="Minimum access count")
@click.option("--min-users", type=int, default=DEFAULT_HIGHWAY_MIN_USERS, help="Minimum distinct agents")
@click.option("-n", "--limit", type=int, default=DEFAULT_HIGHWAY_LIMIT, help="Max highways to show")
@click.option("--context", default=None, help="Only highways near this text")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def highways(ctx, min_access, min_users, limit, context, as_json):
    """List the most travelled thoughts."""
    try:
        found = _get_space(ctx).get_highways(
            min_access=min_access, min_users=min_users, limit=limit, context=context
        )
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps([h.model_dump(mode="json") for h in found], indent=2))
        return
    if not found:
        console.print("[dim]No highways yet[/dim]")
        return

    table = Table(title="Highways")
    table.add_column("Thought", style="cyan")
    table.add_column("Preview")
    table.add_column("Accesses", justify="right")
    table.add_column("Agents", justify="right")
    table.add_column("Traffic", justify="right", style="yellow")
    table.add_column("Weight", justify="right", style="green")
    for h in found:
        table.add_row(
            h.id[:8],
            h.content_preview,
            str(h.access_count),
            str(h.unique_users),
            str(h.traffic_score),
            f"{h.pheromone_weight:.2f}",
        )
    console.print(table)


@cli.command()
@click.argument("thought_id")
@click.option("--depth", type=int, default=10, help="Max hops in each direction")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def lineage(ctx, thought_id, depth, as_json):
    """Show ancestors and descendants of a thought."""
    try:
        result = _get_space(ctx).get_lineage(thought_id, max_depth=depth)
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    table = Table(title=f"Lineage of {thought_id[:8]}")
    table.add_column("Depth", justify="right")
    table.add_column("Thought", style="cyan")
    table.add_column("Type")
    table.add_column("Contributor")
    table.add_column("Preview")
    table.add_column("Superseded by", style="yellow")
    for node in result.chain:
        marker = "[bold]" if node.id == result.id else ""
        table.add_row(
            str(node.depth),
            f"{marker}{node.id[:8]}",
            node.thought_type,
            node.contributor,
            node.content_preview,
            node.superseded_by[:8] if node.superseded_by else "",
        )
    console.print(table)
    if result.truncated:
        console.print(f"[yellow]![/yellow] Truncated at depth {depth}")


@cli.command()
@click.pass_context
def decay(ctx):
    """Run one pheromone decay pass now."""
    try:
        updated = _get_space(ctx).run_decay_pass()
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return
    console.print(f"[green]✓[/green] Decayed {updated} thoughts")


@cli.command()
@click.option("--agent", default=None, help="Only this agent's queries")
@click.option("--session", default=None, help="Only this session's queries")
@click.option("--since", default=None, help="Only queries since (ISO, '2 hours ago', 'yesterday')")
@click.option("-n", "--limit", type=int, default=20, help="Max entries to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def queries(ctx, agent, session, since, limit, as_json):
    """Show the query log, newest first."""
    try:
        log = _get_space(ctx).query_log
        if session:
            entries = list(reversed(log.read_by_session(session)))[:limit]
        elif agent:
            entries = log.read_by_agent(agent, limit=limit)
        else:
            since_iso = parse_since(since).isoformat() if since else None
            entries = log.read_recent(limit=limit, since=since_iso)
    except (ValueError, ThoughtSpaceError) as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return
    if not entries:
        console.print("[dim]No queries logged[/dim]")
        return

    table = Table(title="Query log")
    table.add_column("When", style="dim")
    table.add_column("Agent", style="cyan")
    table.add_column("Session")
    table.add_column("Query")
    table.add_column("Results", justify="right")
    for entry in entries:
        table.add_row(
            format_age(entry.timestamp),
            entry.agent_id,
            entry.session_id[:8],
            entry.query_text[:60],
            str(entry.result_count),
        )
    console.print(table)


@cli.command()
@click.option("-n", "--limit", type=int, default=20, help="Max thoughts to show")
@click.option("--offset", type=int, default=0, help="Skip this many thoughts")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def uncategorized(ctx, limit, offset, as_json):
    """List thoughts still waiting for a category."""
    try:
        thoughts = _get_space(ctx).list_uncategorized(limit=limit, offset=offset)
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps([t.model_dump(mode="json") for t in thoughts], indent=2))
        return
    if not thoughts:
        console.print("[green]Every thought has a category[/green]")
        return
    for t in thoughts:
        console.print(f"[cyan]{t.id}[/cyan] {t.contributor_name}: {t.preview()}")


@cli.command()
@click.argument("thought_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx, thought_id, as_json):
    """Show one thought with its telemetry."""
    try:
        thought = _get_space(ctx).get_thought(thought_id)
    except ThoughtSpaceError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps(thought.model_dump(mode="json"), indent=2))
        return
    console.print(f"[bold cyan]{thought.id}[/bold cyan] ({thought.thought_type})")
    console.print(f"By {thought.contributor_name} [dim]({thought.contributor_id})[/dim], {format_age(thought.created_at)}")
    if thought.source_ids:
        console.print(f"Sources: {', '.join(thought.source_ids)}")
    if thought.tags:
        console.print(f"Tags: {', '.join(thought.tags)}")
    if thought.thought_category:
        console.print(f"Category: {thought.thought_category}")
    if thought.quality_flags:
        console.print(f"[yellow]Quality flags:[/yellow] {', '.join(thought.quality_flags)}")
    console.print()
    console.print(thought.content)
    console.print()
    console.print(
        f"Weight [green]{thought.pheromone_weight:.3f}[/green], "
        f"{thought.access_count} accesses by {thought.unique_users} agents, "
        f"last accessed {format_age(thought.last_accessed)}"
    )


def main():
    cli()


if __name__ == "__main__":
    main()
