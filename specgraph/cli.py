"""Typer-based CLI for specgraph."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__, config
from .cli_groups import link_grp, plan_grp, search_grp
from .errors import InvalidInputError, SpecGraphError
from .models import AskResult, BatchPlan, ImpactReport, ReadyPlan, SearchMode, SearchResult
from .orchestrator import SpecGraph
from .spec_store import SpecStore, incoming_edges

app = typer.Typer(
    help="specgraph: hybrid search, impact analysis, and task planning over a spec graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
app.add_typer(search_grp, name="search")
app.add_typer(plan_grp, name="plan")
app.add_typer(link_grp, name="link")

console = Console()
err_console = Console(stderr=True)


class OutputFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"specgraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    spec_root: Path = typer.Option(config.SPEC_ROOT, "--spec-root", help="Directory holding spec markdown and metadata."),
    index_db: Path = typer.Option(config.INDEX_DB, "--index", help="Search index database file."),
):
    """specgraph: local-first retrieval and graph analysis for specification nodes."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = {"spec_root": spec_root, "index_db": index_db}


# ===================================================================
# Helpers
# ===================================================================

def _store(ctx: typer.Context) -> SpecStore:
    obj = ctx.obj or {}
    return SpecStore(Path(obj.get("spec_root", config.SPEC_ROOT)))


def _open_graph(ctx: typer.Context) -> SpecGraph:
    obj = ctx.obj or {}
    return SpecGraph(_store(ctx), obj.get("index_db", config.INDEX_DB))


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except SpecGraphError as exc:
        err_console.print(f"[red]error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


def _echo_json(result: Any) -> None:
    typer.echo(json.dumps(asdict(result), indent=2, ensure_ascii=False))


def _print_list(title: str, values: List[str]) -> None:
    console.print(f"[bold]{title}:[/bold]")
    if not values:
        console.print("  (none)")
    for value in values:
        console.print(f"  - {escape(value)}")


# ===================================================================
# init
# ===================================================================

@app.command("init")
def init(
    ctx: typer.Context,
    sync: bool = typer.Option(False, "--sync", help="Also refresh titles and body paths from markdown."),
):
    """Create or refresh .meta.json records for every markdown body."""
    store = _store(ctx)
    if not store.spec_root.exists():
        raise typer.BadParameter(f"Spec directory '{store.spec_root}' does not exist.")
    summary = store.sync_markdown(sync_titles=sync)
    typer.echo(
        f"init: created={summary.created} updated={summary.updated} "
        f"skipped={summary.skipped} errors={summary.errors}"
    )


# ===================================================================
# search
# ===================================================================

@search_grp.command("index")
def search_index(
    ctx: typer.Context,
    rebuild: bool = typer.Option(False, "--rebuild", help="Drop the index and re-chunk every node."),
):
    """Bring the search index in line with the spec tree."""
    with _cli_errors(), _open_graph(ctx) as graph:
        if not graph.store.spec_root.exists():
            typer.echo(f"search index: {graph.store.spec_root}/ directory not found")
            return
        summary = graph.reindex(rebuild=rebuild)
        for message in graph.snapshot.errors:
            err_console.print(f"[yellow]skipped:[/yellow] {escape(message)}")
    typer.echo(
        f"search index summary: indexed={summary.indexed} "
        f"skipped={summary.skipped} deleted={summary.deleted}"
    )


@search_grp.command("query")
def search_query(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Free-text query."),
    top_k: int = typer.Option(10, "--top-k", "-k", min=1, help="Maximum number of hits."),
    mode: SearchMode = typer.Option(SearchMode.HYBRID, "--mode", help="lexical or hybrid."),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="table or json."),
):
    """Rank spec nodes for a query."""
    with _cli_errors(), _open_graph(ctx) as graph:
        result = graph.search(query, top_k=top_k, mode=mode)
    if output == OutputFormat.JSON:
        _echo_json(result)
    else:
        _print_search(result)


@search_grp.command("doctor")
def search_doctor(ctx: typer.Context):
    """Check the index against the live spec tree (exit 1 on issues)."""
    with _cli_errors(), _open_graph(ctx) as graph:
        report = graph.doctor()
    if report.ok:
        typer.echo("search doctor: ok")
        return
    for issue in report.issues:
        typer.echo(f"search doctor: issue: {issue}")
    typer.echo(f"search doctor summary: {len(report.issues)} issue(s)")
    raise typer.Exit(code=1)


def _print_search(result: SearchResult) -> None:
    console.print(f"query: {escape(result.query)}")
    console.print(f"mode: {result.mode}")
    if not result.hits:
        console.print("hits: (none)")
        return
    table = Table(show_header=True, show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Score", justify="right")
    table.add_column("Terms")
    table.add_column("Snippet", overflow="fold")
    for rank, hit in enumerate(result.hits, start=1):
        table.add_row(
            str(rank),
            hit.node_id,
            escape(hit.title),
            f"{hit.score:.4f}",
            escape(",".join(hit.matched_terms) or "-"),
            escape(hit.snippet),
        )
    console.print(table)


# ===================================================================
# ask
# ===================================================================

@app.command("ask")
def ask(
    ctx: typer.Context,
    question: str = typer.Argument(..., help="Question in plain language."),
    top_k: int = typer.Option(5, "--top-k", "-k", min=1, help="Primary hits to retrieve."),
    mode: SearchMode = typer.Option(SearchMode.HYBRID, "--mode", help="lexical or hybrid."),
    explain: bool = typer.Option(False, "--explain", help="Explain why each node was cited."),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="table or json."),
):
    """Answer a question with citations from the spec graph."""
    with _cli_errors(), _open_graph(ctx) as graph:
        result = graph.ask(question, top_k=top_k, mode=mode, explain=explain)
    if output == OutputFormat.JSON:
        _echo_json(result)
    else:
        _print_ask(result)


def _print_ask(result: AskResult) -> None:
    console.print(f"question: {escape(result.question)}")
    console.print(f"mode: {result.mode}")
    console.print(f"confidence: {result.confidence:.2f}")
    console.print(f"answer: {escape(result.answer)}")
    _print_list("citations", [f"{c.node_id} | {c.title} | {c.path}" for c in result.citations])
    _print_list("evidence", [f"{e.node_id} | score={e.score:.4f} | {e.snippet}" for e in result.evidence])
    if result.gaps:
        _print_list("gaps", result.gaps)
    if result.explanations:
        _print_list("explanations", [f"{x.node_id} | {x.reason}" for x in result.explanations])


# ===================================================================
# impact
# ===================================================================

@app.command("impact")
def impact(
    ctx: typer.Context,
    node_id: str = typer.Argument(..., help="Node to analyse, e.g. SPC-001."),
    depth: int = typer.Option(2, "--depth", "-d", min=0, help="Maximum traversal depth."),
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="table or json."),
):
    """Show dependents, test coverage, conflicts, and review order for a node."""
    with _cli_errors():
        report = _open_graph(ctx).impact(node_id, depth=depth)
    if output == OutputFormat.JSON:
        _echo_json(report)
    else:
        _print_impact(report)


def _print_impact(report: ImpactReport) -> None:
    console.print("[bold]direct_dependencies:[/bold]")
    if not report.direct_dependencies:
        console.print("  (none)")
    for dep in report.direct_dependencies:
        console.print(
            f"  - {dep.to} \\[{dep.edge_type}] status={dep.status} "
            f"confidence={dep.confidence} rationale={escape(dep.rationale)}"
        )
    _print_list("reverse_dependents", report.reverse_dependents)
    _print_list("test_coverage_chain", report.test_coverage_chain)
    _print_list("conflict_risks", report.conflict_risks)
    _print_list("recommended_review_order", report.recommended_review_order)


# ===================================================================
# plan
# ===================================================================

@plan_grp.command("ready")
def plan_ready(
    ctx: typer.Context,
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="table or json."),
):
    """List pending tasks that can start now, and what blocks the rest."""
    plan = _open_graph(ctx).plan_ready()
    if output == OutputFormat.JSON:
        _echo_json(plan)
    else:
        _print_ready(plan)


@plan_grp.command("batches")
def plan_batches(
    ctx: typer.Context,
    output: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", help="table or json."),
):
    """Group pending tasks into batches that can run in parallel."""
    plan = _open_graph(ctx).plan_batches()
    if output == OutputFormat.JSON:
        _echo_json(plan)
    else:
        _print_batches(plan)


def _print_ready(plan: ReadyPlan) -> None:
    _print_list("ready", [f"{t.node_id} | {t.status} | {t.title}" for t in plan.ready])
    _print_list(
        "blocked",
        [f"{t.node_id} | {t.status} | blocked_by={','.join(t.blocked_by)}" for t in plan.blocked],
    )


def _print_batches(plan: BatchPlan) -> None:
    if not plan.batches:
        console.print("batches: (none)")
    for batch in plan.batches:
        table = Table(title=f"batch {batch.batch}", show_header=True)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Status")
        table.add_column("Title")
        for task in batch.tasks:
            table.add_row(task.node_id, task.status, escape(task.title))
        console.print(table)
    _print_list("blocked_or_cyclic", plan.blocked_or_cyclic)


# ===================================================================
# link
# ===================================================================

@link_grp.command("add")
def link_add(
    ctx: typer.Context,
    source: str = typer.Option(..., "--from", help="Source node id."),
    target: str = typer.Option(..., "--to", help="Target node id."),
    edge_type: str = typer.Option(..., "--type", help="depends_on, refines, conflicts_with, tests, or impacts."),
    rationale: str = typer.Option(..., "--rationale", help="Why the link exists."),
    confidence: float = typer.Option(1.0, "--confidence", help="Confidence in [0.0, 1.0]."),
):
    """Add (or update) a confirmed edge."""
    store = _store(ctx)
    with _cli_errors():
        outcome = store.upsert_edge(
            store.load_snapshot(), source, target, edge_type, rationale,
            confidence=confidence, status="confirmed",
        )
    label = "link added" if outcome == "added" else "link updated"
    typer.echo(f"{label}: {source} -> {target} ({edge_type})")


@link_grp.command("remove")
def link_remove(
    ctx: typer.Context,
    source: str = typer.Option(..., "--from", help="Source node id."),
    target: str = typer.Option(..., "--to", help="Target node id."),
    edge_type: str = typer.Option(..., "--type", help="Edge type to remove."),
):
    """Remove an edge."""
    store = _store(ctx)
    with _cli_errors():
        removed = store.remove_edge(store.load_snapshot(), source, target, edge_type)
    if removed:
        typer.echo(f"link removed: {source} -> {target} ({edge_type})")
    else:
        typer.echo(f"link not found: {source} -> {target} ({edge_type})")


@link_grp.command("list")
def link_list(
    ctx: typer.Context,
    node: str = typer.Option(..., "--node", help="Node id."),
):
    """Show outgoing and incoming edges of a node."""
    snapshot = _store(ctx).load_snapshot()
    meta = snapshot.get(node)
    if meta is None:
        err_console.print(f"[red]error:[/red] node not found: {escape(node)}")
        raise typer.Exit(code=1)
    _print_list(
        f"outgoing edges for {node}",
        [
            f"-> {e.to} [{e.edge_type}] status={e.status} confidence={e.confidence} rationale={e.rationale}"
            for e in meta.edges
        ],
    )
    _print_list(
        f"incoming edges for {node}",
        [
            f"<- {source} [{e.edge_type}] status={e.status} confidence={e.confidence} rationale={e.rationale}"
            for source, e in incoming_edges(snapshot, node)
        ],
    )


@link_grp.command("propose")
def link_propose(
    ctx: typer.Context,
    node: Optional[str] = typer.Option(None, "--node", help="Propose links from this node by overlap."),
    source: Optional[str] = typer.Option(None, "--from", help="Source node id for a manual proposal."),
    target: Optional[str] = typer.Option(None, "--to", help="Target node id for a manual proposal."),
    edge_type: str = typer.Option("impacts", "--type", help="Edge type for a manual proposal."),
    rationale: Optional[str] = typer.Option(None, "--rationale", help="Rationale for a manual proposal."),
    confidence: float = typer.Option(0.6, "--confidence", help="Confidence for a manual proposal."),
    limit: int = typer.Option(3, "--limit", min=0, help="Maximum automatic proposals."),
):
    """Propose edges, either one manual edge or automatically by term overlap."""
    with _cli_errors():
        if source and target:
            store = _store(ctx)
            outcome = store.upsert_edge(
                store.load_snapshot(), source, target, edge_type,
                rationale or "manual proposed link",
                confidence=confidence, status="proposed",
            )
            label = "proposal added" if outcome == "added" else "proposal updated"
            typer.echo(f"{label}: {source} -> {target} ({edge_type})")
            return
        if not node:
            raise InvalidInputError("propose requires either --node <ID> or both --from <ID> and --to <ID>")
        proposals = _open_graph(ctx).propose_links(node, limit=limit)
    for p in proposals:
        label = "proposal added" if p.outcome == "added" else "proposal updated"
        typer.echo(f"{label}: {p.source} -> {p.target} (impacts) score={p.score}")
    typer.echo(f"propose summary: node={node} proposed={len(proposals)}")


