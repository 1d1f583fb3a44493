"""Command groups for the ``sg`` CLI.

  sg search   build, query and check the search index
  sg plan     dependency-aware task planning
  sg link     manage edges between spec nodes
"""

from __future__ import annotations

import typer

# ── Search group ─────────────────────────────────────────────
search_grp = typer.Typer(
    help="Search: build, query, and check the hybrid search index.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ── Planning group ───────────────────────────────────────────
plan_grp = typer.Typer(
    help="Plan: ready tasks and parallel task batches.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ── Link group ───────────────────────────────────────────────
link_grp = typer.Typer(
    help="Link: add, remove, list, and propose edges between nodes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
