"""Tangent CLI -- terminal interface for branching conversation trees.

This module is NEVER imported from tangent/__init__.py.
It is only loaded via the ``tangent`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import TYPE_CHECKING

import click

from tangent.cli.formatting import format_error, get_console

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rich.console import Console

    from tangent.llm.protocols import Summarizer
    from tangent.workspace import Workspace


@click.group()
@click.option(
    "--db",
    default=".tangent.db",
    envvar="TANGENT_DB",
    help="Path to tangent database.",
)
@click.option(
    "--user",
    "user_id",
    default="local",
    envvar="TANGENT_USER",
    help="User that owns the conversations.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log lifecycle operations to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, user_id: str, verbose: bool) -> None:
    """Tangent: branch, merge and archive conversation threads."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db
    ctx.obj["user_id"] = user_id
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )


def _get_summarizer() -> Summarizer | None:
    """LLMSummarizer over OpenAIClient when an API key is configured."""
    from tangent.llm.client import API_KEY_ENV, OpenAIClient
    from tangent.llm.summarizer import LLMSummarizer

    if not os.environ.get(API_KEY_ENV):
        return None
    return LLMSummarizer(OpenAIClient())


def _get_workspace(ctx: click.Context) -> Workspace:
    """Open a Workspace from Click context.

    Enrichment runs inline so summaries and titles land before exit.
    """
    from tangent.models.config import TangentConfig
    from tangent.workspace import Workspace

    db_path = ctx.obj["db_path"]
    config = TangentConfig(db_path=db_path, background_enrichment=False)
    return Workspace.open(
        db_path,
        user_id=ctx.obj["user_id"],
        summarizer=_get_summarizer(),
        config=config,
    )


@contextmanager
def _workspace_session(ctx: click.Context) -> Iterator[tuple[Workspace, Console]]:
    """Open a Workspace, yield (workspace, console), and handle cleanup.

    Ensures the workspace is closed on exit and formats exceptions as CLI
    errors.
    """
    console = get_console()
    try:
        ws = _get_workspace(ctx)
        try:
            yield ws, console
        finally:
            ws.close()
    except SystemExit:
        raise
    except Exception as e:
        format_error(str(e), console)
        raise SystemExit(1) from None


# Register subcommands after cli group is defined
from tangent.cli.commands.conversations import delete, list_conversations, new, tree  # noqa: E402
from tangent.cli.commands.messages import context, messages, say  # noqa: E402
from tangent.cli.commands.tangents import archive, branch, fork, merge  # noqa: E402

cli.add_command(new)
cli.add_command(list_conversations)
cli.add_command(tree)
cli.add_command(delete)
cli.add_command(say)
cli.add_command(messages)
cli.add_command(context)
cli.add_command(fork)
cli.add_command(merge)
cli.add_command(archive)
cli.add_command(branch)
