"""CLI entry point for the email purchase ledger."""

import logging
from dataclasses import replace

import click
from dotenv import load_dotenv

from mailledger.cli.ledger import LedgerService
from mailledger.config import PipelineConfig
from mailledger.storage.db import LedgerDatabase

logger = logging.getLogger(__name__)


@click.group()
@click.option("--user", "user_id", default=None, help="Ledger owner (defaults to MAILLEDGER_USER_ID).")
@click.pass_context
def cli(ctx: click.Context, user_id: str | None) -> None:
    """Email purchase ledger — classify, extract, and review purchases."""
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,  # keep CLI output clean; errors still surface
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    config = PipelineConfig.from_env()
    if user_id:
        config = replace(config, user_id=user_id)
    ctx.ensure_object(dict)
    db = LedgerDatabase(db_path=config.db_path)
    ctx.obj = LedgerService(config, db)
    ctx.call_on_close(ctx.obj.close)


# Import and register commands after cli is defined to avoid circular imports.
from mailledger.cli.commands import (  # noqa: E402
    classify,
    exclude,
    extract,
    include,
    newsletters,
    prune,
    purchases,
    stats,
    vendors,
    watch,
)

for _command in (classify, extract, purchases, vendors, exclude, include, newsletters, stats, prune, watch):
    cli.add_command(_command)
