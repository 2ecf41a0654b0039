"""Remove remote media objects left behind by failed cleanups.

Why:
    Deleting a file removes its record first and the remote object second; an
    upload whose record could not be written removes the stored object again.
    When such a removal fails, the storage key lands in the orphan ledger
    (`media_orphans`). This tool retries those removals and forgets every key
    that is gone.

Usage:
    python -m backend.tools.reconcile_media --db-dsn postgresql://... --limit 200

    SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set. `--dry-run` lists
    the pending keys without touching storage.

Notes:
    - Idempotent: keys removed on a previous run are simply gone from the
      ledger; removing an already missing object succeeds on Supabase.
"""

from __future__ import annotations

import logging
from typing import Optional

import click

from backend.files.media import MediaSettings, NullMediaStore
from backend.files.service import FileManagementService
from backend.web.storage_wiring import build_media_store


def _build_service(db_dsn: Optional[str]) -> FileManagementService:
    try:
        from backend.files.repo_db import DBFilesRepo

        repo = DBFilesRepo(db_dsn)
    except RuntimeError as exc:
        raise click.ClickException(str(exc))
    settings = MediaSettings.from_env()
    media = build_media_store(settings)
    if isinstance(media, NullMediaStore):
        raise click.ClickException("Media storage is not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)")
    return FileManagementService(repo=repo, media=media, settings=settings)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", envvar="FILES_DATABASE_URL", help="DSN of the files database (default: FILES_DATABASE_URL / DATABASE_URL).")
@click.option("--limit", type=click.IntRange(min=1), default=100, show_default=True, help="Maximum orphans to process.")
@click.option("--dry-run", is_flag=True, help="Only list pending keys.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(db_dsn: Optional[str], limit: int, dry_run: bool, verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if dry_run:
        try:
            from backend.files.repo_db import DBFilesRepo

            keys = DBFilesRepo(db_dsn).list_orphans(limit)
        except RuntimeError as exc:
            raise click.ClickException(str(exc))
        for key in keys:
            click.echo(key)
        click.echo(f"{len(keys)} orphan(s) pending.")
        return

    service = _build_service(db_dsn)
    result = service.reconcile_orphans(limit)
    click.echo(f"Removed {result['removed']} orphan(s); {result['failed']} still pending.")
    if result["failed"]:
        raise SystemExit(1)


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
