"""
Command-line interface for DraftSign.
"""

import asyncio
from pathlib import Path
from typing import Optional
from uuid import UUID

import click
import structlog

from draftsign.config import get_settings
from draftsign.exceptions import DraftSignError
from draftsign.logging_config import configure_logging

logger = structlog.get_logger(__name__)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """DraftSign: AI-assisted contract drafting and e-signature."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    configure_logging("DEBUG" if debug else get_settings().log_level)


def _run(coro_factory) -> None:
    """Run an async command body against an opened gateway."""
    from draftsign.api.dependencies import build_gateway

    async def runner():
        gateway = build_gateway(get_settings())
        await gateway.open()
        try:
            await coro_factory(gateway)
        finally:
            await gateway.close()

    try:
        asyncio.run(runner())
    except DraftSignError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e


# =========================================================================
# Server Commands
# =========================================================================


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host: Optional[str], port: Optional[int], reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting DraftSign API server on {host}:{port}")

    uvicorn.run(
        "draftsign.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


# =========================================================================
# Contract Commands
# =========================================================================


@cli.command()
@click.argument("contract_id", type=click.UUID)
def show(contract_id: UUID) -> None:
    """Show a contract's status, parties and unknowns."""

    async def show_contract(gateway):
        contract = await gateway.get_contract(contract_id)
        tokens = await gateway.tokens_for_contract(contract_id)

        click.echo(f"\n=== {contract.title} ===\n")
        click.echo(f"ID: {contract.id}")
        click.echo(f"Type: {contract.document_type.value}")
        click.echo(f"Status: {contract.status.value}")
        click.echo(f"Version: {contract.version}")
        click.echo(f"Blocks: {len(contract.blocks)}")

        click.echo("\nParties:")
        for party in contract.parties:
            mark = "signed" if party.signed else "unsigned"
            click.echo(f"  {party.role or 'Party'}: {party.name} <{party.email or '-'}> ({mark})")

        if contract.unknowns:
            click.echo(f"\nUnknowns: {', '.join(contract.unknowns)}")

        if tokens:
            click.echo("\nSigning requests:")
            for t in tokens:
                state = "used" if t.used else ("expired" if t.is_expired() else "open")
                click.echo(f"  {t.party} -> {t.recipient_email} ({state})")

    _run(show_contract)


@cli.command()
@click.argument("contract_id", type=click.UUID)
@click.option("--output", "-o", type=click.Path(), help="Output PDF file")
def export_pdf(contract_id: UUID, output: Optional[str]) -> None:
    """Render a contract to PDF."""
    from draftsign.services.export_service import render_to_pdf

    async def export(gateway):
        contract = await gateway.get_contract(contract_id)
        path = Path(output or f"contract-{contract_id}.pdf")
        path.write_bytes(render_to_pdf(contract))
        click.echo(f"Wrote {path}")

    _run(export)


@cli.command()
def purge_tokens() -> None:
    """Delete expired signing tokens."""

    async def purge(gateway):
        removed = await gateway.purge_expired_tokens()
        click.echo(f"Removed {removed} expired signing tokens.")

    _run(purge)


# =========================================================================
# Database Commands
# =========================================================================


@cli.command()
def init_db() -> None:
    """Create the database schema."""
    from draftsign.storage.postgres import PostgresGateway

    settings = get_settings()
    if settings.storage_backend != "postgres":
        raise click.ClickException("init-db needs STORAGE_BACKEND=postgres")

    async def init():
        gateway = PostgresGateway(settings.postgres_url)
        await gateway.open()
        try:
            await gateway.create_schema()
        finally:
            await gateway.close()

    click.echo("Initializing database schema...")
    try:
        asyncio.run(init())
    except DraftSignError as e:
        raise click.ClickException(f"{e.code}: {e.message}") from e
    click.echo("Schema ready.")


@cli.command()
def health() -> None:
    """Check service health."""
    from draftsign.services.llm_service import get_llm_service
    from draftsign.storage.redis_cache import get_draft_sequencer

    click.echo("\n=== Service Health Check ===\n")

    llm_status = get_llm_service().health_check()
    click.echo("LLM Services:")
    for provider, status in llm_status.items():
        click.echo(f"  {provider}: {'ok' if status else 'not configured'}")

    redis_status = get_draft_sequencer().health_check()
    click.echo(f"\nRedis: {'ok' if redis_status else 'unreachable'}")

    async def check_storage(gateway):
        ok = await gateway.health_check()
        click.echo(f"Storage ({get_settings().storage_backend}): {'ok' if ok else 'unreachable'}")

    _run(check_storage)


@cli.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()

    click.echo("\n=== DraftSign Configuration ===\n")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Debug: {settings.debug}")
    click.echo(f"\nPrimary LLM: {settings.primary_llm_provider} ({settings.primary_llm_model})")
    click.echo(f"Fallback LLM: {settings.fallback_llm_provider} ({settings.fallback_llm_model})")
    click.echo(f"\nStorage: {settings.storage_backend}")
    click.echo(f"Redis sequencer: {'enabled' if settings.redis_enabled else 'disabled'}")
    click.echo(f"Public URL: {settings.public_base_url}")
    click.echo(f"Signing link lifetime: {settings.signing_token_ttl_hours}h")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
