"""
Command-line interface for LicenseIQ.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import click
import structlog
from pydantic import ValidationError

from licenseiq.config import configure_logging, get_settings

logger = structlog.get_logger(__name__)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """LicenseIQ: royalty rule synthesis for license contracts."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    configure_logging("DEBUG" if debug else None)


def _load_json_file(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")


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

    click.echo(f"Starting LicenseIQ API server on {host}:{port}")

    uvicorn.run(
        "licenseiq.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


# =========================================================================
# Synthesis Commands
# =========================================================================


@cli.command()
@click.argument("entities_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--contract-id", "-c", required=True, help="Contract the rules belong to")
@click.option("--run-id", "-r", required=True, help="Extraction run identifier")
@click.option(
    "--graph-nodes",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with knowledge graph nodes",
)
@click.option("--output", "-o", type=click.Path(), help="Output file for results")
def synthesize(
    entities_json: str,
    contract_id: str,
    run_id: str,
    graph_nodes: Optional[str],
    output: Optional[str],
) -> None:
    """Synthesize and store royalty rules from an entities JSON file."""
    from licenseiq.models.entity import ExtractedEntity, GraphNode
    from licenseiq.pipeline.orchestrator import get_rule_synthesis_pipeline

    raw_entities = _load_json_file(entities_json)
    if isinstance(raw_entities, dict):
        raw_entities = raw_entities.get("entities", [])
    raw_nodes = _load_json_file(graph_nodes) if graph_nodes else []

    try:
        entities = [ExtractedEntity.model_validate(e) for e in raw_entities]
        nodes = [GraphNode.model_validate(n) for n in raw_nodes]
    except ValidationError as e:
        raise click.ClickException(f"Invalid input: {e}")

    async def run_synthesis():
        pipeline = get_rule_synthesis_pipeline()

        click.echo(f"Synthesizing rules from {len(entities)} entities...")

        result = await pipeline.synthesize(
            entities=entities,
            graph_nodes=nodes,
            contract_id=contract_id,
            run_id=run_id,
        )

        if result.used_context_fallback:
            click.echo("No royalty entities found; inferred rules from contract context.")

        click.echo(f"\nRules stored: {len(result.rules)}")
        click.echo(f"Low confidence: {len(result.low_confidence_rules)}")
        click.echo(f"Average confidence: {result.average_confidence:.2%}")

        for rule in result.rules:
            status = rule.validation_status.value if rule.validation_status else "-"
            click.echo(f"  [{rule.confidence:.2f}] {rule.rule_name} ({rule.rule_type}) {status}")

        for failure in result.failures:
            click.echo(f"Failed {failure.stage}: {failure.unit}: {failure.error}", err=True)

        if output:
            Path(output).write_text(json.dumps(result.to_dict(), indent=2))
            click.echo(f"\nResults written to: {output}")

    asyncio.run(run_synthesis())


@cli.command()
@click.option("--contract-id", "-c", required=True, help="Contract ID")
@click.option("--status", type=click.Choice(["pending", "validated", "failed", "approved"]))
def rules(contract_id: str, status: Optional[str]) -> None:
    """List stored rule definitions for a contract."""
    from licenseiq.models.rule import ValidationStatus
    from licenseiq.storage.postgres import get_postgres_adapter

    async def list_rules():
        store = get_postgres_adapter()
        rows = await store.list_rule_definitions(
            contract_id,
            validation_status=ValidationStatus(status) if status else None,
        )

        click.echo(f"\n=== Rules for {contract_id} ===\n")

        if not rows:
            click.echo("No rules found.")
            return

        for row in rows:
            click.echo(
                f"  [{row.get('confidence') or 0:.2f}] {row['rule_name']} "
                f"({row['rule_type']}) {row.get('validation_status')}"
            )

    asyncio.run(list_rules())


# =========================================================================
# Term Mapping Commands
# =========================================================================


@cli.command()
@click.option("--contract-id", "-c", required=True, help="Contract ID")
def mappings(contract_id: str) -> None:
    """Show confirmed ERP term mappings for a contract."""
    from licenseiq.storage.postgres import get_postgres_adapter

    async def list_mappings():
        store = get_postgres_adapter()
        confirmed = await store.get_confirmed_term_mappings(contract_id)

        click.echo(f"\n=== Confirmed Term Mappings for {contract_id} ===\n")

        if not confirmed:
            click.echo("No confirmed mappings.")
            return

        for mapping in confirmed:
            entity = f" [{mapping.erp_entity_name}]" if mapping.erp_entity_name else ""
            click.echo(
                f"  [{mapping.confidence:.2f}] {mapping.contract_term} -> "
                f"{mapping.erp_field_name}{entity}"
            )

    asyncio.run(list_mappings())


@cli.command("format-term")
@click.argument("term", type=str)
@click.option("--contract-id", "-c", required=True, help="Contract ID")
def format_term(term: str, contract_id: str) -> None:
    """Show a term with its ERP field name."""
    from licenseiq.pipeline.term_enrichment import get_term_enricher

    async def run_format():
        enricher = get_term_enricher()
        click.echo(await enricher.format_term(term, contract_id))

    asyncio.run(run_format())


# =========================================================================
# Status Commands
# =========================================================================


@cli.command()
def health() -> None:
    """Check service health."""
    from licenseiq.services.llm_service import get_llm_service
    from licenseiq.storage.postgres import get_postgres_adapter

    click.echo("\n=== Service Health Check ===\n")

    # LLM
    llm = get_llm_service()
    llm_status = llm.health_check()
    click.echo("LLM Services:")
    for provider, status in llm_status.items():
        status_str = "✓" if status else "✗"
        click.echo(f"  {provider}: {status_str}")

    # PostgreSQL
    postgres_status = asyncio.run(get_postgres_adapter().health_check())
    status_str = "✓" if postgres_status else "✗"
    click.echo(f"\nPostgreSQL: {status_str}")

    # Settings
    settings = get_settings()
    click.echo(f"\nEnvironment: {settings.environment}")
    click.echo(f"Debug: {settings.debug}")


@cli.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()

    click.echo("\n=== LicenseIQ Configuration ===\n")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Debug: {settings.debug}")
    click.echo(f"Log Level: {settings.log_level}")
    click.echo(f"\nPrimary LLM: {settings.primary_llm_provider} ({settings.primary_llm_model})")
    click.echo(f"Fallback LLM: {settings.fallback_llm_provider} ({settings.fallback_llm_model})")
    click.echo(f"\nConfidence Threshold: {settings.confidence_threshold:.2f}")
    click.echo(f"Context Confidence Factor: {settings.context_confidence_factor:.2f}")
    click.echo(f"Context Entity Limit: {settings.context_entity_limit}")
    click.echo(f"Formula Max Depth: {settings.formula_max_depth}")
    click.echo(f"Abort On Persist Error: {settings.synthesis_abort_on_persist_error}")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
