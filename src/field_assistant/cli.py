"""
field-assistant CLI - Guardrail tooling and the API server.

Commands:
    field-assistant scan <text>          Check text for prompt injection
    field-assistant sanitize <file>      Sanitize document text (strip + redact)
    field-assistant validate <file>      Review a model response like the pipeline does
    field-assistant audit <tenant>       Show recent audit records
    field-assistant serve                Run the API with uvicorn
"""

import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import AssistantConfig, ValidatorConfig

app = typer.Typer(help="Guardrail pipeline for the document-grounded field assistant")
console = Console()


def _read_text(value: str) -> str:
    """Treat the argument as a path if it exists, otherwise as literal text."""
    path = Path(value)
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return value


# =============================================================================
# SCAN
# =============================================================================


@app.command()
def scan(
    text: str = typer.Argument(..., help="Text or path to a file to scan"),
):
    """Check text for prompt injection patterns."""
    from .security.prompt_guard import detect_injection, detect_injection_attempt

    content = _read_text(text)
    result = detect_injection(content)
    if not result.is_injection:
        console.print("[bold green]Clean:[/bold green] no injection patterns found")
        return

    table = Table(title="Injection Patterns")
    table.add_column("#", style="bold")
    table.add_column("Pattern")
    for i, pattern in enumerate(detect_injection_attempt(content), 1):
        table.add_row(str(i), pattern)
    console.print(table)
    console.print(f"\n[bold red]Blocked:[/bold red] first match {result.matched_pattern}")
    raise typer.Exit(1)


# =============================================================================
# SANITIZE
# =============================================================================


@app.command()
def sanitize(
    source: str = typer.Argument(..., help="Text or path to a document file"),
    output: Path = typer.Option(None, "--output", "-o", help="Write sanitized text here"),
):
    """Strip hidden characters and redact injection content from document text."""
    from .security.sanitizer import sanitize_document_text

    result = sanitize_document_text(_read_text(source))
    if output:
        output.write_text(result.sanitized, encoding="utf-8")
        console.print(f"[green]Wrote {len(result.sanitized)} chars to {output}[/green]")
    else:
        console.print(result.sanitized, markup=False, highlight=False)

    if result.injection_detected:
        console.print(f"\n[yellow]{result.redactions} redaction(s) applied[/yellow]")


# =============================================================================
# VALIDATE
# =============================================================================


@app.command()
def validate(
    response: str = typer.Argument(..., help="Model response text or path to a file"),
    document: list[str] = typer.Option(
        None, "--document", "-d", help="Uploaded document name (repeatable)"
    ),
    source: str = typer.Option("", "--source", "-s", help="Evidence text or file for numeric checks"),
    query: str = typer.Option("", "--query", "-q", help="The user's question"),
    code_mode: bool = typer.Option(False, "--code-mode", help="Code-reference mode is active"),
    policy: str = typer.Option("strict", "--policy", help="Paragraph policy: strict or majority"),
):
    """Run the enforcement pipeline on a model response."""
    from .enforcement.pipeline import EnforcementPipeline

    pipeline = EnforcementPipeline(ValidatorConfig(paragraph_policy=policy))
    review = pipeline.review(
        _read_text(response),
        has_documents=bool(document),
        document_names=list(document) if document else None,
        source_text=_read_text(source) if source else "",
        query_text=query,
        code_reference_active=code_mode,
    )

    table = Table(title="Enforcement Review")
    table.add_column("Check", style="bold")
    table.add_column("Result")
    color = {"accepted": "green", "challenged": "yellow"}.get(review.outcome, "red")
    table.add_row("Outcome", f"[{color}]{review.outcome}[/{color}]")
    if review.reason:
        table.add_row("Reason", review.reason)
    for pattern in review.matched_patterns:
        table.add_row("Matched", pattern)
    for claim in review.unverified_claims:
        table.add_row("Unverified", claim)
    for reason in review.human_review_reasons:
        table.add_row("Human review", reason)
    console.print(table)

    if not review.valid:
        console.print(f"\n[bold red]Delivered instead:[/bold red] {review.content}")
        raise typer.Exit(1)


# =============================================================================
# AUDIT
# =============================================================================


@app.command()
def audit(
    tenant_id: str = typer.Argument(..., help="Tenant to list"),
    limit: int = typer.Option(20, help="Number of records"),
    db_path: Path = typer.Option(None, "--db", help="SQLite database (default: from environment)"),
):
    """Show the most recent audit records for a tenant."""
    from .audit.store import SQLiteAuditStore

    store = SQLiteAuditStore(db_path or AssistantConfig.from_env().db_path)
    records = store.list_records(tenant_id, limit=limit)
    if not records:
        console.print(f"[yellow]No audit records for {tenant_id}[/yellow]")
        return

    table = Table(title=f"Audit: {tenant_id}")
    table.add_column("Created")
    table.add_column("State", style="bold")
    table.add_column("Blocked")
    table.add_column("Chunks")
    table.add_column("Reason")
    for record in records:
        table.add_row(
            record.created_at[:19],
            record.terminal_state,
            "yes" if record.blocked else "no",
            str(len(record.chunk_ids)),
            (record.block_reason or "")[:80],
        )
    console.print(table)


# =============================================================================
# SERVE
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the field assistant API with uvicorn."""
    import uvicorn

    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    console.print(f"[bold blue]field-assistant[/bold blue] serving on http://{host}:{port}")
    uvicorn.run(
        "field_assistant.api.gateway:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=level.lower(),
    )


if __name__ == "__main__":
    app()
