"""SignFlow CLI — agreement signing from the command line.

Usage:
    signflow create agreement.json [--out unsigned.pdf]
    signflow show <document-id> --token <token> [--out copy.pdf]
    signflow verify-identity <document-id> --token <token> --email me@gmail.com
    signflow sign <document-id> --token <token> --email me@gmail.com --image sig.png
    signflow reissue <document-id>
    signflow serve [--port 8400]
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .access import AccessController
from .config import SignFlowConfig
from .embedder import count_pages
from .errors import SignFlowError
from .models import Agreement, DocumentStatus
from .store import FileRecordStore

console = Console()


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(),
    default=None,
    help="SignFlow data directory (default: ~/.signflow)",
)
@click.option(
    "--email-domain",
    default=None,
    help="Required counterparty email domain (empty string allows any)",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    data_dir: Optional[str],
    email_domain: Optional[str],
    verbose: bool,
) -> None:
    """SignFlow — agreements, signing links, signed PDFs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    config = SignFlowConfig.from_env(Path(data_dir) if data_dir else None)
    if email_domain is not None:
        config = config.model_copy(update={"required_email_domain": email_domain})

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["controller"] = AccessController(FileRecordStore(config.data_dir), config=config)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/]")
    sys.exit(1)


def _write_pdf(out: Optional[str], pdf: bytes) -> Optional[Path]:
    if not out:
        return None
    path = Path(out)
    path.write_bytes(pdf)
    return path


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@main.command()
@click.argument("agreement_file", type=click.Path(exists=True))
@click.option("--out", default=None, type=click.Path(), help="Write the unsigned PDF here")
@click.pass_context
def create(ctx: click.Context, agreement_file: str, out: Optional[str]) -> None:
    """Create a document from an agreement JSON file."""
    controller: AccessController = ctx.obj["controller"]

    try:
        data = json.loads(Path(agreement_file).read_text(encoding="utf-8"))
        agreement = Agreement.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError) as exc:
        _fail(f"Invalid agreement file: {exc}")

    try:
        result = controller.create(agreement)
    except SignFlowError as exc:
        _fail(str(exc))

    written = _write_pdf(out, result.pdf)
    console.print(
        Panel(
            f"[bold green]Document created![/]\n\n"
            f"  Title:    {agreement.title}\n"
            f"  ID:       {result.document_id}\n"
            f"  Client:   {agreement.client_name} <{agreement.client_email}>\n"
            f"  Pages:    {count_pages(result.pdf)}\n"
            f"  Token:    {result.token}\n"
            f"  Link:     {result.signing_url}\n"
            f"  PDF:      {written or '(not written)'}",
            title="SignFlow",
            border_style="green",
        )
    )


# ---------------------------------------------------------------------------
# Show
# ---------------------------------------------------------------------------

@main.command()
@click.argument("document_id")
@click.option("--token", required=True, help="Signing token")
@click.option("--out", default=None, type=click.Path(), help="Write the current PDF here")
@click.pass_context
def show(ctx: click.Context, document_id: str, token: str, out: Optional[str]) -> None:
    """Show a document's status (token-gated)."""
    controller: AccessController = ctx.obj["controller"]
    try:
        view = controller.authorize_read(document_id, token)
    except SignFlowError as exc:
        _fail(str(exc))

    status_color = "green" if view.status == DocumentStatus.SIGNED else "yellow"
    table = Table(title=f"Document: {view.title}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", view.document_id)
    table.add_row("Client", view.client_name or "—")
    table.add_row("Status", f"[{status_color}]{view.status.value}[/]")
    table.add_row(
        "Signed",
        view.signed_at.strftime("%Y-%m-%d %H:%M:%S UTC") if view.signed_at else "—",
    )
    table.add_row("Pages", str(count_pages(view.pdf)))
    written = _write_pdf(out, view.pdf)
    if written:
        table.add_row("Written to", str(written))
    console.print(table)


# ---------------------------------------------------------------------------
# Identity gate
# ---------------------------------------------------------------------------

@main.command("verify-identity")
@click.argument("document_id")
@click.option("--token", required=True, help="Signing token")
@click.option("--email", required=True, help="Email of the person signing")
@click.pass_context
def verify_identity(ctx: click.Context, document_id: str, token: str, email: str) -> None:
    """Check an email against the invited counterparty."""
    controller: AccessController = ctx.obj["controller"]
    try:
        ok = controller.verify_identity(document_id, token, email)
    except SignFlowError as exc:
        _fail(str(exc))

    if ok:
        console.print(f"[bold green]Identity confirmed[/] for {email.strip()}")
    else:
        record = controller.store.get(document_id)
        _fail(
            "Access denied. This document is exclusively assigned to an invited "
            f"@{controller.expected_domain(record)} address."
        )


# ---------------------------------------------------------------------------
# Sign
# ---------------------------------------------------------------------------

@main.command()
@click.argument("document_id")
@click.option("--token", required=True, help="Signing token")
@click.option("--email", required=True, help="Email of the person signing")
@click.option("--image", required=True, type=click.Path(exists=True), help="Signature image")
@click.option("--out", default=None, type=click.Path(), help="Write the signed PDF here")
@click.pass_context
def sign(
    ctx: click.Context,
    document_id: str,
    token: str,
    email: str,
    image: str,
    out: Optional[str],
) -> None:
    """Sign a document with a signature image."""
    controller: AccessController = ctx.obj["controller"]
    try:
        record = controller.sign(document_id, token, Path(image).read_bytes(), email)
    except SignFlowError as exc:
        _fail(str(exc))

    written = _write_pdf(out, record.pdf)
    console.print(
        Panel(
            f"[bold green]Document signed![/]\n\n"
            f"  Document: {record.title}\n"
            f"  ID:       {record.document_id}\n"
            f"  Signer:   {record.signer_email}\n"
            f"  Signed:   {record.signed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}\n"
            f"  Pages:    {count_pages(record.pdf)}\n"
            f"  Status:   {record.status.value}\n"
            f"  PDF:      {written or '(not written)'}",
            title="SignFlow",
            border_style="green",
        )
    )


# ---------------------------------------------------------------------------
# Reissue
# ---------------------------------------------------------------------------

@main.command()
@click.argument("document_id")
@click.pass_context
def reissue(ctx: click.Context, document_id: str) -> None:
    """Generate a new signing link; the old one stops working."""
    controller: AccessController = ctx.obj["controller"]
    config: SignFlowConfig = ctx.obj["config"]
    try:
        token = controller.issue(document_id)
    except SignFlowError as exc:
        _fail(str(exc))

    console.print(
        Panel(
            f"[bold]New signing link[/]\n\n"
            f"  Token: {token}\n"
            f"  Link:  {config.signing_url(document_id, token)}",
            title="SignFlow",
            border_style="cyan",
        )
    )


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8400, help="Port")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the SignFlow API server."""
    import os

    import uvicorn

    config: SignFlowConfig = ctx.obj["config"]
    os.environ["SIGNFLOW_DATA_DIR"] = str(config.data_dir)
    os.environ["SIGNFLOW_EMAIL_DOMAIN"] = config.required_email_domain

    console.print(f"[bold]SignFlow API[/] listening on [cyan]http://{host}:{port}[/]")
    console.print(f"[dim]Data directory: {config.data_dir}[/]\n")
    uvicorn.run("signflow.api:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
