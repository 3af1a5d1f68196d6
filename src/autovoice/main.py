import asyncio
import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from autovoice.integrations.anthropic_extractor import AnthropicExtractor
from autovoice.integrations.local_export import LocalExporter
from autovoice.models import ExtractionRequest
from autovoice.pipeline import process_batch

load_dotenv()

app = typer.Typer(no_args_is_help=True)

IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".bmp", ".tiff", ".tif"}


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context):
    """AutoVoice invoice extraction CLI."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def collect_images(paths: list[Path]) -> list[Path]:
    """Expand files and directories into a list of image files.

    Directories are scanned non-recursively and their images sorted by name.
    Explicitly listed files keep their command-line order.

    Raises:
        FileNotFoundError: If a path does not exist
    """
    images: list[Path] = []
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Path not found: {path}")
        if path.is_dir():
            images.extend(
                sorted(
                    p
                    for p in path.iterdir()
                    if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
                )
            )
        elif path.suffix.lower() in IMAGE_EXTENSIONS:
            images.append(path)
    return images


def load_requests(images: list[Path]) -> list[ExtractionRequest]:
    return [ExtractionRequest(image=p.read_bytes(), filename=p.name) for p in images]


@app.command()
def process(
    paths: list[Path] = typer.Argument(
        ..., help="Invoice image files or directories containing them"
    ),
    save_local: Path | None = typer.Option(
        None, "--save-local", help="Append results to a local CSV file"
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print the full batch result as JSON"
    ),
    concurrency: int = typer.Option(
        1, "--concurrency", "-c", min=1, help="Maximum extractions in flight"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", envvar="AUTOVOICE_MODEL", help="Vision model to use"
    ),
    batch_name: str | None = typer.Option(
        None, "--batch-name", "-n", help="Display name for this batch"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log requests and raw model responses"
    ),
):
    """Extract parts, labor and tax from invoice images."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        images = collect_images(paths)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    if not images:
        typer.echo("No supported image files found.")
        return

    anthropic_api_key = os.getenv("ANTHROPIC_API_KEY")
    if not anthropic_api_key:
        typer.echo("Error: ANTHROPIC_API_KEY is not set.", err=True)
        raise typer.Exit(code=1)

    try:
        if model:
            extractor = AnthropicExtractor(api_key=anthropic_api_key, model=model)
        else:
            extractor = AnthropicExtractor(api_key=anthropic_api_key)
    except Exception as e:
        typer.echo(f"Failed to initialize Anthropic extractor: {e}", err=True)
        raise typer.Exit(code=1) from e

    try:
        requests = load_requests(images)
    except OSError as e:
        typer.echo(f"Error reading image: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Processing {len(requests)} invoices...", err=as_json)

    def cli_progress(event_type: str, message: str):
        """Callback to handle progress events and output to CLI."""
        if "error" in event_type or as_json:
            typer.echo(message, err=True)
        else:
            typer.echo(message)

    batch = asyncio.run(
        process_batch(
            requests,
            extractor,
            max_concurrency=concurrency,
            on_progress=cli_progress,
            batch_name=batch_name,
        )
    )

    if save_local:
        try:
            LocalExporter().export(batch.results, save_local)
            typer.echo(f"Saved {len(batch.results)} rows to {save_local}", err=as_json)
        except OSError as e:
            typer.echo(f"Failed to save results to {save_local}: {e}", err=True)

    if as_json:
        typer.echo(batch.model_dump_json(by_alias=True, indent=2))
        return

    summary = batch.summary
    typer.echo(f"Summary for {batch.batch_name}:")
    typer.echo(f"  Parts total: {summary.total_parts:.2f}")
    typer.echo(f"  Labor total: {summary.total_labor:.2f}")
    typer.echo(f"  Tax total:   {summary.total_tax:.2f}")
    typer.echo(
        f"  Invoices: {summary.total_invoices}, "
        f"processed: {summary.processed_count}, "
        f"flagged: {summary.flagged_count}"
    )


def main():
    app()


if __name__ == "__main__":
    main()
