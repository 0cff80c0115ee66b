"""CLI entry point for the image MCP server."""

import asyncio
import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import ServerConfig, resolve_config
from .errors import ConfigError, UpstreamError

# stdout carries MCP frames on the stdio transport, so everything human goes to stderr.
console = Console(stderr=True)


def setup_logging(verbose: bool = False):
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_time=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.command(name="image-mcp")
@click.option("--api-key", "-k", type=str, help="API key for the chat-completion endpoint")
@click.option("--base-url", "-u", type=str, help="Endpoint base URL, e.g. http://localhost:9292/v1")
@click.option("--model", "-m", type=str, help="Model to request")
@click.option("--streaming/--no-streaming", default=None, help="Stream responses (HTTP transport only)")
@click.option("--timeout", "-t", "timeout_ms", type=int, help="Request timeout in milliseconds")
@click.option("--max-retries", "-r", type=int, help="Retries after a failed request")
@click.option("--http", "use_http", is_flag=True, help="Serve MCP over HTTP/SSE instead of stdio")
@click.option("--host", type=str, help="HTTP bind address")
@click.option("--port", type=int, help="HTTP port")
@click.option("--list-models", is_flag=True, help="List models served by the endpoint and exit")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def cli(list_models: bool, verbose: bool, **options):
    """MCP server that summarizes and compares images.

    Images may be local paths, file:// URLs, http(s) URLs, data URLs or raw
    base64. Each option falls back to its environment variable
    (OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL, OPENAI_TIMEOUT,
    OPENAI_MAX_RETRIES, MCP_USE_HTTP, MCP_HOST, MCP_PORT) and then to a
    built-in default.

    Examples:

        image-mcp  # stdio, for MCP clients that spawn the server

        image-mcp --http --port 8080  # HTTP/SSE with streaming

        image-mcp -u https://api.openai.com/v1 -m gpt-4o --list-models
    """
    setup_logging(verbose)

    try:
        config = resolve_config(options)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    try:
        if list_models:
            asyncio.run(_list_models(config))
            return

        from .server import serve

        asyncio.run(serve(config))

    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down[/yellow]")
        sys.exit(130)
    except UpstreamError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        sys.exit(1)


async def _list_models(config: ServerConfig):
    from .server import create_client

    async with create_client(config) as client:
        models = await client.get_models()

    table = Table(title=f"Models at {config.base_url}")
    table.add_column("ID", style="cyan")
    table.add_column("Owned by")
    for model in models:
        table.add_row(str(model.get("id", "")), str(model.get("owned_by", "")))
    console.print(table)


def main():
    """Entry point."""
    # Before click parses, so .env values are visible as environment fallbacks.
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
