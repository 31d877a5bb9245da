"""Command line entry point: ``location-mcp``."""

import click
import uvicorn

from location_mcp.server.app import create_app
from location_mcp.settings import Settings
from location_mcp.utilities.logging import configure_logging, get_logger

logger = get_logger(__name__)


@click.command()
@click.option("--host", default=None, help="Interface to bind (default: LOCATION_MCP_HOST or 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP")
@click.option(
    "--stateless/--stateful",
    default=None,
    help="Fresh server per request, or one session per identity kept in memory",
)
@click.option(
    "--json-response/--sse-response",
    default=None,
    help="Enable JSON responses instead of SSE streams",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level",
)
def main(
    host: str | None,
    port: int | None,
    stateless: bool | None,
    json_response: bool | None,
    log_level: str | None,
) -> None:
    overrides = {
        "host": host,
        "port": port,
        "stateless_http": stateless,
        "json_response": json_response,
        "log_level": log_level.upper() if log_level else None,
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings.log_level)

    if not settings.api_keys:
        logger.warning("No API keys configured; set LOCATION_MCP_API_KEYS to accept requests")

    app = create_app(settings)
    logger.info(
        "Serving MCP on http://%s:%d%s (%s)",
        settings.host,
        settings.port,
        settings.mcp_path,
        "stateless" if settings.stateless_http else "stateful",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
