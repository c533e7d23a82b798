"""Main entry point for the conduit operator CLI.

Sets up the Typer CLI application, wires the resilience context
(Composition Root) and defines the commands.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, TypeVar

import typer
from typing_extensions import Annotated

from conduit.core.api_client import ApiClient
from conduit.core.services.request_pipeline import ResilienceContext
from conduit.domain.models.common import AuthMethod, HttpMethod
from conduit.domain.models.errors import ApiError
from conduit.domain.models.request import RequestDescriptor
from conduit.infrastructure.cli.display import ConsoleDisplay
from conduit.infrastructure.config import settings
from conduit.infrastructure.monitoring.logger_setup import setup_logging
from conduit.infrastructure.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLI_USER_ID = "cli"

display = ConsoleDisplay()

app = typer.Typer(
    name="conduit",
    help="conduit: resilient outbound API calls (rate limiting, circuit breaking, retry, caching).",
    add_completion=False,
)


# --- Composition Root ---

def build_context() -> ResilienceContext:
    """Creates the resilience context from configuration."""
    return ResilienceContext.create()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Runs an async command body from a sync Typer command."""
    return asyncio.run(coro)


def parse_query(pairs: Optional[List[str]]) -> Optional[Dict[str, str]]:
    """Turns repeated ``key=value`` options into a dict."""
    if not pairs:
        return None
    query: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{pair}'", param_hint="--query")
        query[key] = value
    return query


def parse_body(data: Optional[str]) -> Any:
    if data is None:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Invalid JSON: {e}", param_hint="--data") from e


# --- CLI Commands ---

@app.command()
def providers():
    """List configured providers and their auth methods."""
    registry = ProviderRegistry.from_settings()
    display.display_providers(registry.enabled_configs())


@app.command()
def status():
    """Show rate limits and circuit breakers for a freshly built client.

    Every invocation starts a new process, so buckets are full and no breaker
    has been used yet. The output reflects configured capacity, not traffic
    from earlier commands.
    """
    async def _status() -> Dict[str, Any]:
        context = build_context()
        try:
            return ApiClient(context).get_status()
        finally:
            await context.aclose()

    display.display_status(run_async(_status()))


@app.command()
def request(
    provider: Annotated[str, typer.Argument(help="Provider name, e.g. 'hubspot'.")],
    path: Annotated[str, typer.Argument(help="Path relative to the provider's base URL.")],
    method: Annotated[HttpMethod, typer.Option("--method", "-X", case_sensitive=False, help="HTTP method.")] = HttpMethod.GET,
    operation: Annotated[str, typer.Option("--operation", "-o", help="Operation name used for the circuit breaker.")] = "cli_request",
    query: Annotated[Optional[List[str]], typer.Option("--query", "-q", help="Query parameter as key=value. Repeatable.")] = None,
    data: Annotated[Optional[str], typer.Option("--data", "-d", help="JSON request body.")] = None,
    no_retry: Annotated[bool, typer.Option("--no-retry", help="Make a single attempt.")] = False,
):
    """Make one call to a provider using its system API key."""
    descriptor = RequestDescriptor(
        provider=provider,
        user_id=CLI_USER_ID,
        path=path,
        operation=operation,
        method=method,
        query=parse_query(query),
        body=parse_body(data),
        auth_method=AuthMethod.SYSTEM,
        skip_retry=no_retry,
    )

    async def _request():
        context = build_context()
        try:
            return await ApiClient(context).request(descriptor)
        finally:
            await context.aclose()

    try:
        response = run_async(_request())
    except ApiError as e:
        logger.debug(f"Request failed: {e!r}")
        display.display_error(f"{e.code.value}: {e.message}")
        raise typer.Exit(code=1)
    except ValueError as e:
        display.display_error(str(e))
        raise typer.Exit(code=2)

    display.display_response(response)


@app.callback()
def main_callback(
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level (default from config).")] = None,
    config: Annotated[Optional[Path], typer.Option("--config", help="Path to a YAML config file.")] = None,
):
    """Load configuration and set up logging before any command runs."""
    if config is not None:
        settings.reload_configuration(config_file=config)
    setup_logging(
        log_level=log_level or settings.get_log_level(),
        log_file=settings.get_log_file(),
    )


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
