import json
import logging
from typing import Any, Dict, Iterable, Optional

from rich.box import HEAVY, ROUNDED
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from conduit.domain.models.request import ApiResponse
from conduit.infrastructure.providers.config import ProviderConfig

logger = logging.getLogger(__name__)

_STATE_STYLES = {"CLOSED": "green", "HALF_OPEN": "yellow", "OPEN": "bold red"}


class ConsoleDisplay:
    """Renders CLI output with rich."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def display_error(self, error_message: str) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str) -> None:
        self.console.print(f"[blue]Info:[/blue] {info_message}")

    def display_providers(self, configs: Iterable[ProviderConfig]) -> None:
        """Table of providers, their auth methods and system-key availability."""
        table = Table(title="Providers", box=ROUNDED, border_style="cyan")
        table.add_column("Provider", style="bold")
        table.add_column("Name")
        table.add_column("Base URL", style="dim")
        table.add_column("Auth")
        table.add_column("System key")
        table.add_column("Rate limit")

        for config in configs:
            auth = ", ".join(method.value for method in config.auth_methods) or "-"
            if config.system_api_key:
                system_key = "[green]set[/green]" if config.has_system_key() else f"[dim]{config.system_api_key.env_var} unset[/dim]"
            else:
                system_key = "-"
            limit = config.rate_limit
            rate = f"{limit.max_requests}/{limit.window_seconds:g}s" if limit else "-"
            table.add_row(config.name, config.display_name, config.base_url, auth, system_key, rate)

        self.console.print(table)

    def display_status(self, status: Dict[str, Any]) -> None:
        """Rate limiter and circuit breaker snapshot from ApiClient.get_status()."""
        limits = Table(title="Rate limits", box=ROUNDED, border_style="cyan")
        limits.add_column("Provider", style="bold")
        limits.add_column("Available tokens", justify="right")
        limits.add_column("Queued", justify="right")
        for provider, bucket in sorted(status.get("rate_limiter", {}).items()):
            if bucket is None:
                limits.add_row(provider, "[dim]unlimited[/dim]", "-")
            else:
                limits.add_row(provider, str(bucket["available_tokens"]), str(bucket["queue_length"]))
        self.console.print(limits)

        breakers = status.get("circuit_breakers", {})
        if not breakers:
            self.display_info("No circuit breakers have been used yet.")
            return
        table = Table(title="Circuit breakers", box=ROUNDED, border_style="cyan")
        table.add_column("Breaker", style="bold")
        table.add_column("State")
        table.add_column("Failures", justify="right")
        table.add_column("Successes", justify="right")
        table.add_column("Requests", justify="right")
        for key, breaker in sorted(breakers.items()):
            state = breaker["state"]
            stats = breaker["stats"]
            style = _STATE_STYLES.get(state, "white")
            table.add_row(
                key,
                f"[{style}]{state}[/{style}]",
                str(stats["failures"]),
                str(stats["successes"]),
                str(stats["total_requests"]),
            )
        self.console.print(table)

    def display_response(self, response: ApiResponse) -> None:
        """Status line plus the response body, pretty-printed when it is JSON."""
        origin = " (cached)" if response.cached else ""
        style = "green" if 200 <= response.status < 300 else "yellow"
        self.console.print(f"[{style}]HTTP {response.status}[/{style}]{origin}")
        if isinstance(response.data, (dict, list)):
            body = json.dumps(response.data, indent=2, ensure_ascii=False)
            self.console.print(Syntax(body, "json", word_wrap=True))
        elif response.data:
            self.console.print(Text(str(response.data)))
