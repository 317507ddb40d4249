"""
Main CLI application for chatbridge.

Usage:
    chatbridge configure [--base-url URL] [--api-key KEY]
    chatbridge models
    chatbridge ask MODEL PROMPT [--max-tokens N] [--temperature T]
    chatbridge config show
    chatbridge version
"""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatbridge import __version__
from chatbridge.config import BridgeConfig, find_config_path, load_config
from chatbridge.llm.types import CancellationToken

logger = logging.getLogger(__name__)

app = typer.Typer(name="chatbridge", help="OpenAI-compatible chat backend bridge")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

console = Console()

_state: dict = {}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def configure_logging(level: str, log_file: str = "") -> None:
    """Console logging through rich, plus an optional plain file handler."""
    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False),
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )


@contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """
    Route Ctrl-C to *token* while the running event loop is inside the block.

    The decoder sees the cancellation before its next read.
    """
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        # No loop signal support on this platform; Ctrl-C raises KeyboardInterrupt.
        logger.debug("SIGINT handler not installed")
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _config() -> BridgeConfig:
    if "config" not in _state:
        _state["config"] = load_config(find_config_path())
    return _state["config"]


def _provider():
    from chatbridge.llm.providers.openai_compat import OpenAICompatProvider
    from chatbridge.secrets import FileSecretStore

    cfg = _config()
    return OpenAICompatProvider(FileSecretStore(cfg.secrets.path), config=cfg.llm)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
):
    """Load configuration and set up logging."""
    cfg = _config()
    if log_level:
        cfg.logging.level = log_level
    configure_logging(cfg.logging.level, cfg.logging.file)


@app.command()
def configure(
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Backend base URL"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="API key"),
):
    """Store the backend URL and API key, prompting for anything missing."""
    from chatbridge.secrets import API_KEY_KEY, BASE_URL_KEY, ConfigResolver, FileSecretStore

    store = FileSecretStore(_config().secrets.path)
    if base_url:
        store.set(BASE_URL_KEY, base_url)
    if api_key:
        store.set(API_KEY_KEY, api_key)

    resolved = asyncio.run(ConfigResolver(store).resolve(interactive=True))
    if resolved is None:
        console.print("[red]No base URL configured.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Configured:[/green] {resolved.base_url}")


@app.command()
def models():
    """List the models the backend offers."""
    from chatbridge.cli.output import OutputFormatter
    from chatbridge.errors import ChatBridgeError

    provider = _provider()
    try:
        found = asyncio.run(provider.prepare_model_information(silent=True))
    except ChatBridgeError as e:
        console.print(f"[red]Model listing failed:[/red] {e}")
        raise typer.Exit(1)

    if not found:
        console.print(
            "[yellow]No models found.[/yellow] "
            "If the backend is not set up yet, run [bold]chatbridge configure[/bold]."
        )
        raise typer.Exit(1)
    OutputFormatter(console).format_model_list(found, provider.chat_endpoints)


@app.command()
def ask(
    model: str = typer.Argument(..., help="Model ID"),
    prompt: str = typer.Argument(..., help="User prompt"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Output token cap"),
    temperature: Optional[float] = typer.Option(None, "--temperature", help="Sampling temperature"),
):
    """Send one prompt and stream the reply."""
    from chatbridge.cli.output import OutputFormatter
    from chatbridge.errors import ChatBridgeError
    from chatbridge.llm.types import ChatMessage, ResponseOptions

    provider = _provider()
    formatter = OutputFormatter(console)
    token = CancellationToken()

    async def _run():
        found = await provider.prepare_model_information(silent=False)
        descriptor = next((m for m in found if m.id == model), None)
        if descriptor is None:
            console.print(f"[red]Unknown model:[/red] {model}")
            raise typer.Exit(1)
        with cancel_on_interrupt(token):
            await provider.provide_response(
                descriptor,
                [ChatMessage.user(prompt)],
                ResponseOptions(max_tokens=max_tokens, temperature=temperature),
                formatter.format_part,
                token,
            )
        console.print()
        if token.is_cancellation_requested:
            console.print("[dim]Cancelled.[/dim]")

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        # Interrupted outside the streaming phase (e.g. during discovery).
        console.print("\n[dim]Cancelled.[/dim]")
    except ChatBridgeError as e:
        console.print(f"[red]Request failed ({e.code}):[/red] {e}")
        raise typer.Exit(1)


@config_app.command("show")
def config_show():
    """Show effective config."""
    from chatbridge.cli.output import OutputFormatter

    OutputFormatter(console).format_config(_config().to_dict())


@app.command()
def version():
    """Show version."""
    console.print(f"chatbridge v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
