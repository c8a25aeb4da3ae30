from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from ..core.backend_config import BackendConfig, backend_config_loader, use_mocks
from ..core.logging_utils import configure_logging
from ..core.session import ChatSession
from ..core.types import ChatEvent, ErrorResponse, FinalResponse, PartialResponse

app = typer.Typer(help="Chat with a hosted Gemini model or a local Ollama server.")

HELP_TEXT = """Commands:
  /clear   clear the conversation
  /info    show model information
  /check   test the backend connection
  /models  list models the backend offers
  /quit    leave the chat"""


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr as well")) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO, console=verbose)


def _resolve_backend(name: Optional[str]) -> BackendConfig:
    try:
        config = backend_config_loader.get_backend(name)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)
    if config is None:
        typer.echo(f"❌ Unknown backend: {name}", err=True)
        typer.echo(f"Available backends: {', '.join(backend_config_loader.list_backends())}", err=True)
        raise typer.Exit(1)
    if not config.is_available(use_mocks()):
        typer.echo(
            f"❌ {config.api_key_env} not found in environment. "
            "Set it or use mock mode with POCKET_CHAT_ENV=mock",
            err=True,
        )
        raise typer.Exit(1)
    return config


def _options(config: BackendConfig, stream: Optional[bool], shape: Optional[str]):
    try:
        return config.default_options.merged(use_streaming=stream, api_shape=shape)
    except ValueError:
        typer.echo(f"❌ Unknown API shape '{shape}', expected one of: chat, completion", err=True)
        raise typer.Exit(1)


class _StreamPrinter:
    """Prints cumulative partial text as deltas."""

    def __init__(self) -> None:
        self.printed = ""

    def __call__(self, event: ChatEvent) -> None:
        if isinstance(event, PartialResponse):
            self._write(event.text)
        elif isinstance(event, FinalResponse):
            self._write(event.text)
            typer.echo("")
            self.printed = ""
        elif isinstance(event, ErrorResponse):
            if self.printed:
                typer.echo("")
            typer.echo(f"❌ {event.message}", err=True)
            self.printed = ""

    def _write(self, text: str) -> None:
        if text.startswith(self.printed):
            typer.echo(text[len(self.printed) :], nl=False)
        else:
            typer.echo(f"\n{text}", nl=False)
        self.printed = text


@app.command("backends")
def list_backends() -> None:
    """List configured backends."""
    mocks = use_mocks()
    typer.echo("🤖 Configured backends:")
    for name, config in backend_config_loader.backends.items():
        status = "✅" if config.is_available(mocks) else "❌"
        default = " (default)" if name == backend_config_loader.default_backend else ""
        typer.echo(f"  {status} {name}{default} - {config.kind}:{config.model} {config.description}".rstrip())


@app.command("check")
def check(backend: Optional[str] = typer.Option(None, "--backend", "-b")) -> None:
    """Test the connection to a backend."""
    config = _resolve_backend(backend)

    async def _check():
        async with config.create_adapter(use_mocks()) as adapter:
            return await adapter.check_connection()

    connected, message = asyncio.run(_check())
    typer.echo(f"{'✅' if connected else '❌'} {message}")
    if not connected:
        raise typer.Exit(1)


@app.command("models")
def models(backend: Optional[str] = typer.Option(None, "--backend", "-b")) -> None:
    """List the models a backend reports."""
    config = _resolve_backend(backend)

    async def _models():
        async with config.create_adapter(use_mocks()) as adapter:
            return await adapter.list_models()

    names = asyncio.run(_models())
    if not names:
        typer.echo("⚠️  No models reported (backend unreachable or listing unsupported)")
        return
    for name in names:
        marker = "•" if name != config.model else "★"
        typer.echo(f"  {marker} {name}")


@app.command("info")
def info(backend: Optional[str] = typer.Option(None, "--backend", "-b")) -> None:
    """Show information about the configured model."""
    config = _resolve_backend(backend)

    async def _info():
        async with config.create_adapter(use_mocks()) as adapter:
            return await adapter.get_model_info()

    typer.echo(asyncio.run(_info()))


@app.command("ask")
def ask(
    text: str,
    backend: Optional[str] = typer.Option(None, "--backend", "-b"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream"),
    shape: Optional[str] = typer.Option(None, "--shape", help="chat or completion (Ollama only)"),
    retries: int = typer.Option(0, "--retries", min=0, help="Retries on network errors"),
) -> None:
    """Send a single message and print the reply."""
    config = _resolve_backend(backend)
    options = _options(config, stream, shape)

    async def _ask():
        async with config.create_adapter(use_mocks()) as adapter:
            session = ChatSession(adapter, options=options, attempts=retries + 1)
            return await session.submit(text, listener=_StreamPrinter())

    terminal = asyncio.run(_ask())
    if terminal is None:
        typer.echo("⚠️  Nothing to send", err=True)
        raise typer.Exit(1)
    if isinstance(terminal, ErrorResponse):
        raise typer.Exit(1)


@app.command("chat")
def chat(
    backend: Optional[str] = typer.Option(None, "--backend", "-b"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream"),
    shape: Optional[str] = typer.Option(None, "--shape", help="chat or completion (Ollama only)"),
    retries: int = typer.Option(0, "--retries", min=0, help="Retries on network errors"),
) -> None:
    """Start an interactive chat."""
    config = _resolve_backend(backend)
    options = _options(config, stream, shape)
    asyncio.run(_repl(config, options, retries + 1))


async def _repl(config: BackendConfig, options, attempts: int) -> None:
    async with config.create_adapter(use_mocks()) as adapter:
        session = ChatSession(adapter, options=options, attempts=attempts)
        connected, message = await session.greet()
        if connected:
            typer.echo(f"✅ {message}")
            typer.echo(f"AI> {session.conversation.messages[-1].text}")
        else:
            typer.echo(f"❌ {message}")
            typer.echo("Continuing offline; messages will fail until the backend is reachable.")
        typer.echo("Type /help for commands.")

        printer = _StreamPrinter()
        while True:
            try:
                text = await asyncio.to_thread(typer.prompt, "You", prompt_suffix="> ")
            except typer.Abort:
                typer.echo("")
                break
            command = text.strip().lower()
            if command in ("/quit", "/exit"):
                break
            if command == "/help":
                typer.echo(HELP_TEXT)
            elif command == "/clear":
                session.clear()
                typer.echo("🧹 Conversation cleared")
            elif command == "/info":
                typer.echo(await adapter.get_model_info())
            elif command == "/check":
                connected, message = await adapter.check_connection()
                typer.echo(f"{'✅' if connected else '❌'} {message}")
            elif command == "/models":
                names = await adapter.list_models()
                typer.echo(", ".join(names) if names else "⚠️  No models reported")
            elif command:
                typer.echo("AI> ", nl=False)
                await session.submit(text, listener=printer)


if __name__ == "__main__":
    app()
