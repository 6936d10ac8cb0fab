"""
Command-line interface for LocalChat.

A terminal renderer for the session controller: loads the model with a
progress readout, then streams replies as they are generated.
"""

import asyncio
import contextlib
import functools
import logging
import signal
import sys
import threading
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional

import click

from . import __version__
from .config import Settings, load_settings
from .exceptions import LocalChatError, ModelLoadError
from .presentation import Screen, bubbles, prepare_submission, project
from .provider import InferenceProvider
from .runtime import RuntimeProvider
from .session import SessionController
from .store import SessionState
from .transport import AsyncTransport

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], InferenceProvider]


def handle_errors(f: Callable) -> Callable:
    """Decorator to report LocalChat errors and exit non-zero."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LocalChatError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    return wrapper


class TerminalRenderer:
    """Subscriber that writes state changes to the terminal."""

    def __init__(self, echo: Callable[..., Any] = click.echo) -> None:
        self._echo = echo
        self._last_loading: Optional[str] = None
        self._streamed = ""
        self.streamed_any = False

    def __call__(self, state: SessionState) -> None:
        screen = project(state)
        if screen.screen is Screen.LOADING and screen.loading is not None:
            line = screen.loading.title
            if screen.loading.speed:
                line = f"{line} ({screen.loading.speed})"
            if line != self._last_loading:
                self._echo(line, err=True)
                self._last_loading = line

        if state.streaming_text:
            if state.streaming_text.startswith(self._streamed):
                self._echo(state.streaming_text[len(self._streamed):], nl=False)
            else:
                self._echo(state.streaming_text, nl=False)
            self._streamed = state.streaming_text
            self.streamed_any = True
        elif self._streamed:
            self._echo()
            self._streamed = ""

    def begin_turn(self) -> None:
        self.streamed_any = False

    def end_turn(self, state: SessionState) -> None:
        # Replies that arrive without deltas are printed whole
        if not self.streamed_any and state.messages and state.messages[-1].role == "assistant":
            self._echo(state.messages[-1].text)


@contextlib.asynccontextmanager
async def open_session(
    settings: Settings, provider_factory: Optional[ProviderFactory] = None
) -> AsyncIterator[SessionController]:
    """Build a controller (and its daemon transport) for the given settings."""
    transport: Optional[AsyncTransport] = None
    if provider_factory is not None:
        provider = provider_factory(settings)
    else:
        transport = AsyncTransport(
            socket_path=settings.socket_path,
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout=settings.timeout,
        )
        provider = RuntimeProvider(transport, keep_alive=settings.keep_alive)

    controller = SessionController.from_settings(provider, settings)
    try:
        yield controller
    finally:
        await controller.aclose()
        if transport is not None:
            await transport.close()


def on_interrupt(controller: SessionController, on_idle: Optional[Callable[[], None]] = None) -> None:
    """Ctrl-C stops a running generation; otherwise it calls ``on_idle``."""
    if controller.is_generating:
        controller.stop_generation()
    elif on_idle is not None:
        on_idle()


@contextlib.contextmanager
def handle_interrupts(
    controller: SessionController, on_idle: Optional[Callable[[], None]] = None
) -> Iterator[None]:
    """While active, Ctrl-C is routed through ``on_interrupt`` instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt, controller, on_idle)
        installed = True
    except (NotImplementedError, RuntimeError):
        # No signal handlers off the main thread or on Windows
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def _load(controller: SessionController) -> None:
    if not await controller.load_model():
        raise ModelLoadError(controller.state.load_error or "Failed to load model")


def _print_history(state: SessionState) -> None:
    for bubble in bubbles(state):
        speaker = "You" if bubble.role == "user" else "Assistant"
        click.echo(f"{speaker}: {bubble.text}")


def _read_line() -> Optional[str]:
    try:
        return click.prompt("", prompt_suffix="> ", default="", show_default=False)
    except click.exceptions.Abort:
        return None


def _resolve(future: "asyncio.Future[Optional[str]]", line: Optional[str]) -> None:
    if not future.done():
        future.set_result(line)


def prompt_line(read: Callable[[], Optional[str]] = _read_line) -> "asyncio.Future[Optional[str]]":
    """
    Read one line on a daemon thread.

    The returned future resolves to the line, or None on EOF. Resolving it
    early abandons the read; the daemon thread never holds up shutdown.
    """
    loop = asyncio.get_running_loop()
    future: "asyncio.Future[Optional[str]]" = loop.create_future()

    def worker() -> None:
        line = read()
        try:
            loop.call_soon_threadsafe(_resolve, future, line)
        except RuntimeError:
            logger.debug("Event loop closed before input arrived")

    threading.Thread(target=worker, name="localchat-input", daemon=True).start()
    return future


async def _run_turn(controller: SessionController, renderer: TerminalRenderer, text: str) -> None:
    operation = controller.send(text)
    if operation is None:
        return
    renderer.begin_turn()
    await operation.wait()
    renderer.end_turn(controller.state)


async def _chat(settings: Settings, provider_factory: Optional[ProviderFactory]) -> None:
    async with open_session(settings, provider_factory) as controller:
        renderer = TerminalRenderer()
        controller.store.subscribe(renderer)
        await _load(controller)
        click.echo("Model ready. Type a message, /history to review, /exit to quit.", err=True)

        pending: List["asyncio.Future[Optional[str]]"] = []

        def quit_prompt() -> None:
            for future in pending:
                _resolve(future, None)

        with handle_interrupts(controller, on_idle=quit_prompt):
            while True:
                pending[:] = [prompt_line()]
                line = await pending[0]
                if line is None or line.strip() in ("/exit", "/quit"):
                    break
                if line.strip() == "/history":
                    _print_history(controller.state)
                    continue
                text = prepare_submission(line)
                if text is None:
                    continue
                await _run_turn(controller, renderer, text)
                if controller.state.generation_error:
                    click.echo(f"Error: {controller.state.generation_error}", err=True)


async def _ask(
    settings: Settings, provider_factory: Optional[ProviderFactory], prompt: str
) -> None:
    async with open_session(settings, provider_factory) as controller:
        renderer = TerminalRenderer()
        controller.store.subscribe(renderer)
        await _load(controller)
        with handle_interrupts(controller):
            await _run_turn(controller, renderer, prompt)
        if controller.state.generation_error:
            raise LocalChatError(controller.state.generation_error)


def _configure_logging(verbose: bool, level: str) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _settings(ctx: click.Context, **overrides: Any) -> Settings:
    obj: Dict[str, Any] = ctx.obj
    settings = load_settings(
        obj.get("config"),
        base_url=obj.get("base_url"),
        socket_path=obj.get("socket_path"),
        api_key=obj.get("api_key"),
        **overrides,
    )
    _configure_logging(obj.get("verbose", False), settings.log_level)
    return settings


@click.group()
@click.version_option(version=__version__)
@click.option("--base-url", help="HTTP base URL of the inference daemon (e.g., http://localhost:11434)")
@click.option("--socket-path", help="Unix domain socket of the inference daemon")
@click.option("--api-key", help="API key for authentication")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML settings file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    base_url: Optional[str],
    socket_path: Optional[str],
    api_key: Optional[str],
    config_path: Optional[str],
    verbose: bool,
) -> None:
    """LocalChat - chat with a model running on this machine."""
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url
    ctx.obj["socket_path"] = socket_path
    ctx.obj["api_key"] = api_key
    ctx.obj["config"] = config_path
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("-m", "--model", help="Model to load")
@click.option("-q", "--quantization", help="Quantization profile")
@click.option("--system-prompt", help="System prompt for the conversation")
@click.option("--temperature", type=float, help="Sampling temperature")
@click.option("--max-tokens", type=int, help="Maximum tokens to generate")
@click.pass_context
@handle_errors
def chat(
    ctx: click.Context,
    model: Optional[str],
    quantization: Optional[str],
    system_prompt: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> None:
    """Start an interactive chat. Ctrl-C stops a reply in progress or exits at the prompt."""
    settings = _settings(
        ctx,
        model=model,
        quantization=quantization,
        system_prompt=system_prompt,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    asyncio.run(_chat(settings, ctx.obj.get("provider_factory")))


@main.command()
@click.argument("prompt")
@click.option("-m", "--model", help="Model to load")
@click.option("-q", "--quantization", help="Quantization profile")
@click.option("--temperature", type=float, help="Sampling temperature")
@click.option("--max-tokens", type=int, help="Maximum tokens to generate")
@click.pass_context
@handle_errors
def ask(
    ctx: click.Context,
    prompt: str,
    model: Optional[str],
    quantization: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> None:
    """Load the model, answer one prompt and exit."""
    settings = _settings(
        ctx,
        model=model,
        quantization=quantization,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    if prepare_submission(prompt) is None:
        raise click.BadParameter("prompt must not be blank", param_hint="PROMPT")
    asyncio.run(_ask(settings, ctx.obj.get("provider_factory"), prompt))


if __name__ == "__main__":
    main()
