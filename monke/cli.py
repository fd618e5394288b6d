from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import typer
import uvicorn

from monke.core.config import Settings, get_settings
from monke.core.credentials import CredentialStore, env_var_name
from monke.core.logger import redact

cli = typer.Typer(name="monke", help="Voice conversation loop")
config_cli = typer.Typer(help="Configuration")
key_cli = typer.Typer(help="AI service credentials")

cli.add_typer(config_cli, name="config")
cli.add_typer(key_cli, name="key")


@cli.command()
def serve() -> None:
    """Start the control API (conversation state machine over HTTP/WebSocket)."""
    settings = get_settings()
    uvicorn.run("monke.main:app", host=settings.host, port=settings.port)


@cli.command()
def proxy() -> None:
    """Start the speech synthesis proxy."""
    settings = get_settings()
    uvicorn.run("monke.proxy:app", host=settings.tts_proxy_host, port=settings.tts_proxy_port)


@cli.command()
def talk(
    turns: int = typer.Option(1, "--turns", "-n", min=1, help="Conversation cycles to run"),
    simulate: bool = typer.Option(False, "--simulate", help="Use simulated speech instead of the microphone"),
    say: Optional[List[str]] = typer.Option(None, "--say", help="Utterance for a simulated turn (repeatable)"),
) -> None:
    """Run conversation cycles in the terminal and print every event."""
    settings = get_settings()
    asyncio.run(_talk(settings, turns, simulate or bool(say), say or []))


async def _talk(settings: Settings, turns: int, simulate: bool, utterances: list[str]) -> None:
    from monke.voice.capture import SimulatedSpeechCapture
    from monke.voice.orchestrator import build_orchestrator
    from monke.voice.state import ConversationEvent, ConversationState

    capture = SimulatedSpeechCapture(utterances, delay=0.5) if simulate else None
    orchestrator = build_orchestrator(settings, simulate_capture=simulate, capture=capture)
    await orchestrator.warmup()
    idle = asyncio.Event()

    def _on_state(state: ConversationState) -> None:
        typer.echo(f"[state] {state.value}")
        if state is ConversationState.IDLE:
            idle.set()

    orchestrator.subscribe(ConversationEvent.STATE_CHANGED, _on_state)
    orchestrator.subscribe(ConversationEvent.USER_SPEECH_RECOGNIZED, lambda text: typer.echo(f"[you] {text}"))
    orchestrator.subscribe(ConversationEvent.RESPONSE_SPEAKING, lambda text: typer.echo(f"[monke] {text}"))
    orchestrator.subscribe(ConversationEvent.ERROR, lambda error: typer.echo(f"[error] {error.message}", err=True))
    try:
        for _ in range(turns):
            idle.clear()
            orchestrator.start_listening()
            await idle.wait()
    finally:
        await orchestrator.aclose()


@config_cli.command("print")
def config_print() -> None:
    """Print the effective configuration with secrets masked."""
    settings = get_settings()
    typer.echo(json.dumps(redact(settings.model_dump()), ensure_ascii=False, indent=2))


@key_cli.command("set")
def key_set(service: str, key: str) -> None:
    """Store a runtime API key for SERVICE (openai, claude, local_llm)."""
    store = CredentialStore(get_settings().credentials_path)
    store.set(service, key)
    typer.echo(f"Key stored for {service}")


@key_cli.command("clear")
def key_clear(service: str) -> None:
    store = CredentialStore(get_settings().credentials_path)
    if store.clear(service):
        typer.echo(f"Key removed for {service}")
    else:
        typer.echo(f"No stored key for {service} (environment variable: {env_var_name(service)})")


if __name__ == "__main__":  # pragma: no cover
    cli()
