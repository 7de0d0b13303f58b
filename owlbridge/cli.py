"""Command line interface for running the owlbridge service."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from owlbridge.config import load_config
from owlbridge.contracts import Job
from owlbridge.errors import OwlBridgeError
from owlbridge.orchestrator import JobOrchestrator
from owlbridge.wiseowl import WiseOwlClient, close_http_client

app = typer.Typer(help="CLI for the owlbridge Salesforce/WiseOwl bridge")

config_app = typer.Typer(help="Commands for inspecting configuration")
app.add_typer(config_app, name="config")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(levelname)s] %(asctime)s %(name)s :: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.callback()
def main() -> None:
    """owlbridge CLI entry point."""
    pass


@app.command("serve")
def serve(
    host: Optional[str] = None,
    port: Optional[int] = None,
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
    log_level: str = "INFO",
) -> None:
    """
    Run the HTTP service.

    Example:
        owlbridge serve --port 3000
    """
    import uvicorn

    from owlbridge.api import create_app
    from owlbridge.service import BridgeService

    configure_logging(log_level)
    config = load_config(config_path)
    application = create_app(BridgeService(config))
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    typer.echo(f"Health check available at http://{bind_host}:{bind_port}/health")
    uvicorn.run(application, host=bind_host, port=bind_port, log_level=log_level.lower())


@app.command("run")
def run(
    token: str = typer.Option(..., help="WiseOwl access token"),
    input: str = typer.Option(..., "--input", help="Prompt to submit"),
    conversation_id: Optional[str] = typer.Option(None, help="Existing conversation id"),
    dev: bool = typer.Option(False, help="Use the dev WiseOwl host"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Submit one prompt, wait for the run to finish and print the answer."""
    configure_logging("WARNING")
    config = load_config(config_path)

    async def _run():
        client = WiseOwlClient(
            token,
            is_prod=not dev,
            config=config.wiseowl,
            retry=config.retry,
            poll=config.poll,
        )
        job = Job(
            auth_credential=token,
            conversation_id=conversation_id,
            prompt_input=input,
            is_prod=not dev,
        )
        try:
            return await JobOrchestrator(job, client).run_sync()
        finally:
            await close_http_client()

    try:
        result = asyncio.run(_run())
    except OwlBridgeError as e:
        typer.secho(f"Run failed: {e.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"conversation: {result.conversation_id}")
    typer.echo(f"run: {result.run_id}")
    typer.echo(result.content or "")


@config_app.command("show")
def config_show(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to config.yaml"),
) -> None:
    """Print the effective configuration as JSON."""
    config = load_config(config_path)
    typer.echo(json.dumps(config.model_dump(), indent=2))


if __name__ == "__main__":
    app()
