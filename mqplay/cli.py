"""CLI commands for mqplay."""

import asyncio
import logging
import os
import sys
from typing import Optional, Tuple

import click
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pydantic import BaseModel

from mqplay import __version__
from mqplay.client import ClientMode, MQClient
from mqplay.config import MQConfig
from mqplay.dispatcher import DeliveryDispatcher
from mqplay.events import AlarmEvent, StateEvent, default_handlers


logger = logging.getLogger("mqplay")

QUIT_TOKENS = ("quit", "q")


def setup_logging(config: MQConfig) -> None:
    """Configure root logging from config."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, mode="a"))

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def setup_tracing() -> None:
    """Export spans over OTLP when an endpoint is configured."""
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not otlp_endpoint:
        return

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

    provider = TracerProvider(resource=Resource(attributes={
        "service.name": "mqplay",
        "service.version": __version__,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)
    logger.info(f"Tracing enabled with OTLP endpoint: {otlp_endpoint}")


def setup_metrics(config: MQConfig) -> None:
    if config.metrics_port is None:
        return

    from prometheus_client import start_http_server
    start_http_server(config.metrics_port)
    logger.info(f"Metrics server started on port {config.metrics_port}")


def build_event(token: str) -> Optional[Tuple[str, BaseModel]]:
    """Map a prompt token to ``(exchange, event)``; unknown tokens map to None."""
    if token == "alarm":
        return "alarm", AlarmEvent.new("oh well")
    if token == "state":
        return "state", StateEvent.new("sleeping")
    return None


def load_config(path: Optional[str], url: Optional[str]) -> MQConfig:
    config = MQConfig.from_yaml(path) if path else MQConfig()
    if url:
        config = config.model_copy(update={"amqp_url": url})
    return config


async def prompt_loop(publisher: MQClient) -> None:
    """Read tokens until quit and publish the matching event."""
    while True:
        try:
            token = await asyncio.to_thread(click.prompt, "type message", default="", show_default=False)
        except (EOFError, click.Abort):
            return

        token = token.strip()
        if token in QUIT_TOKENS:
            return

        built = build_event(token)
        if built is None:
            continue

        exchange, event = built
        await publisher.publish_event(exchange, event)


async def run_session(config: MQConfig) -> None:
    """Start a consumer dispatcher and a publisher, then drive the prompt."""
    consumer = MQClient(config, mode=ClientMode.CONSUMER)
    publisher = MQClient(config, mode=ClientMode.PUBLISHER)
    dispatcher = DeliveryDispatcher(consumer, default_handlers())

    await consumer.start()
    await publisher.start()
    try:
        await consumer.ready()
        await dispatcher.start()

        await publisher.ready()
        await publisher.connect_to_exchange("state", "fanout")
        await publisher.connect_to_exchange("alarm", "fanout")

        await prompt_loop(publisher)
    finally:
        await dispatcher.stop()
        await publisher.stop()
        await consumer.stop()


async def send_once(config: MQConfig, exchange: str, token: str) -> None:
    built = build_event(token)
    if built is None:
        raise click.BadParameter(f"unknown event kind: {token}")

    async with MQClient(config, mode=ClientMode.PUBLISHER) as publisher:
        await publisher.ready()
        await publisher.connect_to_exchange(exchange, "fanout")
        await publisher.publish_event(exchange, built[1])


@click.group()
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option("--url", default=None, help="AMQP broker URL")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], url: Optional[str]):
    """mqplay fanout pub/sub client."""
    config = load_config(config_path, url)
    setup_logging(config)
    logger.info(f"mqplay {__version__}")
    ctx.obj = config


@cli.command()
@click.pass_obj
def run(config: MQConfig):
    """Consume alarm/state events and publish them from a prompt."""
    setup_tracing()
    setup_metrics(config)
    asyncio.run(run_session(config))


@cli.command()
@click.argument("exchange")
@click.argument("kind", type=click.Choice(["alarm", "state"]))
@click.pass_obj
def send(config: MQConfig, exchange: str, kind: str):
    """Publish one reference event to EXCHANGE."""
    setup_tracing()
    asyncio.run(send_once(config, exchange, kind))
    click.echo(f"Sent {kind} to {exchange}")


def main():
    cli()


if __name__ == "__main__":
    main()
