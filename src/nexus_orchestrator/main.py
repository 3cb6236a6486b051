"""
Command line entry point for the Nexus orchestrator.
"""

import argparse
import asyncio
import importlib
import json
import sys
from typing import Any

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.export import ConsoleSpanExporter

from . import __version__
from .config.container import Container, setup_container
from .config.settings import Settings, get_settings
from .core.errors import NexusError
from .incidents.digest import get_incident_summary_for_digest
from .observability.logging import get_logger, setup_logging
from .observability.metrics import setup_metrics
from .observability.tracing import TracingManager, setup_tracing

logger = get_logger(__name__)


def configure_observability(settings: Settings) -> TracingManager | None:
    """Install logging, metrics and tracing as configured; returns the tracing manager if enabled."""
    observability = settings.observability
    setup_logging(observability.log_level, sys.stderr)

    resource = Resource.create(
        {"service.name": observability.service_name, "service.version": observability.service_version}
    )
    if observability.enable_metrics:
        provider = MeterProvider(resource=resource)
        setup_metrics(provider.get_meter(observability.service_name, observability.service_version))

    tracing_manager = None
    if observability.enable_tracing:
        tracing_manager = setup_tracing(
            observability.service_name, observability.service_version, ConsoleSpanExporter()
        )

    logger.info(
        "Nexus orchestrator initialized",
        environment=settings.environment,
        metrics_enabled=observability.enable_metrics,
        tracing_enabled=observability.enable_tracing,
    )
    return tracing_manager


def load_stages(container: Container, module_path: str) -> None:
    """Import ``module_path`` and let its ``register_stages(registry)`` fill the registry."""
    module = importlib.import_module(module_path)
    register = getattr(module, "register_stages", None)
    if register is None:
        raise ValueError(f"{module_path} has no register_stages(registry) function")
    register(container.get("stage_registry"))
    logger.info(
        "Stages registered",
        module=module_path,
        stages=",".join(container.get("stage_registry").names()),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexus-orchestrator", description="Nexus pipeline orchestrator"
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run the pipeline for a date")
    run.add_argument("pipeline_id", help="Pipeline id (YYYY-MM-DD)")
    run.add_argument("--stages", required=True, help="Module exposing register_stages(registry)")

    resume = subparsers.add_parser("resume", help="Resume a failed, skipped or paused run")
    resume.add_argument("pipeline_id", help="Pipeline id (YYYY-MM-DD)")
    resume.add_argument("--stages", required=True, help="Module exposing register_stages(registry)")
    resume.add_argument("--from-stage", default=None, help="Stage to resume from")

    digest = subparsers.add_parser("digest", help="Incident summary for a date")
    digest.add_argument("date", help="Date (YYYY-MM-DD)")

    reviews = subparsers.add_parser("reviews", help="List review queue items")
    reviews.add_argument("--status", default="pending", help="Item status filter")
    reviews.add_argument("--pipeline-id", default=None, help="Only items for this pipeline")

    return parser


async def run_command(args: argparse.Namespace, container: Container) -> tuple[int, Any]:
    """Execute one parsed command; returns the exit code and a JSON-serializable payload."""
    if args.command in ("run", "resume"):
        load_stages(container, args.stages)
        executor = container.get("executor")
        if args.command == "run":
            result = await executor.execute(args.pipeline_id)
        else:
            result = await executor.resume(args.pipeline_id, args.from_stage)
        return (0 if result.success else 1), result.to_dict()

    if args.command == "digest":
        summary = await get_incident_summary_for_digest(container.get("document_store"), args.date)
        return 0, summary.to_document()

    if args.command == "reviews":
        items = await container.get("review_queue").get_review_queue(
            status=args.status, pipeline_id=args.pipeline_id
        )
        return 0, [item.to_document() for item in items]

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"Nexus Orchestrator v{__version__}")
        return 0
    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    tracing_manager = configure_observability(settings)
    container = setup_container(settings)

    async def _run() -> tuple[int, Any]:
        async with container.lifespan():
            return await run_command(args, container)

    try:
        code, payload = asyncio.run(_run())
    except NexusError as e:
        logger.error("Command failed", command=args.command, code=e.code, error=e.message)
        print(json.dumps(e.to_dict(), indent=2, default=str))
        return 1
    finally:
        if tracing_manager:
            tracing_manager.shutdown()

    print(json.dumps(payload, indent=2, default=str))
    return code


def cli_main():
    """CLI entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nNexus orchestrator interrupted")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        print(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
