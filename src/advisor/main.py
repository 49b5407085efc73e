"""Entry point for the strategy advisor.

Wires all components together, optionally embeds the FastAPI JSON API,
and starts the refresh scheduler. When the API is enabled (default), the
scheduler and API share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown: dispatching stops, in-flight
fetches finish or time out, then storage is closed.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. Persistence (in-memory or SQLite)
4. PriceHistoryStore (ordered per-token series, preloaded from storage)
5. NormalizerRegistry (kind -> parse strategy)
6. SourceRegistry (configured sources, loaded from SOURCES_FILE)
7. SourceFetcher (single-attempt HTTP)
8. Scheduler (periodic refresh with backoff)
9. KnowledgeStore + KnowledgeImporter (strategies from STRATEGIES_DIR)
10. RecommendationEngine
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from advisor.config import AppSettings
from advisor.history import PriceHistoryStore
from advisor.knowledge import KnowledgeImporter, KnowledgeStore
from advisor.logging import get_logger, setup_logging
from advisor.persistence import create_persistence
from advisor.recommendation import RecommendationEngine
from advisor.sources import (
    Scheduler,
    SourceFetcher,
    SourceRegistry,
    default_normalizers,
)


async def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all advisor components from settings.

    Connects persistence (the history preload needs it) and loads the
    configured sources and strategy documents. Does NOT start the
    scheduler -- that happens in the lifespan (API mode) or run().

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    logger = get_logger("advisor.main")

    # 3. Persistence
    persistence = create_persistence(settings.storage)
    await persistence.connect()

    # 4. Price history, restored from storage
    history = PriceHistoryStore(persistence, settings.history)
    restored = await history.load()

    # 5-6. Normalizers and configured sources
    normalizers = default_normalizers()
    registry = SourceRegistry(
        normalizers,
        min_interval_seconds=settings.scheduler.min_refresh_interval_seconds,
    )
    if settings.sources_file:
        registry.load_file(settings.default_owner, settings.sources_file)
    else:
        logger.warning("no_sources_configured", note="Set SOURCES_FILE to a JSON list")

    # 7-8. Fetcher and scheduler
    fetcher = SourceFetcher(timeout_seconds=settings.scheduler.fetch_timeout_seconds)
    scheduler = Scheduler(
        registry=registry,
        fetcher=fetcher,
        normalizers=normalizers,
        history=history,
        settings=settings.scheduler,
    )

    # 9. Strategy/knowledge store and initial import
    knowledge_store = KnowledgeStore(persistence)
    importer = KnowledgeImporter(knowledge_store)
    if settings.strategies_dir:
        report = await importer.import_directory(
            settings.default_owner, settings.strategies_dir
        )
        if report.failed:
            logger.warning(
                "strategy_import_incomplete",
                failed=[o.document for o in report.failed],
            )

    # 10. Recommendation engine
    engine = RecommendationEngine(history, knowledge_store, settings.recommendation)

    logger.info(
        "components_built",
        backend=settings.storage.backend,
        sources=len(registry),
        restored_records=restored,
    )

    return {
        "persistence": persistence,
        "history": history,
        "normalizers": normalizers,
        "registry": registry,
        "fetcher": fetcher,
        "scheduler": scheduler,
        "knowledge_store": knowledge_store,
        "importer": importer,
        "engine": engine,
    }


async def _shutdown(components: dict[str, Any]) -> None:
    """Stop dispatching, then release network and storage resources."""
    await components["scheduler"].stop()
    await components["fetcher"].close()
    await components["persistence"].close()


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM handlers that request a graceful stop.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("advisor.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage advisor component lifecycle within the FastAPI application.

    On startup: stores components on app.state, connects the fetcher and
    starts the scheduler. On shutdown: stops the scheduler (in-flight
    fetches complete), closes the fetcher and storage.
    """
    logger = get_logger("advisor.main")
    components = app.state.components

    # Store components on app.state for route handler access
    app.state.engine = components["engine"]
    app.state.knowledge_store = components["knowledge_store"]
    app.state.importer = components["importer"]
    app.state.scheduler = components["scheduler"]
    app.state.registry = components["registry"]
    app.state.history = components["history"]

    await components["fetcher"].connect()
    await components["scheduler"].start()

    logger.info("lifespan_started")

    yield

    await _shutdown(components)
    logger.info("strategy_advisor_stopped")


async def run() -> None:
    """Run the strategy advisor.

    When the API is enabled (API_ENABLED=true, the default), uvicorn serves
    the JSON API and the lifespan manages component startup/shutdown;
    uvicorn installs its own signal handling.

    When the API is disabled, the scheduler runs until SIGINT/SIGTERM.
    """
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("advisor.main")

    # 3-10. Build all components
    components = await _build_components(settings)

    if settings.api.enabled:
        from advisor.api import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info(
            "starting_without_api",
            sources=len(components["registry"]),
            max_concurrency=settings.scheduler.max_concurrency,
        )

        try:
            await components["fetcher"].connect()
            await components["scheduler"].start()
            await stop_event.wait()
        finally:
            await _shutdown(components)
            logger.info("strategy_advisor_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
