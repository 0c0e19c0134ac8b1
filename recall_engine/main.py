"""Main entry point for Recall Engine: logging setup and store health check."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional


def setup_logging(debug: bool = False):
    """Configure logging."""
    # Root stays at INFO to avoid verbose library logs
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    # Only our own loggers go to DEBUG
    app_logger = logging.getLogger('recall_engine')
    app_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    # Silence noisy third-party loggers
    for name in ('chromadb', 'httpx', 'httpcore', 'sentence_transformers', 'transformers'):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"[STARTUP] Logging configured: recall_engine logger level={logging.getLevelName(app_logger.level)}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Load config, build the ChromaDB-backed store and report its health."""
    parser = argparse.ArgumentParser(description="Recall Engine memory store health check")
    parser.add_argument("--config-dir", type=Path, default=Path("."), help="Directory containing config/system.yaml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    from recall_engine.config import ConfigLoader, ConfigLoadError

    try:
        system_config = ConfigLoader(args.config_dir).load_system_config()
    except ConfigLoadError as e:
        setup_logging(debug=args.debug)
        logging.getLogger(__name__).error(f"[STARTUP] Could not load system config: {e}")
        return 1

    setup_logging(debug=args.debug or system_config.debug)
    logger = logging.getLogger(__name__)

    from recall_engine.db.vector_store import ChromaMemoryRepository
    from recall_engine.errors import RepositoryError
    from recall_engine.services.embedding_service import EmbeddingService
    from recall_engine.services.vector_memory import VectorMemoryStore

    memory_config = system_config.memory
    try:
        repository = ChromaMemoryRepository(
            persist_directory=memory_config.persist_directory,
            collection_name=memory_config.collection_name,
        )
    except RepositoryError as e:
        logger.error(f"[STARTUP] Could not open memory store: {e}")
        return 1

    store = VectorMemoryStore(
        repository=repository,
        embedder=EmbeddingService(memory_config.embedding_model),
        config=memory_config,
    )

    healthy = store.health_check()
    if healthy:
        logger.info(f"[STARTUP] Memory store healthy ({store.stats()['total_memories']} memories)")
    else:
        logger.error("[STARTUP] Memory store health check failed")
    return 0 if healthy else 1


if __name__ == "__main__":
    sys.exit(main())
