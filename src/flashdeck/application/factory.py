"""
Engine Factory
Centralizes wiring the store, memory model and services from configuration.
"""

import logging

from flashdeck.application.config import AppConfig
from flashdeck.application.engine import FlashcardEngine
from flashdeck.application.scheduler import MemoryModel
from flashdeck.application.sync_service import SyncService
from flashdeck.domain.ports import FlashcardRepository
from flashdeck.infrastructure.sqlite_repository import SqliteRepository

logger = logging.getLogger(__name__)


def create_repository(config: AppConfig) -> FlashcardRepository:
    logger.debug(f"Opening card store at {config.database_path}")
    return SqliteRepository(config.database_path)


def create_memory_model(config: AppConfig) -> MemoryModel:
    return MemoryModel(
        parameters=config.parameters,
        desired_retention=config.desired_retention,
        maximum_interval=config.maximum_interval,
        learning_steps=config.learning_steps,
        relearning_steps=config.relearning_steps,
        easy_bonus=config.easy_bonus,
        hard_interval_factor=config.hard_interval_factor,
    )


def create_engine(
    config: AppConfig, repo: FlashcardRepository | None = None
) -> FlashcardEngine:
    """
    Returns an engine wired from `config`. Pass `repo` to reuse an open store.
    """
    repo = repo or create_repository(config)
    return FlashcardEngine(
        repo=repo,
        model=create_memory_model(config),
        sync=SyncService(
            repo,
            library_root=config.library_root,
            fuzzy_match_threshold=config.fuzzy_match_threshold,
        ),
        queue_settings={
            "new_cards_per_day": config.new_cards_per_day,
            "max_reviews_per_day": config.max_reviews_per_day,
            "learn_ahead_minutes": config.learn_ahead_minutes,
            "requeue_min_seconds": config.requeue_min_seconds,
            "reorder_every": config.reorder_every,
            "refill_batch_size": config.refill_batch_size,
            "requeue_buffer_min": config.requeue_buffer_min,
            "requeue_buffer_max": config.requeue_buffer_max,
        },
    )
