"""
Scheduler Factory
Centralizes the wiring of config, repository and scheduler service.
"""

from cadence.application.config import AppConfig
from cadence.application.scheduler_service import SchedulerService
from cadence.domain.ports import CollectionRepository
from cadence.infrastructure.adapters.json_store import JsonFileRepository


def get_repository(config: AppConfig) -> CollectionRepository:
    """
    Returns the repository implementation for the configured data file.
    """
    return JsonFileRepository(config.data_file)


def open_scheduler(config: AppConfig) -> SchedulerService:
    """
    Returns a scheduler with the full collection already loaded.
    """
    return SchedulerService(get_repository(config), config).load()
