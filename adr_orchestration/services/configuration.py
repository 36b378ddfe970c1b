"""
ConfigurationService -- Reads and writes the singleton configuration row.

The pipeline calls ``load()`` once at the start of every run; the returned
``OrchestrationSettings`` is frozen, so a run never observes an edit made
while it is in flight.  When no row exists the packaged YAML defaults apply.
"""

from __future__ import annotations

from dataclasses import asdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from adr_config import get_default_settings
from adr_config.schema import OrchestrationSettings
from adr_kernel.logging_config import get_logger

from adr_orchestration.models.configuration import SINGLETON_KEY, ConfigurationModel

logger = get_logger("orchestration.configuration")


class ConfigurationService:
    def __init__(self, session: Session, defaults: OrchestrationSettings | None = None):
        self._session = session
        self._defaults = defaults or get_default_settings().orchestration

    def _row(self) -> ConfigurationModel | None:
        return self._session.execute(
            select(ConfigurationModel).where(ConfigurationModel.singleton_key == SINGLETON_KEY)
        ).scalar_one_or_none()

    def load(self) -> OrchestrationSettings:
        row = self._row()
        if row is None:
            logger.debug("configuration_defaults_used")
            return self._defaults
        return row.to_settings()

    def save(self, settings: OrchestrationSettings, actor_id: UUID) -> OrchestrationSettings:
        """Insert or overwrite the singleton row.  Flushes, never commits."""
        row = self._row()
        if row is None:
            row = ConfigurationModel.from_settings(settings, created_by_id=actor_id)
            self._session.add(row)
        else:
            for name, value in asdict(settings).items():
                setattr(row, name, value)
            row.updated_by_id = actor_id
        self._session.flush()
        logger.info("configuration_saved", extra=asdict(settings))
        return settings
