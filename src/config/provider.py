"""Holder for the current relay configuration snapshot."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from src.config.settings import ConfigError
from src.models import RelayConfig

logger = logging.getLogger(__name__)


class ConfigProvider:
    """Serves immutable ``RelayConfig`` snapshots.

    Readers call ``current()`` once and keep the returned snapshot for the
    rest of their work. Updates swap the reference, so a reader never sees
    a half-applied change.
    """

    def __init__(self, initial: RelayConfig | None = None) -> None:
        self._snapshot = initial

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def current(self) -> RelayConfig:
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigError("No relay configuration has been received yet")
        return snapshot

    def update(self, snapshot: RelayConfig) -> None:
        self._snapshot = snapshot

    def update_from_mapping(self, data: dict[str, Any]) -> RelayConfig:
        """Validate a raw config mapping and install it as the new snapshot."""
        try:
            snapshot = RelayConfig.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid relay config: {exc}") from exc
        self.update(snapshot)
        return snapshot
