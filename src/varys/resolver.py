"""Maps runtime parameters to a stable interactor config id."""

from __future__ import annotations

import logging

from varys.errors import ConfigPersistenceError, DuplicateConfigError, VarysError
from varys.models import InteractorConfig
from varys.persistence import PersistenceGateway


def normalize_sensitivity(sensitivity: float | str) -> str:
    """Canonical text form of a sensitivity, so ``0.42`` and ``"0.420"`` share one config."""
    try:
        return repr(float(sensitivity))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Sensitivity must be a number, got {sensitivity!r}") from exc


class ConfigurationResolver:
    """Get-or-create for interactor configs.

    The store's unique constraint is the only source of truth: losing an insert
    race against another process is answered by looking the tuple up again.
    """

    def __init__(self, store: PersistenceGateway, *, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger("varys.resolver")

    def resolve(self, interface: str, voice: str, sensitivity: float | str, model: str) -> int:
        return self.resolve_config(interface, voice, sensitivity, model).id

    def resolve_config(self, interface: str, voice: str, sensitivity: float | str, model: str) -> InteractorConfig:
        key = (interface, voice, normalize_sensitivity(sensitivity), model)
        try:
            existing = self._store.find_config(*key)
            if existing is not None:
                self._logger.debug("config_reused", extra={"config_id": existing.id})
                return existing

            try:
                created = self._store.insert_config(*key)
            except DuplicateConfigError:
                winner = self._store.find_config(*key)
                if winner is None:
                    raise ConfigPersistenceError(f"Interactor config {key} reported as duplicate but not found")
                self._logger.info("config_insert_race_lost", extra={"config_id": winner.id})
                return winner
        except ConfigPersistenceError:
            raise
        except VarysError as exc:
            raise ConfigPersistenceError(f"Unable to resolve interactor config {key}: {exc}") from exc

        self._logger.info("config_created", extra={"config_id": created.id, "config": key})
        return created
