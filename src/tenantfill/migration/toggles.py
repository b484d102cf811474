"""
Operator setting toggles with optimistic updates.

A toggle change is applied locally first so the engine sees it at once,
then confirmed with a write to the settings collection. When the write
fails the local value is restored and ToggleError is raised.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from tenantfill.exceptions import StoreError, ToggleError
from tenantfill.stores.interface import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Mapping[str, Any] = {"cache_enabled": True}

_UNSET = object()


class SettingToggles:
    """
    Named settings persisted as one document.

    Example:
        >>> toggles = SettingToggles(store)
        >>> await toggles.load()
        >>> await toggles.set("cache_enabled", False)
        >>> toggles.get("cache_enabled")
        False
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        collection: str = "migration_settings",
        document_id: str = "engine",
        defaults: Mapping[str, Any] = DEFAULT_SETTINGS,
    ) -> None:
        self._store = store
        self._collection = collection
        self._document_id = document_id
        self._values: dict[str, Any] = dict(defaults)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def is_enabled(self, name: str) -> bool:
        return bool(self._values.get(name, False))

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    async def load(self) -> dict[str, Any]:
        """Overlay persisted values on the defaults."""
        document = await self._store.get_by_id(self._collection, self._document_id)
        if document is not None:
            self._values.update(document.data)
            logger.debug("Loaded %d settings from %s", len(document.data), self._collection)
        return self.as_dict()

    async def set(self, name: str, value: Any) -> None:
        """
        Change a setting optimistically.

        Raises:
            ToggleError: If the store did not confirm the change. The local
                value has been rolled back.
        """
        previous = self._values.get(name, _UNSET)
        self._values[name] = value

        try:
            await self._store.atomic_batch_write(
                self._collection,
                [(self._document_id, {name: value})],
                upsert=True,
            )
        except StoreError as e:
            if previous is _UNSET:
                del self._values[name]
                restored = None
            else:
                self._values[name] = previous
                restored = previous
            logger.warning("Setting %s rolled back to %r: %s", name, restored, e)
            raise ToggleError(name, value, restored, str(e)) from e

        logger.info("Setting %s set to %r", name, value)

    async def toggle(self, name: str) -> bool:
        """Flip a boolean setting and return the new value."""
        value = not self.is_enabled(name)
        await self.set(name, value)
        return value


__all__ = ["DEFAULT_SETTINGS", "SettingToggles"]
