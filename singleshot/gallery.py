"""Gallery session: an item store plus the caller's current selection.

The selection is presentation state and lives outside the store. Removing
the selected item clears it, and whenever nothing is selected while the
store holds items, the first item becomes selected.
"""

from __future__ import annotations

import logging
from typing import Iterable

from singleshot.models import AnalysisItem, MediaPayload
from singleshot.store import ItemStore, StoreEvent

logger = logging.getLogger(__name__)


class Gallery:
    """Selection-tracking view over an :class:`ItemStore`.

    Example:
        >>> gallery = Gallery(ItemStore(client))
        >>> gallery.submit(payloads)
        >>> gallery.selected.filename
        'IMG_0001.CR2'
    """

    def __init__(self, store: ItemStore) -> None:
        self.store = store
        self._selected_id: str | None = None
        self._unsubscribe = store.subscribe(self._on_store_event)

    def _on_store_event(self, event: StoreEvent, item: AnalysisItem) -> None:
        if event == StoreEvent.REMOVED and item.id == self._selected_id:
            self._selected_id = None

    @property
    def selected_id(self) -> str | None:
        """Id of the selected item, auto-selecting the first one if needed."""
        if self._selected_id is None and len(self.store):
            self._selected_id = self.store.items[0].id
            logger.debug(f"Auto-selected {self._selected_id}")
        return self._selected_id

    @property
    def selected(self) -> AnalysisItem | None:
        selected_id = self.selected_id
        return self.store.get(selected_id) if selected_id else None

    def submit(self, payloads: Iterable[MediaPayload]) -> list[AnalysisItem]:
        """Add a batch to the store and start its analysis."""
        return self.store.add_batch(payloads)

    def select(self, item_id: str) -> AnalysisItem:
        """Select an item.

        Raises:
            KeyError: If no item has that id.
        """
        item = self.store.get(item_id)
        if item is None:
            raise KeyError(item_id)
        self._selected_id = item_id
        return item

    def remove(self, item_id: str, cancel: bool = False) -> bool:
        """Remove an item, clearing the selection if it was selected."""
        return self.store.remove(item_id, cancel=cancel)

    def close(self) -> None:
        """Stop tracking store changes."""
        self._unsubscribe()
