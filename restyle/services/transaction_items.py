from __future__ import annotations

import logging

from restyle.clients.supabase import Filter, SupabaseClient
from restyle.config import Settings, get_settings
from restyle.schemas.transaction import TransactionItemUpdate
from restyle.services import columns
from restyle.services.exceptions import ValidationError
from restyle.services.mock_store import MockDataStore, get_mock_store

logger = logging.getLogger(__name__)

_UPDATE_COLUMNS = {
    "service_name": columns.ITEM_SERVICE_NAME,
    "price": columns.ITEM_PRICE,
    "staff_name": columns.ITEM_STAFF_NAME,
    "staff_tip_collected": columns.ITEM_TIP_COLLECTED,
}


class TransactionItemService:
    def __init__(
        self,
        client: SupabaseClient,
        *,
        store: MockDataStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._store: SupabaseClient | MockDataStore = store or client
        if self._client.use_mock_data:
            self._store = store or get_mock_store()

    async def update(self, item_id: str, update: TransactionItemUpdate) -> None:
        values = {
            column: getattr(update, field)
            for field, column in _UPDATE_COLUMNS.items()
            if field in update.model_fields_set
        }
        if not values:
            raise ValidationError("No fields to update")
        logger.info("Updating transaction item %s: %s", item_id, sorted(values))
        await self._store.update(
            self._settings.transaction_items_table,
            values,
            [Filter.eq(columns.ROW_ID, item_id)],
        )
