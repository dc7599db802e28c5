from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from restyle.clients.supabase import SupabaseClient
from restyle.config import Settings, get_settings
from restyle.services import KpiService, TransactionItemService, TransactionService


@lru_cache(maxsize=1)
def get_supabase_client_cached() -> SupabaseClient:
    settings = get_settings()
    return SupabaseClient(
        str(settings.supabase_url) if settings.supabase_url else None,
        service_role_key=settings.supabase_service_role_key,
        timeout=settings.supabase_timeout,
        use_mock_data=settings.use_mock_data,
    )


def get_supabase_client(settings: Settings = Depends(get_settings)) -> SupabaseClient:
    return get_supabase_client_cached()


def get_transaction_service(
    client: SupabaseClient = Depends(get_supabase_client),
    settings: Settings = Depends(get_settings),
) -> TransactionService:
    return TransactionService(client, settings=settings)


def get_transaction_item_service(
    client: SupabaseClient = Depends(get_supabase_client),
    settings: Settings = Depends(get_settings),
) -> TransactionItemService:
    return TransactionItemService(client, settings=settings)


def get_kpi_service(
    client: SupabaseClient = Depends(get_supabase_client),
    settings: Settings = Depends(get_settings),
) -> KpiService:
    return KpiService(client, settings=settings)
