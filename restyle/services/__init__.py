"""Service package public API definitions.

Service implementations are imported lazily. ``restyle.clients.supabase``
imports ``restyle.services.exceptions``, and the services themselves import
the client, so importing them eagerly here would be circular.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "KpiService",
    "TransactionItemService",
    "TransactionService",
]

_SERVICE_MODULES = {
    "KpiService": "kpi",
    "TransactionItemService": "transaction_items",
    "TransactionService": "transactions",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .kpi import KpiService as KpiService
    from .transaction_items import TransactionItemService as TransactionItemService
    from .transactions import TransactionService as TransactionService
