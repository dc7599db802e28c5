"""Routes for browsing the in-memory tables used when running on mock data."""
from __future__ import annotations

import html
import json
from typing import Any, Dict, Iterable, List, Mapping

from fastapi import APIRouter, HTTPException
from fastapi.responses import HTMLResponse

from restyle.clients.supabase import Filter
from restyle.services.mock_store import get_mock_store

router = APIRouter()


def _stringify(value: Any) -> str:
    """Return a JSON-friendly string representation for table cells."""
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    return json.dumps(value, default=str)


def _build_table(title: str, rows: Iterable[Mapping[str, Any]]) -> str:
    row_list: List[Dict[str, Any]] = [dict(row) for row in rows]
    section_parts = [f"<section><h2>{html.escape(title)}</h2>"]
    if not row_list:
        section_parts.append("<p>No records found.</p></section>")
        return "".join(section_parts)

    columns: List[str] = []
    for row in row_list:
        for key in row.keys():
            if key not in columns:
                columns.append(key)

    header = "".join(f"<th>{html.escape(column)}</th>" for column in columns)
    body_rows: List[str] = []
    for row in row_list:
        cells = [f"<td>{html.escape(_stringify(row.get(column)))}</td>" for column in columns]
        body_rows.append("<tr>" + "".join(cells) + "</tr>")
    section_parts.append(
        "<table><thead><tr>"
        + header
        + "</tr></thead><tbody>"
        + "".join(body_rows)
        + "</tbody></table></section>"
    )
    return "".join(section_parts)


@router.get("/mock-data", response_class=HTMLResponse)
async def view_mock_data() -> HTMLResponse:
    """Render every mock table as an HTML table."""
    store = get_mock_store()

    sections_html = "".join(
        _build_table(repo.name, repo.rows()) for repo in store.iter_tables()
    )
    html_content = f"""
    <html>
        <head>
            <title>Mock Data Overview</title>
            <style>
                body {{ font-family: Arial, sans-serif; margin: 2rem; }}
                h1 {{ text-align: center; }}
                section {{ margin-bottom: 2rem; }}
                table {{ border-collapse: collapse; width: 100%; }}
                th, td {{ border: 1px solid #ccc; padding: 0.5rem; text-align: left; }}
                th {{ background-color: #f0f0f0; }}
                tbody tr:nth-child(even) {{ background-color: #fafafa; }}
            </style>
        </head>
        <body>
            <h1>Mock Data Overview</h1>
            {sections_html}
        </body>
    </html>
    """

    return HTMLResponse(content=html_content)


@router.delete("/mock-data/{collection}/{record_id}")
async def delete_mock_record(collection: str, record_id: str) -> Dict[str, str]:
    """Remove a single row from one of the mock tables."""

    store = get_mock_store()
    collection_map = {
        "transactions": store.transactions,
        "transaction-items": store.transaction_items,
        "items": store.transaction_items,
        "bookings": store.bookings,
    }

    repo = collection_map.get(collection.strip().lower())
    if repo is None:
        raise HTTPException(status_code=404, detail="Unsupported mock data collection")

    key = [Filter.eq(repo.primary_key, record_id)]
    found = await repo.select(filters=key, limit=1)
    if not found.rows:
        raise HTTPException(status_code=404, detail="Record not found")
    await repo.delete(key)

    return {"status": "deleted", "collection": repo.name, "record_id": record_id}
