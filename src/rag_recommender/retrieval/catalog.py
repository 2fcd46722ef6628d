"""JSON car-catalog loading for the in-memory document store."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True, slots=True)
class CatalogDocument:
    """One indexable car description before it is scored for a query."""

    doc_id: str
    description: str
    metadata: dict[str, str]


def load_catalog(path: str | Path) -> list[CatalogDocument]:
    """Load a catalog file holding a JSON list of car objects.

    Each object needs an ``id`` and a ``description``. Every other scalar
    field is kept as string metadata (``brand``, ``model``, ``price``...).
    Nested values are ignored.
    """

    file_path = Path(path)
    payload: Any = json.loads(file_path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("cars", payload.get("documents"))
    if not isinstance(payload, list):
        raise ValueError(f"Catalog must contain a JSON list of cars: {file_path}")
    return parse_catalog(payload, source=str(file_path))


def parse_catalog(items: list[Any], *, source: str = "inline") -> list[CatalogDocument]:
    documents: list[CatalogDocument] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"Catalog entry {index} is not an object ({source})")
        doc_id = str(item.get("id", "")).strip()
        description = str(item.get("description", "")).strip()
        if not doc_id or not description:
            raise ValueError(f"Catalog entry {index} needs an id and a description ({source})")
        if doc_id in seen:
            raise ValueError(f"Duplicate catalog id: {doc_id}")
        seen.add(doc_id)

        metadata = {
            key: _scalar_text(value)
            for key, value in sorted(item.items())
            if key not in {"id", "description"} and _is_scalar(value)
        }
        metadata["source"] = source
        documents.append(CatalogDocument(doc_id=doc_id, description=description, metadata=metadata))
    return documents


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
