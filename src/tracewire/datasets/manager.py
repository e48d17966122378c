"""Dataset retrieval with paginated item loading."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..api.client import ApiClient

DEFAULT_PAGE_SIZE = 50


@dataclass(slots=True)
class DatasetItem:
    id: str
    dataset_name: str
    input: Any = None
    expected_output: Any = None
    metadata: Any = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)
    _api: Optional[ApiClient] = field(default=None, repr=False, compare=False)

    async def link(
        self,
        run_name: str,
        *,
        trace_id: str,
        observation_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Any = None,
    ) -> Dict[str, Any]:
        """Attach this item to a dataset run through the given trace."""

        if self._api is None:
            raise RuntimeError("Dataset item is not bound to an API client")
        body = {
            "runName": run_name,
            "datasetItemId": self.id,
            "traceId": trace_id,
            "observationId": observation_id,
            "runDescription": description,
            "metadata": metadata,
        }
        return await self._api.create_dataset_run_item({k: v for k, v in body.items() if v is not None})


@dataclass(slots=True)
class Dataset:
    name: str
    id: Optional[str] = None
    description: Optional[str] = None
    metadata: Any = None
    items: List[DatasetItem] = field(default_factory=list)


class DatasetManager:
    def __init__(self, api: ApiClient, *, logger: logging.Logger) -> None:
        self.api = api
        self.logger = logger

    async def get(self, name: str, *, fetch_items_page_size: int = DEFAULT_PAGE_SIZE) -> Dataset:
        data = await self.api.get_dataset(name)
        items: List[DatasetItem] = []
        page = 1
        while True:
            result = await self.api.list_dataset_items(name, page=page, limit=fetch_items_page_size)
            items.extend(self._to_item(raw, name) for raw in result.data)
            if page >= result.meta.total_pages:
                break
            page += 1
        self.logger.debug("Fetched dataset %s with %s items over %s pages", name, len(items), page)
        return Dataset(
            name=data.get("name", name),
            id=data.get("id"),
            description=data.get("description"),
            metadata=data.get("metadata"),
            items=items,
        )

    def _to_item(self, raw: Dict[str, Any], dataset_name: str) -> DatasetItem:
        return DatasetItem(
            id=raw["id"],
            dataset_name=raw.get("datasetName", dataset_name),
            input=raw.get("input"),
            expected_output=raw.get("expectedOutput"),
            metadata=raw.get("metadata"),
            raw=raw,
            _api=self.api,
        )
