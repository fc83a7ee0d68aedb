"""
Bitrix24 Batch Paginator

Pulls complete paginated lists through the batch method. The portal caps
list pages at 50 records, so each partition (e.g. a catalog section) keeps its
own cursor and every round sends one page request per unfinished partition.
"""

import logging
from typing import Any, Callable, Dict, Hashable, List, Mapping, Sequence

from ..client import BitrixClient, build_batch_command


logger = logging.getLogger(__name__)


def _page_records(page: Any) -> List[Dict[str, Any]]:
    # crm.item.* lists wrap records in {"items": [...]}
    if isinstance(page, Mapping):
        page = page.get("items")
    return page if isinstance(page, list) else []


def _record_id(record: Any) -> Any:
    if not isinstance(record, Mapping):
        return None
    return record.get("ID", record.get("id"))


class BatchPaginator:
    """Drives batched list queries across partitions until each is exhausted"""

    def __init__(self, client: BitrixClient, key_prefix: str = "p"):
        """
        Initialize BatchPaginator

        Args:
            client: Bitrix24 client instance
            key_prefix: Prefix for batch command keys
        """
        self.client = client
        self.key_prefix = key_prefix

    async def fetch_all(self, method: str, partitions: Sequence[Hashable],
                        build_params: Callable[[Hashable], Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Fetch every record of every partition

        Args:
            method: List method to page through, e.g. "crm.product.list"
            partitions: Partition keys, one query stream each
            build_params: Returns filter/order/select params for a partition

        Returns:
            Records deduplicated by id, first occurrence wins

        Raises:
            RemoteCallError: If a batch round fails; the whole fetch is aborted
        """
        partitions = list(dict.fromkeys(partitions))
        cursors: Dict[Hashable, Any] = {p: 0 for p in partitions}
        done = set()
        seen = set()
        records: List[Dict[str, Any]] = []
        rounds = 0

        while len(done) < len(partitions):
            commands: Dict[str, str] = {}
            key_to_partition: Dict[str, Hashable] = {}
            for partition in partitions:
                if partition in done:
                    continue
                key = f"{self.key_prefix}{partition}_s{cursors[partition]}"
                params = dict(build_params(partition))
                params["start"] = cursors[partition]
                commands[key] = build_batch_command(method, params)
                key_to_partition[key] = partition

            if not commands:
                break

            batch = await self.client.call_batch(commands, halt=False)
            rounds += 1

            for key in commands:
                for record in _page_records(batch.result.get(key)):
                    record_id = _record_id(record)
                    if not record_id or record_id in seen:
                        continue
                    seen.add(record_id)
                    records.append(record)

            for key, partition in key_to_partition.items():
                next_cursor = batch.next.get(key)
                if next_cursor is None or next_cursor is False or next_cursor == "":
                    done.add(partition)
                elif _as_int(next_cursor) <= _as_int(cursors[partition]):
                    logger.warning(f"Cursor for {partition} did not advance ({next_cursor}); stopping it")
                    done.add(partition)
                else:
                    cursors[partition] = next_cursor

        logger.info(f"Fetched {len(records)} records from {method} "
                    f"across {len(partitions)} partitions in {rounds} rounds")
        return records


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
