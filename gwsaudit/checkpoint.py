"""
Resumable, time-boxed batch processing.

A long enumeration (e.g. checking every group's roles) is split across
several invocations. Each invocation processes at most one batch, saves its
position, and exits; the last one emits the final report and clears the
saved state.

State lives behind a tiny key/value interface so the backend can be a local
JSON file, memory (tests), or anything else that stores strings.
"""
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .utils import get_timestamp

logger = logging.getLogger(__name__)

KEY_NEXT_INDEX = "next_index"
KEY_RESULTS = "results"
KEY_CACHED_ITEMS = "cached_items"


# =============================================================================
# Stores
# =============================================================================

class CheckpointStore(ABC):
    """Named string values that survive between invocations."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def set_many(self, values: Dict[str, str]) -> None:
        """
        Store several keys. Backends that can should make this one write.

        The fallback writes in the order given and stops at the first error.
        """
        for key, value in values.items():
            self.set(key, value)

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.delete(key)


class MemoryCheckpointStore(CheckpointStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def set_many(self, values: Dict[str, str]) -> None:
        self.data.update(values)

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.data.pop(key, None)


class JsonFileCheckpointStore(CheckpointStore):
    """
    All keys stored in a single JSON file.

    Every write goes to a temp file in the same directory and is renamed over
    the previous file, so a process killed mid-write never leaves a truncated file.
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path) or os.path.getsize(self.path) == 0:
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            logger.warning(f"Could not read checkpoint file {self.path}, starting fresh")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Checkpoint file {self.path} is not a JSON object, starting fresh")
            return {}
        return data

    def _save(self, data: Dict[str, str]) -> None:
        data['updated_at'] = get_timestamp()
        dir_name = os.path.dirname(self.path) or '.'
        os.makedirs(dir_name, exist_ok=True)
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(mode='w', dir=dir_name, delete=False, suffix='.tmp') as f:
                temp_path = f.name
                json.dump(data, f, indent=2)
            os.replace(temp_path, self.path)  # Atomic on POSIX
            temp_path = None
        finally:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass  # Keep the original exception

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def set_many(self, values: Dict[str, str]) -> None:
        data = self._load()
        data.update(values)
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def delete_many(self, keys: Iterable[str]) -> None:
        data = self._load()
        removed = [key for key in keys if data.pop(key, None) is not None]
        if removed:
            self._save(data)


# =============================================================================
# Batch Manager
# =============================================================================

@dataclass
class BatchOutcome:
    """What one invocation of run_batch did."""
    start: int
    processed: int
    next_index: int
    total: int
    results_count: int
    complete: bool
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BatchCheckpointManager:
    """
    Process an ordered list in resumable batches.

    Usage:
        manager = BatchCheckpointManager(JsonFileCheckpointStore(path), batch_size=500, time_budget=300)
        outcome = manager.run_batch(fetch_groups, check_group, write_report)

    fetch() returns the full list of JSON-serialisable items (called once per
    cycle, then cached). process(item) returns a JSON-serialisable result or
    None. on_complete(results, total) runs once after the last item, before
    state is cleared.
    """

    def __init__(self, store: CheckpointStore, batch_size: int, time_budget: float,
                 clock: Callable[[], float] = time.monotonic, namespace: str = "groups_audit"):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size
        self.time_budget = time_budget
        self.clock = clock
        self.namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    def _read_json(self, name: str) -> Any:
        raw = self.store.get(self._key(name))
        if raw is None:
            return None
        return json.loads(raw)

    def load_items(self, fetch: Callable[[], List[Any]]) -> List[Any]:
        """Return the cached item list, fetching and caching it on the first run of a cycle."""
        try:
            items = self._read_json(KEY_CACHED_ITEMS)
        except ValueError:
            logger.warning("Cached item list is corrupt, fetching again and restarting progress")
            self.store.delete_many([self._key(KEY_NEXT_INDEX), self._key(KEY_RESULTS)])
            items = None

        if isinstance(items, list):
            logger.info(f"Using cached list of {len(items)} items")
            return items

        items = list(fetch())
        self.store.set(self._key(KEY_CACHED_ITEMS), json.dumps(items))
        logger.info(f"Fetched and cached {len(items)} items")
        return items

    def load_progress(self, total: Optional[int] = None) -> Tuple[int, List[Any]]:
        """
        Return (next_index, results).

        Missing or corrupt values, and an index outside [0, total], fall back
        to a fresh start.
        """
        try:
            next_index = self._read_json(KEY_NEXT_INDEX)
            results = self._read_json(KEY_RESULTS)
        except ValueError:
            logger.warning("Checkpoint progress is corrupt, starting from the beginning")
            return 0, []

        if next_index is None and results is None:
            return 0, []

        # One key without the other is a write or reset that never finished
        if next_index is None or results is None:
            logger.warning("Checkpoint progress is incomplete, starting from the beginning")
            return 0, []

        if (not isinstance(next_index, int) or isinstance(next_index, bool)
                or not isinstance(results, list) or next_index < 0
                or (total is not None and next_index > total)):
            logger.warning(f"Checkpoint progress is invalid (index={next_index!r}), starting from the beginning")
            return 0, []

        return next_index, results

    def _save_progress(self, next_index: int, results: List[Any]) -> None:
        # Results before the index: a partial write never skips flagged items
        self.store.set_many({
            self._key(KEY_RESULTS): json.dumps(results),
            self._key(KEY_NEXT_INDEX): json.dumps(next_index),
        })

    def run_batch(self, fetch: Callable[[], List[Any]],
                  process: Callable[[Any], Any],
                  on_complete: Callable[[List[Any], int], None]) -> BatchOutcome:
        started = self.clock()
        items = self.load_items(fetch)
        total = len(items)
        next_index, results = self.load_progress(total)
        start = next_index
        end = min(start + self.batch_size, total)
        timed_out = False

        if start < end:
            logger.info(f"Processing batch: items {start + 1} to {end} of {total}")

        for index in range(start, end):
            if self.clock() - started > self.time_budget:
                timed_out = True
                logger.info(f"Time budget of {self.time_budget}s reached at item {index} of {total}")
                break
            result = process(items[index])
            if result is not None:
                results.append(result)
            next_index = index + 1

        self._save_progress(next_index, results)

        outcome = BatchOutcome(
            start=start,
            processed=next_index - start,
            next_index=next_index,
            total=total,
            results_count=len(results),
            complete=next_index >= total,
            timed_out=timed_out,
        )

        if outcome.complete:
            logger.info(f"All {total} items processed, emitting final results")
            on_complete(results, total)
            self.reset()
        else:
            logger.info(f"Progress saved: {next_index}/{total}, {total - next_index} remaining")

        return outcome

    def status(self) -> Dict[str, Any]:
        """Summary of saved progress without processing anything."""
        try:
            items = self._read_json(KEY_CACHED_ITEMS)
        except ValueError:
            items = None
        total = len(items) if isinstance(items, list) else None
        next_index, results = self.load_progress(total)

        status: Dict[str, Any] = {
            'in_progress': total is not None,
            'total': total or 0,
            'next_index': next_index,
            'results_count': len(results),
        }
        if total:
            status['remaining'] = total - next_index
            status['percent_complete'] = round(next_index / total * 100, 1)
        return status

    def reset(self) -> None:
        """Clear all saved state so the next run starts a new cycle."""
        # Index first, so an interrupted fallback delete restarts the cycle
        self.store.delete_many([self._key(name) for name in (KEY_NEXT_INDEX, KEY_RESULTS, KEY_CACHED_ITEMS)])
        logger.info("Checkpoint state cleared")
