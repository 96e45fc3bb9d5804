"""Optimistic read-modify-write across one or more store keys."""

from typing import Any, Callable, Dict, Iterable, Optional, Tuple, TypeVar

from app.config.logger import app_logger
from app.db.store import Store
from app.utils.errors import StoreConflict, StoreUnavailable

T = TypeVar("T")

# Receives {key: current value} and returns ({key: new value}, result).
# Returning no writes ends the unit of work without committing.
Mutation = Callable[[Dict[str, Any]], Tuple[Dict[str, Any], T]]

DEFAULT_MAX_RETRIES = 5


async def run_unit_of_work(
    store: Store,
    keys: Iterable[str],
    mutate: Mutation,
    max_retries: Optional[int] = None,
) -> T:
    """Read ``keys``, apply ``mutate`` to the snapshot and commit all writes together.

    The commit is conditional on every key still having the version it was
    read at. On a conflict the whole snapshot is re-read and ``mutate`` runs
    again, so it must be a pure function of the snapshot. Exceptions raised by
    ``mutate`` abort the unit of work with nothing written.

    Args:
        store: Durable store
        keys: Keys read (and possibly written) by the mutation
        mutate: Pure function of the snapshot
        max_retries: Extra attempts after the first conflict

    Returns:
        The result returned by the successful ``mutate`` call

    Raises:
        StoreUnavailable: If the store fails or conflicts persist past the retry budget
    """
    keys = list(keys)
    retries = DEFAULT_MAX_RETRIES if max_retries is None else max_retries

    for attempt in range(retries + 1):
        entries = await store.get_many(keys)
        snapshot = {key: entry.value for key, entry in entries.items()}
        writes, result = mutate(snapshot)
        if not writes:
            return result

        try:
            await store.commit(
                writes,
                expected_versions={key: entry.version for key, entry in entries.items()},
            )
            return result
        except StoreConflict as e:
            app_logger.debug(f"Unit of work on {keys} conflicted (attempt {attempt + 1}): {e}")

    app_logger.warning(f"Unit of work on {keys} gave up after {retries + 1} conflicting attempts")
    raise StoreUnavailable(f"Too much concurrent activity on {keys}; try again")
