"""
Path-addressed document store interface.

Documents live at slash separated paths with an even number of segments,
e.g. ``clients/c1`` or ``clients/c1/bills/b1``; collections at odd paths,
e.g. ``clients/c1/bills``. The last collection segment is the collection
id, which is what unique indexes and group queries are scoped to.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Filter = Tuple[str, str, Any]
FILTER_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")

# Default wait before each retry of a failed read
READ_RETRY_DELAYS = [0.2, 0.5]


class DocumentExistsError(Exception):
    """A document already exists at the path or violates a unique index."""

    def __init__(self, path: str, field: Optional[str] = None):
        self.path = path
        self.field = field
        super().__init__(f"Document conflict at {path}" + (f" on {field}" if field else ""))


def split_document_path(path: str) -> Tuple[str, str, str]:
    """Return (parent path, collection id, document id) for a document path."""
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments or len(segments) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(segments[:-2]), segments[-2], segments[-1]


def split_collection_path(path: str) -> Tuple[str, str]:
    """Return (parent path, collection id) for a collection path."""
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments or len(segments) % 2 == 0:
        raise ValueError(f"Not a collection path: {path!r}")
    return "/".join(segments[:-1]), segments[-1]


def parse_order_by(order_by: Optional[Sequence[str]]) -> List[Tuple[str, bool]]:
    """Turn ["-createdAt", "billId"] into [("createdAt", True), ("billId", False)]."""
    parsed = []
    for key in order_by or []:
        if key.startswith("-"):
            parsed.append((key[1:], True))
        else:
            parsed.append((key.lstrip("+"), False))
    return parsed


def validate_filters(filters: Optional[Sequence[Filter]]) -> List[Filter]:
    checked = []
    for field, op, value in filters or []:
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op!r}")
        checked.append((field, op, value))
    return checked


class DocumentStore(ABC):
    """Async key/document store with conditional updates."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Fetch the document at ``path`` or None."""

    @abstractmethod
    async def set(self, path: str, doc: Dict[str, Any]) -> None:
        """Create or fully replace the document at ``path``."""

    @abstractmethod
    async def create(self, path: str, doc: Dict[str, Any]) -> None:
        """Insert a new document; raises DocumentExistsError on any conflict."""

    @abstractmethod
    async def update(
        self,
        path: str,
        patch: Dict[str, Any],
        conditions: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically apply ``patch`` if every field in ``conditions`` matches.

        Returns the updated document, or None when the document is missing
        or a condition did not hold.
        """

    @abstractmethod
    async def query(
        self,
        collection_path: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Query one collection."""

    @abstractmethod
    async def query_group(
        self,
        collection_id: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Query every collection with the given id, whatever its parent."""

    @abstractmethod
    async def ensure_unique_index(self, collection_id: str, field: str) -> None:
        """Require non-null values of ``field`` to be unique across the group."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


async def read_with_retry(
    operation: Callable[[], Awaitable[T]],
    delays: Optional[Sequence[float]] = None,
    description: str = "read",
) -> T:
    """Run a read, retrying StoreUnavailableError with bounded backoff."""
    delays = list(READ_RETRY_DELAYS if delays is None else delays)
    attempts = 1 + len(delays)
    for attempt in range(attempts):
        try:
            return await operation()
        except StoreUnavailableError as e:
            if attempt == attempts - 1:
                logger.error(f"Store {description} failed after {attempts} attempts: {e}")
                raise
            logger.warning(
                f"Store {description} retry {attempt + 1}/{attempts - 1}: {e} (wait {delays[attempt]:.1f}s)"
            )
            await asyncio.sleep(delays[attempt])
    raise AssertionError("unreachable")
