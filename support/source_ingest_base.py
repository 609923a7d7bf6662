from __future__ import annotations

import abc
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, List, TypeVar

import db
from logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class IngestRunResult:
    processed: int
    inserted: int
    failed: int = 0
    errors: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "inserted": self.inserted,
            "failed": self.failed,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class ItemOutcome(Generic[T, R]):
    """Settled result of one sub-operation: either `value` or `error` is set."""

    item: T
    value: R | None = None
    error: BaseException | None = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None


def run_isolated(
    items: Iterable[T],
    fn: Callable[[T], R],
    *,
    max_workers: int = 4,
) -> List[ItemOutcome[T, R]]:
    """Run `fn` over `items` concurrently; one failure never stops the others.

    Returns only after every call has settled, in input order.
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, int(max_workers))) as pool:
        futures = [pool.submit(fn, item) for item in items]
        wait(futures)

    outcomes: List[ItemOutcome[T, R]] = []
    for item, fut in zip(items, futures):
        exc = fut.exception()
        if exc is not None:
            outcomes.append(ItemOutcome(item=item, error=exc))
        else:
            outcomes.append(ItemOutcome(item=item, value=fut.result()))
    return outcomes


class SourceIngestBase(abc.ABC):
    """Base class for batch jobs that read an external source and write the store.

    Subclasses set `source_name` and implement `run()`. Each job gets a
    session factory so worker threads can open their own sessions.
    """

    source_name: str

    def __init__(self, *, session_factory: Any = None) -> None:
        self.session_factory = session_factory or db.SessionLocal

    @abc.abstractmethod
    def run(self) -> IngestRunResult:  # pragma: no cover
        raise NotImplementedError
