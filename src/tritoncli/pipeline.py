"""Parallel fan-out helpers.

Sequential pipelines are plain Python statements. Parallel ones use a bounded
:class:`concurrent.futures.ThreadPoolExecutor`; results and failures are
always reported in input order regardless of completion order.
"""
from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from .errors import CloudApiError, TritonError, collect_errors

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
S = TypeVar("S")

DEFAULT_MAX_WORKERS = 10


@dataclass(frozen=True)
class Outcome(Generic[R]):
    """Result or error of one branch of a parallel fan-out."""

    index: int
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Whether the branch succeeded."""
        return self.error is None


def _run_one(func: Callable[[T], R], index: int, item: T) -> Outcome[R]:
    try:
        return Outcome(index=index, value=func(item))
    except TritonError as exc:
        return Outcome(index=index, error=exc)


def fan_out(
    func: Callable[[T], R],
    items: Sequence[T],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> list[Outcome[R]]:
    """Run *func* over *items* concurrently and return outcomes in input order.

    Every branch runs to completion. ``TritonError`` failures are captured in
    the outcome; any other exception is a bug and propagates.
    """
    if not items:
        return []
    workers = max(1, min(max_workers, len(items)))
    if workers == 1:
        return [_run_one(func, index, item) for index, item in enumerate(items)]

    outcomes: list[Outcome[R] | None] = [None] * len(items)
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index: dict[concurrent.futures.Future[Outcome[R]], int] = {}
        for index, item in enumerate(items):
            future = executor.submit(_run_one, func, index, item)
            future_to_index[future] = index

        for future in concurrent.futures.as_completed(future_to_index):
            index = future_to_index[future]
            outcomes[index] = future.result()

    return [outcome for outcome in outcomes if outcome is not None]


def run_parallel(
    func: Callable[[T], R],
    items: Sequence[T],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> list[R]:
    """Like :func:`fan_out` but raise the collected errors after all branches finish.

    A single failure is raised as-is; several are raised as a ``MultiError``
    in input order.
    """
    outcomes = fan_out(func, items, max_workers=max_workers)
    errors = [outcome.error for outcome in outcomes if outcome.error is not None]
    error = collect_errors(errors)
    if error is not None:
        raise error
    return [outcome.value for outcome in outcomes]  # type: ignore[misc]


def primary_secondary(
    primary: Callable[[], R],
    secondary: Callable[[], S],
    *,
    optional_statuses: Sequence[int] = (403,),
    label: str = "secondary listing",
) -> tuple[R, S | None]:
    """Fetch a primary and an enrichment resource concurrently.

    When both fail the primary's error wins. A secondary failure with an HTTP
    status in *optional_statuses* is logged as a warning and the secondary
    result becomes ``None``; any other secondary failure is raised.
    """
    with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
        primary_future = executor.submit(primary)
        secondary_future = executor.submit(secondary)
        primary_error: BaseException | None = None
        secondary_error: BaseException | None = None
        primary_value: R | None = None
        secondary_value: S | None = None
        try:
            primary_value = primary_future.result()
        except TritonError as exc:
            primary_error = exc
        try:
            secondary_value = secondary_future.result()
        except TritonError as exc:
            secondary_error = exc

    if primary_error is not None:
        raise primary_error
    if secondary_error is not None:
        status = getattr(secondary_error, "status_code", None)
        if isinstance(secondary_error, CloudApiError) and status in optional_statuses:
            LOGGER.warning("authz error fetching %s: %s", label, secondary_error)
            return primary_value, None  # type: ignore[return-value]
        raise secondary_error
    return primary_value, secondary_value  # type: ignore[return-value]


__all__ = ["Outcome", "fan_out", "primary_secondary", "run_parallel"]
