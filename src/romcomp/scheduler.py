"""Worker pool for running conversion units (standard library).

Workers spend their time waiting on backend processes, so threads are enough.
`imap_unordered_bounded` keeps at most `max_pending` units submitted at once;
once the stop event is set nothing new is submitted and the units already
running are allowed to finish.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from typing import Callable, Iterable, Optional, Tuple, Any, Dict, Iterator
import threading

from loguru import logger


class WorkerPool:
    def __init__(self, max_workers: int) -> None:
        self._exe = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="romcomp-worker")
        self._max_workers = max_workers

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._exe.submit(fn, *args, **kwargs)

    def imap_unordered_bounded(
        self,
        fn: Callable[[Any], Any],
        iterable: Iterable[Any],
        max_pending: int,
        *,
        stop_event: Optional[threading.Event] = None,
        on_error: Optional[Callable[[Any, BaseException], Any]] = None,
    ) -> Iterator[Tuple[Any, Any]]:
        """Yield (item, result) in completion order.

        An exception raised by fn(item) is handed to `on_error(item, exc)`,
        whose return value is yielded as the result. Without `on_error` the
        exception propagates to the consumer.
        """
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        logger.debug(f"bounded window: bound={max_pending} (workers={self._max_workers})")

        source = iter(iterable)
        pending: Dict[Future, Any] = {}

        def fill() -> None:
            while len(pending) < max_pending:
                if stop_event is not None and stop_event.is_set():
                    return
                item = next(source, _EXHAUSTED)
                if item is _EXHAUSTED:
                    return
                pending[self._exe.submit(fn, item)] = item

        fill()
        while pending:
            done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
            for fut in done:
                item = pending.pop(fut)
                exc = fut.exception()
                if exc is None:
                    yield item, fut.result()
                elif on_error is not None:
                    yield item, on_error(item, exc)
                else:
                    raise exc
            fill()

    def shutdown(self, wait: bool = True) -> None:
        self._exe.shutdown(wait=wait)


_EXHAUSTED = object()
