"""Bounded worker pool and completion barrier for batch conversions."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .core import (
    CONCURRENCY_CAP,
    LOG,
    ConversionConfig,
    ConversionTask,
    Downloader,
    Fetcher,
    Renderer,
    TaskResult,
    convert_url,
    log_progress,
)
from .images import FilenameCounter


class CompletionBarrier:
    """Single-use countdown that releases waiters once every task reported done."""

    def __init__(self, count: int) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        self._remaining = count
        self._cond = threading.Condition()

    @property
    def remaining(self) -> int:
        with self._cond:
            return self._remaining

    def done(self) -> int:
        with self._cond:
            if self._remaining <= 0:
                raise RuntimeError("CompletionBarrier released more times than tasks dispatched")
            self._remaining -= 1
            if self._remaining == 0:
                self._cond.notify_all()
            return self._remaining

    def wait(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._remaining == 0, timeout=timeout)


@dataclass
class BatchResult:
    output_dir: Path
    results: List[TaskResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


Notifier = Callable[[BatchResult], None]


def console_notifier(result: BatchResult) -> None:
    print(f"All files have been saved to: {result.output_dir}")
    if result.failed:
        print(f"{result.failed} of {len(result.results)} page(s) failed; see the log for details.")


def run_batch(
    urls: Sequence[str],
    config: ConversionConfig,
    *,
    notify: Optional[Notifier] = None,
    fetch: Optional[Fetcher] = None,
    render: Optional[Renderer] = None,
    download: Optional[Downloader] = None,
) -> BatchResult:
    """Convert every URL on a pool of at most ``config.max_workers`` threads.

    All tasks are submitted up front. The call returns only after each of
    them has finished, successfully or not, and ``notify`` is invoked exactly
    once at that point. An empty ``urls`` creates no pool and sends no
    notification.
    """
    tasks = [ConversionTask(url=line, index=i) for i, line in enumerate(urls)]
    batch = BatchResult(output_dir=config.output_dir)
    total = len(tasks)
    if total == 0:
        LOG.info("No URLs to convert")
        return batch

    slots: List[Optional[TaskResult]] = [None] * total
    barrier = CompletionBarrier(total)
    shared_counter = FilenameCounter() if config.shared_image_names else None
    progress_lock = threading.Lock()
    finished = [0]
    failures = [0]

    def _run(task: ConversionTask) -> None:
        result = TaskResult(url=task.url, index=task.index)
        try:
            result = convert_url(
                task,
                config,
                counter=shared_counter if shared_counter is not None else FilenameCounter(),
                fetch=fetch,
                render=render,
                download=download,
            )
        except Exception as exc:
            LOG.error("Conversion failed for %s: %s", task.url, exc)
            LOG.debug("Traceback for %s", task.url, exc_info=True)
            result.error = f"{type(exc).__name__}: {exc}"
        finally:
            slots[task.index] = result
            try:
                with progress_lock:
                    finished[0] += 1
                    if not result.ok:
                        failures[0] += 1
                    log_progress(finished[0], total, failures[0], task.url)
            finally:
                barrier.done()

    workers = max(1, min(total, config.max_workers or CONCURRENCY_CAP, CONCURRENCY_CAP))
    LOG.info("Converting %d URL(s) with %d worker(s)", total, workers)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="url2md")
    try:
        for task in tasks:
            executor.submit(_run, task)
    finally:
        executor.shutdown(wait=False)

    barrier.wait()
    executor.shutdown(wait=True)

    batch.results = [r for r in slots if r is not None]
    if notify is not None:
        notify(batch)
    return batch
