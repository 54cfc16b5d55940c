#!/usr/bin/env python3
"""
Batch engine: run many independent per-title tasks concurrently.

Tasks are drained from a FIFO queue by a fixed number of worker threads
created for the batch and joined before returning. Every task runs exactly
once; the ones that fail are collected and handed back to the caller.
Workers only share the queue, the failure list and the progress counter.

Usage:
    from wikicore.batch import BatchRunner, delete_task, run_batch

    failed = run_batch(wiki, [delete_task(t, "Housekeeping") for t in titles], max_workers=10)
    # or
    failed = BatchRunner(wiki).mass_delete("Housekeeping", titles)
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

if TYPE_CHECKING:
    from wikicore.wiki import Wiki

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 20


@dataclass(eq=False)
class Task:
    """
    One unit of work in a batch.

    ``operation`` is called as ``operation(wiki, task)`` and returns True on
    success; the payload fields are there for it to read.
    """

    title: str
    operation: Callable[["Wiki", "Task"], bool] = field(repr=False)
    text: Optional[str] = field(default=None, repr=False)
    summary: str = ""
    path: Optional[Path] = None
    succeeded: bool = False

    def __post_init__(self):
        if not self.title:
            raise ValueError("Task needs a title")

    def run(self, wiki: "Wiki") -> bool:
        self.succeeded = bool(self.operation(wiki, self))
        return self.succeeded


class _Progress:
    def __init__(self, total: int):
        self.total = total
        self.done = 0
        self._lock = threading.Lock()

    def step(self) -> int:
        with self._lock:
            self.done += 1
            return self.done


def run_batch(wiki: "Wiki", tasks: Iterable[Task], max_workers: int = DEFAULT_WORKERS) -> list[Task]:
    """
    Run ``tasks`` against one shared wiki connection.

    Args:
        wiki: Wiki every task operates on
        tasks: Independent tasks; completion order is unspecified
        max_workers: Upper bound on worker threads

    Returns:
        The tasks that failed (returned False or raised), in no particular order
    """
    tasks = list(tasks)
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    if not tasks:
        return []

    todo: "queue.Queue[Task]" = queue.Queue()
    for task in tasks:
        todo.put(task)

    failures: list[Task] = []
    failures_lock = threading.Lock()
    progress = _Progress(len(tasks))

    def worker() -> None:
        while True:
            try:
                task = todo.get_nowait()
            except queue.Empty:
                break

            logger.info(f"[{progress.step()}/{progress.total}] {task.title}")
            try:
                ok = task.run(wiki)
            except Exception:
                logger.exception(f"Task for '{task.title}' raised")
                task.succeeded = ok = False

            if not ok:
                with failures_lock:
                    failures.append(task)
        logger.debug("Queue empty, worker exiting")

    workers = [
        threading.Thread(target=worker, name=f"batch-{i + 1}", daemon=True)
        for i in range(min(max_workers, len(tasks)))
    ]
    for thread in workers:
        thread.start()
    for thread in workers:
        thread.join()

    if failures:
        logger.warning(f"Batch failed to process ({len(failures)}/{len(tasks)}): {sorted(t.title for t in failures)}")
    else:
        logger.info(f"Batch of {len(tasks)} completed with no failures")
    return failures


def _delete(wiki: "Wiki", task: Task) -> bool:
    return wiki.delete(task.title, task.summary)


def _undelete(wiki: "Wiki", task: Task) -> bool:
    return wiki.undelete(task.title, task.summary)


def _edit(wiki: "Wiki", task: Task) -> bool:
    return wiki.edit(task.title, task.text or "", task.summary)


def _purge(wiki: "Wiki", task: Task) -> bool:
    return wiki.purge([task.title])


def _upload(wiki: "Wiki", task: Task) -> bool:
    return wiki.upload(task.path, task.title, task.text or "", task.summary)


def delete_task(title: str, reason: str) -> Task:
    return Task(title, _delete, summary=reason)


def undelete_task(title: str, reason: str) -> Task:
    return Task(title, _undelete, summary=reason)


def edit_task(title: str, text: str, summary: str) -> Task:
    return Task(title, _edit, text=text, summary=summary)


def purge_task(title: str) -> Task:
    return Task(title, _purge)


def upload_task(path: Union[str, Path], title: str, desc: str = "", summary: str = "") -> Task:
    return Task(title, _upload, text=desc, summary=summary, path=Path(path))


def add_text_task(title: str, text: str, summary: str, append: bool = True) -> Task:
    def add(wiki: "Wiki", task: Task) -> bool:
        return wiki.add_text(task.title, task.text, task.summary, append)

    return Task(title, add, text=text, summary=summary)


def replace_text_task(title: str, pattern: str, replacement: str, summary: str) -> Task:
    def replace(wiki: "Wiki", task: Task) -> bool:
        return wiki.replace_text(task.title, pattern, replacement, task.summary)

    return Task(title, replace, summary=summary)


class BatchRunner:
    """Mass operations over one wiki with a configurable worker count."""

    def __init__(self, wiki: "Wiki", max_workers: Optional[int] = None):
        self.wiki = wiki
        self.max_workers = max_workers or wiki.settings.max_workers

    def start(self, tasks: Iterable[Task]) -> list[Task]:
        return run_batch(self.wiki, tasks, self.max_workers)

    def mass_delete(self, reason: str, titles: Iterable[str]) -> list[Task]:
        return self.start(delete_task(t, reason) for t in titles)

    def mass_undelete(self, reason: str, titles: Iterable[str]) -> list[Task]:
        return self.start(undelete_task(t, reason) for t in titles)

    def mass_purge(self, titles: Iterable[str]) -> list[Task]:
        return self.start(purge_task(t) for t in titles)

    def mass_edit(
        self,
        summary: str,
        titles: Iterable[str],
        add: Optional[str] = None,
        pattern: Optional[str] = None,
        replacement: str = "",
    ) -> list[Task]:
        """
        Append ``add`` to each page and/or replace ``pattern`` with ``replacement``.

        Raises:
            ValueError: If neither ``add`` nor ``pattern`` is given
        """
        if add is None and pattern is None:
            raise ValueError("mass_edit needs text to add or a pattern to replace")

        def edit(wiki: "Wiki", task: Task) -> bool:
            ok = True
            if pattern is not None:
                ok = wiki.replace_text(task.title, pattern, replacement, task.summary)
            if ok and add is not None:
                ok = wiki.add_text(task.title, add, task.summary)
            return ok

        return self.start(Task(t, edit, summary=summary) for t in titles)

    def mass_upload(self, files: dict, desc: str = "", summary: str = "") -> list[Task]:
        """Upload local files; ``files`` maps each local path to its target title."""
        return self.start(upload_task(path, title, desc, summary) for path, title in files.items())
