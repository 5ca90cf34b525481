from __future__ import annotations

import logging
import os
import queue
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch
from watchdog.observers.polling import PollingObserver

from jfroffload.errors import WatchSetupError

LOGGER = logging.getLogger(__name__)

KIND_CREATE = "create"
KIND_WRITE = "write"
KIND_REMOVE = "remove"
KIND_OTHER = "other"

# watchdog event_type -> our kind; "moved" is split into remove + create.
_KIND_BY_EVENT_TYPE = {
    "created": KIND_CREATE,
    "modified": KIND_WRITE,
    "closed": KIND_WRITE,
    "deleted": KIND_REMOVE,
}
# File events of these kinds collapse into one pending event per path.
_COALESCED_KINDS = {KIND_CREATE, KIND_WRITE}


@dataclass(frozen=True)
class WatchEvent:
    path: Path
    kind: str
    is_directory: bool = False


class _QueueingHandler(FileSystemEventHandler):
    """Runs on the observer thread: translate and enqueue, nothing else."""

    def __init__(self, events: "queue.Queue[WatchEvent]") -> None:
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            is_dir = bool(event.is_directory)
            if event.event_type == "moved":
                self._events.put(WatchEvent(Path(os.fsdecode(event.src_path)), KIND_REMOVE, is_dir))
                self._events.put(WatchEvent(Path(os.fsdecode(event.dest_path)), KIND_CREATE, is_dir))
                return
            kind = _KIND_BY_EVENT_TYPE.get(event.event_type, KIND_OTHER)
            self._events.put(WatchEvent(Path(os.fsdecode(event.src_path)), kind, is_dir))
        except Exception:
            LOGGER.exception("Failed to translate watcher event event=%r", event, extra={"category": "WATCH"})


class DirectoryWatcher:
    """
    Filesystem notifications for a tree whose subdirectories appear at runtime.

    Every directory gets its own non-recursive watch. The subscription map is
    only touched from the thread calling start() and poll(), the coordinator
    loop, so it needs no lock. The same goes for the pending buffer, where
    bursts of create/write notifications for one file are merged so a slow
    consumer sees each path once per burst.
    """

    def __init__(self, root: Path, use_polling: bool = False) -> None:
        self._root = Path(root)
        self._use_polling = use_polling
        self._events: "queue.Queue[WatchEvent]" = queue.Queue()
        self._handler = _QueueingHandler(self._events)
        self._observer: Optional[BaseObserver] = None
        self._watches: Dict[Path, ObservedWatch] = {}
        self._pending: "OrderedDict[Union[Path, int], WatchEvent]" = OrderedDict()
        self._seq = 0

    @property
    def subscriptions(self) -> FrozenSet[Path]:
        return frozenset(self._watches)

    def start(self) -> None:
        if not self._root.is_dir():
            raise WatchSetupError(f"Watch root does not exist or is not a directory: {self._root}")
        observer = PollingObserver() if self._use_polling else Observer()
        observer.daemon = True
        observer.start()
        self._observer = observer
        try:
            self._schedule(self._root)
        except OSError as exc:
            self.stop()
            raise WatchSetupError(f"Failed to watch root {self._root}: {exc}") from exc
        self._subscribe_tree(self._root, emit_existing=False, include_top=False)
        LOGGER.info(
            "Watching root=%s directories=%s observer=%s",
            self._root,
            len(self._watches),
            type(observer).__name__,
            extra={"category": "WATCH"},
        )

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.unschedule_all()
        observer.stop()
        observer.join(timeout=5)

    def poll(self, timeout: float) -> Optional[WatchEvent]:
        """Next notification, or None after `timeout` seconds without one."""
        if not self._pending:
            try:
                self._buffer(self._events.get(timeout=max(0.0, timeout)))
            except queue.Empty:
                return None
        self._drain_queue()
        _key, event = self._pending.popitem(last=False)
        if event.is_directory and event.kind == KIND_CREATE:
            self._subscribe_tree(event.path, emit_existing=True)
        return event

    def _drain_queue(self) -> None:
        while True:
            try:
                self._buffer(self._events.get_nowait())
            except queue.Empty:
                return

    def _buffer(self, event: WatchEvent) -> None:
        if event.is_directory or event.kind not in _COALESCED_KINDS:
            self._seq += 1
            self._pending[self._seq] = event
            return
        previous = self._pending.get(event.path)
        if previous is None or (previous.kind != KIND_CREATE and event.kind == KIND_CREATE):
            self._pending[event.path] = event
            return
        LOGGER.debug("Coalesced repeat event path=%s kind=%s", event.path, event.kind, extra={"category": "WATCH"})

    def _schedule(self, directory: Path) -> None:
        assert self._observer is not None
        previous = self._watches.get(directory)
        if previous is not None:
            # Same path created again (pod restarted with the same name): the old
            # inotify watch died with the old inode, so replace it.
            try:
                self._observer.unschedule(previous)
            except KeyError:
                pass
        self._watches[directory] = self._observer.schedule(self._handler, str(directory), recursive=False)
        LOGGER.info("Watching directory path=%s", directory, extra={"category": "WATCH"})

    def _subscribe_tree(self, top: Path, emit_existing: bool, include_top: bool = True) -> None:
        """
        Subscribe `top` and every directory below it.

        With emit_existing, files already present get a synthetic create event,
        covering writes that landed before the new watch was in place.
        """
        def _on_error(exc: OSError) -> None:
            LOGGER.warning("Cannot list directory path=%s reason=%s", exc.filename, exc, extra={"category": "WATCH"})

        for dirpath, _dirnames, filenames in os.walk(top, onerror=_on_error):
            directory = Path(dirpath)
            if include_top or directory != top:
                try:
                    self._schedule(directory)
                except OSError as exc:
                    LOGGER.warning(
                        "Failed to watch new directory path=%s reason=%s (periodic scan will cover it)",
                        directory,
                        exc,
                        extra={"category": "WATCH"},
                    )
                    continue
            if emit_existing:
                for name in filenames:
                    self._events.put(WatchEvent(directory / name, KIND_CREATE, False))
