"""
Controller Manager - Work queue and worker pool that drive the reconcilers

Store events enqueue the changed object for every controller watching its
kind, plus the objects that own it (parent node, workflow, schedule). A key
is handed to at most one worker at a time; failed passes are requeued with
exponential backoff and a periodic resync re-enqueues everything.
"""
import heapq
import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from .interfaces import IObjectStore, IReconciler
from .models import NamespacedName

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

OwnerMapper = Callable[[Any], List[Tuple[str, NamespacedName]]]


class WorkQueue:
    """
    De-duplicating work queue with delayed and rate-limited adds.

    A key added while it is queued is dropped; a key added while a worker is
    processing it is queued again once that worker calls done().
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 60.0, clock: Callable = time.monotonic):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._cond = threading.Condition()
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._delayed = []
        self._deadlines: Dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._failures: Dict[Hashable, int] = {}
        self._shutdown = False

    def add(self, key: Hashable):
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable):
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: Hashable, delay: float):
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            ready_at = self._clock() + delay
            pending = self._deadlines.get(key)
            if pending is not None and pending <= ready_at:
                return
            self._deadlines[key] = ready_at
            heapq.heappush(self._delayed, (ready_at, next(self._sequence), key))
            self._cond.notify()

    def add_rate_limited(self, key: Hashable) -> float:
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2 ** failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable):
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def _promote_delayed(self):
        now = self._clock()
        while self._delayed:
            ready_at, _, key = self._delayed[0]
            # Entries superseded by an earlier deadline are dropped
            stale = self._deadlines.get(key) != ready_at
            if not stale and ready_at > now:
                break
            heapq.heappop(self._delayed)
            if not stale:
                del self._deadlines[key]
                self._add_locked(key)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Next ready key, or None on shutdown or when the timeout passes"""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_delayed()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutdown:
                    return None

                wait = None
                if deadline is not None:
                    wait = deadline - self._clock()
                    if wait <= 0:
                        return None
                if self._delayed:
                    until_next = self._delayed[0][0] - self._clock()
                    wait = until_next if wait is None else min(wait, until_next)
                self._cond.wait(timeout=None if wait is None else max(wait, 0))

    def done(self, key: Hashable):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def next_delay(self) -> Optional[float]:
        """Seconds until the earliest delayed key is due, None when nothing is delayed"""
        with self._cond:
            if not self._delayed:
                return None
            return max(self._delayed[0][0] - self._clock(), 0)

    def ready(self) -> int:
        with self._cond:
            self._promote_delayed()
            return len(self._queue)

    def shut_down(self):
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()


@dataclass
class Controller:
    name: str
    kind: str
    reconciler: IReconciler


class ControllerManager:
    """Owns the controllers, their shared queue and the worker threads"""

    def __init__(self, store: IObjectStore, workers: int = 4, resync_period: float = 30.0,
                 base_delay: float = 0.005, max_delay: float = 60.0):
        self.store = store
        self.workers = workers
        self.resync_period = resync_period
        self.queue = WorkQueue(base_delay=base_delay, max_delay=max_delay)
        self.controllers: Dict[str, Controller] = {}
        self._watches: Dict[str, List[str]] = {}
        self._owner_mappers: Dict[str, List[OwnerMapper]] = {}
        self._threads: List[threading.Thread] = []
        self._stopped = threading.Event()
        self._subscribed = False

    def register(self, name: str, kind: str, reconciler: IReconciler):
        if name in self.controllers:
            raise ValueError(f"controller {name} registered twice")
        self.controllers[name] = Controller(name, kind, reconciler)
        self._watches.setdefault(kind, []).append(name)
        logger.debug(f"Registered controller {name} for {kind}")

    def add_owner_mapping(self, kind: str, mapper: OwnerMapper):
        """Objects of kind also enqueue whatever mapper returns for them"""
        self._owner_mappers.setdefault(kind, []).append(mapper)

    def watched_kinds(self) -> List[str]:
        return sorted(set(self._watches) | set(self._owner_mappers))

    def enqueue(self, kind: str, key: NamespacedName):
        for name in self._watches.get(kind, []):
            self.queue.add((name, key))

    def enqueue_all(self):
        for kind in self._watches:
            for obj in self.store.list(kind):
                self.enqueue(kind, obj.meta.key())

    def on_event(self, event_type: str, obj: Any):
        logger.debug(f"{event_type} {obj.kind} {obj.meta.key()}")
        self.enqueue(obj.kind, obj.meta.key())
        for mapper in self._owner_mappers.get(obj.kind, []):
            for owner_kind, owner_key in mapper(obj):
                self.enqueue(owner_kind, owner_key)

    def subscribe(self):
        if not self._subscribed:
            self.store.subscribe(self.on_event)
            self._subscribed = True

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Run one reconcile pass; False when no key became ready in time"""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False

        name, request = key
        controller = self.controllers[name]
        try:
            result = controller.reconciler.reconcile(request)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Controller {name} failed on {request}: {e}, retrying in {delay:.3f}s")
        else:
            if result.requeue_after:
                self.queue.forget(key)
                self.queue.add_after(key, result.requeue_after)
            elif result.requeue:
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
        finally:
            self.queue.done(key)
        return True

    def run_until_idle(self, timeout: float = 30.0, max_wait: Optional[float] = None) -> int:
        """
        Process keys on the calling thread until the queue is quiet.

        Delayed keys due within max_wait seconds are waited for (all of them
        when max_wait is None); the drain stops at timeout either way.
        Returns the number of passes run.
        """
        self.subscribe()
        self.enqueue_all()
        passes = 0
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.process_next(timeout=0):
                passes += 1
                continue

            delay = self.queue.next_delay()
            if delay is None or (max_wait is not None and delay > max_wait):
                break
            wait = min(delay, deadline - time.monotonic())
            if self.process_next(timeout=max(wait, 0) + 0.01):
                passes += 1

        logger.info(f"Drained work queue after {passes} passes")
        return passes

    def start(self):
        self.subscribe()
        self.enqueue_all()
        for index in range(self.workers):
            thread = threading.Thread(target=self._worker, name=f"worker-{index}", daemon=True)
            self._threads.append(thread)
            thread.start()

        resync = threading.Thread(target=self._resync, name="resync", daemon=True)
        self._threads.append(resync)
        resync.start()
        logger.info(f"Started {self.workers} workers for {len(self.controllers)} controllers")

    def _worker(self):
        while not self._stopped.is_set():
            self.process_next(timeout=0.5)

    def _resync(self):
        while not self._stopped.wait(self.resync_period):
            try:
                self.enqueue_all()
            except Exception as e:
                logger.error(f"Resync failed: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called or the timeout passes"""
        return self._stopped.wait(timeout)

    def stop(self):
        self._stopped.set()
        self.queue.shut_down()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads.clear()
        logger.info("Controller manager stopped")
