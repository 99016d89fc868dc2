r"""
``lfstasks``: Thread barriers and bounded channels
===================================================

This module provides the small set of concurrency tools used by the
transfer queue and the prune command:

    * :class:`WaitGroup`: a counter-based join barrier,
    * :class:`StringSet`: a :class:`set` of strings guarded by a lock,
    * :func:`start_task`: run a function in a thread as part of a group,
    * :func:`make_channel`, :func:`close_channel`, and :func:`drain`:
      bounded :class:`queue.Queue` channels closed with a sentinel.

"""

# Standard library
import logging
import queue
import threading


# Default capacity of bounded channels
CHANNEL_SIZE = 100

# Marker put on a channel to indicate that no more items will arrive
CLOSED = object()

# Logger
LOG = logging.getLogger(__name__)


# Barrier class
class WaitGroup(object):
    r"""Barrier that releases once a counter drops to zero

    :Call:
        >>> wg = WaitGroup()
        >>> wg.add(n=1)
        >>> wg.done()
        >>> wg.wait()
    """
   # --- Class attributes ---
    __slots__ = (
        "_count",
        "_cond")

   # --- __dunder__ ---
    def __init__(self):
        self._count = 0
        self._cond = threading.Condition()

   # --- Counter ---
    def add(self, n=1):
        # Update counter under lock
        with self._cond:
            self._count += n
            # Check for misuse
            if self._count < 0:
                raise ValueError("WaitGroup counter went negative")
            # Wake waiters if released
            if self._count == 0:
                self._cond.notify_all()

    def done(self):
        self.add(-1)

    def wait(self):
        r"""Block until the counter reaches zero"""
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0)


# Locked set
class StringSet(object):
    r"""Set of strings that can be shared between threads

    :Call:
        >>> s = StringSet(items=())
    """
   # --- Class attributes ---
    __slots__ = (
        "_items",
        "_lock")

   # --- __dunder__ ---
    def __init__(self, items=()):
        self._items = set(items)
        self._lock = threading.Lock()

    def __contains__(self, item) -> bool:
        with self._lock:
            return item in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

   # --- Edit ---
    def add(self, item: str) -> bool:
        r"""Add an item, returning ``True`` if it was new"""
        with self._lock:
            # Check if present
            if item in self._items:
                return False
            self._items.add(item)
            return True

    def discard(self, item: str):
        with self._lock:
            self._items.discard(item)

   # --- Output ---
    def snapshot(self) -> set:
        r"""Get a copy of the current contents as a regular :class:`set`"""
        with self._lock:
            return set(self._items)


# Launch a thread in a group
def start_task(wg: WaitGroup, func, *a, **kw) -> threading.Thread:
    r"""Run a function in a daemon thread that is counted by *wg*

    :Call:
        >>> t = start_task(wg, func, *a, **kw)
    :Inputs:
        *wg*: :class:`WaitGroup`
            Barrier to count the task against
        *func*: :class:`callable`
            Function to run, ``func(*a, **kw)``
    :Outputs:
        *t*: :class:`threading.Thread`
            Started thread
    """
    # Count the task before it starts
    wg.add(1)

    # Wrapper that always releases the barrier
    def _run():
        try:
            func(*a, **kw)
        finally:
            wg.done()

    # Start
    t = threading.Thread(target=_run, name=getattr(func, "__name__", None))
    t.daemon = True
    t.start()
    # Output
    return t


# Channels
def make_channel(maxsize=CHANNEL_SIZE) -> queue.Queue:
    r"""Create a bounded channel"""
    return queue.Queue(maxsize=maxsize)


def close_channel(q: queue.Queue):
    r"""Signal that no more items will be put on *q*"""
    q.put(CLOSED)


def drain(q: queue.Queue):
    r"""Iterate through items from a channel until it is closed

    :Call:
        >>> for item in drain(q):
    """
    while True:
        # Blocking receive
        item = q.get()
        # Check for close sentinel
        if item is CLOSED:
            return
        yield item
