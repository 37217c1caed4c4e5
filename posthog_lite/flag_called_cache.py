"""
Bounded memory of which users have already reported which flags.

`FlagCalledCache` decides whether a `$feature_flag_called` event still needs
to be sent for a `(distinct_id, flag_key)` pair. It is never used to cache
flag values: every evaluation still goes to the server.

Usage:

    from posthog_lite import Posthog
    from posthog_lite.flag_called_cache import FlagCalledCache

    cache = FlagCalledCache(max_size=50_000, sweep_interval=10).start()
    posthog = Posthog("<project_api_key>", flag_called_cache=cache)
    ...
    cache.stop()

Entries are kept in least-recently-used order. Inserting never evicts;
a background sweep trims the cache back to `max_size` every
`sweep_interval` seconds, so it can briefly hold more than `max_size` keys.
"""

import logging
import threading
from collections import OrderedDict
from typing import Hashable, Optional

from posthog_lite.poller import Poller

DEFAULT_MAX_SIZE = 50_000
DEFAULT_SWEEP_INTERVAL = 10
# Upper bound on evictions done while holding the lock, so lookups are never
# blocked for long by a big sweep.
SWEEP_BATCH_SIZE = 1000

log = logging.getLogger("posthog_lite")


class FlagCalledCache(object):
    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        sweep_batch_size: int = SWEEP_BATCH_SIZE,
    ):
        if max_size < 0:
            raise ValueError("max_size must not be negative")
        self.max_size = max_size
        self.sweep_interval = sweep_interval
        self.sweep_batch_size = max(1, sweep_batch_size)
        self._entries: "OrderedDict[Hashable, bool]" = OrderedDict()
        self._lock = threading.Lock()
        self._poller: Optional[Poller] = None

    def exists(self, key: Hashable) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._entries.move_to_end(key)
            return True

    def put(self, key: Hashable, value: bool = True) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)

    def sweep(self) -> int:
        """Evict least recently used keys until the cache fits `max_size`."""
        evicted = 0
        while True:
            with self._lock:
                excess = len(self._entries) - self.max_size
                if excess <= 0:
                    break
                for _ in range(min(excess, self.sweep_batch_size)):
                    self._entries.popitem(last=False)
                    evicted += 1

        if evicted:
            log.debug("evicted %d entries from the flag called cache", evicted)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def start(self) -> "FlagCalledCache":
        """Start the periodic sweep. Returns the cache so it can be chained."""
        if self._poller is None:
            self._poller = Poller(interval=self.sweep_interval, execute=self.sweep)
            self._poller.start()
        return self

    def stop(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None

    @property
    def running(self) -> bool:
        return self._poller is not None and self._poller.is_alive()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries
