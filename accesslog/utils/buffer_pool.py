"""Thread-safe pool of reusable byte buffers for rendering log lines."""

import threading
from contextlib import contextmanager
from typing import Iterator, List

# Idle buffers kept around; extra releases are dropped
DEFAULT_MAX_IDLE = 64

# Buffers that grew past this size are not pooled (one huge request body
# should not pin memory for the lifetime of the process)
DEFAULT_MAX_BUFFER_SIZE = 64 * 1024


class BufferPool:
    """Pool of ``bytearray`` buffers.

    ``acquire`` and ``release`` may be called from any number of threads or
    tasks; a buffer handed out by ``acquire`` is owned by one caller until
    it is released.
    """

    def __init__(self, max_idle: int = DEFAULT_MAX_IDLE,
                 max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE):
        self.max_idle = max_idle
        self.max_buffer_size = max_buffer_size
        self._idle: List[bytearray] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._idle)

    def acquire(self) -> bytearray:
        """Return an empty buffer, reusing an idle one when available."""
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return bytearray()

    def release(self, buffer: bytearray) -> None:
        """Clear ``buffer`` and return it to the pool."""
        if len(buffer) > self.max_buffer_size:
            return
        del buffer[:]
        with self._lock:
            if len(self._idle) < self.max_idle:
                self._idle.append(buffer)

    @contextmanager
    def borrow(self) -> Iterator[bytearray]:
        """Context manager that always releases the buffer on exit.

        Usage:
            with pool.borrow() as buf:
                buf += b"..."
        """
        buffer = self.acquire()
        try:
            yield buffer
        finally:
            self.release(buffer)


# Shared default pool
default_pool = BufferPool()
