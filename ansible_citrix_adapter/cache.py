import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OnceCache(Generic[T]):
    """
    A process-wide memoised fetch with single-flight semantics.

    The first caller of ``get`` runs the loader while holding the lock, so
    concurrent first callers block on that same fetch instead of issuing their
    own. Whatever the loader produced, a value or an exception, is kept for
    the lifetime of the process and handed to every later caller. There is no
    invalidation; ``reset`` exists for tests.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._populated = False
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

    def get(self, loader: Callable[[], T]) -> T:
        if not self._populated:
            with self._lock:
                if not self._populated:
                    logger.debug("Populating cache '%s'", self.name)
                    try:
                        self._value = loader()
                    except Exception as e:
                        logger.warning("Populating cache '%s' failed: %s", self.name, e)
                        self._error = e
                    self._populated = True
        if self._error is not None:
            raise self._error
        return self._value

    @property
    def populated(self) -> bool:
        return self._populated

    def reset(self):
        with self._lock:
            self._populated = False
            self._value = None
            self._error = None
