"""Named lifecycle signals with explicit listener registration.

The connection manager and the operation layer report lifecycle changes through a `Signals` registry:

-   ``connect`` (url): a connection attempt succeeded.
-   ``close`` (url): the driver lost every readable server.
-   ``reconnect`` (url): the driver recovered the same connection on its own.
-   ``error`` (exception): a connect attempt or a data operation failed.

Any other name can be emitted and listened to as well. Listeners for a name are called in registration order.
"""
from collections import defaultdict
from typing import Any, Callable, TypeAlias

import structlog


logger = structlog.get_logger(__name__)

Listener: TypeAlias = Callable[..., Any]

CONNECT = "connect"
CLOSE = "close"
RECONNECT = "reconnect"
ERROR = "error"


class Signals:
    def __init__(self):
        self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)

    def on(self, name: str, listener: Listener) -> Listener:
        """Registers `listener` for the signal `name`. Returns the listener so it can be removed later."""
        self._listeners[name].append(listener)
        return listener

    def off(self, name: str, listener: Listener) -> bool:
        """Removes the first registration of `listener` for `name`. Returns False when it was not registered."""
        try:
            self._listeners[name].remove(listener)
        except ValueError:
            return False

        return True

    def listeners(self, name: str) -> tuple[Listener, ...]:
        return tuple(self._listeners.get(name, ()))

    def emit(self, name: str, *args: Any) -> int:
        """Calls every listener registered for `name` with `args`.

        A listener that raises is logged with its traceback and the remaining listeners still run.

        Returns:
            The number of listeners that were called.
        """
        listeners = self.listeners(name)
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Signal listener failed", signal=name, listener=repr(listener))

        return len(listeners)
