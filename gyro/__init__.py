"""gyro, a resilient asyncio access layer for MongoDB.

gyro sits on top of motor and takes care of the parts every long running service ends up writing by hand:

-   **One shared, self-healing connection**: created lazily, shared by every concurrent caller, and re-established
    automatically after failures or when the driver reports the connection closed.
-   **String identifiers**: applications use 24 character hex strings, gyro converts them to and from `ObjectId` on
    the way in and out, anywhere in a document.
-   **Deferred results or callbacks**: every operation returns an awaitable `DeferredResult` and optionally calls a
    ``callback(error, value)``, from a single implementation.
-   **Consistent defaults**: acknowledged writes and "return the new document" semantics regardless of which driver
    method backs an operation.

Note:
This `__init__.py` file uses a custom `__getattr__` to lazily load submodules and the public symbols, so importing
`gyro` does not import motor until it is needed.
"""
import importlib
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gyro.client import Gyro
    from gyro.connection import ConnectionManager, ConnectionState
    from gyro.exceptions import GyroError, ConnectFailed, InvalidSettings
    from gyro.identifiers import cast, uncast, is_valid_object_id, new_id
    from gyro.results import DeferredResult, OperationResult
    from gyro.settings import ConnectionSettings
    from gyro.signals import Signals

__lookup = {
    "Gyro": "gyro.client",
    "ConnectionManager": "gyro.connection",
    "ConnectionState": "gyro.connection",
    "ConnectionSettings": "gyro.settings",
    "DeferredResult": "gyro.results",
    "OperationResult": "gyro.results",
    "Signals": "gyro.signals",
    "GyroError": "gyro.exceptions",
    "ConnectFailed": "gyro.exceptions",
    "InvalidSettings": "gyro.exceptions",
    "cast": "gyro.identifiers",
    "uncast": "gyro.identifiers",
    "is_valid_object_id": "gyro.identifiers",
    "new_id": "gyro.identifiers",
}

__all__ = list(__lookup.keys())

__modules = {
    _path.stem
    for _path in Path(__file__).parent.iterdir()
    if not _path.name.startswith("_") and _path.suffix == ".py"
}


def __getattr__(name):
    """Lazily loads the public symbols listed in `__lookup` and any `gyro` submodule.

    Raises:
        ImportError: If a listed symbol cannot be imported from its module.
        AttributeError: If the name is neither a listed symbol nor a submodule.
    """
    if name in __lookup:
        try:
            module = importlib.import_module(__lookup[name])
        except Exception as e:
            raise ImportError(f"Failed to import {name} from {__lookup[name]}: {e}") from e

        return getattr(module, name)

    if name in __modules:
        return importlib.import_module(f"gyro.{name}")

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
