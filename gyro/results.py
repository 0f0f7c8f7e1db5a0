"""Deferred results for gyro operations.

Every public operation on `gyro.Gyro` returns a `DeferredResult`. The operation is scheduled on the running event loop
as soon as it is called, so the result can be consumed in whichever way suits the caller:

-   `await result` gives an `OperationResult`, either `OperationResult.Success(value)` or
    `OperationResult.Failure(exception)`, which supports `match/case`.
-   `await result.or_raise()` gives the raw value and raises the error if the operation failed.
-   `await result.or_use(default)` gives the raw value, or `default` if the operation failed.
-   Passing ``callback=handler`` to the operation registers a completion handler that is called once with
    ``handler(error, value)``.

The completion handler is attached to the underlying task before anything can await it, so it always observes the same
outcome as the awaiters and runs before any of them resume.

Example:
    ```python
    match await db.find_one("users", {"name": "Alice"}):
        case OperationResult.Success(user):
            print(user["_id"])
        case OperationResult.Failure(exception):
            print(f"Lookup failed: {exception}")

    def on_done(error, users):
        ...

    db.find("users", {}, callback=on_done)
    ```
"""
import asyncio
from abc import ABC, abstractmethod
from functools import wraps
from typing import Any, Awaitable, Callable, Coroutine, Type, TypeAlias


CompletionHandler: TypeAlias = Callable[[BaseException | None, Any], Any]

# Running operations, held so a task is not garbage collected when the caller drops its handle
_pending: set[asyncio.Task] = set()


class NoResultException(Exception):
    """Raised when accessing `.result` on a failure or `.exception` on a success."""


class OperationResult[T](ABC):
    """The settled outcome of a gyro operation.

    Class Attributes:
        Success (Type[Success[T]]): Reference to the `Success` class.
        Failure (Type[Failure[T]]): Reference to the `Failure` class.
    """
    __match_args__ = ("result", "exception")

    Success: "Type[Success[T]]"
    Failure: "Type[Failure[T]]"

    def __init_subclass__(cls, **kwargs):
        """Exposes `Success` and `Failure` as attributes so callers can match on `OperationResult.Success(...)`."""
        super().__init_subclass__(**kwargs)
        if cls.__name__ in OperationResult.__annotations__:
            setattr(OperationResult, cls.__name__, cls)

    @property
    @abstractmethod
    def result(self) -> T:
        """The value of a successful operation.

        Raises:
            NoResultException: If called on `Failure`.
        """
        ...

    @property
    @abstractmethod
    def exception(self) -> BaseException:
        """The error of a failed operation.

        Raises:
            NoResultException: If called on `Success`.
        """
        ...

    @abstractmethod
    def result_or[D](self, default: D) -> T | D:
        """Returns the operation's value when it succeeded, otherwise `default`.

        Args:
            default: Value to return for a failed operation.
        """
        ...

    @abstractmethod
    def exception_or[D](self, default: D) -> BaseException | D:
        """Returns the operation's error when it failed, otherwise `default`.

        Args:
            default: Value to return for a successful operation.
        """
        ...


class Success[T](OperationResult[T]):
    """An operation that completed, `result` holds the uncast value it produced. Matches as
    ``OperationResult.Success(value)``."""
    __match_args__ = ("result",)

    def __init__(self, result: T):
        self._result = result

    @property
    def exception(self) -> BaseException:
        raise NoResultException("OperationResult does not wrap an exception")

    @property
    def result(self) -> T:
        return self._result

    def result_or[D](self, default: D) -> T:
        return self._result

    def exception_or[D](self, default: D) -> D:
        return default

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._result!r})"


class Failure[T](OperationResult[T]):
    """An operation that raised. `exception` is the error exactly as raised: `ConnectFailed` when no connection could
    be made, otherwise the unwrapped driver error. Matches as ``OperationResult.Failure(error)``."""
    __match_args__ = ("exception",)

    def __init__(self, exception: BaseException):
        self._exception = exception

    @property
    def exception(self) -> BaseException:
        return self._exception

    @property
    def result(self) -> T:
        raise NoResultException(
            f"OperationResult.{type(self).__name__} does not wrap a result, it only contains an exception"
        )

    def result_or[D](self, default: D) -> D:
        return default

    def exception_or[D](self, default: D) -> BaseException:
        return self._exception

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._exception!r})"


class DeferredResult[T]:
    """A single-resolution handle on a scheduled operation.

    The wrapped coroutine is turned into a task on the running loop immediately, the operation runs whether or not
    anything ever awaits the handle. That is what makes the completion-handler call shape work on its own.

    Attributes:
        _task (asyncio.Task): The task running the operation.
    """
    def __init__(self, operation: Coroutine[Any, Any, T], callback: CompletionHandler | None = None):
        """
        Args:
            operation: The coroutine to run.
            callback: Optional completion handler, called once as ``callback(error, value)``.

        Raises:
            RuntimeError: If there is no running event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            operation.close()
            raise

        self._task: asyncio.Task[T] = loop.create_task(operation)
        _pending.add(self._task)
        self._task.add_done_callback(_release)
        if callback is not None:
            self._task.add_done_callback(lambda task: _notify(callback, task))

    def __await__(self):
        return self._get().__await__()

    def done(self) -> bool:
        return self._task.done()

    async def or_raise(self) -> T:
        """Waits for the operation and returns its value.

        Raises:
            Exception: Whatever the operation raised.
        """
        return await self._task

    async def or_use[D](self, default: D) -> T | D:
        """Waits for the operation and returns its value, or `default` if it failed."""
        match await self:
            case OperationResult.Success(result):
                return result

            case _:
                return default

    async def _get(self) -> OperationResult[T]:
        try:
            return OperationResult.Success(await self.or_raise())
        except Exception as e:
            return OperationResult.Failure(e)


def deferred[**P, T](
    method: Callable[P, Awaitable[T]],
) -> Callable[..., DeferredResult[T]]:
    """Turns an async method into a gyro operation.

    The decorated callable returns a `DeferredResult` and accepts an extra keyword-only ``callback`` argument. Both call
    shapes share the one implementation.
    """
    @wraps(method)
    def operation(*args: P.args, callback: CompletionHandler | None = None, **kwargs: P.kwargs) -> DeferredResult[T]:
        return DeferredResult(method(*args, **kwargs), callback)

    return operation


def _notify(callback: CompletionHandler, task: asyncio.Task):
    if task.cancelled():
        callback(asyncio.CancelledError(), None)
    elif (error := task.exception()) is not None:
        callback(error, None)
    else:
        callback(None, task.result())


def _release(task: asyncio.Task):
    _pending.discard(task)
    # Failures of operations nobody awaits already went out on the error signal
    if not task.cancelled():
        task.exception()
