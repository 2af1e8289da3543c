"""
Contract between the embedded-tool transport and the recovery engine.

The transport itself is outside this package. What it needs from us is a way
to turn whatever went wrong (an httpx failure, a timeout, a refused
connection) into a ServiceError, and a place to park request futures so that
timeouts and instance teardown reject them instead of leaving them hanging.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from pydantic import ValidationError
from shortuuid import random as shortuuid_random

from toolhost_resilience.exceptions import InstanceDestroyedError, MessageTimeoutError
from toolhost_resilience.models import Clock, ServiceError, ServiceErrorType, now_ms

logger = logging.getLogger("toolhost-resilience.bridge")

_UNAVAILABLE_STATUSES = {502, 503, 504}


def _retry_after_ms(response: httpx.Response) -> Optional[int]:
    """Parse a ``Retry-After`` header given in seconds."""
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        # HTTP-date form is not used by the embedded services
        return None


def _from_status(
    service_id: str,
    exc: httpx.HTTPStatusError,
    context: dict[str, Any],
    timestamp: int,
) -> ServiceError:
    status = exc.response.status_code
    message = f"HTTP {status}: {exc.response.reason_phrase}"

    if status == 429:
        retry_after = _retry_after_ms(exc.response)
        if retry_after is not None:
            context.setdefault("retry_after", retry_after)
        error_type, retryable = ServiceErrorType.RATE_LIMITED, True
    elif status in _UNAVAILABLE_STATUSES:
        error_type, retryable = ServiceErrorType.SERVICE_UNAVAILABLE, True
    elif status == 408:
        error_type, retryable = ServiceErrorType.TIMEOUT, True
    elif 400 <= status < 500:
        error_type, retryable = ServiceErrorType.VALIDATION_ERROR, False
    else:
        error_type, retryable = ServiceErrorType.UNKNOWN, status >= 500

    return ServiceError(
        type=error_type,
        service_id=service_id,
        message=message,
        timestamp=timestamp,
        retryable=retryable,
        code=str(status),
        context=context,
    )


def service_error_from_exception(
    service_id: str,
    exc: BaseException,
    context: Optional[dict[str, Any]] = None,
    clock: Optional[Clock] = None,
) -> ServiceError:
    """
    Normalize a transport failure into a ServiceError.

    Args:
        service_id: Embedded service the call was made to
        exc: The exception raised by the transport
        context: Extra context merged into the error
        clock: Millisecond clock for the timestamp

    Returns:
        The classified ServiceError
    """
    timestamp = (clock or now_ms)()
    ctx = {"exception": type(exc).__name__, **(context or {})}

    if isinstance(exc, httpx.HTTPStatusError):
        return _from_status(service_id, exc, ctx, timestamp)

    # Timeouts first: asyncio.TimeoutError is an OSError and httpx timeouts are RequestErrors
    if isinstance(exc, (MessageTimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        error_type, retryable = ServiceErrorType.TIMEOUT, True
    elif isinstance(exc, (httpx.RequestError, ConnectionError, OSError)):
        error_type, retryable = ServiceErrorType.NETWORK_ERROR, True
    elif isinstance(exc, ValidationError):
        error_type, retryable = ServiceErrorType.VALIDATION_ERROR, False
    else:
        error_type, retryable = ServiceErrorType.UNKNOWN, False

    error = ServiceError(
        type=error_type,
        service_id=service_id,
        message=str(exc) or type(exc).__name__,
        timestamp=timestamp,
        retryable=retryable,
        code=type(exc).__name__,
        context=ctx,
    )
    logger.debug(f"Normalized {type(exc).__name__} from {service_id} to {error_type.value}")
    return error


Sender = Callable[[str], Union[None, Awaitable[None]]]


class PendingRequests:
    """
    Outstanding requests to embedded tool instances.

    ``request`` hands a fresh request id to the sender and waits for the
    transport to call ``resolve`` or ``reject`` with that id. Requests that
    outlive their timeout fail with MessageTimeoutError; destroying an
    instance fails all of its requests with InstanceDestroyedError.
    """

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._futures: dict[str, asyncio.Future] = {}
        self._instances: dict[str, str] = {}

    async def request(self, instance_id: str, send: Sender, timeout: Optional[float] = None) -> Any:
        """
        Send a request and wait for its response.

        Args:
            instance_id: Embedded tool instance the request goes to
            send: Callable that transmits the request, given its id
            timeout: Seconds to wait (defaults to ``default_timeout``)

        Raises:
            MessageTimeoutError: If no response arrives in time
            InstanceDestroyedError: If the instance is destroyed while waiting
        """
        timeout = self.default_timeout if timeout is None else timeout
        request_id = f"req_{shortuuid_random(length=10)}"
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._futures[request_id] = future
        self._instances[request_id] = instance_id

        try:
            sent = send(request_id)
            if inspect.isawaitable(sent):
                await sent
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request {request_id} to {instance_id} timed out after {timeout}s")
            raise MessageTimeoutError(instance_id=instance_id, timeout_seconds=timeout) from None
        finally:
            self._futures.pop(request_id, None)
            self._instances.pop(request_id, None)

    def resolve(self, request_id: str, result: Any) -> bool:
        future = self._futures.get(request_id)
        if future is None or future.done():
            return False
        future.set_result(result)
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        future = self._futures.get(request_id)
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def destroy_instance(self, instance_id: str) -> int:
        """Fail every outstanding request of ``instance_id``.

        Returns:
            Number of requests rejected
        """
        request_ids = [rid for rid, iid in self._instances.items() if iid == instance_id]
        rejected = sum(self.reject(rid, InstanceDestroyedError()) for rid in request_ids)
        if rejected:
            logger.info(f"Rejected {rejected} pending requests of destroyed instance {instance_id}")
        return rejected

    def pending_count(self, instance_id: Optional[str] = None) -> int:
        if instance_id is None:
            return len(self._futures)
        return sum(1 for iid in self._instances.values() if iid == instance_id)


__all__ = [
    "service_error_from_exception",
    "PendingRequests",
    "Sender",
]
