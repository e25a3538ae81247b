"""Bounded calls to collaborator ports."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from cronwarden.errors.exceptions import CollaboratorUnavailableError

T = TypeVar("T")


async def guarded_call(collaborator: str, call: Awaitable[T], timeout: float) -> T:
    """Await ``call`` for at most ``timeout`` seconds.

    Timeouts and any exception raised by the port surface as
    CollaboratorUnavailableError naming ``collaborator``.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise CollaboratorUnavailableError(collaborator, f"timed out after {timeout}s") from None
    except CollaboratorUnavailableError:
        raise
    except Exception as exc:
        raise CollaboratorUnavailableError(collaborator, str(exc) or exc.__class__.__name__) from exc
