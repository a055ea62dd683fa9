"""Cooperative cancellation.

Long passes poll a :class:`CancellationToken` once per edge or junction
and stop at the next iteration boundary once it is set, handing back
whatever they finished plus the ids they did not get to.  The token is
safe to set from another thread.
"""

import threading
from typing import Optional


class CancellationToken:
    """Flag shared between the caller and a running pipeline."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    """Return True when ``token`` is given and has been cancelled."""
    return token is not None and token.is_cancelled
