"""Cooperative cancellation for pipeline runs."""

import threading


class AbortToken:
    """Cancellation flag shared by every task spawned for one run.

    Setting the token never interrupts an in-flight call; tasks poll
    ``is_set`` at their checkpoints and stop before the next step or window.
    Backed by a ``threading.Event`` so a signal handler or another thread
    can set it safely.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def clear(self) -> None:
        """Reset the token. Only the job registry does this between runs."""
        self._event.clear()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"AbortToken(set={self.is_set})"


def is_aborted(token: AbortToken | None) -> bool:
    """Check an optional token (``None`` means the run cannot be aborted)."""
    return token is not None and token.is_set
