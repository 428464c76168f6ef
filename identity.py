import logging
from typing import Callable, Optional

from domain import UserContext

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[UserContext]], None]


class IdentityProvider:
    """Tracks the signed-in user and tells listeners when it changes.

    Credential checks happen elsewhere; this only records the outcome.
    """

    def __init__(self) -> None:
        self._current: Optional[UserContext] = None
        self._listeners: list[IdentityListener] = []

    @property
    def current(self) -> Optional[UserContext]:
        return self._current

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def sign_in(self, user_id: str, email: Optional[str] = None) -> UserContext:
        ctx = UserContext(user_id=user_id, email=email)
        if ctx != self._current:
            self._current = ctx
            logger.info(f"identity_changed: user={user_id}")
            self._notify()
        return ctx

    def sign_out(self) -> None:
        if self._current is None:
            return
        logger.info(f"identity_changed: user=None previous={self._current.user_id}")
        self._current = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._current)
