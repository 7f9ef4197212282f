"""Identity and session context for the signed-in user."""
import logging
from collections.abc import Callable
from dataclasses import dataclass

from services.exceptions import UnauthenticatedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """
    Identity yielded by the external identity provider once a user signs in.

    `uid` is the sole authority for ownership checks; `email` is the sole
    authority for collaborator matching.
    """

    uid: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


class SessionContext:
    """
    Holds the current identity for one client, from sign-in to sign-out.

    Components that need the current user receive this object explicitly.
    Listeners are notified on every transition so that live views can rebuild
    their subscriptions for the new identity (or tear them down on sign-out).
    """

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity
        self._listeners: list[Callable[[Identity | None], None]] = []

    @property
    def identity(self) -> Identity | None:
        """Current identity, or None when signed out."""
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        """Check if a user is signed in."""
        return self._identity is not None

    def require_identity(self) -> Identity:
        """Return the current identity or raise UnauthenticatedError."""
        if self._identity is None:
            raise UnauthenticatedError()
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        """Establish the session for an identity (replaces any previous one)."""
        self._identity = identity
        logger.info("Signed in uid=%s", identity.uid)
        self._notify()

    def sign_out(self) -> None:
        """Tear down the session."""
        if self._identity is None:
            return
        logger.info("Signed out uid=%s", self._identity.uid)
        self._identity = None
        self._notify()

    def add_listener(self, listener: Callable[[Identity | None], None]) -> Callable[[], None]:
        """
        Register a listener called with the new identity on sign-in/sign-out.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._identity)
