# gateway/sessions.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging
import uuid
import weakref

log = logging.getLogger(__name__)


@dataclass(eq=False)
class User:
    """
    In-Memory-Zustand eines Nutzers.
    `connection` ist eine schwache Referenz und nur gesetzt, solange is_active.
    """
    id: uuid.UUID
    display_name: str
    is_active: bool = False
    _connection: Optional[weakref.ref] = field(default=None, repr=False)

    @property
    def connection(self) -> Optional[Any]:
        return self._connection() if self._connection is not None else None

    def _attach(self, connection: Optional[Any]) -> None:
        # is_active und Verbindung immer gemeinsam setzen
        self.is_active = True
        self._connection = weakref.ref(connection) if connection is not None else None

    def _detach(self) -> None:
        self.is_active = False
        self._connection = None


def _parse_uuid(raw: Any) -> Optional[uuid.UUID]:
    if raw is None:
        return None
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw).strip())
    except ValueError:
        return None


class SessionRegistry:
    """
    Besitzt die Zuordnung UUID -> User. Einträge werden nie entfernt
    (Lebensdauer = Prozess). Mutiert nur aus dem Event-Loop, daher ohne Lock.
    """

    def __init__(self, default_display_name: str = "Anonymous") -> None:
        self._default_display_name = default_display_name
        self._users: Dict[uuid.UUID, User] = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, user_id: Any) -> bool:
        uid = _parse_uuid(user_id)
        return uid is not None and uid in self._users

    def __iter__(self) -> Iterator[User]:
        return iter(list(self._users.values()))

    def get(self, user_id: Any) -> Optional[User]:
        uid = _parse_uuid(user_id)
        return self._users.get(uid) if uid is not None else None

    def active_users(self) -> List[User]:
        return [u for u in self._users.values() if u.is_active]

    def resolve_or_create(
        self,
        requested_id: Any = None,
        display_name: Optional[str] = None,
        connection: Optional[Any] = None,
    ) -> Tuple[User, bool]:
        """
        Bekannte UUID -> denselben User reaktivieren (Name bleibt erhalten).
        Sonst neue UUID erzeugen; Name fällt auf den Platzhalter zurück.
        """
        user = self.get(requested_id)
        if user is not None:
            user._attach(connection)
            log.info("Session reattached: %s (%s)", user.id, user.display_name)
            return user, False

        if requested_id is not None:
            log.info("Unknown or invalid session id %r, creating a new session", requested_id)

        new_id = uuid.uuid4()
        while new_id in self._users:
            new_id = uuid.uuid4()
        name = (display_name or "").strip() or self._default_display_name
        user = User(id=new_id, display_name=name)
        user._attach(connection)
        self._users[new_id] = user
        log.info("Session created: %s (%s)", user.id, user.display_name)
        return user, True

    def deactivate(self, user: User, connection: Optional[Any] = None) -> None:
        """
        Markiert den User inaktiv. Wird `connection` übergeben und hängt der User
        inzwischen an einer anderen Verbindung, bleibt er aktiv.
        """
        if connection is not None and user.is_active:
            current = user.connection
            if current is not None and current is not connection:
                log.debug("Ignoring deactivate for %s from a superseded connection", user.id)
                return
        user._detach()
        log.info("Session deactivated: %s", user.id)
