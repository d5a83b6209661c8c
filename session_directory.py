"""
In-memory directory mapping logical users to their live Socket.IO connection.

A user is addressable through at most one connection at a time: the one that
authenticated last. Older connections of the same user stay open (and keep
their identity, so their own events are still attributed) but no longer
receive directed deliveries.
"""
import logging
from typing import Optional

from session_models import ConnectionInfo


class SessionDirectory:
    """Bidirectional user <-> connection lookup, scoped to the process lifetime."""

    def __init__(self):
        # user id -> the connection id that currently receives directed events
        self._connections_by_user: dict[str, str] = {}
        # connection id -> identity, for every authenticated connection still open
        self._identities: dict[str, ConnectionInfo] = {}

    def bind(self, user_id: str, connection_id: str, username: Optional[str] = None) -> Optional[str]:
        """
        Registers connection_id as the current connection of user_id.

        Returns:
            The connection id that was orphaned by this bind, or None when the
            user had no other current connection.
        """
        # A connection speaks for one user; re-authenticating as someone else releases the old user.
        former = self._identities.get(connection_id)
        if former is not None and former.user_id != user_id:
            self.unbind(connection_id)

        previous = self._connections_by_user.get(user_id)
        self._connections_by_user[user_id] = connection_id
        self._identities[connection_id] = ConnectionInfo(
            connection_id=connection_id, user_id=user_id, username=username
        )
        if previous is not None and previous != connection_id:
            logging.info(f"User {user_id} rebound from {previous} to {connection_id}; {previous} is orphaned.")
            return previous
        return None

    def lookup(self, user_id: str) -> Optional[str]:
        return self._connections_by_user.get(user_id)

    def unbind(self, connection_id: str) -> Optional[str]:
        """
        Removes the entry whose current connection is connection_id.

        Returns:
            The user id that was unbound, or None if connection_id was not the
            current connection of anyone (never bound, or already replaced).
        """
        identity = self._identities.get(connection_id)
        if identity is None:
            return None
        if self._connections_by_user.get(identity.user_id) != connection_id:
            return None
        del self._connections_by_user[identity.user_id]
        return identity.user_id

    def unbind_by_user(self, user_id: str) -> Optional[str]:
        """Removes the user's entry; returns the connection id it pointed to."""
        return self._connections_by_user.pop(user_id, None)

    def identity(self, connection_id: str) -> Optional[ConnectionInfo]:
        return self._identities.get(connection_id)

    def forget(self, connection_id: str) -> None:
        """Drops the identity of a closed connection."""
        self._identities.pop(connection_id, None)

    def connections_of(self, user_id: str) -> list[str]:
        """Every open connection authenticated as user_id, current or orphaned."""
        return [cid for cid, info in self._identities.items() if info.user_id == user_id]

    def online_user_ids(self) -> list[str]:
        return list(self._connections_by_user)

    def connection_count(self) -> int:
        return len(self._identities)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._connections_by_user

    def __len__(self) -> int:
        return len(self._connections_by_user)
