"""Player session table."""

from serverpool.schemas.types import PlayerSession
from serverpool.utils.errors import AlreadyBoundError


class SessionTable:
    """Mapping of player id to the server instance currently serving them.

    Like the registry, the table relies on the owning controller to
    serialize mutations.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PlayerSession] = {}

    def bind(self, player_id: str, server_id: str) -> PlayerSession:
        """Bind a player to an instance.

        Raises:
            AlreadyBoundError: If the player already has an active session
        """
        existing = self._sessions.get(player_id)
        if existing is not None:
            raise AlreadyBoundError(player_id, existing.server_id)

        session = PlayerSession(player_id=player_id, server_id=server_id)
        self._sessions[player_id] = session
        return session

    def unbind(self, player_id: str) -> str | None:
        """Remove a player's session.

        Unbinding an unknown player is a no-op.

        Returns:
            The server id the player was bound to, or None
        """
        session = self._sessions.pop(player_id, None)
        return session.server_id if session is not None else None

    def lookup(self, player_id: str) -> str | None:
        session = self._sessions.get(player_id)
        return session.server_id if session is not None else None

    def players_on(self, server_id: str) -> list[str]:
        return [
            session.player_id
            for session in self._sessions.values()
            if session.server_id == server_id
        ]

    def unbind_server(self, server_id: str) -> list[str]:
        """Drop every session bound to ``server_id``.

        Returns:
            Player ids whose sessions were removed
        """
        players = self.players_on(server_id)
        for player_id in players:
            del self._sessions[player_id]
        return players

    def sessions(self) -> list[PlayerSession]:
        return list(self._sessions.values())

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
