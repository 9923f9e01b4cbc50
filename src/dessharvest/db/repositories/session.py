"""Stored session repository."""

from datetime import datetime

from sqlalchemy import delete

from dessharvest.db.models.session import SESSION_ROW_ID, StoredSession
from dessharvest.db.repositories.base import BaseRepository


class SessionRepository(BaseRepository[StoredSession]):
    """Repository for the single StoredSession row."""

    model = StoredSession

    def get(self) -> StoredSession | None:
        """Get the active session row, if any."""
        return self.session.get(StoredSession, SESSION_ROW_ID)

    def replace(
        self,
        mode: str,
        params: dict[str, str],
        base_url: str,
        updated_at: datetime,
        captured_url: str | None = None,
    ) -> int:
        """Write the session row, replacing every column of a previous one."""
        row = {
            "id": SESSION_ROW_ID,
            "mode": mode,
            "params": dict(params),
            "base_url": base_url,
            "captured_url": captured_url,
            "updated_at": updated_at,
        }
        written = self.upsert_rows(
            [row],
            index_elements=["id"],
            constraint=None,
            update_columns=["mode", "params", "base_url", "captured_url", "updated_at"],
        )
        # Drop any cached instance so the next get() reads the new row
        self.session.expire_all()
        return written

    def delete(self) -> None:
        """Delete the active session."""
        self.session.execute(delete(StoredSession))
        self.session.flush()
