"""Latest snapshot repository."""

from sqlalchemy import select

from dessharvest.db.models.latest import LatestSnapshot
from dessharvest.db.repositories.base import BaseRepository


class LatestSnapshotRepository(BaseRepository[LatestSnapshot]):
    """Repository for LatestSnapshot operations."""

    model = LatestSnapshot

    def get_by_pn(self, pn: str, sn: str | None = None) -> LatestSnapshot | None:
        """Get the snapshot for a device.

        Args:
            pn: Device product number.
            sn: Device serial number. When None, the most recently fetched
                snapshot under pn is returned.

        Returns:
            Snapshot or None if never fetched.
        """
        stmt = select(LatestSnapshot).where(LatestSnapshot.pn == pn)
        if sn is not None:
            stmt = stmt.where(LatestSnapshot.sn == sn)
        stmt = stmt.order_by(LatestSnapshot.fetched_at.desc()).limit(1)
        return self.session.scalar(stmt)

    def upsert(self, snapshot_data: dict) -> LatestSnapshot:
        """Insert or overwrite the snapshot of a device.

        Args:
            snapshot_data: Dictionary with pn, sn, pars, gts, generated_at, fetched_at.

        Returns:
            The stored snapshot.
        """
        row = {"sn": "", **snapshot_data}
        self.upsert_rows(
            [row],
            index_elements=["pn", "sn"],
            constraint=None,
            update_columns=["pars", "gts", "generated_at", "fetched_at"],
        )
        self.session.expire_all()
        return self.get_by_pn(row["pn"], row["sn"])  # type: ignore
