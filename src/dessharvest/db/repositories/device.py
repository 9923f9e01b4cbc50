"""Device repository."""

from sqlalchemy import delete, select

from dessharvest.db.models.device import Device
from dessharvest.db.repositories.base import BaseRepository


class DeviceRepository(BaseRepository[Device]):
    """Repository for Device operations."""

    model = Device

    def get_all(self) -> list[Device]:
        """Get all devices in insertion order."""
        stmt = select(Device).order_by(Device.id)
        return list(self.session.scalars(stmt).all())

    def get_by_pn(self, pn: str) -> Device | None:
        """Get the first device with the given product number."""
        stmt = select(Device).where(Device.pn == pn).order_by(Device.id).limit(1)
        return self.session.scalar(stmt)

    def replace_all(self, devices: list[dict]) -> int:
        """Delete every device and insert the given ones.

        Duplicate (pn, sn) pairs in the input keep their first occurrence.

        Args:
            devices: Dictionaries with pn, sn, devcode, devaddr and alias.

        Returns:
            Number of devices stored.
        """
        self.session.execute(delete(Device))

        seen: set[tuple[str, str]] = set()
        instances = []
        for data in devices:
            key = (data["pn"], data["sn"])
            if key in seen:
                continue
            seen.add(key)
            instances.append(
                Device(
                    pn=data["pn"],
                    sn=data["sn"],
                    devcode=data.get("devcode"),
                    devaddr=data.get("devaddr"),
                    alias=data.get("alias"),
                )
            )

        self.session.add_all(instances)
        self.session.flush()
        return len(instances)

    def delete_all(self) -> None:
        """Forget all devices."""
        self.session.execute(delete(Device))
        self.session.flush()
