"""Person model"""

import uuid

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from occ_repro.models.database import Base


class Person(Base):
    """Person record guarded by an optimistic concurrency token"""

    __tablename__ = "people"

    # Columns whose load-time values are part of every update condition
    CONCURRENCY_CHECKED = ("name", "social_security_number")
    MUTABLE_FIELDS = ("name", "phone_number", "social_security_number")

    # Primary key
    person_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    social_security_number: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    phone_number: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Version token, replaced on every successful save
    row_version: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        default=uuid.uuid4,
    )

    def values(self) -> dict:
        """Current values of the mutable fields and the token"""
        data = {field: getattr(self, field) for field in self.MUTABLE_FIELDS}
        data["row_version"] = self.row_version
        return data

    def __repr__(self) -> str:
        return (
            f"<Person(person_id={self.person_id}, name={self.name}, "
            f"phone_number={self.phone_number}, row_version={self.row_version})>"
        )
