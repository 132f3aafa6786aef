"""Client, hospital, candidate and umbrella lookup models.

These are maintained elsewhere; the engine only reads the fields below.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tms_financials.models.base import Base, TimestampMixin


class Client(Base, TimestampMixin):
    """Billed client (hospital trust or agency customer)."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    vat_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    hospitals: Mapped[list[ClientHospital]] = relationship(back_populates="client")


class ClientHospital(Base):
    """Maps a normalised hospital name onto the client that pays for it."""

    __tablename__ = "client_hospital"

    hospital_norm: Mapped[str] = mapped_column(String, primary_key=True)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )

    client: Mapped[Client] = relationship(back_populates="hospitals")


class Umbrella(Base, TimestampMixin):
    """Umbrella company that receives pay on behalf of candidates."""

    __tablename__ = "umbrella"

    umbrella_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    sort_code: Mapped[str | None] = mapped_column(String, nullable=True)
    account_number: Mapped[str | None] = mapped_column(String, nullable=True)


class Candidate(Base, TimestampMixin):
    """Worker who occupies shifts."""

    __tablename__ = "candidate"

    candidate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    key_norm: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_method: Mapped[str | None] = mapped_column(String, nullable=True)

    # Own bank details (PAYE)
    account_holder: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    sort_code: Mapped[str | None] = mapped_column(String, nullable=True)
    account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    umbrella_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("umbrella.umbrella_id"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "pay_method IS NULL OR pay_method IN ('PAYE', 'UMBRELLA')",
            name="candidate_pay_method_check",
        ),
    )

    umbrella: Mapped[Umbrella | None] = relationship()
