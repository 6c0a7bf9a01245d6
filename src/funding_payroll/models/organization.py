"""Grant and grant item models (funding sources)."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from funding_payroll.models.base import Base, TimestampMixin


class Grant(Base, TimestampMixin):
    """A grant or organizational fund owned by one organization."""

    __tablename__ = "grant"

    grant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    organization: Mapped[str] = mapped_column(String, nullable=False)
    # Hub grants route inter-organization advances for their organization
    is_hub: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    items: Mapped[list[GrantItem]] = relationship(back_populates="grant")


class GrantItem(Base, TimestampMixin):
    """A budget line within a grant."""

    __tablename__ = "grant_item"

    grant_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    grant_id: Mapped[UUID] = mapped_column(
        ForeignKey("grant.grant_id", ondelete="CASCADE"),
        nullable=False,
    )
    grant_position: Mapped[str | None] = mapped_column(String, nullable=True)
    budgeted_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    budgeted_benefit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    level_of_effort: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)

    # Relationships
    grant: Mapped[Grant] = relationship(back_populates="items")
