"""Registered service identity model."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from approvalhub.models.base import Base, JSONType, TimestampMixin, generate_id


class ServiceIdentity(Base, TimestampMixin):
    """External caller allowed to use the service API.

    Rows are provisioned by an administrative process; this service only
    reads them.
    """

    __tablename__ = "service_identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    service_key: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True, index=True
    )
    permissions: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
