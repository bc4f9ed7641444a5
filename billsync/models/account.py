"""Account model, owned by the identity subsystem and only read here."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from billsync.models._base import Base


class Account(Base):
    """User account as seen by billing: just enough to resolve webhook references.

    The identity subsystem uses opaque string ids, so `id` is a string here.
    """

    __tablename__ = "account"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    locale: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
