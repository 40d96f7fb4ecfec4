from sqlalchemy import Column, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class RoleMenu(Base):
    __tablename__ = "role_menus"

    role_id = Column(
        UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    menu_id = Column(
        UUID(as_uuid=True), ForeignKey("menus.id", ondelete="CASCADE"), primary_key=True, index=True
    )
    granted_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    role = relationship("Role", back_populates="menus")
    menu = relationship("Menu", back_populates="role_menus")

    @property
    def is_effective(self) -> bool:
        return self.revoked_at is None

    @classmethod
    def effective(cls):
        return cls.revoked_at.is_(None)
