"""Tenant model - each pharmacy/clinic using the platform."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Tenant(Base):
    """Tenant model - each business/organization."""

    __tablename__ = 'tenant'

    id = Column(IdType, primary_key=True, autoincrement=True)
    slug = Column(String(80), nullable=False, unique=True)  # URL-safe identifier
    name = Column(String(200), nullable=False)  # Display name
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', name='{self.name}')>"
