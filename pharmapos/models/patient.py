"""Patient (customer) model."""
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from pharmapos.database import Base, IdType


class Patient(Base):
    """Patient / customer. Walk-in sales carry no patient."""

    __tablename__ = 'patients'

    patient_id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    full_name = Column(String(200), nullable=False)
    phone_number = Column(String(50), nullable=True)
    is_b2b_customer = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Patient(patient_id={self.patient_id}, full_name='{self.full_name}')>"
