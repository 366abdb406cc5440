from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    # Identity issued by the external auth service
    user_id = Column(Integer, unique=True, nullable=False)

    # Personal information
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    specialization = Column(String(100), nullable=False)

    # Consultation fee charged by default on booking
    fee = Column(Numeric(10, 2), nullable=False, default=0)

    # Schedule: weekday names ("Monday"...) and "HH:MM" bounds
    working_days = Column(JSON, nullable=False, default=list)
    working_hours_start = Column(String(5), nullable=True)
    working_hours_end = Column(String(5), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    appointments = relationship("Appointment", back_populates="doctor")

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.first_name} {self.last_name}', specialization='{self.specialization}')>"
