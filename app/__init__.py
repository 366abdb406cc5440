"""
Hospital Appointment Scheduling

A FastAPI service that turns doctors' working hours into bookable slots,
prevents double booking, and enforces role-based appointment updates.
"""

__version__ = "1.0.0"
