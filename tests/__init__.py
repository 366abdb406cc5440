"""
Test suite for the Hospital Appointment Scheduling service.

Contains unit tests for the scheduling services and API tests for the routes.
"""
