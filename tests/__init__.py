"""
Test suite for the Clinic Appointment Service.

Contains unit tests for the booking and lifecycle services and
integration tests for the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")
