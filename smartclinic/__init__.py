"""
SmartClinic

A FastAPI-based multi-tenant clinic management system: clinic onboarding,
OTP sign-in, appointment booking, live doctor queues streamed over SSE and
WebSockets, prescriptions with medicine reminders, and staff check-in.
"""

__version__ = "1.0.0"
