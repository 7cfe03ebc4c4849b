"""Booking persistence, validation and run coordination."""
