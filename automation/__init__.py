"""Booking automation: page drivers, executors, and shared contracts."""
