"""Booking availability, quota and billing rules.

Nothing in this package touches the database directly: the billing
handlers receive their stores and clock as constructor arguments.
"""
