"""
salonboard - scheduling and conflict detection for salon bookings and shifts.
"""

__version__ = "0.1.0"
