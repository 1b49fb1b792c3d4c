"""
                Restaurant Order Tracker

Order lifecycle and real-time notification backend for a restaurant:
cart checkout, kitchen/delivery state tracking, courier assignment,
and live fan-out to customers, couriers and administrators.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
