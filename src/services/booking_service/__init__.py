# src/services/booking_service/__init__.py
"""
HTTP API ядра бронирований.
"""
