# src/services/__init__.py
"""
HTTP-сервисы приложения.

Сервисы:
- booking_service: REST API бронирований (FastAPI)

Коммуникация с остальной системой идёт через RabbitMQ (события)
и заголовки шлюза (X-User-Id, X-User-Role, X-Service-Token).
"""

__all__: list[str] = []
