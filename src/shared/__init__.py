# src/shared/__init__.py
"""
Общий код между API и воркерами.

Модули:
- events: схемы событий RabbitMQ и конверт сообщения
"""

__all__: list[str] = []
