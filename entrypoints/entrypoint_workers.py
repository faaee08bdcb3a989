#!/usr/bin/env python3
# entrypoint_workers.py
"""
Точка входа для потребителей событий в Docker контейнере.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from main import main


if __name__ == "__main__":
    # Для масштабирования: идентификатор экземпляра
    worker_id = os.getenv("WORKER_INSTANCE_ID", "0")
    print(f"Запуск потребителей, экземпляр #{worker_id}")

    try:
        asyncio.run(main(mode="workers"))
    except KeyboardInterrupt:
        pass
