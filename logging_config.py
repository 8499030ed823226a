# logging_config.py
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: int = logging.INFO, log_dir: str = "logs"):
    # Создаем папку для логов если её нет
    Path(log_dir).mkdir(exist_ok=True)

    # Настройка файлового логгера
    file_handler = RotatingFileHandler(
        filename=str(Path(log_dir) / "app.log"),
        maxBytes=10*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Настройка корневого логгера
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[file_handler, logging.StreamHandler()]
    )

    # SDK провайдера пишет тела запросов на DEBUG
    logging.getLogger("stripe").setLevel(logging.WARNING)

    return logging.getLogger("givers")
