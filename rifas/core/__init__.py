from rifas.core.logger import get_logger, setup_logger
from rifas.core.settings import Settings, settings

__all__ = ["Settings", "settings", "get_logger", "setup_logger"]
