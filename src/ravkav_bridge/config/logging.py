import structlog
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional
from ravkav_bridge.config.settings import settings, Settings


class LogConfig:
    """Centralized logging configuration"""

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or settings
        self.project_root = self._get_project_root()
        self.logs_dir = Path(self.settings.log_dir) if self.settings.log_dir else self.project_root / "logs"
        self.logs_dir.mkdir(parents=True, exist_ok=True)

        # Log file paths
        self.main_log = self.logs_dir / "bridge.log"
        self.upstream_log = self.logs_dir / "upstream.log"
        self.export_log = self.logs_dir / "export.log"
        self.sessions_log = self.logs_dir / "sessions.log"
        self.error_log = self.logs_dir / "errors.log"

        # Log levels
        self.log_level = logging.DEBUG if self.settings.debug else logging.INFO
        self.file_log_level = logging.DEBUG  # Always debug for files

        # Formatters
        self.detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)-20s | %(levelname)-8s | %(funcName)-20s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        self.simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def _get_project_root(self) -> Path:
        """Get the project root directory"""
        current_file = Path(__file__).resolve()
        # src/ravkav_bridge/config/logging.py -> project root
        return current_file.parent.parent.parent.parent

    def create_rotating_handler(self, filepath: Path, max_bytes: int = 10*1024*1024, backup_count: int = 5) -> logging.Handler:
        """Create a rotating file handler with proper configuration"""
        handler = logging.handlers.RotatingFileHandler(
            filepath,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setLevel(self.file_log_level)
        handler.setFormatter(self.detailed_formatter)
        return handler

    def create_console_handler(self) -> logging.Handler:
        """Create console handler for stdout"""
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(self.log_level)
        formatter = self.detailed_formatter if self.settings.debug else self.simple_formatter
        handler.setFormatter(formatter)
        return handler

    def create_error_handler(self) -> logging.Handler:
        """Create handler specifically for error logs"""
        handler = logging.handlers.RotatingFileHandler(
            self.error_log,
            maxBytes=5*1024*1024,
            backupCount=10,
            encoding='utf-8'
        )
        handler.setLevel(logging.ERROR)
        handler.setFormatter(self.detailed_formatter)
        return handler


def configure_logging(config: Optional[Settings] = None):
    """Configure logging for the entire application"""
    log_config = LogConfig(config)

    # Remove any existing handlers from root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_logger.setLevel(log_config.log_level)
    root_logger.addHandler(log_config.create_console_handler())
    root_logger.addHandler(log_config.create_rotating_handler(log_config.main_log))
    # One handler per file; errors.log is shared by every logger
    error_handler = log_config.create_error_handler()
    root_logger.addHandler(error_handler)

    setup_specialized_loggers(log_config, error_handler)
    configure_structlog(log_config)

    logger = structlog.get_logger("logging")
    logger.info("Logging system initialized",
                log_level=logging.getLevelName(log_config.log_level),
                logs_directory=str(log_config.logs_dir),
                main_log=str(log_config.main_log),
                debug_mode=log_config.settings.debug)


def _setup_component_logger(config: LogConfig, name: str, log_file: Path, level: int,
                            error_handler: logging.Handler) -> logging.Logger:
    component_logger = logging.getLogger(name)
    component_logger.handlers.clear()
    component_logger.setLevel(level)
    component_logger.addHandler(config.create_rotating_handler(log_file))
    component_logger.addHandler(config.create_console_handler())
    component_logger.addHandler(error_handler)
    component_logger.propagate = False
    return component_logger


def setup_specialized_loggers(config: LogConfig, error_handler: logging.Handler):
    """Setup specialized loggers for different components"""
    # Upstream portal calls (login, verification code, transactions)
    _setup_component_logger(config, "upstream", config.upstream_log, logging.DEBUG, error_handler)

    # PDF export jobs (rendering, merging, working directory cleanup)
    _setup_component_logger(config, "export", config.export_log, logging.DEBUG, error_handler)

    # Session lifecycle (creation, expiry)
    _setup_component_logger(config, "sessions", config.sessions_log, logging.INFO, error_handler)


def configure_structlog(config: LogConfig):
    """Configure structlog with proper processors"""
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.settings.debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structlog logger for the given name"""
    return structlog.get_logger(name)
