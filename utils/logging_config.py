"""
Logging configuration for the transfer tracker.

Features:
- Separate log files for applied transfers and dispatched alerts
- Rotating file handlers (max 50MB per file, keep 5 backups)
- Automatic cleanup of old logs (keeps last 7 days)
- Console output for real-time monitoring
"""
import glob
import logging
import logging.handlers
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Union

# Rotation settings
MAX_BYTES = 50 * 1024 * 1024  # 50 MB per file
BACKUP_COUNT = 5  # Keep 5 backup files (total ~250 MB per log type)

# Cleanup settings
LOG_RETENTION_DAYS = 7

SYSTEM_LOG = "system.log"
TRANSFERS_LOG = "transfers.log"
ALERTS_LOG = "alerts.log"
ERRORS_LOG = "errors.log"


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Union[str, Path] = "logs") -> Dict[str, logging.Logger]:
    """
    Configure logging with rotation and cleanup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files, created if missing

    Returns:
        dict: Dictionary of specialized loggers
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Configure root logger (catches all logs)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(log_dir / SYSTEM_LOG, level, formatter))
    root_logger.addHandler(_rotating_handler(log_dir / ERRORS_LOG, logging.ERROR, formatter))

    # Dedicated streams, also propagated to root (console + system)
    transfers_logger = logging.getLogger('transfers')
    alerts_logger = logging.getLogger('alerts')
    for logger, filename in ((transfers_logger, TRANSFERS_LOG), (alerts_logger, ALERTS_LOG)):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.addHandler(_rotating_handler(log_dir / filename, logging.INFO, formatter))
        logger.propagate = True

    cleanup_old_logs(log_dir)

    root_logger.info("=" * 80)
    root_logger.info("Transfer tracker logging system initialized")
    root_logger.info(f"Log directory: {log_dir.absolute()}")
    root_logger.info(f"Log level: {log_level}")
    root_logger.info(f"Rotation: {MAX_BYTES // (1024*1024)} MB per file, {BACKUP_COUNT} backups")
    root_logger.info(f"Retention: {LOG_RETENTION_DAYS} days")
    root_logger.info("=" * 80)

    return {
        'system': root_logger,
        'transfers': transfers_logger,
        'alerts': alerts_logger,
    }


def cleanup_old_logs(log_dir: Union[str, Path] = "logs") -> int:
    """
    Delete log files older than LOG_RETENTION_DAYS.

    Keeps backup files (.1, .2, etc.) for current logs.

    Returns:
        Number of files deleted
    """
    log_dir = Path(log_dir)
    cutoff_time = datetime.now() - timedelta(days=LOG_RETENTION_DAYS)
    deleted_count = 0
    total_size_freed = 0

    for pattern in (log_dir / "*.log", log_dir / "*.log.*"):
        for log_file in glob.glob(str(pattern)):
            log_path = Path(log_file)

            # Skip if file doesn't exist (race condition)
            if not log_path.exists():
                continue

            try:
                mtime = datetime.fromtimestamp(log_path.stat().st_mtime)
                if mtime < cutoff_time:
                    file_size = log_path.stat().st_size
                    log_path.unlink()
                    deleted_count += 1
                    total_size_freed += file_size
            except OSError as e:
                logging.error(f"Error cleaning up {log_path}: {e}")

    if deleted_count > 0:
        size_mb = total_size_freed / (1024 * 1024)
        logging.info(f"Cleaned up {deleted_count} old log files ({size_mb:.2f} MB freed)")

    return deleted_count


def get_disk_usage(log_dir: Union[str, Path] = "logs") -> dict:
    """
    Get current disk usage statistics for the log directory.

    Returns:
        dict: {
            'total_size_mb': float,
            'file_count': int,
            'files': {filename: size_mb}
        }
    """
    total_size = 0
    file_info = {}

    for log_file in glob.glob(str(Path(log_dir) / "*")):
        log_path = Path(log_file)
        if log_path.is_file():
            size = log_path.stat().st_size
            total_size += size
            file_info[log_path.name] = size / (1024 * 1024)

    return {
        'total_size_mb': total_size / (1024 * 1024),
        'file_count': len(file_info),
        'files': file_info
    }
