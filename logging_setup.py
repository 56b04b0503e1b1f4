import json, logging.config, pathlib, copy
from functools import lru_cache

_DEFAULT = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s [%(levelname)s] %(name)s - %(message)s"},
        "short": {"format": "[%(levelname)s] %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "short",
            "level": "INFO",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": "vision_link.log",
            "maxBytes": 500_000,
            "backupCount": 5,
            "formatter": "plain",
            "level": "DEBUG",
        },
    },
    "loggers": {
        "controller": {"level": "DEBUG"},
        "coprocessor": {"level": "DEBUG"},
    },
    "root": {"handlers": ["console", "file"], "level": "INFO"},
}

@lru_cache(maxsize=1)
def setup_logging(cfg_path: str | None = "log_config.json",
                  *,
                  logfile: str | None = None,
                  console_level: str | None = None):
    """Configure logging once per process.

    - If *cfg_path* exists, its top-level sections replace the defaults.
    - *logfile* moves the rotating file handler, *console_level* changes
      how chatty the terminal is (the file always gets DEBUG).
    """
    config = copy.deepcopy(_DEFAULT)
    if cfg_path and pathlib.Path(cfg_path).exists():
        user = json.loads(pathlib.Path(cfg_path).read_text())
        config.update(user)

    if logfile and "file" in config["handlers"]:
        config["handlers"]["file"]["filename"] = logfile
    if console_level and "console" in config["handlers"]:
        config["handlers"]["console"]["level"] = console_level.upper()

    logging.config.dictConfig(config)
