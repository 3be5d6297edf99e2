"""Logging setup shared by the machine, controller and matcher packages.

The packages only attach a NullHandler; handlers are the application's job.
``VM_LOG_LEVEL`` (e.g. "DEBUG") sets the level for all three roots.
"""

import logging

import settings

LIBRARY_LOGGERS: tuple[str, ...] = ("machine", "controller", "matcher")

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

for _name in LIBRARY_LOGGERS:
    logging.getLogger(_name).addHandler(logging.NullHandler())

_env_level = (settings.VM_LOG_LEVEL or "").strip().upper()
if _env_level and isinstance(logging.getLevelName(_env_level), int):
    for _name in LIBRARY_LOGGERS:
        logging.getLogger(_name).setLevel(_env_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(level: int | str | None = None) -> None:
    """Attach a stderr handler to the library loggers (idempotent).

    Meant for scripts and test entry points; library users who configure
    their own handlers never need to call it.
    """
    for name in LIBRARY_LOGGERS:
        lib_logger = logging.getLogger(name)
        if not any(isinstance(h, logging.StreamHandler) for h in lib_logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=_FMT, datefmt=_DATEFMT))
            lib_logger.addHandler(handler)
        if level is not None:
            lib_logger.setLevel(level)
