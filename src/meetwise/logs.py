import logging

from .config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Lambda installs its own handler on the root logger; only set the level there.
    Locally, fall back to basicConfig.
    """
    level_name = (level or LOG_LEVEL or "INFO").upper()
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level_name)
        return
    logging.basicConfig(level=level_name, format=_FORMAT)
