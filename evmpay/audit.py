from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", audit_log_path: Optional[str] = None) -> logging.Logger:
    """
    Root logging for the gateway process. When audit_log_path is set every
    record is also appended to that file, so sweep failures can be traced after
    the invoice is gone from the store.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt="%H:%M:%S")
    root = logging.getLogger()
    root.setLevel(numeric)
    if audit_log_path:
        handler = logging.FileHandler(audit_log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    # web3 request logging would echo raw transactions
    logging.getLogger("web3").setLevel(max(numeric, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(numeric, logging.WARNING))
    return logging.getLogger("evmpay")
