import logging
import os
from datetime import datetime


def setup_logging(level=logging.INFO, log_dir: str = "logs"):
    """Setup basic logging configuration"""
    handlers = [logging.StreamHandler()]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.FileHandler(
                os.path.join(
                    log_dir, f"owner_sync_{datetime.now().strftime('%Y-%m-%d')}.log"
                )
            )
        )

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("owner_sync")
