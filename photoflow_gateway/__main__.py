from __future__ import annotations

import logging
import sys
import uvicorn

from .app import create_app
from .config_loader import load_config_from_env


def setup_logging() -> None:
    """
    Configure logging for the gateway process.

    Logs are formatted with timestamp, logger name, level, and message and
    go to stdout.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set uvicorn logging to INFO to capture server events
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)


def main() -> None:
    setup_logging()

    logger = logging.getLogger(__name__)
    logger.info("Starting Photoflow Gateway server")

    config = load_config_from_env()
    logger.info(
        f"Server configuration: host={config.host}, port={config.port}, "
        f"storage_root={config.storage_root}, comfyui={config.comfyui_url}, rembg={config.rembg_url}"
    )

    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
