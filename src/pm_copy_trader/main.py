from __future__ import annotations

import asyncio
import logging
import signal
import sys

from .config import ConfigError, Settings, load_settings
from .service import CopyTradeService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _main(settings: Settings) -> None:
    service = CopyTradeService(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except (NotImplementedError, RuntimeError):
            pass
    await service.run()


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging("INFO")
        logger.error("Fatal configuration error: %s", exc)
        sys.exit(1)

    configure_logging(settings.log_level)
    try:
        asyncio.run(_main(settings))
    except ConfigError as exc:
        logger.error("Fatal configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
