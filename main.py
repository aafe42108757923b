import asyncio
import logging
import signal
import sys

from mev_engine.ethereum_service.config import EngineConfig
from mev_engine.ethereum_service.service import EngineContext, MEVService
from mev_engine.shared.logger import setup_root_logger

logger = logging.getLogger("mev_engine")


async def run(config: EngineConfig) -> int:
    try:
        config.validate()
        service = MEVService(EngineContext.build(config))
        await service.initialize()
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        return 1

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; KeyboardInterrupt still works
            pass

    service_task = asyncio.create_task(service.start())
    stop_task = asyncio.create_task(stop_requested.wait())
    try:
        await asyncio.wait({service_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_requested.is_set():
            logger.info("Shutdown signal received. Exiting.")
    finally:
        stop_task.cancel()
        await service.stop()
        service_task.cancel()
        await asyncio.gather(service_task, return_exceptions=True)
        logger.info("Engine shut down gracefully.")
    return 0


def main():
    try:
        config = EngineConfig.from_env()
    except RuntimeError as e:
        setup_root_logger()
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    setup_root_logger(config.log_level, config.log_file)
    try:
        sys.exit(asyncio.run(run(config)))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
