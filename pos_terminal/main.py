"""
POS Terminal - Main entry point.

Listens for UI commands on Redis pub/sub and publishes the responses.
"""

import asyncio
import json
from typing import Final

from redis.asyncio import Redis

from pos_terminal.application.api_facade import PointOfSaleFacade
from pos_terminal.application.command_handler import CommandHandler
from pos_terminal.configs import get_resolver
from pos_terminal.core.exceptions import ConfigurationError
from pos_terminal.infrastructure.settings import get_settings
from pos_terminal.loggers import logger


# =============================================================================
# Constants
# =============================================================================

settings = get_settings()
COMMAND_CHANNEL: Final[str] = settings.terminal.command_channel
RESPONSE_CHANNEL: Final[str] = settings.terminal.response_channel


# =============================================================================
# Redis Command Listener
# =============================================================================


async def listen_to_redis(redis: Redis, handler: CommandHandler) -> None:
    """
    Listen for commands on Redis pub/sub and process them.

    Args:
        redis: Redis client instance.
        handler: Command router bound to the POS facade.
    """
    pubsub = redis.pubsub()
    await pubsub.subscribe(COMMAND_CHANNEL)
    logger.info(f"Listening for commands on channel: {COMMAND_CHANNEL}")

    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue

        raw_data = message.get("data")

        if raw_data == "ping":
            continue

        try:
            command = json.loads(raw_data)
        except json.JSONDecodeError as e:
            logger.error(f"Command parsing error: {e}")
            continue

        logger.info(f"Received command: {command}")
        response = await handler.execute(command)

        await redis.publish(RESPONSE_CHANNEL, json.dumps(response))
        logger.info(f"Response sent to {RESPONSE_CHANNEL}: {response}")


# =============================================================================
# Main Entry Point
# =============================================================================


async def main() -> None:
    """
    Main entry point for the POS terminal service.

    Logs where each setting came from, starts the facade and runs the
    command listener until cancelled.
    """
    for line in get_resolver().describe():
        logger.info(f"Config {line}")

    try:
        settings.require_api_key()
    except ConfigurationError as e:
        logger.critical(f"Cannot start: {e.message}")
        return

    redis = Redis(
        host=settings.redis.host,
        port=settings.redis.port,
        decode_responses=settings.redis.decode_responses,
    )

    api = PointOfSaleFacade(redis, settings)
    await api.start()

    try:
        await listen_to_redis(redis, CommandHandler(api))
    finally:
        await api.shutdown()
        await redis.aclose()


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Application stopped by user")


if __name__ == "__main__":
    run()
