import logging

from config import get_settings
from infrastructure.container import build_container
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    container = build_container(settings)
    bot = create_discord_bot(container, settings.invite_link_base)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
