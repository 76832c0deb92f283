import logging

from config import get_settings
from infrastructure.container import build_container
from interfaces.telegram.handlers import create_telegram_bot


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not settings.telegram_token:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    container = build_container(settings)
    bot = create_telegram_bot(settings.telegram_token, container, settings.invite_link_base)
    bot.infinity_polling()


if __name__ == "__main__":
    main()
