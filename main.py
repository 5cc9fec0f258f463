import asyncio
import logging

from data.config import config
from data.loader import scheduler, bot, dp
from douyin_api import DouyinClient
from handlers.get_video import video_router
from handlers.user import user_router
from misc.materializer import cleanup_old_files

download_config = config["download"]
max_age_seconds = download_config["expiry_hours"] * 3600

# Run once at startup, then on an interval
scheduler.add_job(cleanup_old_files, args=[download_config["dir"], max_age_seconds], misfire_grace_time=None)
scheduler.add_job(cleanup_old_files, "interval", hours=download_config["cleanup_interval_hours"],
                  args=[download_config["dir"], max_age_seconds], id='cleanup_downloads', misfire_grace_time=None)


async def main() -> None:
    scheduler.start()
    dp.include_routers(
        user_router,
        video_router
    )
    bot_info = await bot.get_me()
    logging.info(f'{bot_info.full_name} [@{bot_info.username}, id:{bot_info.id}]')
    try:
        await dp.start_polling(bot)
    finally:
        scheduler.shutdown(wait=False)
        await DouyinClient.close()


if __name__ == "__main__":
    asyncio.run(main())
