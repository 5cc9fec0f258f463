import logging
from html import escape

from aiogram import Router, F
from aiogram.types import Message, ReactionTypeEmoji, FSInputFile

from data.config import locale, admin_ids
from data.loader import bot, materializer
from douyin_api import (
    DouyinBrowserLaunchError,
    DouyinClient,
    DouyinDownloadError,
    DouyinIdentifierNotFoundError,
    DouyinNoPlayableMediaError,
    DouyinResolutionError,
    DouyinTimeoutError,
)
from douyin_api.urls import clean_url
from misc.utils import error_catch, lang_func

video_router = Router(name=__name__)

# Typed failures and the locale key each one is reported with
error_messages = (
    (DouyinIdentifierNotFoundError, 'not_found'),
    (DouyinTimeoutError, 'timeout'),
    (DouyinResolutionError, 'unavailable'),
    (DouyinNoPlayableMediaError, 'no_media'),
    (DouyinDownloadError, 'download_error'),
    (DouyinBrowserLaunchError, 'error'),
)


def error_key(error: Exception) -> str:
    for error_type, key in error_messages:
        if isinstance(error, error_type):
            return key
    return 'error'


def result_caption(info, lang: str) -> str:
    desc = escape(info.desc[:900])
    return locale[lang]['result'].format(desc=desc, author=escape(info.author))


@video_router.message(F.text)
async def send_douyin_video(message: Message):
    client = DouyinClient()
    status_message = False
    group_chat = message.chat.type != 'private'
    lang = lang_func(message.from_user.language_code if message.from_user else None)

    video_link = clean_url(message.text)
    if 'douyin.com' not in video_link:
        if not group_chat:
            await message.reply(locale[lang]['link_error'])
        return

    try:
        try:  # If reaction is allowed, send it
            await message.react([ReactionTypeEmoji(emoji='👀')], disable_notification=True)
        except Exception:  # Send status message, if reaction is not allowed, and save it
            status_message = await message.reply('⏳', disable_notification=True)

        video_info = await client.video(video_link)
        target = await client.download_target(
            video_link,
            video_info.type,
            video_url=video_info.video_url,
            images=video_info.images,
        )

        if not status_message:
            try:
                await message.react([ReactionTypeEmoji(emoji='👨‍💻')], disable_notification=True)
            except Exception:
                pass

        artifact = await materializer.materialize(target)
        caption = result_caption(video_info, lang)
        if video_info.is_video:
            await bot.send_chat_action(chat_id=message.chat.id, action='upload_video')
            await message.reply_video(FSInputFile(artifact.path, filename=artifact.name), caption=caption)
        else:
            await bot.send_chat_action(chat_id=message.chat.id, action='upload_document')
            await message.reply_document(FSInputFile(artifact.path, filename=artifact.name), caption=caption)

        if status_message:
            await status_message.delete()
        else:
            await message.react([])
        logging.info(f'Video Download: CHAT {message.chat.id} - VIDEO {video_link} ({video_info.source})')
    except Exception as e:
        key = error_key(e)
        if key == 'error':
            error_text = error_catch(e)
            logging.error(error_text)
            if message.chat.id in admin_ids:
                await message.reply('<code>{0}</code>'.format(escape(error_text[-3500:])))
        else:
            logging.warning(f'Failed to process {video_link}: {e}')
        try:
            if status_message:  # Remove status message if it exists
                await status_message.delete()
            if not group_chat:
                await message.reply(locale[lang][key])
                if not status_message:
                    await message.react([ReactionTypeEmoji(emoji='😢')])
            else:
                if not status_message:
                    await message.react([])
        except Exception as e:
            logging.debug(f'Could not report failure to chat {message.chat.id}: {e}')
