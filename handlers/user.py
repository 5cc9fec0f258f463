from aiogram import F
from aiogram import Router
from aiogram.filters import CommandStart
from aiogram.types import Message

from data.config import locale
from misc.utils import lang_func

user_router = Router(name=__name__)


@user_router.message(CommandStart(), F.chat.type == 'private')
async def send_start(message: Message) -> None:
    lang = lang_func(message.from_user.language_code)
    await message.answer(locale[lang]['start'], disable_web_page_preview=True)
