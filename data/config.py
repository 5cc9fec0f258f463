import os
from json import loads as json_loads

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv())

_base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# "server" matches constrained hosts (Render and similar), "local" everything else
browser_profile = os.getenv("BROWSER_PROFILE", "server" if os.getenv("RENDER") else "local")

config = {
    "bot": {
        "token": os.getenv("BOT_TOKEN", ""),
        "tg_server": os.getenv("TG_SERVER", "https://api.telegram.org"),
        "admin_ids": json_loads(os.getenv("ADMIN_IDS", "[]")),
    },
    "douyin": {
        "user_agent": os.getenv(
            "DOUYIN_USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        ),
        "referer": os.getenv("DOUYIN_REFERER", "https://www.douyin.com/"),
        "cookie": os.getenv(
            "DOUYIN_COOKIE",
            "douyin.com; ttwid=1%7C3YKRuDjD_yHY9DkvHbJOXZXk8OfHV9Mp5jNYF3EYNA8%7C1677649113"
            "%7C99ce39ceecd30164c9d26c33fa53524d6b6f735c455d4ae97708d87c43d416a7",
        ),
        "impersonate": os.getenv("DOUYIN_IMPERSONATE", "chrome120"),
    },
    "timeouts": {
        "redirect": float(os.getenv("REDIRECT_TIMEOUT", "10")),
        "download": float(os.getenv("DOWNLOAD_TIMEOUT", "60")),
        "direct_api": float(os.getenv("DIRECT_API_TIMEOUT", "10")),
        # empty means "use the browser profile default"
        "navigation": os.getenv("NAVIGATION_TIMEOUT", ""),
        "deadline": os.getenv("BROWSER_DEADLINE", ""),
    },
    "retry": {
        "browser_max_retries": int(os.getenv("BROWSER_MAX_RETRIES", "2")),
        "redirect_max_hops": int(os.getenv("REDIRECT_MAX_HOPS", "5")),
        "download_max_retries": int(os.getenv("DOWNLOAD_MAX_RETRIES", "3")),
    },
    "cache": {
        "redirect_max_size": int(os.getenv("REDIRECT_CACHE_SIZE", "2048")),
        # 0 keeps entries for the lifetime of the process
        "redirect_ttl": float(os.getenv("REDIRECT_CACHE_TTL", "21600")),
    },
    "browser": {
        "profile": browser_profile,
        "executable_path": os.getenv("BROWSER_EXECUTABLE_PATH", ""),
        "headless": _env_bool("BROWSER_HEADLESS", "true"),
    },
    "download": {
        "dir": os.getenv("DOWNLOAD_DIR", os.path.join(_base_dir, "downloads")),
        "expiry_hours": float(os.getenv("DOWNLOAD_EXPIRY_HOURS", "24")),
        "cleanup_interval_hours": float(os.getenv("CLEANUP_INTERVAL_HOURS", "6")),
    },
}

admin_ids = config["bot"]["admin_ids"]

with open(os.path.join(_base_dir, 'locale.json'), 'r', encoding='utf-8') as locale_file:
    locale = json_loads(locale_file.read())
