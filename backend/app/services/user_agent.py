"""User-agent heuristics: bot classification and coarse device/os/browser parsing."""

import re

BOT_PATTERNS = [
    r"bot\b", r"crawl", r"spider", r"slurp", r"scrap",
    r"googlebot", r"bingbot", r"yandex", r"baiduspider", r"duckduckbot",
    r"facebookexternalhit", r"twitterbot", r"linkedinbot", r"slackbot", r"discordbot",
    r"whatsapp", r"telegrambot", r"applebot", r"petalbot", r"semrush", r"ahrefs",
    r"mj12bot", r"headless", r"phantomjs", r"selenium", r"puppeteer", r"playwright",
    r"lighthouse", r"pingdom", r"uptimerobot", r"statuscake",
    r"python-requests", r"python-httpx", r"aiohttp", r"curl/", r"wget/",
    r"go-http-client", r"java/", r"okhttp", r"libwww-perl", r"httpclient", r"postmanruntime",
]

_BOT_RE = re.compile("|".join(BOT_PATTERNS), re.IGNORECASE)


def is_bot(user_agent: str | None) -> bool:
    """Empty or very short agents are treated as automated traffic."""
    if not user_agent or len(user_agent.strip()) < 10:
        return True
    return bool(_BOT_RE.search(user_agent))


def parse_device(user_agent: str | None) -> str:
    ua = (user_agent or "").lower()
    if not ua:
        return "unknown"
    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if "mobi" in ua or "iphone" in ua or "android" in ua:
        return "mobile"
    return "desktop"


def parse_os(user_agent: str | None) -> str:
    ua = (user_agent or "").lower()
    if "windows" in ua:
        return "Windows"
    if "iphone" in ua or "ipad" in ua or "ios" in ua:
        return "iOS"
    if "android" in ua:
        return "Android"
    if "mac os" in ua or "macintosh" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return "unknown"


def parse_browser(user_agent: str | None) -> str:
    ua = (user_agent or "").lower()
    # Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari
    if "edg/" in ua:
        return "Edge"
    if "opr/" in ua or "opera" in ua:
        return "Opera"
    if "firefox/" in ua:
        return "Firefox"
    if "chrome/" in ua or "crios/" in ua:
        return "Chrome"
    if "safari/" in ua:
        return "Safari"
    return "unknown"
