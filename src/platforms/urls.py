"""Утилиты для URL постов: платформа, ID поста, нормализация."""
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from src.models.metrics import PLACEHOLDER_PREFIX

TRACKING_PARAMS = frozenset({
    "igsh", "igshid", "ig_rid",
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "fbclid", "fb_action_ids", "fb_action_types", "fb_source", "fb_ref",
    "ref", "ref_src", "ref_url",
    "share_id", "tt_from", "is_copy_url", "is_from_webapp",
    "feature", "app", "gclid", "msclkid",
    "_ga", "mc_cid", "mc_eid",
})

# Хост сравнивается целиком или как поддомен
_PLATFORM_HOSTS: list[tuple[str, tuple[str, ...]]] = [
    ("tiktok", ("tiktok.com",)),
    ("instagram", ("instagram.com", "instagr.am")),
    ("youtube", ("youtube.com", "youtu.be")),
    ("twitter", ("twitter.com", "x.com")),
    ("facebook", ("facebook.com", "fb.com", "fb.watch")),
]


def is_placeholder(url: str | None) -> bool:
    """Плейсхолдер вместо реального URL (пост ещё не вышел)."""
    return not url or url.strip().startswith(PLACEHOLDER_PREFIX)


def detect_platform(url: str) -> str | None:
    """Определить платформу по хосту URL → 'tiktok' | 'instagram' | ... | None."""
    try:
        host = (urlsplit(url.strip()).hostname or "").lower()
    except ValueError:
        return None
    for platform, domains in _PLATFORM_HOSTS:
        if any(host == d or host.endswith("." + d) for d in domains):
            return platform
    return None


def extract_post_id(url: str, platform: str) -> str | None:
    """Извлечь ID поста из URL для конкретной платформы."""
    if is_placeholder(url):
        return None
    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        return None
    path = parsed.path

    match platform.lower():
        case "instagram":
            m = re.search(r"/(?:p|reel|reels)/([A-Za-z0-9_-]+)", path)
            return m.group(1) if m else None
        case "tiktok":
            m = re.search(r"/video/(\d+)", path)
            return m.group(1) if m else None
        case "youtube":
            if (parsed.hostname or "").endswith("youtu.be"):
                return path.lstrip("/").split("/")[0] or None
            v = dict(parse_qsl(parsed.query)).get("v")
            if v:
                return v
            m = re.search(r"/shorts/([A-Za-z0-9_-]+)", path)
            return m.group(1) if m else None
        case "twitter" | "x":
            m = re.search(r"/status/(\d+)", path)
            return m.group(1) if m else None
        case _:
            return None


def normalize_url(url: str) -> str:
    """
    Нормализовать URL для дедупликации: убрать трекинг-параметры, fragment,
    завершающий слэш; хост в нижний регистр.
    """
    if is_placeholder(url):
        return url
    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        return url.strip()
    if not parsed.scheme or not parsed.netloc:
        return url.strip()

    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
             if k not in TRACKING_PARAMS]
    path = parsed.path
    if path.endswith("/") and path != "/":
        path = path.rstrip("/")
    return urlunsplit((parsed.scheme, parsed.netloc.lower(), path, urlencode(query), ""))


def generate_post_key(url: str, platform: str) -> str:
    """Ключ поста 'platform:postId' или 'platform:normalizedUrl'."""
    post_id = extract_post_id(url, platform)
    if post_id:
        return f"{platform.lower()}:{post_id}"
    return f"{platform.lower()}:{normalize_url(url)}"
