"""Built-in browser profiles and the request headers they produce."""

from __future__ import annotations

from mediafetch.models.fingerprint import Fingerprint

_CHROME_143_UA = '"Google Chrome";v="143", "Chromium";v="143", "Not_A Brand";v="24"'

DEFAULT_PROFILES: list[dict] = [
    {
        "id": "chrome-143-win",
        "browser": "chrome",
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
        ),
        "sec_ch_ua": _CHROME_143_UA,
        "sec_ch_ua_platform": '"Windows"',
        "priority": 5,
    },
    {
        "id": "chrome-143-mac",
        "browser": "chrome",
        "user_agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
        ),
        "sec_ch_ua": _CHROME_143_UA,
        "sec_ch_ua_platform": '"macOS"',
        "priority": 4,
    },
    {
        "id": "firefox-134-win",
        "browser": "firefox",
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:134.0) "
            "Gecko/20100101 Firefox/134.0"
        ),
        "accept_language": "en-US,en;q=0.5",
        "priority": 2,
    },
    {
        "id": "safari-18-mac",
        "browser": "safari",
        "user_agent": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/18.2 Safari/605.1.15"
        ),
        "priority": 2,
    },
    {
        "id": "edge-143-win",
        "browser": "edge",
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36 Edg/143.0.0.0"
        ),
        "sec_ch_ua": '"Microsoft Edge";v="143", "Chromium";v="143", "Not_A Brand";v="24"',
        "sec_ch_ua_platform": '"Windows"',
        "priority": 3,
    },
    {
        "id": "chrome-142-win",
        "browser": "chrome",
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
        ),
        "sec_ch_ua": '"Google Chrome";v="142", "Chromium";v="142", "Not_A Brand";v="24"',
        "sec_ch_ua_platform": '"Windows"',
        "priority": 1,
    },
]

# Used when the pool is empty.
FALLBACK_PROFILE = Fingerprint(**DEFAULT_PROFILES[0])

_SAME_ORIGIN = {
    "facebook": "https://www.facebook.com",
    "instagram": "https://www.instagram.com",
}


def build_headers(
    fingerprint: Fingerprint, platform: str | None = None, cookie: str | None = None
) -> dict[str, str]:
    """Browser-like navigation headers for *fingerprint*.

    Client-hint (``Sec-Ch-Ua*``) and ``Sec-Fetch-*`` headers are only sent
    for Chromium profiles, matching what real Firefox/Safari send.
    """
    headers = {
        "User-Agent": fingerprint.user_agent,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/avif,image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": fingerprint.accept_language,
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "max-age=0",
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
    }
    if fingerprint.sec_ch_ua:
        headers.update(
            {
                "Sec-Ch-Ua": fingerprint.sec_ch_ua,
                "Sec-Ch-Ua-Mobile": fingerprint.sec_ch_ua_mobile,
                "Sec-Ch-Ua-Platform": fingerprint.sec_ch_ua_platform or '"Windows"',
                "Sec-Fetch-Dest": "document",
                "Sec-Fetch-Mode": "navigate",
                "Sec-Fetch-User": "?1",
                "Sec-Fetch-Site": "none",
            }
        )
    origin = _SAME_ORIGIN.get(platform or "")
    if origin:
        headers["Referer"] = origin + "/"
        headers["Origin"] = origin
        if fingerprint.sec_ch_ua:
            headers["Sec-Fetch-Site"] = "same-origin"
    if cookie:
        headers["Cookie"] = cookie
    return headers
