"""Session cookies: accessToken / refreshToken, HttpOnly."""

from starlette.responses import Response

from batchkeeper.config import Settings

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _cookie_flags(settings: Settings) -> dict:
    # Cross-site frontends need SameSite=None, which browsers only accept with Secure.
    if settings.is_production:
        return {"samesite": "none", "secure": True}
    return {"samesite": "lax", "secure": False}


def set_session_cookies(response: Response, settings: Settings, access_token: str, refresh_token: str) -> None:
    flags = _cookie_flags(settings)
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.access_cookie_max_age,
        path="/",
        httponly=True,
        **flags,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        refresh_token,
        max_age=settings.refresh_cookie_max_age,
        path="/",
        httponly=True,
        **flags,
    )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    flags = _cookie_flags(settings)
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, **flags)
