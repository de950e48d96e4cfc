"""
Redirect Engine - решает, следовать ли 3xx ответу, и строит следующий запрос.

Один RedirectEngine живёт ровно один вызов Client.execute():

    INITIAL -> FOLLOWING -> ... -> DONE
                         \\-> FAILED (RedirectError)

Engine не делает I/O: он получает ответ (status_code + headers) и
возвращает новый Request либо None.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

import httpx

from .exceptions import (
    BodyNotReplayableError,
    InsecureRedirectError,
    RedirectError,
    RedirectLoopError,
    TooManyRedirects,
)

if TYPE_CHECKING:
    from .models import Request

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

# Заголовки, описывающие тело: уходят вместе с телом при смене метода
BODY_HEADERS = ("content-length", "transfer-encoding", "content-type")

# Заголовки с credentials: не уходят на чужой хост
CREDENTIAL_HEADERS = ("authorization", "cookie")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# POLICY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class RedirectPolicy:
    """
    Политика редиректов.

    Args:
        follow: Следовать редиректам вообще
        max_redirects: Максимум переходов в одной цепочке
        downgrade_method: 301/302 на POST/PUT/... превращаются в GET
        referer: Проставлять Referer предыдущего URL
        https_only: Запретить переход на не-https URL

    Examples:
        >>> RedirectPolicy.limited(3)
        >>> RedirectPolicy.none()
    """
    follow: bool = True
    max_redirects: int = 10
    downgrade_method: bool = True
    referer: bool = True
    https_only: bool = False

    def __post_init__(self):
        """Валидация."""
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")

    @classmethod
    def limited(cls, max_redirects: int) -> 'RedirectPolicy':
        """Следовать не более чем max_redirects переходам."""
        return cls(follow=True, max_redirects=max_redirects)

    @classmethod
    def none(cls) -> 'RedirectPolicy':
        """Никогда не следовать: 3xx возвращается вызывающему как есть."""
        return cls(follow=False)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# URL HELPERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def url_key(url: httpx.URL) -> str:
    """URL без фрагмента: идентичность для детекции циклов."""
    return str(url).split("#", 1)[0]


def referer_for(url: httpx.URL) -> str:
    """Referer: без userinfo и фрагмента."""
    netloc = url.netloc.decode("ascii")
    target = url.raw_path.decode("ascii")
    return f"{url.scheme}://{netloc}{target}"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ENGINE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class RedirectState(str, Enum):
    """Состояние цепочки редиректов."""
    INITIAL = "initial"
    FOLLOWING = "following"
    DONE = "done"
    FAILED = "failed"


class RedirectEngine:
    """
    Конечный автомат одной цепочки редиректов.

    Args:
        policy: Политика редиректов
        request: Исходный запрос цепочки

    Example:
        >>> engine = RedirectEngine(RedirectPolicy(), request)
        >>> next_request = engine.next_request(request, response)
        >>> if next_request is None:
        ...     return response  # engine.state == DONE
    """

    def __init__(self, policy: RedirectPolicy, request: 'Request'):
        self.policy = policy
        self.state = RedirectState.INITIAL
        self.hops = 0
        self.visited: List[str] = [url_key(request.url)]
        self._seen = set(self.visited)

    def next_request(self, request: 'Request', response) -> Optional['Request']:
        """
        Решить судьбу ответа.

        Args:
            request: Запрос, на который пришёл response
            response: Объект с status_code и headers

        Returns:
            Следующий Request или None (цепочка завершена)

        Raises:
            RedirectLoopError: Цель уже посещалась
            TooManyRedirects: Лимит переходов исчерпан
            InsecureRedirectError: Переход на http при https_only
            BodyNotReplayableError: 307/308 требует повторить stream body
        """
        if self.state in (RedirectState.DONE, RedirectState.FAILED):
            raise RuntimeError(f"Redirect chain already finished ({self.state.value})")

        if response.status_code not in REDIRECT_STATUSES or not self.policy.follow:
            return self._done()

        next_url = self._redirect_url(request, response)
        if next_url is None:
            return self._done()

        key = url_key(next_url)
        if key in self._seen:
            self._fail(RedirectLoopError, f"Redirect loop detected at {key}", key)
        if self.hops >= self.policy.max_redirects:
            self._fail(
                TooManyRedirects,
                f"Exceeded maximum allowed redirects ({self.policy.max_redirects})",
                key,
            )
        if self.policy.https_only and next_url.scheme != "https":
            self._fail(InsecureRedirectError, f"Refusing redirect to insecure URL {key}", key)

        method = self._redirect_method(request.method, response.status_code)
        headers = self._redirect_headers(request, next_url, method)

        if method != request.method:
            next_request = request.copy_with(method=method, url=next_url, headers=headers, body=None)
        else:
            if not request.body.replayable:
                self._fail(
                    BodyNotReplayableError,
                    f"Cannot resend streaming body for {response.status_code} redirect",
                    key,
                )
            next_request = request.copy_with(url=next_url, headers=headers)

        self.hops += 1
        self.visited.append(key)
        self._seen.add(key)
        self.state = RedirectState.FOLLOWING

        logger.debug(
            "Following %s redirect %s -> %s as %s (hop %d)",
            response.status_code, url_key(request.url), key, method, self.hops,
        )
        return next_request

    def _done(self) -> None:
        self.state = RedirectState.DONE
        return None

    def _fail(self, error_cls, message: str, url: str) -> None:
        self.state = RedirectState.FAILED
        error: RedirectError = error_cls(message, url=url, visited=self.visited + [url], hops=self.hops)
        raise error

    def _redirect_url(self, request: 'Request', response) -> Optional[httpx.URL]:
        """Location относительно текущего URL; None если Location нет или он битый."""
        location = response.headers.get("location")
        if not location:
            return None

        try:
            url = request.url.join(location.strip())
        except (httpx.InvalidURL, ValueError) as exc:
            logger.debug("Ignoring invalid Location %r: %s", location, exc)
            return None

        if url.scheme not in ("http", "https") or not url.host:
            logger.debug("Ignoring unsupported Location %r", location)
            return None

        if request.url.fragment and not url.fragment:
            url = url.copy_with(fragment=request.url.fragment)

        return url

    def _redirect_method(self, method: str, status_code: int) -> str:
        """
        303 See Other: всегда GET (кроме HEAD).
        301/302: GET для не-GET/HEAD, если включён downgrade_method.
        307/308: метод сохраняется.
        """
        if status_code == 303 and method != "HEAD":
            return "GET"
        if status_code in (301, 302) and self.policy.downgrade_method and method not in ("GET", "HEAD"):
            return "GET"
        return method

    def _redirect_headers(self, request: 'Request', url: httpx.URL, method: str) -> httpx.Headers:
        """Заголовки следующего запроса."""
        headers = httpx.Headers(request.headers)

        # Host выставляется при отправке
        headers.pop("host", None)

        if url.host != request.url.host:
            for name in CREDENTIAL_HEADERS:
                headers.pop(name, None)

        if method != request.method:
            for name in BODY_HEADERS:
                headers.pop(name, None)

        headers.pop("referer", None)
        if self.policy.referer and not (request.url.scheme == "https" and url.scheme != "https"):
            headers["Referer"] = referer_for(request.url)

        return headers
