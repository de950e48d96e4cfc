"""
Cookie Jar.

Хранилище cookies одного клиента. Все операции проходят под
threading.RLock: чтение (cookies_for) и запись (ingest) взаимно исключены.

Разбор Set-Cookie - существенная часть RFC 6265: Expires, Max-Age,
Domain, Path, Secure, HttpOnly.
"""

import ipaddress
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from http.cookiejar import http2time
from itertools import count
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import httpx

logger = logging.getLogger(__name__)

_creation_counter = count()

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# COOKIE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Cookie:
    """
    Одна cookie.

    Args:
        name: Имя
        value: Значение
        domain: Домен (без ведущей точки)
        path: Путь
        expires: Unix timestamp истечения (None - session cookie)
        secure: Только по https
        http_only: Флаг HttpOnly
        host_only: True - только точный хост; False - домен и поддомены
    """
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: Optional[float] = None
    secure: bool = False
    http_only: bool = False
    host_only: bool = True
    created: int = field(default_factory=lambda: next(_creation_counter), compare=False)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.domain, self.path, self.name)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def matches(self, url: httpx.URL, now: Optional[float] = None) -> bool:
        """Отправлять ли cookie на url."""
        if self.is_expired(now):
            return False
        if self.secure and url.scheme != "https":
            return False
        if not domain_match(url.host.lower(), self.domain, self.host_only):
            return False
        return path_match(url.path or "/", self.path)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MATCHING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
        return True
    except ValueError:
        return False


def domain_match(host: str, domain: str, host_only: bool = False) -> bool:
    """
    Host совпадает с доменом cookie.

    Example:
        >>> domain_match("api.example.com", "example.com")
        True
        >>> domain_match("api.example.com", "example.com", host_only=True)
        False
    """
    if host == domain:
        return True
    if host_only or is_ip_address(host):
        return False
    return host.endswith("." + domain)


def path_match(request_path: str, cookie_path: str) -> bool:
    """Путь запроса начинается с пути cookie."""
    return request_path.startswith(cookie_path)


def default_path(url: httpx.URL) -> str:
    """
    Default-path по RFC 6265 5.1.4.

    Example:
        >>> default_path(httpx.URL("http://a.test/docs/page"))
        '/docs'
    """
    path = url.path
    if not path.startswith("/") or path.count("/") == 1:
        return "/"
    return path[:path.rfind("/")]

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SET-COOKIE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def parse_set_cookie(header: str, url: httpx.URL, now: Optional[float] = None) -> Optional[Cookie]:
    """
    Разобрать один Set-Cookie.

    Domain из одной метки (com, localhost) принимается только равным хосту.
    Public Suffix List не используется: Domain=co.uk с www.example.co.uk
    пройдёт проверку.

    Returns:
        Cookie или None, если заголовок невалидный или Domain не подходит хосту
    """
    now = time.time() if now is None else now
    parts = header.split(";")
    name, sep, value = parts[0].partition("=")
    name, value = name.strip(), value.strip()
    if not sep or not name:
        logger.debug("Ignoring malformed Set-Cookie: %r", header)
        return None
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]

    host = url.host.lower()
    domain_attr: Optional[str] = None
    path_attr: Optional[str] = None
    expires: Optional[float] = None
    max_age: Optional[float] = None
    secure = False
    http_only = False

    for part in parts[1:]:
        attr, _, attr_value = part.partition("=")
        attr = attr.strip().lower()
        attr_value = attr_value.strip()

        if attr == "expires":
            parsed = http2time(attr_value)
            if parsed is not None:
                expires = float(parsed)
        elif attr == "max-age":
            try:
                seconds = int(attr_value)
            except ValueError:
                continue
            max_age = now + seconds if seconds > 0 else 0.0
        elif attr == "domain":
            if attr_value:
                domain_attr = attr_value.lstrip(".").lower()
        elif attr == "path":
            if attr_value.startswith("/"):
                path_attr = attr_value
        elif attr == "secure":
            secure = True
        elif attr == "httponly":
            http_only = True

    if domain_attr and domain_attr != host:
        if "." not in domain_attr:
            logger.debug("Rejecting cookie %s: single-label domain %s", name, domain_attr)
            return None
        if is_ip_address(host) or not domain_match(host, domain_attr):
            logger.debug("Rejecting cookie %s: domain %s does not match host %s", name, domain_attr, host)
            return None

    return Cookie(
        name=name,
        value=value,
        domain=domain_attr or host,
        path=path_attr or default_path(url),
        expires=max_age if max_age is not None else expires,
        secure=secure,
        http_only=http_only,
        host_only=domain_attr is None,
    )

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# JAR
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class CookieJar:
    """
    Потокобезопасное хранилище cookies.

    Examples:
        >>> jar = CookieJar()
        >>> jar.ingest(httpx.URL("http://a.test/"), ["id=42; Path=/"])
        >>> jar.cookies_for(httpx.URL("http://a.test/next"))
        'id=42'
    """

    def __init__(self, cookies: Iterable[Cookie] = ()):
        self._lock = threading.RLock()
        self._cookies: Dict[Tuple[str, str, str], Cookie] = {}
        for cookie in cookies:
            self._store(cookie)

    # ─── Чтение ─────────────────────────────────

    def matching(self, url: httpx.URL) -> List[Cookie]:
        """Cookies для url: длинные пути первыми, затем по времени создания."""
        now = time.time()
        with self._lock:
            found = [c for c in self._cookies.values() if c.matches(url, now)]
        found.sort(key=lambda c: (-len(c.path), c.created))
        return found

    def cookies_for(self, url: httpx.URL) -> Optional[str]:
        """
        Значение заголовка Cookie для url (None - нечего отправлять).

        Не изменяет jar.
        """
        found = self.matching(url)
        if not found:
            return None
        return "; ".join(f"{c.name}={c.value}" for c in found)

    def get(self, name: str, domain: Optional[str] = None, path: Optional[str] = None) -> Optional[str]:
        """Значение cookie по имени."""
        with self._lock:
            for cookie in self._cookies.values():
                if cookie.name != name:
                    continue
                if domain is not None and cookie.domain != domain.lstrip(".").lower():
                    continue
                if path is not None and cookie.path != path:
                    continue
                return cookie.value
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._cookies)

    def __iter__(self) -> Iterator[Cookie]:
        with self._lock:
            snapshot = list(self._cookies.values())
        return iter(snapshot)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    # ─── Запись ─────────────────────────────────

    def ingest(self, url: httpx.URL, set_cookie_headers: Iterable[str]) -> int:
        """
        Сохранить cookies из Set-Cookie заголовков ответа.

        Returns:
            Количество принятых cookies
        """
        accepted = 0
        now = time.time()
        for header in set_cookie_headers:
            cookie = parse_set_cookie(header, url, now)
            if cookie is None:
                continue
            with self._lock:
                if cookie.is_expired(now):
                    self._cookies.pop(cookie.key, None)
                    continue
                self._store(cookie)
            accepted += 1
        return accepted

    def set(
        self,
        name: str,
        value: str,
        domain: str,
        path: str = "/",
        expires: Optional[float] = None,
        secure: bool = False,
        http_only: bool = False,
    ) -> None:
        """
        Добавить cookie вручную.

        Ведущая точка в domain означает "и поддомены".
        """
        self._store(Cookie(
            name=name,
            value=value,
            domain=domain.lstrip(".").lower(),
            path=path,
            expires=expires,
            secure=secure,
            http_only=http_only,
            host_only=not domain.startswith("."),
        ))

    def clear(self, domain: Optional[str] = None) -> None:
        """Удалить все cookies (или cookies одного домена)."""
        with self._lock:
            if domain is None:
                self._cookies.clear()
                return
            domain = domain.lstrip(".").lower()
            for key in [k for k in self._cookies if k[0] == domain]:
                del self._cookies[key]

    def clear_expired(self) -> int:
        """Удалить истёкшие cookies, вернуть их количество."""
        now = time.time()
        with self._lock:
            expired = [k for k, c in self._cookies.items() if c.is_expired(now)]
            for key in expired:
                del self._cookies[key]
        return len(expired)

    def _store(self, cookie: Cookie) -> None:
        with self._lock:
            existing = self._cookies.get(cookie.key)
            if existing is not None:
                cookie.created = existing.created
            self._cookies[cookie.key] = cookie

    # ─── Сохранение ─────────────────────────────

    def to_list(self, include_session: bool = True) -> List[Dict[str, Any]]:
        """Cookies как список dict (истёкшие пропускаются)."""
        now = time.time()
        with self._lock:
            cookies = sorted(self._cookies.values(), key=lambda c: c.created)
        return [
            asdict(c) for c in cookies
            if not c.is_expired(now) and (include_session or c.expires is not None)
        ]

    @classmethod
    def from_list(cls, items: Iterable[Dict[str, Any]]) -> 'CookieJar':
        jar = cls()
        for item in items:
            data = {k: v for k, v in item.items() if k != "created"}
            jar._store(Cookie(**data))
        return jar

    def dump(self, path: Union[str, Path], include_session: bool = False) -> None:
        """Сохранить jar в JSON файл."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_list(include_session=include_session), f, indent=2)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'CookieJar':
        """Загрузить jar из JSON файла."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_list(json.load(f))

    def __repr__(self) -> str:
        return f"<CookieJar [{len(self)} cookies]>"
