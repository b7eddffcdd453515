"""
Request and response types seen at the interception boundary.

A Response body can be consumed exactly once, like a browser stream:
read it, or clone() first and read the clone. Stored copies live as
StoredResponse snapshots and come back out as fresh Responses.
"""
import base64
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from stillspace.core.errors import BodyUsedError


class ResponseType(str, Enum):
    """Fetch response types. Only BASIC responses are ever stored."""
    BASIC = "basic"
    CORS = "cors"
    OPAQUE = "opaque"
    OPAQUE_REDIRECT = "opaqueredirect"
    ERROR = "error"
    DEFAULT = "default"     # synthesized locally


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def strip_fragment(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", parts.query, ""))


def _lower_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    return {k.lower(): v for k, v in (headers or {}).items()}


@dataclass(frozen=True)
class RequestInfo:
    """An outgoing page request: method, URL, declared resource type."""
    url: str
    method: str = "GET"
    destination: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _lower_headers(self.headers))

    @classmethod
    def for_path(cls, origin: str, path: str, **kwargs) -> "RequestInfo":
        """Build a request for a path on the given origin."""
        return cls(url=origin.rstrip("/") + "/" + path.lstrip("/"), **kwargs)

    @property
    def origin(self) -> str:
        return origin_of(self.url)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def path_with_query(self) -> str:
        parts = urlsplit(self.url)
        return (parts.path or "/") + (f"?{parts.query}" if parts.query else "")

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


class Response:
    """A fetched, cached or synthesized response whose body reads once."""

    def __init__(
        self,
        body: bytes = b"",
        status: int = 200,
        status_text: str = "",
        headers: Optional[Mapping[str, str]] = None,
        type: ResponseType = ResponseType.DEFAULT,
        url: str = "",
        redirected: bool = False,
    ):
        self._body = body
        self.status = status
        self.status_text = status_text
        self.headers = _lower_headers(headers)
        self.type = ResponseType(type)
        self.url = url
        self.redirected = redirected
        self._body_used = False

    def __repr__(self) -> str:
        return f"<Response {self.status} {self.type.value} {self.url or '-'}>"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._body_used

    def read(self) -> bytes:
        if self._body_used:
            raise BodyUsedError("Response body already consumed", details={"url": self.url})
        self._body_used = True
        return self._body

    def text(self, encoding: str = "utf-8") -> str:
        return self.read().decode(encoding)

    def json(self) -> Any:
        return json.loads(self.read())

    def clone(self) -> "Response":
        if self._body_used:
            raise BodyUsedError("Cannot clone a consumed response", details={"url": self.url})
        return Response(
            body=self._body,
            status=self.status,
            status_text=self.status_text,
            headers=dict(self.headers),
            type=self.type,
            url=self.url,
            redirected=self.redirected,
        )

    @classmethod
    def text_response(cls, text: str, status: int = 200, status_text: str = "", headers=None) -> "Response":
        merged = {"content-type": "text/plain; charset=utf-8", **_lower_headers(headers)}
        return cls(body=text.encode("utf-8"), status=status, status_text=status_text, headers=merged)

    @classmethod
    def json_response(cls, payload: Any, status: int = 200, status_text: str = "", headers=None) -> "Response":
        merged = {"content-type": "application/json", **_lower_headers(headers)}
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        return cls(body=body, status=status, status_text=status_text, headers=merged)


def vary_names(headers: Mapping[str, str]) -> Tuple[str, ...]:
    raw = headers.get("vary", "")
    return tuple(name.strip().lower() for name in raw.split(",") if name.strip())


@dataclass(frozen=True)
class StoredResponse:
    """Immutable snapshot of a response as written into a cache generation."""
    status: int
    status_text: str
    headers: Tuple[Tuple[str, str], ...]
    body: bytes
    url: str
    type: ResponseType
    request_vary: Tuple[Tuple[str, str], ...] = ()
    stored_at: float = field(default_factory=time.time)

    @classmethod
    def capture(cls, request: RequestInfo, response: Response) -> "StoredResponse":
        """Snapshot a response without consuming it."""
        if response.body_used:
            raise BodyUsedError("Cannot store a consumed response", details={"url": request.url})
        names = vary_names(response.headers)
        return cls(
            status=response.status,
            status_text=response.status_text,
            headers=tuple(sorted(response.headers.items())),
            body=response._body,
            url=response.url or request.url,
            type=response.type,
            request_vary=tuple((name, request.header(name, "")) for name in names),
        )

    def matches(self, request: RequestInfo) -> bool:
        """Check the request against the Vary headers recorded at store time."""
        for name, value in self.request_vary:
            if name == "*":
                return False
            if request.header(name, "") != value:
                return False
        return True

    def to_response(self) -> Response:
        return Response(
            body=self.body,
            status=self.status,
            status_text=self.status_text,
            headers=dict(self.headers),
            type=self.type,
            url=self.url,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "headers": [list(pair) for pair in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
            "url": self.url,
            "type": self.type.value,
            "request_vary": [list(pair) for pair in self.request_vary],
            "stored_at": self.stored_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredResponse":
        return cls(
            status=int(data["status"]),
            status_text=data.get("status_text", ""),
            headers=_pairs(data.get("headers", [])),
            body=base64.b64decode(data.get("body", "")),
            url=data.get("url", ""),
            type=ResponseType(data.get("type", ResponseType.BASIC.value)),
            request_vary=_pairs(data.get("request_vary", [])),
            stored_at=float(data.get("stored_at", time.time())),
        )


def _pairs(items: Iterable[Iterable[str]]) -> Tuple[Tuple[str, str], ...]:
    return tuple((str(k), str(v)) for k, v in items)
