"""
Route classification: which caching policy applies to a request.

Rules are evaluated in order and the first match wins:

  1. cross-origin                      -> other  (never cached)
  2. URL contains an audio marker      -> audio
  3. destination is script/style/image -> static
  4. path starts with the API prefix   -> api
  5. destination is document           -> document
  6. anything else                     -> other

Classification is a pure function of (origin, URL, method, destination).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Sequence

from stillspace.core.config import StillSpaceConfig
from stillspace.fetch.models import RequestInfo, origin_of


class RouteClass(str, Enum):
    """Policy classes a request can fall into."""
    AUDIO = "audio"
    STATIC = "static-asset"
    API = "api"
    DOCUMENT = "document"
    OTHER = "other"


@dataclass(frozen=True)
class RouteRule:
    """One (predicate, class) pair in the ordered rule list."""
    name: str
    predicate: Callable[[RequestInfo], bool]
    route_class: RouteClass


def cross_origin_rule(origin: str) -> RouteRule:
    own = origin_of(origin)
    return RouteRule("cross-origin", lambda r: r.origin != own, RouteClass.OTHER)


def audio_rule(markers: Sequence[str]) -> RouteRule:
    markers = tuple(markers)
    return RouteRule("audio", lambda r: any(m in r.url for m in markers), RouteClass.AUDIO)


def static_rule(destinations: Sequence[str]) -> RouteRule:
    destinations = frozenset(destinations)
    return RouteRule("static-asset", lambda r: r.destination in destinations, RouteClass.STATIC)


def api_rule(prefix: str) -> RouteRule:
    return RouteRule("api", lambda r: r.path.startswith(prefix), RouteClass.API)


def document_rule() -> RouteRule:
    return RouteRule("document", lambda r: r.destination == "document", RouteClass.DOCUMENT)


def default_rules(config: StillSpaceConfig) -> List[RouteRule]:
    return [
        cross_origin_rule(config.origin),
        audio_rule(config.audio_markers),
        static_rule(config.static_destinations),
        api_rule(config.api_prefix),
        document_rule(),
    ]


class RouteClassifier:
    """Maps a request to exactly one RouteClass by ordered rules."""

    def __init__(self, rules: Sequence[RouteRule], fallback: RouteClass = RouteClass.OTHER):
        self.rules = tuple(rules)
        self.fallback = fallback

    @classmethod
    def from_config(cls, config: StillSpaceConfig) -> "RouteClassifier":
        return cls(default_rules(config))

    def classify(self, request: RequestInfo) -> RouteClass:
        return self.explain(request).route_class

    def explain(self, request: RequestInfo) -> RouteRule:
        """Return the rule that decided the class (a synthetic one for the fallback)."""
        for rule in self.rules:
            if rule.predicate(request):
                return rule
        return RouteRule("fallback", lambda r: True, self.fallback)
