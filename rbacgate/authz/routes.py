from __future__ import annotations

import logging
import re
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

PageAction = Tuple[str, str]


def route_key(method: str, path: str) -> str:
    """The `METHOD path` string routes and whitelist entries are matched against."""
    return f"{(method or '').upper()} {path or ''}"


def _compile_all(patterns: Iterable[str], *, kind: str) -> List[Tuple[str, Pattern[str]]]:
    out: List[Tuple[str, Pattern[str]]] = []
    for raw in patterns:
        try:
            out.append((raw, re.compile(raw)))
        except re.error as e:
            logger.warning("Skipping invalid %s pattern %r: %s", kind, raw, str(e))
    return out


class RouteMatcher:
    """
    Whitelist of routes exempt from policy checks.

    Entries are either literal `METHOD path` strings or regular expressions over
    the same shape. Literal membership is checked first; regexes are tried in
    order afterwards. Invalid regexes never match.
    """

    def __init__(self, whitelist: Iterable[str] = ()) -> None:
        self._entries: List[str] = [str(x) for x in whitelist]
        self._exact: FrozenSet[str] = frozenset(self._entries)
        self._patterns = _compile_all(self._entries, kind="whitelist")

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    def is_exempt(self, route: str) -> bool:
        if route in self._exact:
            return True
        for _raw, pat in self._patterns:
            if pat.search(route):
                return True
        return False


class RouteTable:
    """Maps a request route to the (page, action) pair guarding it."""

    def __init__(self, routes: Optional[Mapping[str, PageAction]] = None) -> None:
        self._routes: Dict[str, PageAction] = {str(k): (str(v[0]), str(v[1])) for k, v in (routes or {}).items()}
        self._patterns = _compile_all(self._routes.keys(), kind="route")

    @property
    def routes(self) -> Dict[str, PageAction]:
        return dict(self._routes)

    def lookup(self, route: str) -> Optional[PageAction]:
        """Exact key first, then the first pattern (in configured order) that matches."""
        hit = self._routes.get(route)
        if hit is not None:
            return hit
        for raw, pat in self._patterns:
            if pat.search(route):
                return self._routes[raw]
        return None
