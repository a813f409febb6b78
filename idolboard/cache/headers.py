"""
HTTP Cache Headers

Cache-Control values for read endpoint responses. Metric and metadata reads
may be served stale for a while by shared caches; error bodies never are.
"""

from typing import Dict, List

from idolboard.cache.config import HTTP_CACHE_PRESETS


class CacheHeadersBuilder:
    """
    Chained Cache-Control builder.

        CacheHeadersBuilder().max_age(300).stale_while_revalidate(600).build()
        -> {"Cache-Control": "public, max-age=300, stale-while-revalidate=600"}
    """

    def __init__(self):
        self._scope = "public"
        self._max_age = 0
        self._swr = 0
        self._store = True
        self._vary: List[str] = []

    def max_age(self, seconds: int) -> "CacheHeadersBuilder":
        self._max_age = seconds
        return self

    def stale_while_revalidate(self, seconds: int) -> "CacheHeadersBuilder":
        self._swr = seconds
        return self

    def public(self) -> "CacheHeadersBuilder":
        self._scope = "public"
        return self

    def private(self) -> "CacheHeadersBuilder":
        self._scope = "private"
        return self

    def no_store(self) -> "CacheHeadersBuilder":
        """Overrides every other directive."""
        self._store = False
        return self

    def vary(self, headers: List[str]) -> "CacheHeadersBuilder":
        self._vary.extend(headers)
        return self

    def _directives(self) -> List[str]:
        if not self._store:
            return ["no-store"]

        directives = [self._scope]
        if self._max_age > 0:
            directives.append(f"max-age={self._max_age}")
        if self._swr > 0:
            directives.append(f"stale-while-revalidate={self._swr}")
        return directives

    def build(self) -> Dict[str, str]:
        headers = {"Cache-Control": ", ".join(self._directives())}
        if self._vary:
            headers["Vary"] = ", ".join(self._vary)
        return headers


def headers_for(preset: str) -> Dict[str, str]:
    """
    Headers for a named entry of HTTP_CACHE_PRESETS.

    Raises:
        KeyError: unknown preset name
    """
    options = HTTP_CACHE_PRESETS[preset]
    builder = CacheHeadersBuilder()

    if options.get("no_store"):
        return builder.no_store().build()

    if not options.get("public", True):
        builder.private()
    return (builder
        .max_age(options.get("max_age", 0))
        .stale_while_revalidate(options.get("stale_while_revalidate", 0))
        .build())
