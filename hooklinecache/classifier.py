"""Request classification by URL pattern.

Rules are evaluated in order and the first match wins:

1. critical - listed critical asset, or a critical filename/host substring
2. image    - image file extension, or an image directory
3. api      - "/api/" anywhere, or a known API endpoint path
4. dynamic  - a source-directory fragment
5. default  - everything else

Order matters where patterns overlap: "/src/main.tsx" matches both the
critical "main." substring and the dynamic "/src/" fragment, and is
critical because that rule comes first. A "/src/..." file without a
critical substring falls through to dynamic.
"""

import re
from collections.abc import Callable
from urllib.parse import urlparse

from .config import AssetsConfig
from .models import API, CRITICAL, DEFAULT, DYNAMIC, IMAGE

IMAGE_EXTENSION_RE = re.compile(r"\.(png|jpg|jpeg|gif|webp|svg|ico)$", re.IGNORECASE)

Rule = tuple[Callable[[str], bool], str]


def _url_path(url: str) -> str:
    """Return the path component of an absolute or origin-relative URL."""
    return urlparse(url).path or "/"


class Classifier:
    """Maps a request URL to exactly one asset class.

    Example:
        classifier = Classifier(AssetsConfig())
        classifier.classify("/src/main.tsx")  # "critical"
    """

    def __init__(self, assets: AssetsConfig) -> None:
        self._assets = assets
        self._critical = frozenset(assets.critical)
        self.rules: tuple[Rule, ...] = (
            (self.is_critical_asset, CRITICAL),
            (self.is_image_asset, IMAGE),
            (self.is_api_request, API),
            (self.is_dynamic_asset, DYNAMIC),
        )

    def classify(self, url: str) -> str:
        """Return the asset class for a URL. Total: unmatched URLs are "default"."""
        for predicate, asset_class in self.rules:
            if predicate(url):
                return asset_class
        return DEFAULT

    def is_critical_asset(self, url: str) -> bool:
        if url in self._critical or _url_path(url) in self._critical:
            return True
        return any(pattern in url for pattern in self._assets.critical_patterns)

    def is_image_asset(self, url: str) -> bool:
        if IMAGE_EXTENSION_RE.search(url):
            return True
        return any(pattern in url for pattern in self._assets.image_patterns)

    def is_api_request(self, url: str) -> bool:
        if "/api/" in url:
            return True
        path = _url_path(url)
        return any(path.endswith(endpoint) for endpoint in self._assets.api_endpoints)

    def is_dynamic_asset(self, url: str) -> bool:
        return any(pattern in url for pattern in self._assets.dynamic_patterns)
