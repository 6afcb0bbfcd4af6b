"""
Deterministic Key Derivation
============================

Content-addressed keys for every cached layer of the audit pipeline.

    prod_<16 hex>   product identity   (mode, normalized URL, locale, normalize version)
    snap_<16 hex>   capture snapshot   (product key, engine version, viewports)
    run_<16 hex>    scored run         (snapshot key, detectors/scoring/schema versions, mode)
    audit_<16 hex>  rendered report    (run key, render/outline/export versions, options)

GUARANTEES:
- Same components -> same key, across processes and machines
- Canonical JSON (sorted keys, compact separators) + SHA-256
- The namespace is part of the hashed payload
- No wall-clock values and no floats: they are rejected, not coerced
"""

from __future__ import annotations
from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit
import hashlib
import json
import re

from .contracts.base import AuditMode, Viewport
from .contracts.versions import DEFAULT_VERSIONS, VersionRegistry
from .errors import InvalidRequestError, KeyDerivationError


NAMESPACES = ("prod", "snap", "run", "audit")
DIGEST_LENGTH = 16

_KEY_PATTERN = re.compile(r"^([a-z]+)_([0-9a-f]{16})$")
_DEFAULT_PORTS = {"http": 80, "https": 443}


# =============================================================================
# URL NORMALIZATION
# =============================================================================

def normalize_url(url: str) -> str:
    """
    Canonical form of a product page URL.

    Lowercases scheme, host and path, strips query string and fragment,
    drops default ports and removes a trailing slash except at root.
    Variant, tracking and anchor parameters all map to the same product.

    Raises InvalidRequestError for anything that is not an absolute
    http(s) URL with a host.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidRequestError("URL must be a non-empty string", field="url")

    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as exc:
        raise InvalidRequestError(f"Malformed URL: {exc}", field="url") from exc

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise InvalidRequestError(
            f"Unsupported URL scheme '{parts.scheme}'", field="url"
        )

    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidRequestError("URL has no host", field="url")

    netloc = host
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"

    path = parts.path.lower() or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return f"{scheme}://{netloc}{path}"


# =============================================================================
# KEYS
# =============================================================================

@dataclass(frozen=True)
class Key:
    """A namespaced, truncated SHA-256 digest."""
    namespace: str
    digest: str

    def __post_init__(self):
        if self.namespace not in NAMESPACES:
            raise KeyDerivationError(f"Unknown key namespace '{self.namespace}'")
        if not re.fullmatch(r"[0-9a-f]{16}", self.digest or ""):
            raise KeyDerivationError(f"Invalid key digest '{self.digest}'")

    @property
    def value(self) -> str:
        return f"{self.namespace}_{self.digest}"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> Key:
        """Parse 'audit_0123456789abcdef' back into a Key."""
        match = _KEY_PATTERN.match(value or "")
        if not match:
            raise KeyDerivationError(f"Malformed key '{value}'")
        return cls(namespace=match.group(1), digest=match.group(2))


def canonicalize(value: Any) -> Any:
    """
    Reduce a key component to JSON primitives.

    The accepted set is closed; anything outside it raises
    KeyDerivationError instead of being stringified.
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise KeyDerivationError("Floats are not valid key components")
    if isinstance(value, (datetime, date)):
        raise KeyDerivationError("Dates and times are not valid key components")
    if isinstance(value, Key):
        return value.value
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, VersionRegistry):
        return value.as_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: canonicalize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        result = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise KeyDerivationError(f"Mapping keys must be strings, got {type(k).__name__}")
            result[k] = canonicalize(v)
        return result
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=_dumps)
    raise KeyDerivationError(
        f"Unsupported key component type: {type(value).__name__}"
    )


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_json(namespace: str, components: Iterable[Any]) -> str:
    payload = {
        "namespace": namespace,
        "components": [canonicalize(c) for c in components],
    }
    return _dumps(payload)


def derive(namespace: str, *components: Any) -> Key:
    """Derive a key from a namespace and ordered components."""
    if namespace not in NAMESPACES:
        raise KeyDerivationError(f"Unknown key namespace '{namespace}'")
    canonical = canonical_json(namespace, components)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return Key(namespace=namespace, digest=digest[:DIGEST_LENGTH])


# =============================================================================
# PIPELINE KEY DERIVER
# =============================================================================

class KeyDeriver:
    """
    Derives the four pipeline keys against one injected VersionRegistry.

    Each key embeds only the versions of the logic that produced its
    layer, so a version bump invalidates that layer and everything below.
    """

    def __init__(self, versions: VersionRegistry = DEFAULT_VERSIONS):
        self._versions = versions

    @property
    def versions(self) -> VersionRegistry:
        return self._versions

    def product_key(self, mode: AuditMode, normalized_url: str, locale: str) -> Key:
        return derive("prod", mode, normalized_url, locale, self._versions.normalize)

    def snapshot_key(self, product_key: Key, viewports: Tuple[Viewport, ...]) -> Key:
        return derive("snap", product_key, self._versions.engine, tuple(viewports))

    def run_key(self, snapshot_key: Key, mode: AuditMode) -> Key:
        v = self._versions
        return derive(
            "run",
            snapshot_key,
            v.detectors,
            v.scoring,
            v.evidence_schema,
            v.ticket_schema,
            mode,
        )

    def audit_key(
        self,
        run_key: Key,
        copy_ready: bool = False,
        white_label: Optional[Mapping[str, str]] = None
    ) -> Key:
        v = self._versions
        return derive(
            "audit",
            run_key,
            v.render,
            v.report_outline,
            v.export_format,
            bool(copy_ready),
            dict(white_label) if white_label else None,
        )
