"""
Endpoint and header parsing for bundle engines.

Turns the flat environment surface into ``EngineConfig`` objects: URL lists
are normalized and deduplicated, auth settings become request headers, and
engine names are mapped through their aliases.
"""

from __future__ import annotations

import base64
import json
import re
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from launchpad.config import (
    DEFAULT_LIL_JITO_ENDPOINT,
    PUBLIC_JITO_BLOCK_ENGINES,
    PUBLIC_JITO_TESTNET_BLOCK_ENGINES,
    EngineConfig,
    Settings,
    TlsClientConfig,
)

_slog = structlog.get_logger(__name__)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

ENGINE_ALIASES: Dict[str, str] = {
    "jito": "jito",
    "direct": "jito",
    "official": "jito",
    "pump": "pumpportal",
    "portal": "pumpportal",
    "pumpportal": "pumpportal",
    "pump_portal": "pumpportal",
    "liljito": "liljito",
    "lil_jito": "liljito",
    "lil": "liljito",
    "lilengine": "liljito",
}


def normalize_endpoint_url(value: Optional[str]) -> Optional[str]:
    """Trim, drop whitespace and trailing slashes, default the scheme to https."""
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    cleaned = _WHITESPACE_RE.sub("", trimmed).rstrip("/")
    if not cleaned:
        return None
    if _SCHEME_RE.match(cleaned):
        return cleaned
    return f"https://{cleaned}"


def dedupe_preserve_order(values: Iterable[Optional[str]]) -> List[str]:
    """Drop empties and case-insensitive duplicates, keeping first occurrences."""
    seen = set()
    result = []
    for value in values:
        if not value:
            continue
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def parse_endpoint_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return dedupe_preserve_order(normalize_endpoint_url(part) for part in raw.split(","))


def normalize_endpoints(values: Sequence[str]) -> List[str]:
    return dedupe_preserve_order(normalize_endpoint_url(value) for value in values)


def canonical_engine_key(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return ENGINE_ALIASES.get(value.strip().lower())


def parse_engine_names(raw) -> List[str]:
    """Resolve a comma string or list of engine names to canonical keys."""
    if not raw:
        return []
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    return dedupe_preserve_order(canonical_engine_key(str(part)) for part in parts)


def parse_json_headers(raw: Optional[str]) -> Dict[str, str]:
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        _slog.warning("engine_headers_invalid_json")
        return {}
    if not isinstance(parsed, dict):
        return {}
    headers = {}
    for key, value in parsed.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if key and text:
            headers[str(key)] = text
    return headers


def parse_header_pairs(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``key=value;key2=value2``; entries without ``=`` are ignored."""
    if not raw:
        return {}
    headers = {}
    for entry in raw.split(";"):
        entry = entry.strip()
        if not entry or "=" not in entry:
            continue
        key, value = entry.split("=", 1)
        key = key.strip()
        if key:
            headers[key] = value.strip()
    return headers


def build_auth_headers(
    api_key: str = "",
    auth_token: str = "",
    auth_header: str = "",
    basic_auth: str = "",
) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if api_key:
        headers["X-API-KEY"] = api_key.strip()
    if auth_token:
        name = auth_header.strip() or "Authorization"
        token = auth_token.strip()
        headers[name] = token if token.startswith("Bearer ") else f"Bearer {token}"
    if basic_auth and "Authorization" not in headers:
        value = basic_auth.strip()
        if not value.startswith("Basic "):
            value = "Basic " + base64.b64encode(value.encode("utf-8")).decode("ascii")
        headers["Authorization"] = value
    return headers


def build_jito_headers(source: Settings) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    headers.update(parse_json_headers(source.jito_bundle_headers))
    headers.update(parse_header_pairs(source.jito_extra_headers))
    headers.update(
        build_auth_headers(
            api_key=source.jito_api_key,
            auth_token=source.jito_auth_token,
            auth_header=source.jito_auth_header,
            basic_auth=source.jito_basic_auth,
        )
    )
    return headers


def build_jito_tls(source: Settings) -> Optional[TlsClientConfig]:
    if not (source.jito_tls_cert_path or source.jito_tls_key_path or source.jito_tls_ca_path):
        return None
    return TlsClientConfig(
        cert_path=source.jito_tls_cert_path or None,
        key_path=source.jito_tls_key_path or None,
        ca_path=source.jito_tls_ca_path or None,
        passphrase=source.jito_tls_passphrase or None,
    )


def resolve_jito_endpoints(source: Settings) -> tuple[List[str], bool]:
    """Return the jito endpoint list and whether it is public-only."""
    custom = parse_endpoint_list(source.jito_block_engine_urls)
    mainnet = parse_endpoint_list(source.jito_mainnet_block_engine_urls)
    testnet = source.network.lower() in ("devnet", "testnet")

    configured = custom + ([] if testnet else mainnet)
    if source.jito_require_custom_endpoints and not configured:
        _slog.warning("jito_custom_endpoints_required")
        return [], False

    public: List[str] = []
    if not source.jito_skip_public_endpoints:
        public = list(PUBLIC_JITO_TESTNET_BLOCK_ENGINES if testnet else PUBLIC_JITO_BLOCK_ENGINES)

    endpoints = dedupe_preserve_order(configured + public)
    return endpoints, bool(endpoints) and not configured


def build_engines(source: Settings) -> List[EngineConfig]:
    jito_endpoints, public_only = resolve_jito_endpoints(source)
    jito_headers = build_jito_headers(source)
    headers_tuple = tuple(jito_headers.items())

    pumpportal_headers = {"Content-Type": "application/json"}
    if source.pumpportal_bundle_api_key:
        pumpportal_headers["x-api-key"] = source.pumpportal_bundle_api_key.strip()

    lil_headers = dict(jito_headers)
    if source.lil_jito_api_key:
        lil_headers["X-API-KEY"] = source.lil_jito_api_key.strip()

    return [
        EngineConfig(
            key="jito",
            label="Direct Jito",
            description="Send bundles directly to Jito block-engine endpoints.",
            endpoints=tuple(jito_endpoints),
            headers=headers_tuple,
            tls=build_jito_tls(source),
            shuffle_endpoints=source.jito_shuffle_endpoints,
            dry_run=source.jito_bundle_dry_run,
            status_url=normalize_endpoint_url(source.jito_bundle_status_url),
            public_endpoints_only=public_only,
        ),
        EngineConfig(
            key="pumpportal",
            label="PumpPortal Relay",
            description="Relay bundles via PumpPortal-managed block-engine endpoints.",
            endpoints=tuple(parse_endpoint_list(source.pumpportal_bundle_endpoints)),
            headers=tuple(pumpportal_headers.items()),
            shuffle_endpoints=True,
            dry_run=source.pumpportal_bundle_dry_run,
            status_url=normalize_endpoint_url(source.pumpportal_bundle_status_url),
        ),
        EngineConfig(
            key="liljito",
            label="Lil Jito Relay",
            description="Route bundles through Lil Jito community relays.",
            endpoints=tuple(
                parse_endpoint_list(source.lil_jito_bundle_endpoints or DEFAULT_LIL_JITO_ENDPOINT)
            ),
            headers=tuple(lil_headers.items()),
            shuffle_endpoints=True,
            dry_run=source.lil_jito_bundle_dry_run,
            status_url=normalize_endpoint_url(source.lil_jito_bundle_status_url),
        ),
    ]


def redact_endpoint(url: str) -> str:
    """Strip query strings, which some relays use to carry API keys."""
    return url.split("?", 1)[0]
