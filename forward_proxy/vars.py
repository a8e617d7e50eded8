import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "path-forward-proxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Headers injected by the hosting platform (e.g. cf-connecting-ip, cf-ray)
PLATFORM_HEADER_PREFIXES = [
    p.strip().lower()
    for p in os.getenv("PLATFORM_HEADER_PREFIXES", "cf-").split(",")
    if p.strip()
]

PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "300"))

# "proxy": root-relative links point at the proxy's own origin
# "target": root-relative links are re-encoded against the upstream origin
HTML_REWRITE_MODE = os.getenv("HTML_REWRITE_MODE", "proxy").lower()
if HTML_REWRITE_MODE not in ("proxy", "target"):
    raise ValueError(
        f"HTML_REWRITE_MODE must be 'proxy' or 'target', got '{HTML_REWRITE_MODE}'"
    )

CORS_ALLOW_METHODS = os.getenv("CORS_ALLOW_METHODS", "GET, POST, PUT, DELETE")
