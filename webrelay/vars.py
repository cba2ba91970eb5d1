import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "webrelay")

# Router prefix in front of every route, e.g. "/relay"
PROXY_BASE_PATH = os.environ.get("PROXY_BASE_PATH", "").rstrip("/")
PROXY_ENTRY_PATH = os.environ.get("PROXY_ENTRY_PATH", "/api/proxy")
# Public-facing origin used when building proxy links, e.g. "https://relay.example.com"
PUBLIC_URL = os.environ.get("PUBLIC_URL", "").rstrip("/")

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "300"))  # 5 minutes default
PROXY_USER_AGENT = os.environ.get(
    "PROXY_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)
PROXY_FORWARD_HEADERS = [
    h.strip().lower()
    for h in os.getenv("PROXY_FORWARD_HEADERS", "accept,accept-language").split(",")
    if h.strip()
]

ADBLOCK_EXTRA_DOMAINS = [
    d.strip().lower()
    for d in os.getenv("ADBLOCK_EXTRA_DOMAINS", "").split(",")
    if d.strip()
]

INJECT_CLIENT_SCRIPT = os.getenv("INJECT_CLIENT_SCRIPT", "true").lower() == "true"

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
