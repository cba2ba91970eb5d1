from dataclasses import dataclass, field
from typing import Tuple

from webrelay import vars as env
from webrelay.adblock import AdBlockRules, DEFAULT_AD_DOMAINS


@dataclass(frozen=True)
class ProxySettings:
    """Process-wide, read-only configuration shared by every request."""

    entry_path: str = "/api/proxy"
    public_url: str = ""
    timeout: float = 300.0
    user_agent: str = env.PROXY_USER_AGENT
    forward_headers: Tuple[str, ...] = ("accept", "accept-language")
    inject_client_script: bool = True
    ad_block_rules: AdBlockRules = field(default_factory=AdBlockRules.build)

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            entry_path=f"{env.PROXY_BASE_PATH}{env.PROXY_ENTRY_PATH}",
            public_url=env.PUBLIC_URL,
            timeout=env.PROXY_TIMEOUT,
            user_agent=env.PROXY_USER_AGENT,
            forward_headers=tuple(env.PROXY_FORWARD_HEADERS),
            inject_client_script=env.INJECT_CLIENT_SCRIPT,
            ad_block_rules=AdBlockRules.build(
                domains=DEFAULT_AD_DOMAINS + tuple(env.ADBLOCK_EXTRA_DOMAINS)
            ),
        )
