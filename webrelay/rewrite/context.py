from dataclasses import dataclass
from urllib.parse import quote

from webrelay.codec import encode


@dataclass(frozen=True)
class RewriteContext:
    """
    Everything needed to turn a reference inside one document into a proxy link.

    base_url is the resolution base for relative references; proxy_entry is
    the entry point links are routed to, absolute (``https://relay/api/proxy``)
    or root-relative (``/api/proxy``).
    """

    base_url: str
    proxy_entry: str
    anonymous: bool = False
    ad_block: bool = True

    def with_base(self, base_url: str) -> "RewriteContext":
        return RewriteContext(
            base_url=base_url,
            proxy_entry=self.proxy_entry,
            anonymous=self.anonymous,
            ad_block=self.ad_block,
        )

    def target_params(self, absolute_url: str) -> dict:
        """Query parameters that address ``absolute_url`` through the entry point."""
        params = {}
        if self.anonymous:
            params["p"] = encode(absolute_url)
        else:
            params["url"] = absolute_url
        if not self.ad_block:
            params["adBlock"] = "false"
        return params

    def proxy_url(self, absolute_url: str) -> str:
        query = "&".join(
            f"{name}={quote(value, safe='')}"
            for name, value in self.target_params(absolute_url).items()
        )
        return f"{self.proxy_entry}?{query}"

    def is_proxy_url(self, reference: str) -> bool:
        return reference == self.proxy_entry or reference.startswith(
            f"{self.proxy_entry}?"
        )
