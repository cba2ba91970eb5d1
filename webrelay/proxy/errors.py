"""
Error taxonomy of the proxy engine.

Every error that ends a request carries the HTTP status it is reported with;
the entry point renders it as ``{"error": message}``.
"""


class ProxyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidUrl(ProxyError):
    """The target is not an absolute http/https URL."""

    status_code = 400


class TokenDecodeError(ProxyError):
    """An anonymous-mode token could not be turned back into a URL."""

    status_code = 400


class MalformedToken(TokenDecodeError):
    pass


class ChecksumMismatch(TokenDecodeError):
    pass


class UpstreamUnreachable(ProxyError):
    """The upstream origin could not be reached at the network level."""

    status_code = 500


class RewriteSkipped(Exception):
    """A single reference inside a document could not be rewritten.

    Raised and caught inside the rewriter only; the original text stays in place.
    """
