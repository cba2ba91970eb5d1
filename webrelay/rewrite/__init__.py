from .context import RewriteContext
from .css_rewriter import rewrite_css
from .html_rewriter import rewrite_html

__all__ = ["RewriteContext", "rewrite_css", "rewrite_html"]
