"""
Client-side interception script injected at the top of every rewritten page.

Static rewriting only sees URLs present in the delivered HTML. Everything a
page builds at runtime (fetch/XHR calls, window.open, SPA navigation,
lazily created elements) is caught by patching those primitives in the
browser and routing the URL through the proxy before the original runs.

The token generation in the script mirrors webrelay.codec.url_codec:
unpadded base64url of the UTF-8 bytes, ".", CRC-32 as 8 lowercase hex.
"""

import json

from webrelay.rewrite.context import RewriteContext

SCRIPT_MARKER = "data-webrelay"

CLIENT_SCRIPT_TEMPLATE = r"""
(function () {
  var cfg = __WEBRELAY_CONFIG__;
  if (window.__webrelayPatched) { return; }
  window.__webrelayPatched = true;

  var PAGE_URL = cfg.pageUrl;
  var ENTRY = cfg.entry;
  var ENTRY_ABS = new URL(ENTRY, window.location.href).href;
  var SKIP = /^(data:|javascript:|mailto:|tel:|blob:|about:|#)/i;
  var URL_ATTRIBUTES = { src: true, href: true, action: true, poster: true, formaction: true };

  var CRC_TABLE = (function () {
    var table = [];
    for (var n = 0; n < 256; n++) {
      var c = n;
      for (var k = 0; k < 8; k++) {
        c = (c & 1) ? (0xEDB88320 ^ (c >>> 1)) : (c >>> 1);
      }
      table[n] = c >>> 0;
    }
    return table;
  })();

  function crc32Hex(bytes) {
    var crc = 0xFFFFFFFF;
    for (var i = 0; i < bytes.length; i++) {
      crc = CRC_TABLE[(crc ^ bytes[i]) & 0xFF] ^ (crc >>> 8);
    }
    var hex = ((crc ^ 0xFFFFFFFF) >>> 0).toString(16);
    while (hex.length < 8) { hex = "0" + hex; }
    return hex;
  }

  function base64Url(bytes) {
    var binary = "";
    for (var i = 0; i < bytes.length; i++) { binary += String.fromCharCode(bytes[i]); }
    return btoa(binary).replace(/\+/g, "-").replace(/\//g, "_").replace(/=+$/, "");
  }

  function encodeToken(url) {
    var bytes = new TextEncoder().encode(url);
    return base64Url(bytes) + "." + crc32Hex(bytes);
  }

  function isProxied(url) {
    if (url === ENTRY || url === ENTRY_ABS) { return true; }
    return url.indexOf(ENTRY + "?") === 0 || url.indexOf(ENTRY_ABS + "?") === 0;
  }

  function proxify(value) {
    if (value === null || value === undefined) { return value; }
    var raw = String(value).trim();
    if (!raw || SKIP.test(raw) || isProxied(raw)) { return value; }
    var absolute;
    try {
      absolute = new URL(raw, PAGE_URL);
    } catch (e) {
      return value;
    }
    if (absolute.protocol !== "http:" && absolute.protocol !== "https:") { return value; }
    if (isProxied(absolute.href)) { return value; }
    var query = cfg.anonymous
      ? "p=" + encodeURIComponent(encodeToken(absolute.href))
      : "url=" + encodeURIComponent(absolute.href);
    if (!cfg.adBlock) { query += "&adBlock=false"; }
    return ENTRY_ABS + "?" + query;
  }

  // Same candidate rules as split_srcset: commas inside a URL (data:) stay in it
  function proxifySrcset(value) {
    if (!value) { return value; }
    var text = String(value);
    var urlRe = /[\s,]*(\S+)/y;
    var descriptorRe = /(?:[^,(]|\([^)]*\)?)*/y;
    var out = [];
    var pos = 0;
    while (pos < text.length) {
      urlRe.lastIndex = pos;
      var match = urlRe.exec(text);
      if (!match) { break; }
      var url = match[1];
      var descriptor = "";
      pos = urlRe.lastIndex;
      if (/,$/.test(url)) {
        url = url.replace(/,+$/, "");
      } else {
        descriptorRe.lastIndex = pos;
        descriptor = descriptorRe.exec(text)[0].trim();
        pos = descriptorRe.lastIndex + 1;
      }
      url = proxify(url);
      out.push(descriptor ? url + " " + descriptor : url);
    }
    return out.join(", ");
  }

  var nativeFetch = window.fetch;
  if (nativeFetch) {
    window.fetch = function (input, init) {
      try {
        if (typeof input === "string" || input instanceof URL) {
          input = proxify(String(input));
        } else if (input && input.url && !isProxied(input.url)) {
          input = new Request(proxify(input.url), input);
        }
      } catch (e) {}
      return nativeFetch.call(window, input, init);
    };
  }

  var nativeOpen = XMLHttpRequest.prototype.open;
  XMLHttpRequest.prototype.open = function (method, url) {
    var args = Array.prototype.slice.call(arguments);
    args[1] = proxify(url);
    return nativeOpen.apply(this, args);
  };

  var nativeWindowOpen = window.open;
  window.open = function (url) {
    var args = Array.prototype.slice.call(arguments);
    if (args.length) { args[0] = proxify(url); }
    return nativeWindowOpen.apply(window, args);
  };

  if (navigator.sendBeacon) {
    var nativeBeacon = navigator.sendBeacon.bind(navigator);
    navigator.sendBeacon = function (url, data) {
      return nativeBeacon(proxify(url), data);
    };
  }

  ["pushState", "replaceState"].forEach(function (name) {
    var native = history[name];
    history[name] = function (state, title, url) {
      if (url !== undefined && url !== null) { url = proxify(url); }
      return native.call(history, state, title, url);
    };
  });

  ["assign", "replace"].forEach(function (name) {
    try {
      var native = window.location[name].bind(window.location);
      Object.defineProperty(window.location, name, {
        configurable: true,
        value: function (url) { return native(proxify(url)); }
      });
    } catch (e) {}
  });

  try {
    var hrefDescriptor = Object.getOwnPropertyDescriptor(Location.prototype, "href");
    if (hrefDescriptor && hrefDescriptor.set) {
      Object.defineProperty(Location.prototype, "href", {
        configurable: true,
        get: hrefDescriptor.get,
        set: function (url) { hrefDescriptor.set.call(this, proxify(url)); }
      });
    }
  } catch (e) {}

  // Catches location.href assignments where the Location object is unforgeable
  if (window.navigation && window.navigation.addEventListener) {
    window.navigation.addEventListener("navigate", function (event) {
      var destination = event.destination && event.destination.url;
      if (!destination || !event.cancelable || isProxied(destination)) { return; }
      var target = proxify(destination);
      if (target !== destination) {
        event.preventDefault();
        window.location.href = target;
      }
    });
  }

  function patchProperty(owner, prop) {
    if (!owner) { return; }
    var proto = owner.prototype;
    var descriptor = Object.getOwnPropertyDescriptor(proto, prop);
    if (!descriptor || !descriptor.set) { return; }
    Object.defineProperty(proto, prop, {
      configurable: true,
      enumerable: descriptor.enumerable,
      get: descriptor.get,
      set: function (value) { descriptor.set.call(this, proxify(value)); }
    });
  }

  patchProperty(window.HTMLScriptElement, "src");
  patchProperty(window.HTMLImageElement, "src");
  patchProperty(window.HTMLIFrameElement, "src");
  patchProperty(window.HTMLMediaElement, "src");
  patchProperty(window.HTMLSourceElement, "src");
  patchProperty(window.HTMLLinkElement, "href");

  var nativeSetAttribute = Element.prototype.setAttribute;
  Element.prototype.setAttribute = function (name, value) {
    var lower = String(name).toLowerCase();
    if (URL_ATTRIBUTES[lower] && this.nodeName !== "BASE") {
      value = proxify(value);
    } else if (lower === "srcset") {
      value = proxifySrcset(value);
    }
    return nativeSetAttribute.call(this, name, value);
  };

  document.addEventListener("click", function (event) {
    var node = event.target;
    while (node && node.nodeName !== "A") { node = node.parentNode; }
    if (!node || !node.getAttribute) { return; }
    var href = node.getAttribute("href");
    if (!href) { return; }
    var target = proxify(href);
    if (target !== href) { nativeSetAttribute.call(node, "href", target); }
  }, true);

  document.addEventListener("submit", function (event) {
    var form = event.target;
    if (!form || form.nodeName !== "FORM") { return; }
    var action = form.getAttribute("action");
    if (!action) { return; }
    var target = proxify(action);
    if (target !== action) { nativeSetAttribute.call(form, "action", target); }
  }, true);
})();
"""


def client_config(ctx: RewriteContext) -> dict:
    return {
        "pageUrl": ctx.base_url,
        "entry": ctx.proxy_entry,
        "anonymous": ctx.anonymous,
        "adBlock": ctx.ad_block,
    }


def render_client_script(ctx: RewriteContext) -> str:
    """Fill the interception script with the page's parameters."""
    # "<" is escaped so a URL can never close the surrounding <script> element
    config = json.dumps(client_config(ctx), separators=(",", ":")).replace(
        "<", "\\u003c"
    )
    return CLIENT_SCRIPT_TEMPLATE.replace("__WEBRELAY_CONFIG__", config)
