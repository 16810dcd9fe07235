import base64
import http.client
import importlib.metadata
import ssl
import urllib.parse
from typing import Dict, Optional, Tuple

try:
    DOCKDNS_VERSION = importlib.metadata.version("dockdns")
except importlib.metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    DOCKDNS_VERSION = "unknown"


class DoHError(Exception):
    """
    Brief: DNS-over-HTTPS transport error.

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """

    pass


def b64url_no_pad(data: bytes) -> str:
    """
    Brief: Base64url-encode without padding per RFC 8484.

    Inputs:
    - data: raw bytes to encode

    Outputs:
    - str: base64url string without '=' padding

    Example:
        >>> b64url_no_pad(b"\x01\x02")
        'AQI'
    """
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _build_ssl_ctx(verify: bool = True, ca_file: Optional[str] = None) -> ssl.SSLContext:
    if not verify:
        return ssl._create_unverified_context()
    if ca_file:
        return ssl.create_default_context(cafile=ca_file)
    return ssl.create_default_context()


def doh_query(
    url: str,
    query: bytes,
    *,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: int = 2000,
    verify: bool = True,
    ca_file: Optional[str] = None,
) -> Tuple[bytes, Dict[str, str]]:
    """
    Brief: Perform one DNS-over-HTTPS exchange (RFC 8484).

    Inputs:
    - url: Target endpoint, e.g. https://223.5.5.5/dns-query
    - query: Wire-format DNS query bytes
    - method: 'GET' (default) or 'POST'
    - headers: Optional extra headers
    - timeout_ms: Socket timeout for connect and read
    - verify: Verify TLS certificates (https only)
    - ca_file: Optional CA bundle path for verification

    Outputs:
    - (body, resp_headers): response body bytes and lower-cased headers

    Notes:
    - GET replaces any existing ``dns`` parameter with the unpadded base64url
      encoding of ``query``; POST sends it as application/dns-message.
    - Any non-2xx status, TLS failure or socket error raises DoHError.
      There is no retry here; callers own that decision.

    Example:
        >>> try:
        ...     doh_query('https://example.invalid/dns-query', b'\x00\x01')
        ... except DoHError:
        ...     pass
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("https", "http"):
        raise DoHError(f"Unsupported URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise DoHError(f"Missing host in DoH url: {url}")

    path = parsed.path or "/dns-query"
    hdrs = {"Accept": "application/dns-message"}
    hdrs.update(headers or {})
    if not any(k.lower() == "user-agent" for k in hdrs):
        hdrs["User-Agent"] = f"dockdns/{DOCKDNS_VERSION}"

    if method.upper() == "GET":
        params = [
            (k, v)
            for (k, v) in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
            if k != "dns"
        ]
        params.append(("dns", b64url_no_pad(query)))
        target = path + "?" + urllib.parse.urlencode(params)
        body = None
    else:
        target = path + ("?" + parsed.query if parsed.query else "")
        body = query
        hdrs["Content-Type"] = "application/dns-message"

    timeout = timeout_ms / 1000.0
    if parsed.scheme == "https":
        conn = http.client.HTTPSConnection(
            parsed.hostname,
            parsed.port or 443,
            timeout=timeout,
            context=_build_ssl_ctx(verify=verify, ca_file=ca_file),
        )
    else:
        conn = http.client.HTTPConnection(
            parsed.hostname, parsed.port or 80, timeout=timeout
        )

    try:
        conn.request(method.upper(), target, body=body, headers=hdrs)
        resp = conn.getresponse()
        data = resp.read()
    except ssl.SSLError as e:
        raise DoHError(f"TLS error: {e}")
    except (OSError, http.client.HTTPException) as e:
        raise DoHError(f"Network error: {e}")
    finally:
        conn.close()

    if not 200 <= resp.status < 300:
        raise DoHError(f"HTTP {resp.status}: {resp.reason}")
    return data, {k.lower(): v for k, v in resp.getheaders()}
