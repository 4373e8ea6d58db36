"""
Lightweight security checks run against a resolved video URL.

Every check takes the URL and the fetch configuration and returns a single
Finding or None. Checks never raise to the caller: a failing check is logged
and simply contributes nothing.
"""
import logging
import re
from typing import List, Optional
from urllib.parse import parse_qsl, urlparse

from config import FetchConfig
from models import Finding, Severity, max_severity

logger = logging.getLogger("VulnerabilityScanner")

TOKEN_PARAMS = re.compile(r'^(token|access_token|auth|key|api_key|sig|signature|session|sessionid|jwt|oh|x-amz-signature)$', re.I)
EXPIRY_PARAMS = re.compile(r'^(oe|expires|exp|x-amz-expires)$', re.I)
INTERNAL_PARAMS = re.compile(r'^(_nc_[a-z_]+|efg|ccb|ip|vs|edm|uid|user_id)$', re.I)
VERSIONED_SERVER = re.compile(r'\d+(\.\d+)+')
CHECK_ORIGIN = "https://scanner.invalid"


def check_transport(url, config):
    scheme = urlparse(url).scheme.lower()
    if scheme == "https":
        return None
    return Finding(
        id="insecure-transport",
        issue="Unencrypted transport",
        severity=Severity.MEDIUM,
        description=f"The video is served over '{scheme or 'unknown'}' instead of HTTPS; it can be read or altered in transit.",
    )


def check_cors(url, config):
    res = config.session.head(
        url,
        headers={"Origin": CHECK_ORIGIN, "User-Agent": config.ua_desktop},
        timeout=config.timeout,
        allow_redirects=True,
    )
    allow_origin = res.headers.get("Access-Control-Allow-Origin", "").strip()
    credentials = res.headers.get("Access-Control-Allow-Credentials", "").strip().lower() == "true"
    if not allow_origin:
        return None

    reflected = allow_origin == CHECK_ORIGIN
    if reflected or (allow_origin == "*" and credentials):
        return Finding(
            id="permissive-cors",
            issue="Permissive CORS policy",
            severity=Severity.MEDIUM,
            description=f"The host accepts arbitrary origins (Access-Control-Allow-Origin: {allow_origin}"
                        f"{', with credentials' if credentials else ''}).",
        )
    if allow_origin == "*":
        return Finding(
            id="permissive-cors",
            issue="Wildcard CORS policy",
            severity=Severity.LOW,
            description="Any website can fetch this video from the browser (Access-Control-Allow-Origin: *).",
        )
    return None


def check_url_tokens(url, config):
    names = [k for k, v in parse_qsl(urlparse(url).query, keep_blank_values=True) if v]
    tokens = [n for n in names if TOKEN_PARAMS.match(n)]
    expiry = [n for n in names if EXPIRY_PARAMS.match(n)]
    if not tokens and not expiry:
        return None
    exposed = ", ".join(tokens + expiry)
    return Finding(
        id="token-in-url",
        issue="Access token embedded in URL",
        severity=Severity.LOW,
        description=f"The URL carries signing or expiry parameters ({exposed}); anyone holding the link can replay it until it expires.",
    )


def check_internal_identifiers(url, config):
    names = [k for k, _ in parse_qsl(urlparse(url).query, keep_blank_values=True)]
    internal = sorted({n for n in names if INTERNAL_PARAMS.match(n)})
    if not internal:
        return None
    return Finding(
        id="internal-identifiers",
        issue="Internal identifiers exposed",
        severity=Severity.LOW,
        description=f"The URL leaks CDN routing or internal identifiers ({', '.join(internal)}).",
    )


def check_server_metadata(url, config):
    res = config.session.head(url, headers={"User-Agent": config.ua_desktop}, timeout=config.timeout, allow_redirects=True)
    exposed = []
    server = res.headers.get("Server", "")
    if server and VERSIONED_SERVER.search(server):
        exposed.append(f"Server: {server}")
    for header in ("X-Powered-By", "Via"):
        if res.headers.get(header):
            exposed.append(f"{header}: {res.headers[header]}")
    if not exposed:
        return None
    return Finding(
        id="server-metadata",
        issue="Server metadata disclosure",
        severity=Severity.LOW,
        description="Response headers reveal infrastructure details (" + "; ".join(exposed) + ").",
    )


CHECKS = (check_transport, check_cors, check_url_tokens, check_internal_identifiers, check_server_metadata)


def scan_url(url: str, config: Optional[FetchConfig] = None, checks=CHECKS) -> List[Finding]:
    config = config or FetchConfig.from_env()
    findings = []
    with config.request_scope() as scoped:
        for check in checks:
            try:
                finding = check(url, scoped)
            except Exception as e:
                logger.warning(f"Check {check.__name__} failed for {url}: {e}")
                continue
            if finding:
                findings.append(finding)
    logger.info(f"Scan of {url}: {len(findings)} finding(s), max severity {max_severity(findings).value}")
    return findings
