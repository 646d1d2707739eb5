"""Request rewrite engine.

Produces a new EdgeRequest from an inbound request, a target override and the
parameters captured while matching:
- Scheme, host, port and path replacement with ``:name`` substitution
- Ordered regex path rewrite rules with group references
- Header set/remove rules
- Method override
- Body carried through; multipart bodies are materialized with their boundary
"""

import logging
import re
from collections.abc import Mapping
from typing import Optional

from aiohttp import hdrs
from aiohttp.helpers import parse_mimetype
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from edgeroute.core.request import MULTIPART_FORM_DATA, EdgeRequest
from edgeroute.core.rules import TargetOverride

logger = logging.getLogger(__name__)

_PARAM_TOKEN = re.compile(r":(\w+)")

# \g<name>, \g<1>, \1 group references and :name parameters
_REPLACEMENT_TOKEN = re.compile(r"\\g<(\w+)>|\\(\d+)|:(\w+)")

_AUTHORITY = re.compile(r"^(?P<host>.*?)(?::(?P<port>\d+))?$")


def substitute_params(template: str, params: Mapping[str, str]) -> str:
    """Replace ``:name`` tokens with parameter values.

    Tokens without a matching parameter are left in place.

    Args:
        template: Host or path template
        params: Captured parameters

    Returns:
        Substituted string
    """
    return _PARAM_TOKEN.sub(lambda token: params.get(token.group(1), token.group(0)), template)


def expand_replacement(match: re.Match, template: str, params: Mapping[str, str]) -> str:
    """Expand a path rewrite replacement for a regex match.

    Group references that do not exist in the pattern, and parameters that
    were not captured, are left as literal text.

    Args:
        match: Match of the rewrite rule's regex against the path
        template: Replacement template
        params: Captured parameters

    Returns:
        Expanded replacement text
    """

    def replace(token: re.Match) -> str:
        name, number, param = token.groups()
        if param is not None:
            return params.get(param, token.group(0))
        ref = number if number is not None else name
        try:
            value = match.group(int(ref) if ref.isdigit() else ref)
        except IndexError:
            return token.group(0)
        return value or ""

    return _REPLACEMENT_TOKEN.sub(replace, template)


def rewrite_path(path: str, target: TargetOverride, params: Mapping[str, str]) -> str:
    """Compute the rewritten path.

    Args:
        path: Current raw URL path
        target: Target override with a path template or path rules
        params: Captured parameters

    Returns:
        New path; the current path when no rewrite rule applies
    """
    if isinstance(target.path, str):
        return substitute_params(target.path, params)

    for pattern, replacement in target.path_rules:
        match = pattern.search(path)
        if match:
            rewritten = path[: match.start()] + expand_replacement(match, replacement, params)
            rewritten += path[match.end() :]
            logger.debug(
                f"Path rewrite rule {pattern.pattern} applied",
                extra={"path": path, "rewritten_path": rewritten},
            )
            return rewritten

    return path


def rewrite_url(url: URL, target: TargetOverride, params: Mapping[str, str]) -> URL:
    """Apply protocol, host, port and path overrides to a URL.

    The query string and fragment are preserved.

    Args:
        url: Original URL
        target: Target override
        params: Captured parameters

    Returns:
        Rewritten URL (the same object when nothing changed)
    """
    scheme = target.protocol if target.protocol is not None else url.scheme
    host = url.raw_host or ""
    port = url.explicit_port

    if target.host is not None:
        authority = _AUTHORITY.match(substitute_params(target.host, params))
        host = authority.group("host")
        if authority.group("port") is not None:
            port = int(authority.group("port"))

    if target.port is not None:
        port = target.port

    path = url.raw_path
    if target.path is not None:
        path = rewrite_path(path, target, params)
        if not path.startswith("/"):
            path = "/" + path

    if (scheme, host, port, path) == (url.scheme, url.raw_host, url.explicit_port, url.raw_path):
        return url

    return URL.build(
        scheme=scheme,
        user=url.raw_user,
        password=url.raw_password,
        host=host,
        port=port,
        path=path,
        query_string=url.raw_query_string,
        fragment=url.raw_fragment,
        encoded=True,
    )


def apply_headers(
    headers: CIMultiDictProxy[str], rules: Mapping[str, Optional[str]]
) -> CIMultiDictProxy[str]:
    """Apply header rules to a header collection.

    Args:
        headers: Original headers
        rules: Header name -> value; None removes the header

    Returns:
        New header collection; headers not named in rules pass through
    """
    updated = CIMultiDict(headers)
    for name, value in rules.items():
        if value is None:
            updated.popall(name, None)
        else:
            updated[name] = value
    return CIMultiDictProxy(updated)


def _boundary(content_type: str) -> Optional[str]:
    mimetype = parse_mimetype(content_type)
    return mimetype.parameters.get("boundary")


def _preserve_boundary(
    original: CIMultiDictProxy[str], headers: CIMultiDictProxy[str]
) -> CIMultiDictProxy[str]:
    """Keep the Content-Type boundary consistent with a multipart body."""
    original_type = original.get(hdrs.CONTENT_TYPE, "")
    current_type = headers.get(hdrs.CONTENT_TYPE)

    if current_type is not None:
        mimetype = parse_mimetype(current_type)
        if f"{mimetype.type}/{mimetype.subtype}" != MULTIPART_FORM_DATA:
            # Explicitly re-typed by a header rule
            return headers
        if _boundary(current_type) == _boundary(original_type):
            return headers

    logger.debug(
        "Restoring multipart Content-Type boundary",
        extra={"content_type": original_type},
    )
    updated = CIMultiDict(headers)
    updated[hdrs.CONTENT_TYPE] = original_type
    return CIMultiDictProxy(updated)


async def rewrite(
    request: EdgeRequest,
    target: Optional[TargetOverride] = None,
    params: Optional[Mapping[str, str]] = None,
) -> EdgeRequest:
    """Build the outbound request for a target override.

    The original request is never mutated. A streamed multipart body is read
    fully so the forwarded request carries a body whose boundary matches its
    Content-Type header; any other body is carried through as is.

    Args:
        request: Inbound request
        target: Target override (empty override when None)
        params: Captured parameters

    Returns:
        New EdgeRequest
    """
    target = target or TargetOverride()
    params = dict(params or {})

    url = rewrite_url(request.url, target, params)

    headers = request.headers
    if target.headers is not None:
        headers = apply_headers(headers, target.headers)

    method = target.method if target.method is not None else request.method

    body = request.body
    if request.is_multipart:
        if body is not None and not isinstance(body, bytes):
            body = await request.read()
        headers = _preserve_boundary(request.headers, headers)

    logger.debug(
        f"Rewrote {request.method} {request.url} -> {method} {url}",
        extra={"params": params, "target_fields": list(target.present_fields)},
    )

    return EdgeRequest(method=method, url=url, headers=headers, body=body)
