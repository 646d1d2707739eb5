"""Pattern compiler for host and path templates.

This module turns rule templates into anchored regular expressions:
- Host patterns: ``*sub.*env.test.io``, ``*.example.com``, ``localhost:3010``
- Path patterns: ``/api/:entity``, ``/api/account/*``

Each matcher reports a mapping of captured names to values, or None when the
input does not match.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from edgeroute.core.errors import PatternError

logger = logging.getLogger(__name__)

# One DNS label
HOST_LABEL_RE = r"[A-Za-z0-9-]+"

# One path segment
PATH_SEGMENT_RE = r"[^/]+"

_PORT_SUFFIX = re.compile(r"^(?P<host>.*?)(?::(?P<port>\d+))?$")


class PatternMatcher:
    """Base class for compiled patterns."""

    kind = "pattern"

    def __init__(self, pattern: str):
        """Compile a pattern.

        Args:
            pattern: Template text

        Raises:
            PatternError: If the template is malformed
        """
        self.pattern = pattern
        self.regex_pattern, self.param_names = self._compile_pattern(pattern)

        logger.debug(
            f"Compiled {self.kind} pattern {pattern}",
            extra={"pattern": pattern, "regex": self.regex_pattern.pattern},
        )

    def _compile_pattern(self, pattern: str) -> Tuple[re.Pattern, List[str]]:
        raise NotImplementedError

    def match(self, value: str) -> Optional[Dict[str, str]]:
        """Match a value against this pattern.

        Args:
            value: Host authority or URL path

        Returns:
            Dictionary of captured parameters if matched, None otherwise
        """
        match = self.regex_pattern.fullmatch(value)
        if not match:
            return None
        return {name: match.group(name) for name in self.param_names}

    def _capture_name(self, pattern: str, name: str, seen: List[str]) -> str:
        if not name.isidentifier():
            raise PatternError(pattern, f"invalid capture name {name!r}")
        if name in seen:
            raise PatternError(pattern, f"duplicate capture name {name!r}")
        seen.append(name)
        return name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.pattern!r})"


class HostMatcher(PatternMatcher):
    """Matches ``host[:port]`` authorities against host patterns.

    Supports:
    - Literal labels: ``test.io``
    - Unnamed wildcard labels: ``*.example.com``
    - Named wildcard labels: ``*sub.example.com`` (``:sub`` is accepted too)
    - A literal port suffix: ``localhost:3010``
    """

    kind = "host"

    def _compile_pattern(self, pattern: str) -> Tuple[re.Pattern, List[str]]:
        """Compile a host pattern into a regex.

        Args:
            pattern: Host pattern

        Returns:
            Tuple of (compiled regex pattern, list of parameter names)
        """
        if not pattern:
            raise PatternError(pattern, "host pattern is empty")

        split = _PORT_SUFFIX.match(pattern)
        host, port = split.group("host"), split.group("port")

        param_names: List[str] = []
        regex_parts = []

        for label in host.split("."):
            if not label:
                raise PatternError(pattern, "empty host label")

            if label == "*":
                regex_parts.append(HOST_LABEL_RE)
            elif label[0] in "*:":
                name = self._capture_name(pattern, label[1:], param_names)
                regex_parts.append(f"(?P<{name}>{HOST_LABEL_RE})")
            elif "*" in label:
                raise PatternError(pattern, f"wildcard must span a whole label in {label!r}")
            else:
                regex_parts.append(re.escape(label))

        regex_str = r"\.".join(regex_parts)
        if port is not None:
            regex_str += re.escape(f":{port}")

        return re.compile(regex_str), param_names


class PathMatcher(PatternMatcher):
    """Matches URL paths against path patterns.

    Supports:
    - Exact matches: ``/api/users``
    - Named segments: ``/api/:entity``
    - Optional trailing wildcard: ``/api/account/*`` matches ``/api/account`` too
    """

    kind = "path"

    def _compile_pattern(self, pattern: str) -> Tuple[re.Pattern, List[str]]:
        """Compile a path pattern into a regex.

        Args:
            pattern: Path pattern

        Returns:
            Tuple of (compiled regex pattern, list of parameter names)
        """
        if not pattern.startswith("/"):
            raise PatternError(pattern, "path pattern must start with '/'")

        stripped = pattern.rstrip("/")
        segments = stripped.split("/")[1:] if stripped else []

        param_names: List[str] = []
        regex_parts = []
        trailing_wildcard = False

        for index, segment in enumerate(segments):
            if segment == "*":
                if index != len(segments) - 1:
                    raise PatternError(pattern, "'*' is only allowed as the final segment")
                trailing_wildcard = True
            elif not segment:
                raise PatternError(pattern, "empty path segment")
            elif segment.startswith(":"):
                name = self._capture_name(pattern, segment[1:], param_names)
                regex_parts.append(f"/(?P<{name}>{PATH_SEGMENT_RE})")
            else:
                regex_parts.append("/" + re.escape(segment))

        regex_str = "".join(regex_parts)
        if trailing_wildcard:
            # Zero or more further segments
            regex_str += "(?:/.*)?"
        elif not regex_str:
            regex_str = "/"

        return re.compile(regex_str), param_names


def compile_host(pattern: str) -> HostMatcher:
    """Compile a host pattern (convenience function).

    Args:
        pattern: Host pattern

    Returns:
        HostMatcher instance
    """
    return HostMatcher(pattern)


def compile_path(pattern: str) -> PathMatcher:
    """Compile a path pattern (convenience function).

    Args:
        pattern: Path pattern

    Returns:
        PathMatcher instance
    """
    return PathMatcher(pattern)
