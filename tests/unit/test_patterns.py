"""Unit tests for the host and path pattern compiler."""

import pytest

from edgeroute.core.errors import ConfigurationError, PatternError
from edgeroute.core.patterns import HostMatcher, PathMatcher, compile_host, compile_path


class TestHostMatcher:
    """Tests for HostMatcher class."""

    def test_literal_host(self):
        """Test literal host matching."""
        matcher = HostMatcher("test.io")

        assert matcher.match("test.io") == {}
        assert matcher.match("hello.test.io") is None
        assert matcher.match("test.ion") is None

    def test_dots_are_literal(self):
        """Test that dots in a pattern only match dots."""
        matcher = HostMatcher("test.io")

        assert matcher.match("testxio") is None

    def test_unnamed_wildcard(self):
        """Test that * matches exactly one label without capturing."""
        matcher = HostMatcher("*.example.com")

        assert matcher.match("subdomain.example.com") == {}
        assert matcher.match("example.com") is None
        assert matcher.match("a.b.example.com") is None

    def test_named_wildcard(self):
        """Test that *name captures one label."""
        matcher = HostMatcher("*sub.example.com")

        assert matcher.match("api.example.com") == {"sub": "api"}
        assert matcher.match("my-app.example.com") == {"sub": "my-app"}
        assert matcher.match("example.com") is None

    def test_multiple_captures(self):
        """Test extraction of several host labels."""
        matcher = HostMatcher("*sub.*env.test.io")

        assert matcher.match("api.staging.test.io") == {"sub": "api", "env": "staging"}
        assert matcher.match("api.test.io") is None

    def test_colon_capture_alias(self):
        """Test that :name is accepted as a named label."""
        matcher = HostMatcher(":domain.:tld")

        assert matcher.match("example.com") == {"domain": "example", "tld": "com"}
        assert matcher.match("subdomain.example.com") is None

    def test_port_is_part_of_the_pattern(self):
        """Test literal port suffixes."""
        matcher = HostMatcher("localhost:3010")

        assert matcher.match("localhost:3010") == {}
        assert matcher.match("localhost") is None
        assert matcher.match("localhost:3011") is None

    def test_pattern_without_port_rejects_explicit_port(self):
        """Test that a host pattern without a port only matches bare hosts."""
        matcher = HostMatcher("test.io")

        assert matcher.match("test.io:8080") is None

    def test_wildcard_with_port(self):
        """Test captures combined with a port suffix."""
        matcher = HostMatcher("*sub.localhost:8787")

        assert matcher.match("api.localhost:8787") == {"sub": "api"}
        assert matcher.match("api.localhost") is None

    def test_case_sensitive(self):
        """Test that host matching is case-sensitive."""
        matcher = HostMatcher("test.io")

        assert matcher.match("Test.io") is None


class TestPathMatcher:
    """Tests for PathMatcher class."""

    def test_exact_match(self):
        """Test exact path matching."""
        matcher = PathMatcher("/api/users")

        assert matcher.match("/api/users") == {}
        assert matcher.match("/api/products") is None
        assert matcher.match("/api/users/123") is None

    def test_trailing_slash_in_pattern_is_ignored(self):
        """Test that trailing slashes of the pattern are stripped."""
        matcher = PathMatcher("/api/user/")

        assert matcher.match("/api/user") == {}

    def test_parameter_extraction(self):
        """Test path parameter extraction."""
        matcher = PathMatcher("/api/:entity")

        assert matcher.match("/api/user") == {"entity": "user"}
        assert matcher.match("/api/abc-def") == {"entity": "abc-def"}
        assert matcher.match("/api") is None
        assert matcher.match("/api/user/123") is None

    def test_multiple_parameters(self):
        """Test extraction of multiple path parameters."""
        matcher = PathMatcher("/:greeting/:place")

        assert matcher.match("/hello/world") == {"greeting": "hello", "place": "world"}
        assert matcher.match("/hello") is None

    def test_trailing_wildcard(self):
        """Test that a trailing * matches zero or more further segments."""
        matcher = PathMatcher("/api/account/*")

        assert matcher.match("/api/account") == {}
        assert matcher.match("/api/account/") == {}
        assert matcher.match("/api/account/settings") == {}
        assert matcher.match("/api/account/settings/email") == {}
        assert matcher.match("/api/accounts") is None
        assert matcher.match("/api") is None

    def test_root_wildcard_matches_everything(self):
        """Test the /* catch-all."""
        matcher = PathMatcher("/*")

        assert matcher.match("/") == {}
        assert matcher.match("/anything/at/all") == {}

    def test_root(self):
        """Test the root pattern."""
        matcher = PathMatcher("/")

        assert matcher.match("/") == {}
        assert matcher.match("/api") is None

    def test_literal_characters_are_escaped(self):
        """Test that regex metacharacters in segments are literal."""
        matcher = PathMatcher("/file.json")

        assert matcher.match("/file.json") == {}
        assert matcher.match("/fileXjson") is None

    def test_parameters_with_wildcard(self):
        """Test captures before a trailing wildcard."""
        matcher = PathMatcher("/:tenant/files/*")

        assert matcher.match("/acme/files/a/b.txt") == {"tenant": "acme"}


class TestPatternErrors:
    """Tests for malformed pattern detection."""

    @pytest.mark.parametrize(
        "pattern",
        ["", "a..b", "api*.io", "*1abc.io", "*a.*a.io"],
    )
    def test_malformed_host_patterns(self, pattern: str):
        """Test that malformed host patterns raise PatternError."""
        with pytest.raises(PatternError) as exc_info:
            HostMatcher(pattern)

        assert exc_info.value.pattern == pattern

    @pytest.mark.parametrize(
        "pattern",
        ["api/users", "/a/*/b", "/a//b", "/:id/:id", "/:1abc"],
    )
    def test_malformed_path_patterns(self, pattern: str):
        """Test that malformed path patterns raise PatternError."""
        with pytest.raises(PatternError):
            PathMatcher(pattern)

    def test_pattern_error_is_configuration_error(self):
        """Test the error hierarchy."""
        with pytest.raises(ConfigurationError):
            PathMatcher("no-slash")
        with pytest.raises(ValueError):
            HostMatcher("a..b")

    def test_error_message_names_pattern(self):
        """Test that the error message names the pattern and the reason."""
        with pytest.raises(PatternError, match="duplicate capture name 'id'"):
            PathMatcher("/:id/x/:id")


class TestCompileHelpers:
    """Tests for the convenience constructors."""

    def test_compilation_is_deterministic(self):
        """Test that compiling the same pattern twice behaves identically."""
        inputs = ["api.staging.test.io", "test.io", "x.y.test.io"]
        first = compile_host("*sub.*env.test.io")
        second = compile_host("*sub.*env.test.io")

        assert first.regex_pattern.pattern == second.regex_pattern.pattern
        assert [first.match(i) for i in inputs] == [second.match(i) for i in inputs]

    def test_compile_path(self):
        """Test compile_path returns a PathMatcher."""
        matcher = compile_path("/api/:entity")

        assert isinstance(matcher, PathMatcher)
        assert matcher.param_names == ["entity"]
