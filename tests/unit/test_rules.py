"""Unit tests for the rule and target override models."""

import pytest
from pydantic import ValidationError

from edgeroute.core.rules import MatchResult, Rule, TargetOverride


class TestTargetOverride:
    """Tests for TargetOverride model."""

    def test_empty_override(self):
        target = TargetOverride()

        assert target.present_fields == ()
        assert not target.has("host")

    def test_present_fields_in_declaration_order(self):
        target = TargetOverride(headers={"X-Env": "prod"}, host="api.example.com", port=8443)

        assert target.present_fields == ("host", "port", "headers")

    def test_method_is_upper_cased(self):
        assert TargetOverride(method="post").method == "POST"

    def test_port_bounds(self):
        """Test port validation."""
        with pytest.raises(ValidationError):
            TargetOverride(port=0)
        with pytest.raises(ValidationError):
            TargetOverride(port=70000)

    def test_port_accepts_numeric_string(self):
        assert TargetOverride(port="8787").port == 8787

    def test_invalid_path_rule_regex(self):
        """Test that path rewrite keys must compile."""
        with pytest.raises(ValidationError, match="Invalid path rewrite pattern"):
            TargetOverride(path={"^/api(": "/v1"})

    def test_path_rules_compiled_in_order(self):
        target = TargetOverride(path={"^/api/v1": "/v1", "^/api": "/legacy"})

        assert [pattern.pattern for pattern, _ in target.path_rules] == ["^/api/v1", "^/api"]

    def test_path_template_has_no_rules(self):
        assert TargetOverride(path="/v2").path_rules == []

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            TargetOverride(hostname="x")

    def test_frozen(self):
        target = TargetOverride(host="a")

        with pytest.raises(ValidationError):
            target.host = "b"


class TestTargetMerge:
    """Tests for TargetOverride.merge."""

    def test_other_fields_win(self):
        parent = TargetOverride(host="parent.io", protocol="http")
        child = TargetOverride(protocol="https")

        merged = parent.merge(child)

        assert merged.host == "parent.io"
        assert merged.protocol == "https"

    def test_merge_does_not_mutate(self):
        parent = TargetOverride(host="parent.io")
        parent.merge(TargetOverride(host="child.io"))

        assert parent.host == "parent.io"

    def test_merge_with_nothing_returns_self(self):
        parent = TargetOverride(host="parent.io")

        assert parent.merge(None) is parent
        assert parent.merge(TargetOverride()) is parent

    def test_headers_merge_is_shallow(self):
        """Test that a child's header map replaces the parent's entirely."""
        parent = TargetOverride(headers={"X-A": "1", "X-B": "2"})
        child = TargetOverride(headers={"X-C": "3"})

        assert parent.merge(child).headers == {"X-C": "3"}

    def test_merged_path_rules_are_compiled(self):
        merged = TargetOverride(host="a").merge(TargetOverride(path={"^/x": "/y"}))

        assert len(merged.path_rules) == 1


class TestRule:
    """Tests for Rule model."""

    def test_coerce_mapping(self):
        """Test building a rule tree from a plain mapping."""
        rule = Rule.coerce(
            {
                "host": "*sub.test.io",
                "target": {"host": ":sub.example.com"},
                "match": [{"path": "/api/*"}, {"path": "/"}],
            }
        )

        assert rule.host == "*sub.test.io"
        assert isinstance(rule.target, TargetOverride)
        assert [child.path for child in rule.match] == ["/api/*", "/"]

    def test_coerce_rule_is_identity(self):
        rule = Rule(path="/x")

        assert Rule.coerce(rule) is rule

    def test_leaf_and_empty_match_differ(self):
        assert Rule().match is None
        assert Rule(match=[]).match == []

    def test_method_option_forms(self):
        assert Rule(method="GET").method == "GET"
        assert Rule(method=["GET", "POST"]).method == ["GET", "POST"]


class TestMatchResult:
    """Tests for MatchResult defaults."""

    def test_defaults(self):
        result = MatchResult()

        assert result.params == {}
        assert result.target.present_fields == ()
