"""Matcher evaluator for rule trees.

A rule is compiled once into a CompiledRule that stores its host and path
matchers alongside the node. Evaluation tests the rule's own constraints in
order (method, protocol, host, port, path), stopping at the first failure, and
then descends into the nested rules, where the first matching child wins.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from edgeroute.core.patterns import HostMatcher, PathMatcher
from edgeroute.core.request import EdgeRequest
from edgeroute.core.rules import WILDCARD, MatchOption, MatchResult, Rule, TargetOverride

logger = logging.getLogger(__name__)

Constraint = Callable[[EdgeRequest], Optional[Dict[str, str]]]

_NO_CAPTURES: Dict[str, str] = {}


def _normalize_option(option: MatchOption | None, upper: bool = False) -> Optional[FrozenSet[str]]:
    """Turn a method/protocol option into a set of accepted values.

    Returns None when the option is unset or the wildcard, since both accept
    every request. An empty list yields an empty set, which accepts nothing.
    """
    if option is None:
        return None
    values = [option] if isinstance(option, str) else list(option)
    if WILDCARD in values:
        return None
    return frozenset(v.upper() if upper else v for v in values)


class CompiledRule:
    """A rule node with its patterns compiled.

    Compiled rules are read-only and safe to share between concurrent requests.
    """

    def __init__(self, rule: Rule):
        """Compile a rule and all of its nested rules.

        Args:
            rule: Rule to compile

        Raises:
            PatternError: If a host or path pattern in the tree is malformed
        """
        self.rule = rule
        self.target = rule.target or TargetOverride()
        self.methods = _normalize_option(rule.method, upper=True)
        self.protocols = _normalize_option(rule.protocol)
        self.host_matcher = HostMatcher(rule.host) if rule.host is not None else None
        self.path_matcher = PathMatcher(rule.path) if rule.path is not None else None
        self.children: Optional[Tuple["CompiledRule", ...]] = (
            None if rule.match is None else tuple(CompiledRule(child) for child in rule.match)
        )
        self._constraints = self._build_constraints()

    def _build_constraints(self) -> List[Tuple[str, Constraint]]:
        constraints: List[Tuple[str, Constraint]] = []
        if self.methods is not None:
            constraints.append(("method", self._match_method))
        if self.protocols is not None:
            constraints.append(("protocol", self._match_protocol))
        if self.host_matcher is not None:
            constraints.append(("host", self._match_host))
        if self.rule.port is not None:
            constraints.append(("port", self._match_port))
        if self.path_matcher is not None:
            constraints.append(("path", self._match_path))
        return constraints

    def _match_method(self, request: EdgeRequest) -> Optional[Dict[str, str]]:
        if request.method.upper() in self.methods:
            return _NO_CAPTURES
        return None

    def _match_protocol(self, request: EdgeRequest) -> Optional[Dict[str, str]]:
        if request.scheme in self.protocols:
            return _NO_CAPTURES
        return None

    def _match_host(self, request: EdgeRequest) -> Optional[Dict[str, str]]:
        return self.host_matcher.match(request.authority)

    def _match_port(self, request: EdgeRequest) -> Optional[Dict[str, str]]:
        return _NO_CAPTURES if request.url.port == self.rule.port else None

    def _match_path(self, request: EdgeRequest) -> Optional[Dict[str, str]]:
        return self.path_matcher.match(request.path)

    def evaluate(self, request: EdgeRequest) -> Optional[MatchResult]:
        """Evaluate this rule against a request.

        Args:
            request: Request to test

        Returns:
            MatchResult with merged target and parameters, or None
        """
        params: Dict[str, str] = {}
        for _name, constraint in self._constraints:
            captured = constraint(request)
            if captured is None:
                return None
            params.update(captured)

        if self.children is None:
            return MatchResult(target=self.target, params=params)

        for child in self.children:
            result = child.evaluate(request)
            if result is not None:
                return MatchResult(
                    target=self.target.merge(result.target),
                    params={**params, **result.params},
                )

        return None

    def __repr__(self) -> str:
        return f"CompiledRule({self.rule!r})"


def compile_rule(rule: Rule | CompiledRule | Mapping[str, Any]) -> CompiledRule:
    """Compile a rule (convenience function).

    Args:
        rule: Rule, rule document mapping, or an already compiled rule

    Returns:
        CompiledRule instance
    """
    if isinstance(rule, CompiledRule):
        return rule
    return CompiledRule(Rule.coerce(rule))


def evaluate(
    request: EdgeRequest, rule: Rule | CompiledRule | Mapping[str, Any]
) -> Optional[MatchResult]:
    """Evaluate a rule tree against a request.

    Uncompiled rules are compiled on the fly; callers evaluating the same rule
    repeatedly should compile it once with compile_rule().

    Args:
        request: Request to test
        rule: Rule tree

    Returns:
        MatchResult on success, None if the tree does not match
    """
    return compile_rule(rule).evaluate(request)
