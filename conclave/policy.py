"""Policy checks on generated changes: environment, file and content rules.

A policy condition is one or more ``key:value`` terms joined by ``&&``:

- ``env:prd``: the target environment (``prod``/``staging``/``dev`` are accepted as aliases)
- ``action:force-push``: the requested action
- ``file:docker-compose*|Dockerfile*``: changed paths matching any glob (full path or file name)
- ``content:<regex>``: changed files whose content matches, case-insensitive

All terms must hold. File and content terms narrow the same set of changed files,
so a policy with such a term only fires when at least one file survives.
"""

import fnmatch
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

ENV_ALIASES = {
    "prod": "prd",
    "production": "prd",
    "staging": "stg",
    "stage": "stg",
    "dev": "int",
    "development": "int",
}

_TERM_KEYS = ("env", "action", "file", "content")


class PolicyAction(str, Enum):
    BLOCK = "block"
    REQUIRE_APPROVAL = "require-approval"
    WARN = "warn"


@dataclass(frozen=True)
class Policy:
    id: str
    name: str
    scope: str          # "env", "file", "content", "agent", "workflow"
    condition: str
    action: PolicyAction
    message: str
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Policy":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            scope=str(data.get("scope", "env")),
            condition=str(data["condition"]),
            action=PolicyAction(data.get("action", "block")),
            message=str(data["message"]),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class PolicyViolation:
    policy_id: str
    policy_name: str
    action: PolicyAction
    message: str
    files: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"[{self.policy_name}] {self.message}"


@dataclass(frozen=True)
class PolicyCheckResult:
    allowed: bool
    violations: list[PolicyViolation] = field(default_factory=list)
    warnings: list[PolicyViolation] = field(default_factory=list)


_DEBUG_CODE = r"console\.log\(|\bdebugger\b|\bbreakpoint\(\)|pdb\.set_trace\(\)"
_SECRET = r"""(api[_-]?key|secret|password|passwd|token|private[_-]?key)\s*[:=]\s*["'][^"'\s]{4,}["']"""

DEFAULT_POLICIES: tuple[Policy, ...] = (
    Policy(
        id="prd-no-db-schema-change",
        name="No DB schema changes in production",
        scope="env",
        condition="env:prd && file:*.sql",
        action=PolicyAction.BLOCK,
        message="DB schema changes are not allowed in production",
    ),
    Policy(
        id="prd-no-force-push",
        name="No force push in production",
        scope="env",
        condition="env:prd && action:force-push",
        action=PolicyAction.BLOCK,
        message="Force push is not allowed in production",
    ),
    Policy(
        id="stg-no-force-push",
        name="No force push in staging",
        scope="env",
        condition="env:stg && action:force-push",
        action=PolicyAction.BLOCK,
        message="Force push is not allowed in staging",
    ),
    Policy(
        id="prd-no-debug-code",
        name="No debug code in production",
        scope="content",
        condition=f"env:prd && content:{_DEBUG_CODE}",
        action=PolicyAction.WARN,
        message="Remove debug statements (console.log, debugger, breakpoint) before shipping to production",
    ),
    Policy(
        id="protected-config-files",
        name="Protected config files",
        scope="file",
        condition="file:docker-compose*|Dockerfile*|.env*|drizzle/*|*.tf|k8s/*",
        action=PolicyAction.REQUIRE_APPROVAL,
        message="Changes to infrastructure/config files need human approval",
    ),
    Policy(
        id="no-secret-exposure",
        name="No secret exposure",
        scope="content",
        condition=f"content:{_SECRET}",
        action=PolicyAction.BLOCK,
        message="Possible secret exposure: credentials must come from the environment, not source files",
    ),
)


def normalize_env(env: str) -> str:
    lowered = env.strip().lower()
    return ENV_ALIASES.get(lowered, lowered)


def _parse_condition(condition: str) -> list[tuple[str, Any]]:
    terms: list[tuple[str, Any]] = []
    for raw in condition.split("&&"):
        key, sep, value = raw.strip().partition(":")
        if not sep or key not in _TERM_KEYS or not value.strip():
            raise ValueError(f"Invalid policy condition term '{raw.strip()}' in '{condition}'")
        value = value.strip()
        if key == "env":
            terms.append((key, normalize_env(value)))
        elif key == "file":
            terms.append((key, tuple(g.strip() for g in value.split("|") if g.strip())))
        elif key == "content":
            terms.append((key, re.compile(value, re.IGNORECASE)))
        else:
            terms.append((key, value))
    return terms


def _glob_match(path: str, globs: Sequence[str]) -> bool:
    name = path.replace("\\", "/").rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(path, g) or fnmatch.fnmatch(name, g) for g in globs)


class PolicyEngine:
    """Evaluates enabled policies against one proposed change.

    ``policies`` replaces the built-in set; omit it to start from DEFAULT_POLICIES.
    """

    def __init__(self, policies: Iterable[Policy] | None = None) -> None:
        self._policies: dict[str, tuple[Policy, list[tuple[str, Any]]]] = {}
        for policy in DEFAULT_POLICIES if policies is None else policies:
            self.add_policy(policy)

    @property
    def policies(self) -> list[Policy]:
        return [p for p, _ in self._policies.values()]

    def add_policy(self, policy: Policy) -> None:
        """Register ``policy``, replacing one with the same id.

        Raises:
            ValueError: If the condition cannot be parsed.
        """
        self._policies[policy.id] = (policy, _parse_condition(policy.condition))
        logger.debug("Policy registered: %s (%s)", policy.id, policy.condition)

    def remove_policy(self, policy_id: str) -> None:
        self._policies.pop(policy_id, None)

    def check(
        self,
        env: str,
        changed_files: Sequence[str] = (),
        action: str | None = None,
        file_contents: Mapping[str, str] | None = None,
    ) -> PolicyCheckResult:
        """Evaluate every enabled policy.

        Args:
            env: Target environment, e.g. ``prd`` or ``prod``.
            changed_files: Paths touched by the change, relative to the repo root.
            action: Optional operation such as ``force-push`` or ``deploy``.
            file_contents: Optional path -> content map for content rules.

        Returns:
            PolicyCheckResult. ``block`` and ``require-approval`` hits are
            violations and make ``allowed`` false; ``warn`` hits are warnings.
        """
        target = normalize_env(env)
        contents = file_contents or {}
        violations: list[PolicyViolation] = []
        warnings: list[PolicyViolation] = []

        for policy, terms in self._policies.values():
            if not policy.enabled:
                continue
            matched, files = self._evaluate(terms, target, list(changed_files), action, contents)
            if not matched:
                continue
            hit = PolicyViolation(policy.id, policy.name, policy.action, policy.message, files)
            if policy.action == PolicyAction.WARN:
                warnings.append(hit)
            else:
                violations.append(hit)

        if violations:
            logger.error("Policy violations for env %s: %s", target, [str(v) for v in violations])
        if warnings:
            logger.warning("Policy warnings for env %s: %s", target, [str(w) for w in warnings])
        return PolicyCheckResult(allowed=not violations, violations=violations, warnings=warnings)

    @staticmethod
    def _evaluate(
        terms: list[tuple[str, Any]],
        env: str,
        changed_files: list[str],
        action: str | None,
        contents: Mapping[str, str],
    ) -> tuple[bool, tuple[str, ...]]:
        files: list[str] | None = None
        for key, value in terms:
            if key == "env" and value != env:
                return False, ()
            if key == "action" and value != action:
                return False, ()
            if key == "file":
                files = [f for f in (changed_files if files is None else files) if _glob_match(f, value)]
            elif key == "content":
                files = [f for f in (changed_files if files is None else files) if value.search(contents.get(f, ""))]
            if files is not None and not files:
                return False, ()
        return True, tuple(files or ())

    def generate_constraints(self, env: str) -> str:
        """Markdown list of the rules that apply in ``env``, for the code-generation prompt."""
        target = normalize_env(env)
        lines = ["## Execution Constraints", ""]
        for policy, terms in self._policies.values():
            if not policy.enabled:
                continue
            if any(key == "env" and value != target for key, value in terms):
                continue
            lines.append(f"- ({policy.action.value}) {policy.message}")
        return "\n".join(lines)
