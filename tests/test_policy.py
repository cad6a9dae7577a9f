"""Tests for conclave/policy.py."""

import pytest

from conclave.policy import (
    DEFAULT_POLICIES,
    Policy,
    PolicyAction,
    PolicyEngine,
    normalize_env,
)


@pytest.fixture
def engine() -> PolicyEngine:
    return PolicyEngine()


# ─── Production ────────────────────────────────────────────────────────────────


class TestProduction:
    def test_blocks_db_schema_change(self, engine):
        result = engine.check("prd", ["drizzle/0007_add_table.sql"])
        assert not result.allowed
        assert result.violations[0].policy_id == "prd-no-db-schema-change"
        assert result.violations[0].files == ("drizzle/0007_add_table.sql",)

    def test_warns_on_debug_code(self, engine):
        result = engine.check(
            "prd",
            ["src/handler.ts"],
            file_contents={"src/handler.ts": 'console.log("debug");\nexport const x = 1;'},
        )
        assert [w.policy_id for w in result.warnings] == ["prd-no-debug-code"]
        assert result.allowed

    def test_blocks_force_push(self, engine):
        result = engine.check("prd", action="force-push")
        assert not result.allowed
        assert [v.policy_id for v in result.violations] == ["prd-no-force-push"]

    def test_no_changed_files_no_file_violations(self, engine):
        result = engine.check("prd")
        assert result.allowed
        assert result.violations == []
        assert result.warnings == []

    def test_env_aliases(self, engine):
        assert not engine.check("prod", ["migrations/001.sql"]).allowed
        assert not engine.check("Production", ["migrations/001.sql"]).allowed


# ─── Staging ───────────────────────────────────────────────────────────────────


class TestStaging:
    def test_blocks_force_push(self, engine):
        result = engine.check("stg", action="force-push")
        assert [v.policy_id for v in result.violations] == ["stg-no-force-push"]

    def test_allows_normal_source_change(self, engine):
        result = engine.check("stg", ["src/feature.ts"])
        assert result.allowed
        assert result.violations == []

    def test_debug_code_only_flagged_in_production(self, engine):
        result = engine.check("staging", ["a.py"], file_contents={"a.py": "breakpoint()\n"})
        assert result.warnings == []


# ─── Integration / any environment ─────────────────────────────────────────────


class TestIntegration:
    def test_sql_file_is_not_a_schema_violation(self, engine):
        result = engine.check("int", ["drizzle/0007_add_table.sql"])
        assert "prd-no-db-schema-change" not in [v.policy_id for v in result.violations]

    @pytest.mark.parametrize(
        "path",
        [
            "docker-compose.yml",
            "deploy/Dockerfile.production",
            ".env.production",
            "drizzle/0008_new_migration.sql",
        ],
    )
    def test_protected_config_files_need_approval(self, engine, path):
        result = engine.check("int", [path])
        assert not result.allowed
        violation = next(v for v in result.violations if v.policy_id == "protected-config-files")
        assert violation.action == PolicyAction.REQUIRE_APPROVAL
        assert violation.files == (path,)

    def test_blocks_secret_in_content(self, engine):
        result = engine.check(
            "int",
            ["src/config.ts"],
            file_contents={"src/config.ts": 'const API_KEY = "sk-12345";'},
        )
        violation = next(v for v in result.violations if v.policy_id == "no-secret-exposure")
        assert violation.action == PolicyAction.BLOCK
        assert violation.files == ("src/config.ts",)

    def test_clean_code_has_no_secret_violation(self, engine):
        result = engine.check(
            "int",
            ["src/hello.ts"],
            file_contents={"src/hello.ts": 'export function hello() { return "world"; }'},
        )
        assert result.allowed
        assert result.violations == []

    def test_content_rule_ignores_files_without_contents(self, engine):
        result = engine.check("int", ["src/config.ts"], file_contents={})
        assert result.allowed

    def test_violation_str_names_policy(self, engine):
        violation = engine.check("prd", action="force-push").violations[0]
        assert str(violation) == "[No force push in production] Force push is not allowed in production"


# ─── Constraints text ──────────────────────────────────────────────────────────


class TestGenerateConstraints:
    def test_production(self, engine):
        text = engine.generate_constraints("prd")
        assert text.startswith("## Execution Constraints")
        assert "DB schema changes are not allowed" in text
        assert "Force push is not allowed in production" in text
        assert "staging" not in text

    def test_staging(self, engine):
        text = engine.generate_constraints("stg")
        assert "Force push is not allowed in staging" in text
        assert "DB schema changes" not in text

    def test_integration(self, engine):
        text = engine.generate_constraints("int")
        assert "infrastructure/config files" in text
        assert "secret exposure" in text
        assert "Force push" not in text


# ─── Policy management ─────────────────────────────────────────────────────────


class TestPolicyManagement:
    def test_add_custom_policy(self, engine):
        engine.add_policy(
            Policy(
                id="int-no-deploy",
                name="No deploy from integration",
                scope="workflow",
                condition="env:int && action:deploy",
                action=PolicyAction.BLOCK,
                message="Deploys are not allowed from integration",
            )
        )
        result = engine.check("int", action="deploy")
        assert [v.policy_id for v in result.violations] == ["int-no-deploy"]
        assert engine.check("int", action="build").allowed

    def test_remove_policy(self, engine):
        engine.remove_policy("prd-no-db-schema-change")
        result = engine.check("prd", ["drizzle/0007_add_table.sql"])
        assert "prd-no-db-schema-change" not in [v.policy_id for v in result.violations]

    def test_remove_unknown_policy_is_noop(self, engine):
        engine.remove_policy("nope")
        assert len(engine.policies) == len(DEFAULT_POLICIES)

    def test_disabled_policy_not_evaluated(self):
        engine = PolicyEngine([
            Policy(
                id="always",
                name="Always",
                scope="env",
                condition="env:int",
                action=PolicyAction.BLOCK,
                message="never shown",
                enabled=False,
            )
        ])
        assert engine.check("int").violations == []
        assert "never shown" not in engine.generate_constraints("int")

    def test_same_id_replaces(self, engine):
        engine.add_policy(Policy.from_dict({
            "id": "no-secret-exposure",
            "condition": "content:nothing-matches-this",
            "action": "warn",
            "message": "relaxed",
        }))
        result = engine.check("int", ["a.ts"], file_contents={"a.ts": 'const token = "abcd1234";'})
        assert result.allowed
        assert len(engine.policies) == len(DEFAULT_POLICIES)

    @pytest.mark.parametrize("condition", ["env", "colour:red", "env:prd && file:"])
    def test_invalid_condition_rejected(self, engine, condition):
        with pytest.raises(ValueError, match="Invalid policy condition"):
            engine.add_policy(Policy("bad", "Bad", "env", condition, PolicyAction.WARN, "x"))

    def test_from_dict_defaults(self):
        policy = Policy.from_dict({"id": "p1", "condition": "env:prd", "message": "m"})
        assert policy.name == "p1"
        assert policy.action == PolicyAction.BLOCK
        assert policy.enabled

    def test_from_dict_rejects_unknown_action(self):
        with pytest.raises(ValueError):
            Policy.from_dict({"id": "p1", "condition": "env:prd", "message": "m", "action": "shrug"})


def test_violations_and_warnings_are_logged(engine, caplog):
    with caplog.at_level("WARNING", logger="conclave.policy"):
        engine.check(
            "prd",
            ["schema.sql", "app.js"],
            file_contents={"app.js": "debugger;"},
        )
    messages = [r.getMessage() for r in caplog.records]
    assert any("Policy violations" in m and "No DB schema changes" in m for m in messages)
    assert any("Policy warnings" in m for m in messages)


@pytest.mark.parametrize(
    "raw, expected",
    [("prod", "prd"), ("staging", "stg"), ("dev", "int"), ("PRD", "prd"), ("qa", "qa")],
)
def test_normalize_env(raw, expected):
    assert normalize_env(raw) == expected
