from pathlib import Path

import pytest
import yaml

from reviewgate.core.catalog import RuleCatalog, default_catalog_path, load_catalog
from reviewgate.core.errors import InvalidSeverityForCategoryError, MalformedRuleError, RuleLoadError
from reviewgate.core.models import Rule

POLICY_PATH = Path(__file__).parent.parent / "reviewgate" / "policies" / "default.yaml"


def _rule(**overrides) -> dict:
    rule = {
        "id": "SEC-X",
        "category": "security",
        "severity": "block",
        "rationale": "Do not do this.",
        "predicate": {"kind": "pattern", "substring": "bad()"},
    }
    rule.update(overrides)
    return rule


# --- load ---

def test_load_keeps_definition_order():
    catalog = RuleCatalog.load([
        _rule(id="B"),
        _rule(id="A", category="style", severity="suggest"),
        _rule(id="C", category="reliability", severity="warn"),
    ])
    assert [r.id for r in catalog.rules_for()] == ["B", "A", "C"]
    assert len(catalog) == 3
    assert "A" in catalog
    assert catalog.get("C").severity == "warn"
    assert catalog.get("missing") is None


def test_message_defaults_to_rationale_with_braces_escaped():
    catalog = RuleCatalog.load([_rule(rationale="Avoid {braces}")])
    rule = catalog.get("SEC-X")
    assert rule.message == "Avoid {{braces}}"
    assert rule.message.format() == "Avoid {braces}"
    assert rule.fix is None


def test_rule_predicate_is_copied():
    definition = _rule()
    catalog = RuleCatalog.load([definition])
    definition["predicate"]["substring"] = "changed"
    assert catalog.get("SEC-X").predicate["substring"] == "bad()"


def test_rule_predicate_is_read_only():
    rule = RuleCatalog.load([_rule()]).get("SEC-X")
    with pytest.raises(TypeError):
        rule.predicate["substring"] = "x"
    assert rule.predicate["substring"] == "bad()"


def test_rules_are_hashable():
    rule = RuleCatalog.load([_rule()]).get("SEC-X")
    same = Rule(
        id="SEC-X", category="security", severity="block",
        predicate={"kind": "pattern", "substring": "bad()"},
        rationale="Do not do this.", message="Do not do this.",
    )
    assert hash(rule) == hash(same)
    assert {rule, same} == {rule}


def test_empty_catalog_is_valid():
    catalog = RuleCatalog.load([])
    assert len(catalog) == 0
    assert list(catalog.rules_for()) == []


# --- rules_for ---

def test_rules_for_filters_by_category():
    catalog = RuleCatalog.load([
        _rule(id="S1"),
        _rule(id="R1", category="reliability", severity="warn"),
        _rule(id="S2"),
    ])
    assert [r.id for r in catalog.rules_for("security")] == ["S1", "S2"]
    assert [r.id for r in catalog.rules_for("performance")] == []


def test_rules_for_is_restartable():
    catalog = RuleCatalog.load([_rule(id="S1"), _rule(id="S2")])
    view = catalog.rules_for("security")
    assert [r.id for r in view] == ["S1", "S2"]
    assert [r.id for r in view] == ["S1", "S2"]


def test_rules_for_unknown_category():
    catalog = RuleCatalog.load([_rule()])
    with pytest.raises(ValueError, match="unknown category"):
        catalog.rules_for("cosmetic")


# --- validation ---

@pytest.mark.parametrize("key", ["category", "severity", "predicate"])
def test_rejects_rule_missing_required_key(key):
    rule = _rule()
    del rule[key]
    with pytest.raises(MalformedRuleError, match=f"missing keys: {key}"):
        RuleCatalog.load([rule])


def test_rejects_duplicate_ids():
    with pytest.raises(MalformedRuleError, match=r"duplicate id \(first defined at rules\[0\]\)"):
        RuleCatalog.load([_rule(), _rule()])


def test_rejects_unknown_category_and_severity():
    with pytest.raises(MalformedRuleError) as exc:
        RuleCatalog.load([_rule(category="cosmetic", severity="fatal")])
    assert "unknown category 'cosmetic'" in str(exc.value)
    assert "unknown severity 'fatal'" in str(exc.value)


def test_rejects_bad_predicate():
    with pytest.raises(MalformedRuleError, match="invalid regex"):
        RuleCatalog.load([_rule(predicate={"kind": "pattern", "regex": "("})])


def test_rejects_unknown_template_placeholder():
    with pytest.raises(MalformedRuleError, match=r"unknown placeholder\(s\): \{author\}"):
        RuleCatalog.load([_rule(message="{author} wrote {match}")])


def test_rejects_positional_template_placeholder():
    with pytest.raises(MalformedRuleError, match="unknown placeholder"):
        RuleCatalog.load([_rule(fix="replace {}")])


def test_collects_every_error():
    with pytest.raises(MalformedRuleError) as exc:
        RuleCatalog.load([_rule(id="A", severity="nope"), "not a rule", _rule(id="B", predicate={})])
    message = str(exc.value)
    assert "rules[0] (id=A)" in message
    assert "rules[1]: expected dict" in message
    assert "rules[2] (id=B)" in message


def test_style_rule_may_not_block():
    with pytest.raises(InvalidSeverityForCategoryError, match="category 'style' may not use severity 'block'"):
        RuleCatalog.load([_rule(category="style", severity="block")])


def test_rejects_unhashable_predicate_kind():
    with pytest.raises(MalformedRuleError, match=r"predicate.kind: expected string, got list"):
        RuleCatalog.load([_rule(predicate={"kind": ["pattern"], "substring": "x"})])


def test_rejects_unhashable_structural_direction():
    predicate = {"kind": "structural", "anchor": "a", "forbid": "b", "within": 1, "direction": ["after"]}
    with pytest.raises(MalformedRuleError, match=r"direction: expected string, got list"):
        RuleCatalog.load([_rule(predicate=predicate)])


def test_style_rule_may_warn():
    catalog = RuleCatalog.load([_rule(category="style", severity="warn")])
    assert catalog.get("SEC-X").category == "style"


def test_load_errors_share_a_base_class():
    assert issubclass(MalformedRuleError, RuleLoadError)
    assert issubclass(InvalidSeverityForCategoryError, RuleLoadError)


# --- YAML rulebooks ---

def test_default_rulebook_loads():
    catalog = load_catalog(POLICY_PATH)
    ids = [r.id for r in catalog.rules_for()]
    assert ids[0] == "SEC-001"
    assert len(ids) == len(set(ids))
    assert all(r.severity != "block" for r in catalog.rules_for("style"))


def test_load_catalog_from_yaml(tmp_path):
    policy = tmp_path / "rules.yaml"
    policy.write_text(yaml.dump({"rules": [_rule()]}))
    catalog = load_catalog(policy)
    assert [r.id for r in catalog] == ["SEC-X"]


def test_rejects_non_dict_rulebook(tmp_path):
    policy = tmp_path / "bad.yaml"
    policy.write_text("just a string")
    with pytest.raises(MalformedRuleError, match="expected a YAML mapping"):
        load_catalog(policy)


def test_rejects_rules_not_a_list(tmp_path):
    policy = tmp_path / "bad.yaml"
    policy.write_text(yaml.dump({"rules": {"id": "X"}}))
    with pytest.raises(MalformedRuleError, match="'rules' must be a list"):
        load_catalog(policy)


def test_rejects_invalid_yaml(tmp_path):
    policy = tmp_path / "bad.yaml"
    policy.write_text("rules: [unclosed")
    with pytest.raises(MalformedRuleError, match="invalid YAML"):
        load_catalog(policy)


def test_yaml_errors_name_the_file(tmp_path):
    policy = tmp_path / "style.yaml"
    policy.write_text(yaml.dump({"rules": [_rule(category="style")]}))
    with pytest.raises(InvalidSeverityForCategoryError, match="style.yaml"):
        load_catalog(policy)


def test_default_catalog_path_env_override(monkeypatch, tmp_path):
    monkeypatch.delenv("REVIEWGATE_POLICY", raising=False)
    assert default_catalog_path() == POLICY_PATH.resolve()
    monkeypatch.setenv("REVIEWGATE_POLICY", str(tmp_path / "custom.yaml"))
    assert default_catalog_path() == tmp_path / "custom.yaml"


# --- building from Rule objects ---

def _built_rule(**overrides) -> Rule:
    fields = {
        "id": "STY-1",
        "category": "style",
        "severity": "suggest",
        "predicate": {"kind": "pattern", "substring": "TODO"},
        "rationale": "Leftover TODO.",
        "message": "Leftover TODO.",
    }
    fields.update(overrides)
    return Rule(**fields)


def test_constructor_accepts_valid_rules():
    catalog = RuleCatalog([_built_rule(), _built_rule(id="STY-2")])
    assert [r.id for r in catalog] == ["STY-1", "STY-2"]


def test_constructor_rejects_style_block():
    with pytest.raises(InvalidSeverityForCategoryError, match="may not use severity 'block'"):
        RuleCatalog([_built_rule(severity="block")])


def test_constructor_rejects_duplicate_ids():
    rule = _built_rule()
    with pytest.raises(MalformedRuleError, match="duplicate id"):
        RuleCatalog([rule, rule])


def test_constructor_rejects_unknown_category_and_bad_predicate():
    bad = _built_rule(category="docs", predicate={"kind": "ast"})
    with pytest.raises(MalformedRuleError) as exc:
        RuleCatalog([bad])
    assert "unknown category 'docs'" in str(exc.value)
    assert "unknown kind 'ast'" in str(exc.value)
