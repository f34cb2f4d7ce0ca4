import itertools
import json

import pytest

from drift_reconciler.planning.changeset import (
    ChangeSetParseError,
    fingerprint,
    normalize_action,
    parse_change_set,
    summarize,
)
from drift_reconciler.planning.models import ActionKind, ResourceChange


def change(resource_id, action):
    return ResourceChange(resource_id=resource_id, action=ActionKind(action))


def test_fingerprint_ignores_order():
    changes = [change("sg-1", "update"), change("bucket-logs", "create"), change("role-ci", "delete")]
    prints = {fingerprint(list(p)) for p in itertools.permutations(changes)}
    assert len(prints) == 1


def test_fingerprint_ignores_duplicates():
    assert fingerprint([change("sg-1", "update")]) == fingerprint(
        [change("sg-1", "update"), change("sg-1", "update")]
    )


def test_fingerprint_depends_on_action_and_resource():
    base = fingerprint([change("sg-1", "update")])
    assert base != fingerprint([change("sg-1", "delete")])
    assert base != fingerprint([change("sg-2", "update")])
    assert len(base) == 64


def test_fingerprint_ignores_output_formatting():
    compact = parse_change_set('[{"resource_id":"sg-1","action":"update"}]')
    pretty = parse_change_set(json.dumps([{"address": "sg-1", "actions": ["update"]}], indent=4))
    pairs = parse_change_set('[["sg-1", "modify"]]')
    assert fingerprint(compact) == fingerprint(pretty) == fingerprint(pairs)


def test_parse_list_is_sorted_and_deduplicated():
    output = json.dumps([
        {"resource_id": "z-queue", "action": "create"},
        {"resource_id": "a-table", "action": "delete"},
        {"resource_id": "z-queue", "action": "create"},
    ])
    assert parse_change_set(output) == [change("a-table", "delete"), change("z-queue", "create")]


def test_parse_changes_wrapper():
    output = json.dumps({"changes": [{"resource_id": "sg-1", "action": "update"}]})
    assert parse_change_set(output) == [change("sg-1", "update")]


def test_parse_plan_document():
    document = {
        "format_version": "1.2",
        "resource_changes": [
            {"address": "aws_security_group.web", "change": {"actions": ["delete", "create"]}},
            {"address": "aws_s3_bucket.logs", "change": {"actions": ["no-op"]}},
            {"address": "data.aws_iam_policy.ci", "change": {"actions": ["read"]}},
            {"address": "aws_iam_role.ci", "change": {"actions": ["update"]}},
        ],
    }
    assert parse_change_set(json.dumps(document)) == [
        change("aws_iam_role.ci", "update"),
        change("aws_security_group.web", "create"),
        change("aws_security_group.web", "delete"),
    ]


def test_parse_json_lines_stream():
    lines = [
        '{"@level":"info","type":"version","terraform":"1.6.0"}',
        "Acquiring state lock. This may take a few moments...",
        '{"type":"planned_change","change":{"resource":{"addr":"aws_instance.web"},"action":"update"}}',
        '{"type":"planned_change","change":{"resource":{"addr":"aws_db_instance.main"},"action":"replace"}}',
        '{"type":"change_summary","changes":{"add":1,"change":1,"remove":1}}',
    ]
    assert parse_change_set("\n".join(lines)) == [
        change("aws_db_instance.main", "create"),
        change("aws_db_instance.main", "delete"),
        change("aws_instance.web", "update"),
    ]


def test_parse_empty_output():
    assert parse_change_set("   \n") == []


@pytest.mark.parametrize("output", [
    "Plan: 1 to change.",
    '{"unexpected": true}',
    '[{"resource_id": "sg-1", "action": "explode"}]',
    '[{"action": "update"}]',
    '[{"resource_id": "sg-1"}]',
    '{"type":"planned_change","change":{"action":"update"}}',
])
def test_parse_rejects_unusable_output(output):
    with pytest.raises(ChangeSetParseError):
        parse_change_set(output)


def test_normalize_action_replace():
    assert normalize_action("replace") == [ActionKind.DELETE, ActionKind.CREATE]
    assert normalize_action(["no-op"]) == []
    assert normalize_action(" Update ") == [ActionKind.UPDATE]


def test_summarize():
    summary = summarize([change("sg-1", "update"), change("bucket", "create")])
    assert summary.splitlines()[0] == "Plan: 1 to create, 1 to update."
    assert "sg-1" in summary
    assert summarize([]) == "No changes."
