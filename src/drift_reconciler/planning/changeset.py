"""Change-set parsing, normalization and fingerprinting.

The plan executor prints its change-set on stdout in one of three shapes:

* a JSON list of ``{"resource_id": ..., "action": ...}`` objects (``address``
  and ``actions`` are accepted as aliases),
* a JSON plan document with a ``resource_changes`` list, each entry carrying
  ``address`` and ``change.actions`` (``terraform show -json``),
* a JSON-lines stream where ``planned_change`` messages carry
  ``change.resource.addr`` and ``change.action`` (``terraform plan -json``).

Whatever the shape, the result is normalized to a sorted, de-duplicated list
of ``ResourceChange`` so that the fingerprint depends only on which resources
change and how.
"""

import hashlib
import json
from typing import Any, Dict, Iterable, List

from drift_reconciler.planning.models import ActionKind, ResourceChange


class ChangeSetParseError(ValueError):
    """Raised when executor output cannot be read as a change-set."""

    pass


ACTION_ALIASES = {
    "create": [ActionKind.CREATE],
    "add": [ActionKind.CREATE],
    "+": [ActionKind.CREATE],
    "update": [ActionKind.UPDATE],
    "modify": [ActionKind.UPDATE],
    "change": [ActionKind.UPDATE],
    "move": [ActionKind.UPDATE],
    "~": [ActionKind.UPDATE],
    "delete": [ActionKind.DELETE],
    "destroy": [ActionKind.DELETE],
    "remove": [ActionKind.DELETE],
    "-": [ActionKind.DELETE],
    "replace": [ActionKind.DELETE, ActionKind.CREATE],
    "-/+": [ActionKind.DELETE, ActionKind.CREATE],
    "+/-": [ActionKind.DELETE, ActionKind.CREATE],
    "no-op": [],
    "noop": [],
    "read": [],
}

ID_KEYS = ("resource_id", "resourceId", "address", "id")


def normalize_action(action: Any) -> List[ActionKind]:
    """Map one raw action (or a list of raw actions) to action kinds.

    Raises:
        ChangeSetParseError: If the action is not recognized
    """
    if isinstance(action, (list, tuple)):
        kinds: List[ActionKind] = []
        for item in action:
            kinds.extend(normalize_action(item))
        return kinds

    if not isinstance(action, str):
        raise ChangeSetParseError(f"Action must be a string, got {action!r}")

    key = action.strip().lower()
    if key not in ACTION_ALIASES:
        raise ChangeSetParseError(f"Unknown action: {action!r}")
    return list(ACTION_ALIASES[key])


def normalize_changes(changes: Iterable[ResourceChange]) -> List[ResourceChange]:
    """Sort by resource ID (then action) and drop duplicate pairs."""
    return sorted(set(changes), key=ResourceChange.sort_key)


def fingerprint(changes: Iterable[ResourceChange]) -> str:
    """Compute the fingerprint of a change-set.

    Args:
        changes: Resource changes in any order

    Returns:
        SHA-256 hex digest of the canonical encoding of the normalized pairs
    """
    canonical = json.dumps(
        [[change.resource_id, change.action.value] for change in normalize_changes(changes)],
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def summarize(changes: Iterable[ResourceChange], limit: int = 50) -> str:
    """Human-readable summary of a change-set."""
    normalized = normalize_changes(changes)
    if not normalized:
        return "No changes."

    counts = {kind: 0 for kind in ActionKind}
    for change in normalized:
        counts[change.action] += 1

    header = ", ".join(
        f"{counts[kind]} to {kind.value}" for kind in ActionKind if counts[kind]
    )
    lines = [f"Plan: {header}."]
    for change in normalized[:limit]:
        lines.append(f"  {change.action.value:6} {change.resource_id}")
    if len(normalized) > limit:
        lines.append(f"  ... and {len(normalized) - limit} more")
    return "\n".join(lines)


def parse_change_set(output: str) -> List[ResourceChange]:
    """Parse executor stdout into a normalized change-set.

    Args:
        output: Raw stdout of the plan executor

    Returns:
        Normalized list of resource changes

    Raises:
        ChangeSetParseError: If the output is not a recognized change-set
    """
    text = output.strip()
    if not text:
        return []

    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        return normalize_changes(_parse_stream(text))

    if isinstance(document, list):
        return normalize_changes(_parse_entries(document))

    if isinstance(document, dict):
        if "resource_changes" in document:
            return normalize_changes(_parse_plan_document(document))
        if isinstance(document.get("changes"), list):
            return normalize_changes(_parse_entries(document["changes"]))
        if "type" in document:
            return normalize_changes(_parse_stream(text))

    raise ChangeSetParseError("Output is not a recognized change-set document")


def _resource_id(entry: Dict[str, Any]) -> str:
    for key in ID_KEYS:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise ChangeSetParseError(f"Change entry has no resource identifier: {entry!r}")


def _parse_entries(entries: List[Any]) -> List[ResourceChange]:
    changes = []
    for entry in entries:
        if isinstance(entry, (list, tuple)) and len(entry) == 2:
            entry = {"resource_id": entry[0], "action": entry[1]}
        if not isinstance(entry, dict):
            raise ChangeSetParseError(f"Change entry must be an object: {entry!r}")

        action = entry.get("action", entry.get("actions"))
        if action is None:
            raise ChangeSetParseError(f"Change entry has no action: {entry!r}")

        resource_id = _resource_id(entry)
        changes.extend(
            ResourceChange(resource_id=resource_id, action=kind)
            for kind in normalize_action(action)
        )
    return changes


def _parse_plan_document(document: Dict[str, Any]) -> List[ResourceChange]:
    resource_changes = document.get("resource_changes") or []
    if not isinstance(resource_changes, list):
        raise ChangeSetParseError("resource_changes must be a list")

    changes = []
    for entry in resource_changes:
        if not isinstance(entry, dict) or not isinstance(entry.get("change"), dict):
            raise ChangeSetParseError(f"Malformed resource change: {entry!r}")
        resource_id = _resource_id(entry)
        changes.extend(
            ResourceChange(resource_id=resource_id, action=kind)
            for kind in normalize_action(entry["change"].get("actions", []))
        )
    return changes


def _parse_stream(text: str) -> List[ResourceChange]:
    changes = []
    recognized = False

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            # Human-readable log lines interleaved with the stream
            continue
        if not isinstance(message, dict) or "type" not in message:
            continue

        recognized = True
        if message["type"] != "planned_change":
            continue

        change = message.get("change") or {}
        resource = change.get("resource") or {}
        address = resource.get("addr")
        if not isinstance(address, str) or not address:
            raise ChangeSetParseError(f"planned_change without resource address: {line}")
        changes.extend(
            ResourceChange(resource_id=address, action=kind)
            for kind in normalize_action(change.get("action"))
        )

    if not recognized:
        raise ChangeSetParseError("Output contains no change-set messages")
    return changes
