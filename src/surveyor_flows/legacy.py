"""Read-only adapter for submissions saved in the pre-engine on-disk format.

Older app versions wrote one JSON file per submission under::

    <base_dir>/<org_uuid>/<flow_uuid>/<submission>.json

Each file holds a legacy run record::

    {
      "flow": "<flow uuid>",
      "revision": 3,
      "contact": "<contact uuid>" | {...},
      "started": "<iso8601>",
      "completed": "<iso8601>" | true | false,
      "steps": [{"node": "...", "arrived_on": "...", "left_on": "...",
                 "rule": {"uuid": "...", "category": "...", "value": "..."},
                 "actions": [{"type": "reply", "msg": "..."}]}],
      "fields": {"age": "15"}
    }

These records are never modified through the engine.  Completed ones are
mapped into :class:`Submission` (``legacy=True``) so the upload layer can
send them through the same path as engine submissions.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from surveyor_flows.models.run import Step, StepOutcome
from surveyor_flows.models.submission import Submission
from surveyor_flows.models.value import TextValue

logger = logging.getLogger(__name__)


def _parse_ts(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _legacy_step(raw: Mapping[str, Any]) -> Step:
    rule = raw.get("rule") or None
    messages = [
        str(a.get("msg", ""))
        for a in raw.get("actions") or []
        if isinstance(a, Mapping) and a.get("type") == "reply"
    ]
    arrived_on = _parse_ts(raw.get("arrived_on")) or datetime.fromtimestamp(0, timezone.utc)
    return Step(
        node_id=str(raw.get("node", "")),
        node_type="rule_set" if rule else "action_set",
        arrived_on=arrived_on,
        left_on=_parse_ts(raw.get("left_on")),
        value=None if not rule or rule.get("value") is None else str(rule.get("value")),
        category=rule.get("category") if rule else None,
        rule_uuid=rule.get("uuid") if rule else None,
        messages=messages,
        outcome=StepOutcome.ADVANCED,
    )


class LegacySubmissionReader:
    """Enumerates legacy submission files below ``base_dir``.

    A missing ``base_dir`` simply means there is nothing to read.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base = Path(base_dir)

    def _files(self, org_uuid: str | None, flow_uuid: str | None) -> list[tuple[str, str, Path]]:
        if not self._base.is_dir():
            return []
        found = []
        for org_dir in sorted(p for p in self._base.iterdir() if p.is_dir()):
            if org_uuid is not None and org_dir.name != org_uuid:
                continue
            for flow_dir in sorted(p for p in org_dir.iterdir() if p.is_dir()):
                if flow_uuid is not None and flow_dir.name != flow_uuid:
                    continue
                for path in sorted(flow_dir.glob("*.json")):
                    found.append((org_dir.name, flow_dir.name, path))
        return found

    def read(self, path: Path, *, org_uuid: str, flow_uuid: str) -> Submission | None:
        """Map one legacy file, or None if it is incomplete or unreadable."""
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable legacy submission %s: %s", path, exc)
            return None

        if not isinstance(raw, Mapping) or not raw.get("completed"):
            return None

        contact = raw.get("contact") or {}
        if isinstance(contact, str):
            contact = {"uuid": contact}

        started = _parse_ts(raw.get("started"))
        completed = _parse_ts(raw.get("completed"))
        try:
            return Submission(
                run_uuid=str(raw.get("uuid") or path.stem),
                org_uuid=org_uuid,
                flow_uuid=str(raw.get("flow") or flow_uuid),
                flow_revision=int(raw.get("revision") or 0),
                contact=dict(contact),
                started_on=started or completed or datetime.fromtimestamp(0, timezone.utc),
                completed_on=completed,
                steps=[_legacy_step(s) for s in raw.get("steps") or [] if isinstance(s, Mapping)],
                fields={
                    str(k): TextValue(value=str(v))
                    for k, v in (raw.get("fields") or {}).items()
                    if v is not None
                },
                legacy=True,
            )
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed legacy submission %s: %s", path, exc)
            return None

    def list_completed(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> list[Submission]:
        """Completed legacy submissions, optionally filtered by org/flow."""
        submissions = []
        for org, flow, path in self._files(org_uuid, flow_uuid):
            submission = self.read(path, org_uuid=org, flow_uuid=flow)
            if submission is not None:
                submissions.append(submission)
        return submissions

    def count_completed(
        self,
        *,
        org_uuid: str | None = None,
        flow_uuid: str | None = None,
    ) -> int:
        return len(self.list_completed(org_uuid=org_uuid, flow_uuid=flow_uuid))
