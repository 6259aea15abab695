# helpdesk_core/workflows/categorization.py
"""
Working / Done / Hold bucketing of ticket statuses.

Categorization entries are ``StatusKey(workflow_id, status)`` values. A key
without a workflow id applies to whichever workflow is active. Persisted
rows may still hold the legacy string encoding
``workflow-{workflowId}-{statusName}`` (or a bare status name); those are
parsed once, at load.

Matching (per bucket) for a ticket status S on workflow T, with active
workflow A and unbound tickets treated as T = A:

1. an entry for T containing S matches;
2. an entry for another workflow W != A containing S matches when T == A;
3. an entry without a workflow containing S matches when T is also None
   (only possible when no workflow is active).

Done is checked before Working, so a status never lands in two buckets.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .rules import normalize_status


class Bucket(str, Enum):
    WORKING = "WORKING"
    DONE = "DONE"
    HOLD = "HOLD"


LEGACY_PREFIX = "workflow-"

_UUID_KEY = re.compile(
    r"^workflow-([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})-(.+)$",
    re.IGNORECASE,
)
_HEX_KEY = re.compile(r"^workflow-([a-f0-9-]+)-(.+)$", re.IGNORECASE)


def _wid(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class StatusKey:
    workflow_id: Optional[str]
    status: str

    def __post_init__(self):
        object.__setattr__(self, "workflow_id", _wid(self.workflow_id))
        object.__setattr__(self, "status", normalize_status(self.status))

    @property
    def legacy_id(self) -> str:
        if self.workflow_id is None:
            return self.status
        return f"{LEGACY_PREFIX}{self.workflow_id}-{self.status}"

    def to_dict(self) -> Dict[str, Any]:
        return {"workflowId": self.workflow_id, "status": self.status}

    @classmethod
    def parse(cls, value, known_workflow_ids: Iterable[str] = ()) -> "StatusKey":
        if isinstance(value, StatusKey):
            return value
        if isinstance(value, Mapping):
            wid = value.get("workflowId", value.get("workflow_id"))
            return cls(workflow_id=wid, status=str(value.get("status") or ""))
        return cls.parse_legacy(str(value or ""), known_workflow_ids)

    @classmethod
    def parse_legacy(cls, raw: str, known_workflow_ids: Iterable[str] = ()) -> "StatusKey":
        raw = raw.strip()
        if not raw.startswith(LEGACY_PREFIX):
            return cls(workflow_id=None, status=raw)

        rest = raw[len(LEGACY_PREFIX):]
        for wid in sorted((str(w) for w in known_workflow_ids), key=len, reverse=True):
            if rest.startswith(wid + "-") and len(rest) > len(wid) + 1:
                return cls(workflow_id=wid, status=rest[len(wid) + 1:])

        for pattern in (_UUID_KEY, _HEX_KEY):
            m = pattern.match(raw)
            if m:
                return cls(workflow_id=m.group(1), status=m.group(2))

        head, sep, tail = rest.rpartition("-")
        if sep and head and tail:
            return cls(workflow_id=head, status=tail)
        return cls(workflow_id=None, status=raw)


def parse_status_keys(values, known_workflow_ids: Iterable[str] = ()) -> List[StatusKey]:
    known = [str(w) for w in known_workflow_ids]
    out: List[StatusKey] = []
    for v in values or ():
        key = StatusKey.parse(v, known)
        if key.status and key not in out:
            out.append(key)
    return out


def _group(keys: Sequence[StatusKey], active_id: Optional[str]) -> Dict[Optional[str], FrozenSet[str]]:
    grouped: Dict[Optional[str], Set[str]] = {}
    for key in keys:
        wid = key.workflow_id if key.workflow_id is not None else active_id
        grouped.setdefault(wid, set()).add(key.status)
    return {wid: frozenset(statuses) for wid, statuses in grouped.items()}


class StatusCategorizer:
    """
    Precomputed, immutable categorization for one active workflow.

    Build it once per aggregation pass and call ``categorize`` for every
    ticket; it holds no mutable state.
    """

    __slots__ = ("_active_id", "_working", "_done")

    def __init__(self, active_workflow_id, working: Iterable = (), done: Iterable = (), known_workflow_ids=()):
        known = list(known_workflow_ids or ())
        if active_workflow_id is not None:
            known.append(str(active_workflow_id))
        self._active_id = _wid(active_workflow_id)
        self._working = _group(parse_status_keys(working, known), self._active_id)
        self._done = _group(parse_status_keys(done, known), self._active_id)

    @classmethod
    def for_workflow(
        cls,
        workflow,
        *,
        default_working: Optional[Sequence[str]] = None,
        default_done: Optional[Sequence[str]] = None,
        known_workflow_ids=(),
    ) -> "StatusCategorizer":
        """
        ``workflow`` is the active workflow (or None). Defaults, when given,
        stand in for an empty working/done list.
        """
        if workflow is None:
            return cls(None, (), (), known_workflow_ids)
        working = list(getattr(workflow, "working_statuses", None) or ())
        done = list(getattr(workflow, "done_statuses", None) or ())
        if not working and default_working is not None:
            working = list(default_working)
        if not done and default_done is not None:
            done = list(default_done)
        return cls(getattr(workflow, "id", None), working, done, known_workflow_ids)

    @property
    def active_workflow_id(self) -> Optional[str]:
        return self._active_id

    def _matches(self, by_workflow: Dict[Optional[str], FrozenSet[str]], status: str, ticket_wid: Optional[str]) -> bool:
        active = self._active_id
        ticket = ticket_wid if ticket_wid is not None else active
        for wid, statuses in by_workflow.items():
            if status not in statuses:
                continue
            if ticket == wid:
                return True
            if wid != active and ticket == active:
                return True
            if wid is None and ticket is None:
                return True
        return False

    def categorize(self, status: str, ticket_workflow_id=None) -> Bucket:
        normalized = normalize_status(status)
        wid = _wid(ticket_workflow_id)
        if self._matches(self._done, normalized, wid):
            return Bucket.DONE
        if self._matches(self._working, normalized, wid):
            return Bucket.WORKING
        return Bucket.HOLD

    def counts(self, rows: Iterable[Tuple[str, Any]]) -> Dict[str, int]:
        """``rows`` yields (status, workflow_id) pairs."""
        out = {"all": 0, "working": 0, "done": 0, "hold": 0}
        for status, workflow_id in rows:
            out["all"] += 1
            out[self.categorize(status, workflow_id).value.lower()] += 1
        return out


def categorize(status: str, ticket_workflow_id, active_workflow) -> Bucket:
    """
    Pure function of (status, ticket workflow, active workflow).
    """
    return StatusCategorizer.for_workflow(active_workflow).categorize(status, ticket_workflow_id)


def overlapping_keys(working: Iterable, done: Iterable, active_workflow_id=None) -> List[StatusKey]:
    """Keys present in both lists once unqualified keys are resolved."""
    active = _wid(active_workflow_id)

    def _resolved(values) -> Set[Tuple[Optional[str], str]]:
        known = [active] if active else []
        return {
            (k.workflow_id if k.workflow_id is not None else active, k.status)
            for k in parse_status_keys(values, known)
        }

    both = _resolved(working) & _resolved(done)
    return [StatusKey(workflow_id=w, status=s) for w, s in sorted(both, key=lambda x: (x[0] or "", x[1]))]


__all__ = [
    "Bucket",
    "StatusKey",
    "StatusCategorizer",
    "parse_status_keys",
    "categorize",
    "overlapping_keys",
]
