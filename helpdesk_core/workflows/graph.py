# helpdesk_core/workflows/graph.py
"""
Workflow graph domain types and the nodes/edges codec.

A persisted workflow definition is an editor document::

    {"nodes": [{id, type, position, data: {label, color, isInitial?}}],
     "edges": [{id, source, target, label, data: {roles, conditions, actions, isCreateTransition?}}]}

It is split into two parts:

- ``WorkflowGraph``: states and transitions. The evaluator only ever sees this.
- ``Layout``: the raw node/edge objects (positions, colors, marker styles, ...),
  kept verbatim so that ``serialize_definition(parse_definition(doc)) == doc``.

This module MUST remain free of ORM and HTTP concerns.
"""

from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import InvalidWorkflowDefinition
from .rules import CREATE_STATE, normalize_action, normalize_kind, normalize_role, normalize_status


# ===============================================================
# Domain types
# ===============================================================

@dataclass(frozen=True)
class State:
    id: str
    label: str = ""
    is_initial: bool = False

    @property
    def status(self) -> str:
        """Ticket status string this state stands for."""
        return normalize_status(self.label or self.id)

    def matches(self, status: str) -> bool:
        wanted = normalize_status(status)
        if not wanted:
            return False
        return wanted == self.status or wanted == normalize_status(self.id)


@dataclass(frozen=True)
class Transition:
    id: str
    from_state: str
    to_state: str
    label: str = ""
    allowed_roles: Tuple[str, ...] = ()
    conditions: Tuple[str, ...] = ()
    actions: Tuple[str, ...] = ()
    is_create_transition: bool = False
    # Parallel to ``actions``; missing entries mean an empty config.
    action_configs: Tuple[Mapping[str, Any], ...] = field(default=(), compare=False, repr=False)

    def action_items(self) -> List[Dict[str, Any]]:
        configs = list(self.action_configs)
        return [
            {"type": kind, "config": dict(configs[i]) if i < len(configs) else {}}
            for i, kind in enumerate(self.actions)
        ]

    def allows_any(self, roles: Iterable[str]) -> bool:
        allowed = {normalize_role(r) for r in self.allowed_roles}
        return bool(allowed.intersection(normalize_role(r) for r in roles))


@dataclass(frozen=True)
class WorkflowGraph:
    states: Tuple[State, ...] = ()
    transitions: Tuple[Transition, ...] = ()

    # -----------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------
    def state(self, state_id: str) -> Optional[State]:
        for s in self.states:
            if s.id == state_id:
                return s
        return None

    @property
    def initial_state(self) -> Optional[State]:
        initial = [s for s in self.states if s.is_initial]
        if len(initial) == 1:
            return initial[0]
        return None

    @property
    def create_transition(self) -> Optional[Transition]:
        for t in self.transitions:
            if t.is_create_transition:
                return t
        return None

    def resolve_state(self, status: str) -> Optional[State]:
        """
        Map a ticket status onto a state by normalized label first, then id.
        The create pseudo-state is never a ticket status.
        """
        candidates = [s for s in self.states if not s.is_initial]
        wanted = normalize_status(status)
        for s in candidates:
            if s.status == wanted:
                return s
        for s in candidates:
            if s.matches(wanted):
                return s
        return None

    def status_for(self, state_id: str) -> str:
        s = self.state(state_id)
        if s is None:
            return normalize_status(state_id)
        return s.status

    def transitions_from(self, state_id: str) -> List[Transition]:
        return [
            t for t in self.transitions
            if t.from_state == state_id and not t.is_create_transition
        ]

    def find_transitions(self, current_status: str, target_status: str) -> List[Transition]:
        """
        Every non-create transition current -> target, in definition order.
        """
        src = self.resolve_state(current_status)
        dst = self.resolve_state(target_status)
        if src is None or dst is None:
            return []
        return [t for t in self.transitions_from(src.id) if t.to_state == dst.id]

    def statuses(self) -> List[str]:
        """Normalized ticket statuses, excluding the create pseudo-state."""
        out: List[str] = []
        for s in self.states:
            if s.is_initial:
                continue
            if s.status not in out:
                out.append(s.status)
        return out

    # -----------------------------------------------------------
    # Validation
    # -----------------------------------------------------------
    def reachable_state_ids(self) -> set:
        start = self.initial_state
        if start is None:
            return set()
        adjacency: Dict[str, List[str]] = {}
        for t in self.transitions:
            adjacency.setdefault(t.from_state, []).append(t.to_state)

        seen = {start.id}
        queue = deque([start.id])
        while queue:
            cur = queue.popleft()
            for nxt in adjacency.get(cur, []):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return seen

    def structural_errors(self) -> List[str]:
        """Errors that make a graph unusable even as a draft."""
        errors: List[str] = []
        ids = [s.id for s in self.states]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            errors.append(f"Duplicate state ids: {', '.join(dupes)}")

        known = set(ids)
        for t in self.transitions:
            for ref in (t.from_state, t.to_state):
                if ref not in known:
                    errors.append(f"Transition '{t.id}' references unknown state '{ref}'")

        tids = [t.id for t in self.transitions]
        tdupes = sorted({i for i in tids if tids.count(i) > 1})
        if tdupes:
            errors.append(f"Duplicate transition ids: {', '.join(tdupes)}")
        return errors

    def errors(self) -> List[str]:
        """Full invariant check required before a workflow can be used."""
        errors = self.structural_errors()

        if not self.states:
            errors.append("Workflow has no states")
            return errors

        initial = [s for s in self.states if s.is_initial]
        if len(initial) != 1:
            errors.append(f"Exactly one initial state is required, found {len(initial)}")

        creates = [t for t in self.transitions if t.is_create_transition]
        if len(creates) != 1:
            errors.append(f"Exactly one create transition is required, found {len(creates)}")
        elif len(initial) == 1 and creates[0].from_state != initial[0].id:
            errors.append(
                f"Create transition '{creates[0].id}' must start at the initial state '{initial[0].id}'"
            )

        if len(initial) == 1 and not errors:
            reachable = self.reachable_state_ids()
            unreachable = sorted(s.id for s in self.states if s.id not in reachable)
            if unreachable:
                errors.append(f"States unreachable from '{initial[0].id}': {', '.join(unreachable)}")

        return errors


# ===============================================================
# Layout (presentation)
# ===============================================================

@dataclass(frozen=True)
class Layout:
    """
    Raw editor objects keyed by id plus the document's top-level keys in
    their original order. Only used for rendering and round-trips.
    """

    nodes: Tuple[Tuple[str, Mapping[str, Any]], ...] = ()
    edges: Tuple[Tuple[str, Mapping[str, Any]], ...] = ()
    top_level: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class WorkflowDocument:
    graph: WorkflowGraph
    layout: Layout = field(default_factory=Layout)


# ===============================================================
# Codec
# ===============================================================

def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _dedupe(values: Iterable[str]) -> Tuple[str, ...]:
    out: List[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return tuple(out)


def _kinds(value) -> Tuple[str, ...]:
    return tuple(k for k in (normalize_kind(v) for v in _as_list(value)) if k)


def _actions(value) -> Tuple[Tuple[str, ...], Tuple[Dict[str, Any], ...]]:
    pairs = [p for p in (normalize_action(v) for v in _as_list(value)) if p[0]]
    return tuple(k for k, _ in pairs), tuple(c for _, c in pairs)


def _action_items(value) -> List[Dict[str, Any]]:
    kinds, configs = _actions(value)
    return [{"type": k, "config": c} for k, c in zip(kinds, configs)]


def _action_payload(t: Transition) -> list:
    items = t.action_items()
    if any(item["config"] for item in items):
        return items
    return list(t.actions)


def _roles(value) -> Tuple[str, ...]:
    return _dedupe(normalize_role(r) for r in _as_list(value))


def _parse_state(node: Mapping[str, Any], *, legacy_initial: bool = False) -> State:
    data = node.get("data") or {}
    node_id = str(node.get("id") or "")
    is_initial = bool(data.get("isInitial", False))
    if legacy_initial and node_id == CREATE_STATE and "isInitial" not in data:
        is_initial = True
    return State(
        id=node_id,
        label=str(data.get("label") or ""),
        is_initial=is_initial,
    )


def _parse_transition(edge: Mapping[str, Any], index: int) -> Transition:
    data = edge.get("data") or {}
    source = str(edge.get("source") or "")
    actions, action_configs = _actions(data.get("actions"))
    return Transition(
        id=str(edge.get("id") or f"e{index}"),
        from_state=source,
        to_state=str(edge.get("target") or ""),
        label=str(edge.get("label") or ""),
        allowed_roles=_roles(data.get("roles")),
        conditions=_dedupe(_kinds(data.get("conditions"))),
        actions=actions,
        is_create_transition=bool(data.get("isCreateTransition", False)) or source == CREATE_STATE,
        action_configs=action_configs,
    )


def parse_definition(doc: Optional[Mapping[str, Any]]) -> WorkflowDocument:
    """
    Parse a nodes/edges document. Never raises on semantic problems; use
    ``validate_definition`` for that.
    """
    if doc is None:
        doc = {}
    if not isinstance(doc, Mapping):
        raise InvalidWorkflowDefinition("Workflow definition must be a JSON object")

    nodes = _as_list(doc.get("nodes"))
    edges = _as_list(doc.get("edges"))
    for item in nodes + edges:
        if not isinstance(item, Mapping):
            raise InvalidWorkflowDefinition("Workflow nodes and edges must be JSON objects")

    # Legacy definitions mark the pseudo-state only by its id.
    legacy = not any((n.get("data") or {}).get("isInitial") for n in nodes)
    states = [_parse_state(n, legacy_initial=legacy) for n in nodes]
    transitions = [_parse_transition(e, i) for i, e in enumerate(edges)]

    layout = Layout(
        nodes=tuple((s.id, copy.deepcopy(dict(n))) for s, n in zip(states, nodes)),
        edges=tuple((t.id, copy.deepcopy(dict(e))) for t, e in zip(transitions, edges)),
        top_level=tuple(
            (k, None if k in ("nodes", "edges") else copy.deepcopy(v)) for k, v in doc.items()
        ),
    )
    return WorkflowDocument(
        graph=WorkflowGraph(states=tuple(states), transitions=tuple(transitions)),
        layout=layout,
    )


def _put(target: Dict[str, Any], key: str, value) -> None:
    """Write ``value`` unless the raw object already says the same thing."""
    if key in target:
        current = target[key]
        if isinstance(value, str) and (current or "") == value:
            return
        if current == value:
            return
        target[key] = value
    elif value:
        target[key] = value


def _node_for(state: State, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if raw is None:
        data: Dict[str, Any] = {"label": state.label or state.id}
        if state.is_initial and state.id != CREATE_STATE:
            data["isInitial"] = True
        return {
            "id": state.id,
            "type": "statusNode",
            "position": {"x": 0, "y": 0},
            "data": data,
        }

    node = copy.deepcopy(dict(raw))
    _put(node, "id", state.id)
    data = dict(node.get("data") or {})
    _put(data, "label", state.label)
    if "isInitial" in data:
        _put(data, "isInitial", state.is_initial)
    elif state.is_initial and state.id != CREATE_STATE:
        data["isInitial"] = True
    if data or "data" in node:
        node["data"] = data
    return node


def _edge_for(t: Transition, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if raw is None:
        data: Dict[str, Any] = {
            "roles": list(t.allowed_roles),
            "conditions": list(t.conditions),
            "actions": _action_payload(t),
        }
        if t.is_create_transition and t.from_state != CREATE_STATE:
            data["isCreateTransition"] = True
        return {
            "id": t.id,
            "source": t.from_state,
            "target": t.to_state,
            "label": t.label,
            "data": data,
        }

    edge = copy.deepcopy(dict(raw))
    if "id" in edge:
        _put(edge, "id", t.id)
    _put(edge, "source", t.from_state)
    _put(edge, "target", t.to_state)
    _put(edge, "label", t.label)

    data = dict(edge.get("data") or {})
    if _roles(data.get("roles")) != t.allowed_roles:
        data["roles"] = list(t.allowed_roles)
    if _dedupe(_kinds(data.get("conditions"))) != t.conditions:
        data["conditions"] = list(t.conditions)
    if _action_items(data.get("actions")) != t.action_items():
        data["actions"] = _action_payload(t)
    if "isCreateTransition" in data:
        _put(data, "isCreateTransition", t.is_create_transition)
    elif t.is_create_transition and t.from_state != CREATE_STATE:
        data["isCreateTransition"] = True
    if data or "data" in edge:
        edge["data"] = data
    return edge


def serialize_definition(document: WorkflowDocument) -> Dict[str, Any]:
    """
    Inverse of ``parse_definition``. Cosmetic fields and key order come
    back untouched when the graph was not edited.
    """
    graph = document.graph
    layout = document.layout
    raw_nodes = dict(layout.nodes)
    raw_edges = dict(layout.edges)

    nodes = [_node_for(s, raw_nodes.get(s.id)) for s in graph.states]
    edges = [_edge_for(t, raw_edges.get(t.id)) for t in graph.transitions]

    out: Dict[str, Any] = {}
    for key, value in layout.top_level:
        if key == "nodes":
            out["nodes"] = nodes
        elif key == "edges":
            out["edges"] = edges
        else:
            out[key] = copy.deepcopy(value)

    if "nodes" not in out and nodes:
        out["nodes"] = nodes
    if "edges" not in out and edges:
        out["edges"] = edges
    if not layout.top_level and not out:
        out = {"nodes": nodes, "edges": edges}
    return out


def validate_definition(doc: Optional[Mapping[str, Any]], *, strict: bool = True) -> WorkflowDocument:
    """
    Parse and validate. ``strict=False`` accepts incomplete drafts as long
    as every referenced state exists.
    """
    document = parse_definition(doc)
    graph = document.graph
    errors = graph.errors() if strict else graph.structural_errors()
    if errors:
        raise InvalidWorkflowDefinition(errors)
    return document


__all__ = [
    "State",
    "Transition",
    "WorkflowGraph",
    "Layout",
    "WorkflowDocument",
    "parse_definition",
    "serialize_definition",
    "validate_definition",
]
