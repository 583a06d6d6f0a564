"""
Inventory resolution and role binding.

Purpose
Turn an InventoryStore plus a DefinitionSet into one NodePlan per node:
the merged variables and the ordered assertions that apply to that node.

Variable precedence, lowest to highest
1) role defaults, in role binding order
2) inventory global vars
3) group vars, in group declaration order, so a later declared group wins
4) node vars
5) built in vars inventory_hostname and group_names, which cannot be overridden

Group predicates
Every task predicate is evaluated here, once per node. The convergence engine
receives only the assertions that apply and never looks at group names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from deploy_orchestrator.core.errors import ConfigError
from deploy_orchestrator.core.types import AssertionSpec, DefinitionSet, Node, RoleDefinition
from deploy_orchestrator.inventory.store import InventoryStore

logger = logging.getLogger(__name__)

ALL_HOSTS = "all"


@dataclass(frozen=True)
class ResolvedNode:
    """
    A node with its inventory variables merged.

    variables does not include role defaults yet, those depend on binding.
    """

    node: Node
    variables: dict[str, Any]

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def group_names(self) -> frozenset[str]:
        return frozenset(self.node.groups)


@dataclass
class NodePlan:
    """
    Everything the convergence engine needs for one node.

    assertions
    Ordered assertions selected by group predicates.

    handlers
    Handler identity to handler assertion, for every role bound to the node.

    handler_index
    (role, notified name) to the identity of the handler that name resolves
    to from that role, through the role and its transitive dependencies.
    """

    node: Node
    variables: dict[str, Any]
    roles: list[str] = field(default_factory=list)
    assertions: list[AssertionSpec] = field(default_factory=list)
    handlers: dict[str, AssertionSpec] = field(default_factory=dict)
    templates: dict[tuple[str, str], str] = field(default_factory=dict)
    handler_index: dict[tuple[str, str], str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.node.name

    def notified_handlers(self, spec: AssertionSpec) -> tuple[str, ...]:
        """Identities of the handlers a changed assertion queues."""
        return tuple(self.handler_index[(spec.role, name)] for name in spec.notify)


def _builtin_vars(node: Node) -> dict[str, Any]:
    return {
        "inventory_hostname": node.name,
        "group_names": sorted(node.groups),
    }


def resolve_inventory(store: InventoryStore) -> list[ResolvedNode]:
    """
    Merge variables for every node.

    Raises ConfigError when a node references an undeclared group.
    """

    declared = [g.name for g in store.groups()]
    resolved: list[ResolvedNode] = []

    for node in store.all():
        missing = [g for g in node.groups if g not in declared]
        if missing:
            raise ConfigError(f"node {node.name} references undeclared groups: {', '.join(missing)}")

        merged: dict[str, Any] = dict(store.variables)
        for group in store.groups():
            if group.name in node.groups:
                merged.update(group.variables)
        merged.update(node.variables)
        merged.update(_builtin_vars(node))

        resolved.append(ResolvedNode(node=node, variables=merged))

    return resolved


def handler_scope(role: RoleDefinition, definitions: DefinitionSet) -> list[RoleDefinition]:
    """
    Return the role and its transitive dependencies.

    A task may notify a handler declared in any role of this scope.
    Cycles are tolerated here, the quality gate reports them.
    """

    scope: list[RoleDefinition] = []
    seen: set[str] = set()
    stack = [role.name]
    while stack:
        name = stack.pop(0)
        if name in seen:
            continue
        seen.add(name)
        current = definitions.role(name)
        if current is None:
            continue
        scope.append(current)
        stack.extend(current.dependencies)
    return scope


def resolve_handler(role: RoleDefinition, name: str, definitions: DefinitionSet) -> AssertionSpec | None:
    """
    Find the handler a task of role notifies by name.

    The role itself is searched first, then its dependencies breadth first.
    """

    for candidate in handler_scope(role, definitions):
        handler = candidate.handler(name)
        if handler is not None:
            return handler
    return None


def check_references(store: InventoryStore, definitions: DefinitionSet) -> None:
    """
    Pre flight reference checks.

    1) every play targets all or a declared group
    2) every play role and role dependency is declared
    3) every notify names a handler reachable from the task role
    4) every task predicate names declared groups
    """

    groups = {g.name for g in store.groups()}
    problems: list[str] = []

    for play in definitions.plays:
        if play.hosts != ALL_HOSTS and play.hosts not in groups:
            problems.append(f"play {play.name!r} targets undeclared group {play.hosts}")
        for role_name in play.roles:
            if definitions.role(role_name) is None:
                problems.append(f"play {play.name!r} references undeclared role {role_name}")

    for role in definitions.roles.values():
        for dep in role.dependencies:
            if definitions.role(dep) is None:
                problems.append(f"role {role.name} depends on undeclared role {dep}")

        for task in role.tasks:
            for handler_name in task.notify:
                if resolve_handler(role, handler_name, definitions) is None:
                    problems.append(
                        f"task {task.identity!r} notifies undeclared handler {handler_name!r}"
                    )
            for group in task.when.referenced_groups():
                if group not in groups:
                    problems.append(f"task {task.identity!r} condition names undeclared group {group}")

    if problems:
        raise ConfigError("; ".join(problems))


def expand_roles(names: list[str], definitions: DefinitionSet) -> list[RoleDefinition]:
    """
    Expand role dependencies depth first, dependencies before dependents.

    Each role appears once, at its first position.
    Raises ConfigError on a dependency cycle.
    """

    ordered: list[RoleDefinition] = []
    done: set[str] = set()

    def visit(name: str, path: tuple[str, ...]) -> None:
        if name in path:
            cycle = " -> ".join(path + (name,))
            raise ConfigError(f"cyclic role dependency: {cycle}")
        if name in done:
            return
        role = definitions.role(name)
        if role is None:
            raise ConfigError(f"undeclared role {name}")
        for dep in role.dependencies:
            visit(dep, path + (name,))
        done.add(name)
        ordered.append(role)

    for name in names:
        visit(name, ())

    return ordered


def bind_roles(resolved: list[ResolvedNode], definitions: DefinitionSet) -> list[NodePlan]:
    """
    Build one NodePlan per resolved node, in inventory order.

    A play selects a node when its hosts is all or one of the node groups.
    Plays are applied in playbook order.
    Raises ConfigError when a notify does not resolve from the task role.
    """

    plans: list[NodePlan] = []

    for rn in resolved:
        role_names: list[str] = []
        for play in definitions.plays:
            if play.hosts == ALL_HOSTS or play.hosts in rn.group_names:
                role_names.extend(play.roles)

        roles = expand_roles(role_names, definitions)

        variables: dict[str, Any] = {}
        for role in roles:
            variables.update(role.defaults)
        variables.update(rn.variables)

        plan = NodePlan(node=rn.node, variables=variables, roles=[r.name for r in roles])

        for role in roles:
            for handler in role.handlers:
                plan.handlers.setdefault(handler.identity, handler)
            for template_name, text in role.templates.items():
                plan.templates[(role.name, template_name)] = text
            for task in role.tasks:
                if not task.when.matches(rn.group_names):
                    continue
                plan.assertions.append(task)
                for handler_name in task.notify:
                    key = (role.name, handler_name)
                    if key in plan.handler_index:
                        continue
                    handler = resolve_handler(role, handler_name, definitions)
                    if handler is None:
                        raise ConfigError(f"task {task.identity!r} notifies undeclared handler {handler_name!r}")
                    plan.handler_index[key] = handler.identity

        logger.debug(
            "bound node %s to roles %s with %d assertions",
            rn.name,
            plan.roles,
            len(plan.assertions),
        )
        plans.append(plan)

    return plans
