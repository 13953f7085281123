"""Static form prerequisites and the queries the workflow engine asks of them."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from .workflow import FormStatus, FormType, Workflow, is_done


@dataclass(frozen=True, slots=True)
class FormDependency:
    """``dependent_form`` cannot be started until ``required_form`` is complete."""

    dependent_form: FormType
    required_form: FormType
    reason: str
    # when set, the dependency is also enforced at filing time if the predicate holds
    condition: Callable[[Workflow], bool] | None = None


def _requests_support(workflow: Workflow) -> bool:
    return workflow.packet_config.requesting_support


FORM_DEPENDENCIES: tuple[FormDependency, ...] = (
    FormDependency(
        FormType.CLETS001,
        FormType.DV100,
        "CLETS-001 requires information from DV-100",
    ),
    FormDependency(
        FormType.DV105,
        FormType.DV100,
        "DV-105 requires case and party information from DV-100",
    ),
    FormDependency(
        FormType.FL150,
        FormType.DV100,
        "FL-150 required when requesting support in DV-100",
        condition=_requests_support,
    ),
    FormDependency(
        FormType.DV101,
        FormType.DV100,
        "DV-101 is an attachment to DV-100",
    ),
    FormDependency(
        FormType.FL320,
        FormType.DV120,
        "FL-320 is typically filed with DV-120 response",
    ),
)


def get_dependencies(
    form_type: FormType,
    table: Iterable[FormDependency] = FORM_DEPENDENCIES,
) -> list[FormType]:
    return [dep.required_form for dep in table if dep.dependent_form == form_type]


def get_unmet_dependencies(
    form_type: FormType,
    statuses: Mapping[FormType, FormStatus],
    table: Iterable[FormDependency] = FORM_DEPENDENCIES,
) -> list[FormType]:
    return [required for required in get_dependencies(form_type, table) if not is_done(statuses.get(required))]


def are_dependencies_met(
    form_type: FormType,
    statuses: Mapping[FormType, FormStatus],
    table: Iterable[FormDependency] = FORM_DEPENDENCIES,
) -> bool:
    return not get_unmet_dependencies(form_type, statuses, table)


def conditional_dependencies_for(
    workflow: Workflow,
    table: Iterable[FormDependency] = FORM_DEPENDENCIES,
) -> list[FormDependency]:
    """Conditional dependencies whose predicate holds for ``workflow``."""

    return [dep for dep in table if dep.condition is not None and dep.condition(workflow)]


def find_dependency_cycle(table: Iterable[FormDependency] = FORM_DEPENDENCIES) -> list[FormType] | None:
    """Return one cycle of forms (first form repeated at the end) or ``None``."""

    edges: dict[FormType, list[FormType]] = {}
    for dep in table:
        edges.setdefault(dep.dependent_form, []).append(dep.required_form)

    visiting: list[FormType] = []
    finished: set[FormType] = set()

    def visit(node: FormType) -> list[FormType] | None:
        if node in finished:
            return None
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        visiting.append(node)
        for target in edges.get(node, []):
            cycle = visit(target)
            if cycle:
                return cycle
        visiting.pop()
        finished.add(node)
        return None

    for start in list(edges):
        cycle = visit(start)
        if cycle:
            return cycle
    return None
