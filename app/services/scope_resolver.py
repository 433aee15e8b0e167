import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from app.core.errors import PayrollValidationError, PayrollWorkflowError, ResolutionError, UpstreamServiceError
from app.schemas.payroll import DirectoryEmployee, ScopeSelector, ScopeType
from app.services.gateways import EmployeeDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeResolution:
    employee_ids: List[str] = field(default_factory=list)
    unresolved_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[PayrollWorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _dedupe(ids: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for v in ids:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def _eligible_ids(employees: Iterable[DirectoryEmployee]) -> List[str]:
    return [e.id for e in employees if e.is_payroll_eligible]


class ScopeResolver:
    def __init__(self, directory: EmployeeDirectory):
        self.directory = directory

    def resolve(self, scope: ScopeSelector) -> ScopeResolution:
        problems = scope.problems()
        if problems:
            return ScopeResolution(
                error=PayrollValidationError(next(iter(problems.values())), field_errors=problems)
            )

        try:
            if scope.type == ScopeType.COMPANY:
                ids = _eligible_ids(self.directory.get_all_employees())
                return ScopeResolution(employee_ids=_dedupe(ids))

            if scope.type == ScopeType.DEPARTMENT:
                ids = []
                for department_id in _dedupe(scope.department_ids):
                    ids.extend(_eligible_ids(self.directory.get_employees_by_department(department_id)))
                return ScopeResolution(employee_ids=_dedupe(ids))

            return self._resolve_individuals(scope)

        except UpstreamServiceError as exc:
            logger.warning(
                "Employee directory unavailable",
                extra={"scope_type": scope.type.value, "reason": exc.message},
            )
            return ScopeResolution(
                error=ResolutionError(f"Could not resolve payroll scope: {exc.message}", status_code=exc.status_code)
            )

    def _resolve_individuals(self, scope: ScopeSelector) -> ScopeResolution:
        requested = _dedupe(scope.employee_ids)
        known = {e.id for e in self.directory.get_all_employees()}

        resolved = [v for v in requested if v in known]
        unresolved = [v for v in requested if v not in known]

        warnings = []
        if unresolved:
            warnings.append(
                f"{len(unresolved)} selected employee(s) were not found in the directory: {', '.join(unresolved)}"
            )
            logger.warning(
                "Individual scope contains unknown employees",
                extra={"unresolved_ids": unresolved, "resolved_count": len(resolved)},
            )

        return ScopeResolution(employee_ids=resolved, unresolved_ids=unresolved, warnings=warnings)
