"""Hosting plans and per-user resource usage."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable


@dataclass(frozen=True, slots=True)
class PlanLimits:
    projects: int
    ram: int  # MB
    storage: int  # GB


DEFAULT_PLAN = "Free"

PLANS: dict[str, PlanLimits] = {
    "Free": PlanLimits(projects=1, ram=512, storage=1),
    "Starter": PlanLimits(projects=5, ram=3072, storage=9),
    "Intermediate": PlanLimits(projects=15, ram=10240, storage=20),
    "Super": PlanLimits(projects=30, ram=20480, storage=30),
}


# plan names found in records written by earlier panel releases
LEGACY_PLAN_NAMES = {
    "Gratuito": "Free",
    "Iniciante": "Starter",
    "Intermediário": "Intermediate",
}


def resolve_plan(name: str | None) -> str:
    """Return a known plan name, falling back to the default plan."""

    name = LEGACY_PLAN_NAMES.get(name or "", name)
    return name if name in PLANS else DEFAULT_PLAN


def _sum_field(instances: Iterable[dict[str, Any]], field: str) -> int:
    total = 0
    for instance in instances:
        try:
            total += int(instance.get(field) or 0)
        except (TypeError, ValueError):
            continue
    return total


def build_plan_data(plan_name: str | None, instances: list[dict[str, Any]]) -> dict[str, Any]:
    """Describe limits, usage and remaining capacity for a user's plan."""

    current = resolve_plan(plan_name)
    limits = PLANS[current]
    usage = {
        "projects": len(instances),
        "ram": _sum_field(instances, "ramUsage"),
        "storage": _sum_field(instances, "storageUsage"),
    }
    return {
        "current": current,
        "limits": asdict(limits),
        "usage": usage,
        "available": {
            "projects": max(0, limits.projects - usage["projects"]),
            "ram": max(0, limits.ram - usage["ram"]),
            "storage": max(0, limits.storage - usage["storage"]),
        },
        "allPlans": {name: asdict(plan) for name, plan in PLANS.items()},
    }


__all__ = ["DEFAULT_PLAN", "LEGACY_PLAN_NAMES", "PLANS", "PlanLimits", "build_plan_data", "resolve_plan"]
