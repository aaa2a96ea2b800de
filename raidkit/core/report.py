"""
Human-readable previews of plans, inventories and existing arrays.

Pure functions: everything they show is already in their arguments.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from jinja2 import Template

from raidkit.core.models import (
    Device,
    DeviceGroup,
    GuardVerdict,
    RaidPlan,
    SystemSnapshot,
    human_size,
)

PLAN_REPORT_TEMPLATE = """\
{% if dry_run %}
[DRY RUN] Nothing will be changed.
{% endif %}
Drive groups
{% for group in groups %}
  {{ group.label }} ({{ group.devices|length }} device{{ "s" if group.devices|length != 1 }})
{% for dev in group.devices %}
    {{ "%-16s"|format(dev.path) }} {{ "%8s"|format(dev.size) }}  {{ "%-9s"|format(dev.status) }} {{ dev.model }} ({{ dev.serial }})
{% endfor %}
{% endfor %}

Recommended: {{ plan.plan_id }} - {{ plan.description }}
{% for array in plan.arrays %}
  {{ array.name }}: {{ array.title }}, {{ array.devices|join(", ") }}{% if array.spares %} + spares {{ array.spares|join(", ") }}{% endif %}, usable {{ array.usable }}
{% endfor %}
  Usable capacity: {{ plan.usable }}
  Tolerated failures: {{ plan.fault_tolerance }}
  Rationale: {{ plan.rationale }}
{% if notice %}
  Notice: {{ notice.message }}
{% if notice.remedy %}
  Remedy: {{ notice.remedy }}
{% endif %}
{% endif %}
{% if alternatives %}

Alternatives (best first)
{% for alt in alternatives %}
  {{ "%-24s"|format(alt.plan_id) }} usable {{ "%8s"|format(alt.usable) }}  tolerates {{ alt.fault_tolerance }}  {{ alt.description }}
{% endfor %}
{% endif %}
"""

STATUS_REPORT_TEMPLATE = """\
{% if not arrays %}
No RAID arrays found.
{% else %}
{% for array in arrays %}
{{ array.classification }}  {{ array.device }}{% if array.alias %} ({{ array.alias }}){% endif %}  {{ array.level or "unknown" }} {{ "active" if array.active else "inactive" }} {{ array.size }}
  members: {{ array.members|join(", ") if array.members else "-" }}
  mounts:  {{ array.mounts|join(", ") if array.mounts else "-" }}
  reason:  {{ array.reason }}
{% endfor %}

{{ system_count }} SYSTEM, {{ data_count }} DATA
{% endif %}
"""

INVENTORY_TEMPLATE = """\
{% if not devices %}
No disks found.
{% else %}
{{ "%-16s %8s  %-9s %-4s %-24s %s"|format("DEVICE", "SIZE", "STATUS", "TYPE", "MODEL", "SERIAL") }}
{% for dev in devices %}
{{ "%-16s %8s  %-9s %-4s %-24s %s"|format(dev.path, dev.size, dev.status, "HDD" if dev.rotational else "SSD", dev.model, dev.serial) }}
{% endfor %}
{% endif %}
"""


def _render(source: str, **context: Any) -> str:
    return Template(source, trim_blocks=True, lstrip_blocks=True).render(**context)


def build_plan_report(plan: RaidPlan, groups: Sequence[DeviceGroup]) -> Dict[str, Any]:
    """
    Structured preview of a recommended plan.

    Args:
        plan: Recommended plan (alternatives attached)
        groups: Groups the plan was built from

    Returns:
        Dictionary with groups, plan, notice and alternatives
    """
    notice = None
    if plan.notice is not None:
        notice = {
            "message": getattr(plan.notice, "message", str(plan.notice)),
            "remedy": getattr(plan.notice, "remedy", None),
        }
    return {
        "groups": [
            {
                "label": group.label,
                "reference_size": group.reference_size,
                "devices": [d.to_dict() for d in group.devices],
            }
            for group in groups
        ],
        "plan": plan.to_dict(),
        "notice": notice,
        "alternatives": [alt.to_dict() for alt in plan.alternatives],
    }


def render_plan_report(plan: RaidPlan, groups: Sequence[DeviceGroup], dry_run: bool = False) -> str:
    return _render(PLAN_REPORT_TEMPLATE, dry_run=dry_run, **build_plan_report(plan, groups))


def build_status_report(snapshot: SystemSnapshot, verdicts: Mapping[str, GuardVerdict]) -> Dict[str, Any]:
    """
    Structured view of existing arrays with their SYSTEM/DATA classification.

    Args:
        snapshot: Session snapshot the verdicts were computed from
        verdicts: Guard verdict per array name

    Returns:
        Dictionary with one entry per array and the SYSTEM/DATA counts
    """
    arrays: List[Dict[str, Any]] = []
    for array in snapshot.arrays:
        verdict: Optional[GuardVerdict] = verdicts.get(array.name)
        arrays.append({
            "name": array.name,
            "device": array.device,
            "alias": array.alias,
            "level": array.level,
            "active": array.active,
            "size_bytes": array.size_bytes,
            "size": human_size(array.size_bytes) if array.size_bytes else "",
            "members": [
                f"{m.device}{'(' + m.flags + ')' if m.flags else ''}" for m in array.members
            ],
            "mounts": sorted(snapshot.topology.mounts_under(array.name)),
            "classification": verdict.classification if verdict else "UNKNOWN",
            "reason": verdict.reason if verdict else "not classified",
        })
    return {
        "arrays": arrays,
        "system_count": sum(1 for a in arrays if a["classification"] == "SYSTEM"),
        "data_count": sum(1 for a in arrays if a["classification"] == "DATA"),
    }


def render_status_report(snapshot: SystemSnapshot, verdicts: Mapping[str, GuardVerdict]) -> str:
    return _render(STATUS_REPORT_TEMPLATE, **build_status_report(snapshot, verdicts))


def render_inventory(devices: Sequence[Device]) -> str:
    return _render(INVENTORY_TEMPLATE, devices=[d.to_dict() for d in devices])
