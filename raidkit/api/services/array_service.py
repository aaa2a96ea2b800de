"""
Array status service layer.
"""

from typing import Any, Dict, List

from raidkit.api.models import ArrayInfo
from raidkit.core import inventory
from raidkit.core.guard import classify
from raidkit.core.report import build_status_report


def list_arrays() -> List[Dict[str, Any]]:
    """
    List md arrays with their SYSTEM/DATA classification.

    The classification is computed fresh from one snapshot per request.

    Raises:
        ScanError: If block devices cannot be listed
    """
    snapshot = inventory.capture_snapshot()
    verdicts = {a.name: classify(a, snapshot.arrays, snapshot) for a in snapshot.arrays}
    report = build_status_report(snapshot, verdicts)
    return [ArrayInfo(**item).model_dump(mode="json") for item in report["arrays"]]
