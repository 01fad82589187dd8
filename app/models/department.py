from __future__ import annotations

import enum


class Department(str, enum.Enum):
    """Organizational units that each hold their own stock."""
    PHARMACY = "PHARMACY"
    OPD = "OPD"
