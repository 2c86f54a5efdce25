from typing import Optional

from models import Level

DEGREE_LEVELS = {
    "BE": Level.UG,
    "BTech": Level.UG,
    "BSc": Level.UG,
    "BCA": Level.UG,
    "BA": Level.UG,
    "BCom": Level.UG,
    "BBA": Level.UG,
    "BMS": Level.UG,
    "ME": Level.PG,
    "MTech": Level.PG,
    "MSc": Level.PG,
    "MCA": Level.PG,
    "MA": Level.PG,
    "MCom": Level.PG,
    "MBA": Level.PG,
    "MSW": Level.PG,
    "PhD": Level.PHD,
}

OTHER_DEPARTMENT = "Other"


def infer_level(degree: Optional[str]) -> Optional[Level]:
    """Map a degree string to its study level.

    Lookup is exact on the trimmed value. Unknown degrees return ``None`` so
    callers can flag them instead of guessing.
    """
    return DEGREE_LEVELS.get(str(degree or "").strip())


def normalize_level(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Level):
        return value.value
    raw = str(value).strip()
    for level in Level:
        if raw.lower() == level.value.lower():
            return level.value
    return raw or None


def resolve_department(dept: Optional[str], custom_dept: Optional[str]) -> Optional[str]:
    dept_value = str(dept or "").strip()
    if dept_value == OTHER_DEPARTMENT:
        custom_value = str(custom_dept or "").strip()
        return custom_value or OTHER_DEPARTMENT
    return dept_value or None
