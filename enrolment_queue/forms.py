"""Per-station form schemas.

Each station that captures a form has a normalizer: a pure function that
takes the raw field map sent by the dashboard and returns a dict with a fixed
shape. Known fields are coerced to their kind; unknown fields are dropped.

Field kinds:
- text:   string or None (blank strings become None)
- flag:   bool (unparseable values become False)
- number: int/float or None
- choice: one of the allowed values, or None
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

Normalizer = Callable[[Mapping[str, Any]], dict[str, Any]]

_TRUE = {"true", "yes", "y", "1", "on"}


def as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE
    return False


def as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    return None


def choice(*allowed: str) -> Callable[[Any], str | None]:
    lookup = {a.lower(): a for a in allowed}

    def coerce(value: Any) -> str | None:
        if not isinstance(value, str):
            return None
        return lookup.get(value.strip().lower())

    return coerce


def make_normalizer(fields: Mapping[str, Callable[[Any], Any]]) -> Normalizer:
    """Build a normalizer for a fixed field set.

    Only fields present in the input appear in the output, so a partial save
    does not clear values captured earlier when merged.
    """

    def normalize(raw: Mapping[str, Any]) -> dict[str, Any]:
        return {name: coerce(raw[name]) for name, coerce in fields.items() if name in raw}

    return normalize


CAMPUSES = ("Sydney", "Melbourne", "Brisbane", "Perth", "Online")

normalize_registration = make_normalizer({
    "name": as_text,
    "studentId": as_text,
    "dateOfBirth": as_text,
    "program": as_text,
    "usi": as_text,
    "campus": choice(*CAMPUSES),
    "intakeDate": as_text,
    "phone": as_text,
    "email": as_text,
    "documentsVerified": as_flag,
    "internationalStudent": as_flag,
})

normalize_marketing = make_normalizer({
    "heardFrom": choice("social_media", "website", "agent", "referral", "event", "other"),
    "agentName": as_text,
    "consentToContact": as_flag,
    "followUpRequired": as_flag,
    "comments": as_text,
})

normalize_class_registration = make_normalizer({
    "timetableGroup": as_text,
    "unitsEnrolled": as_number,
    "studyMode": choice("full_time", "part_time"),
    "orientationBooked": as_flag,
    "comments": as_text,
})

normalize_tuition_payment = make_normalizer({
    "amountPaid": as_number,
    "paymentMethod": choice("card", "cash", "bank_transfer", "payment_plan", "sponsor"),
    "receiptNumber": as_text,
    "paymentPlan": as_flag,
    "comments": as_text,
})

normalize_student_id = make_normalizer({
    "photoTaken": as_flag,
    "cardNumber": as_text,
    "cardIssued": as_flag,
    "libraryAccountCreated": as_flag,
    "comments": as_text,
})

FORM_NORMALIZERS: dict[str, Normalizer] = {
    "registration": normalize_registration,
    "marketing": normalize_marketing,
    "class_registration": normalize_class_registration,
    "tuition_payment": normalize_tuition_payment,
    "student_id": normalize_student_id,
}

# registration form field -> StudentRecord attribute
IDENTITY_FIELDS: dict[str, str] = {
    "name": "name",
    "studentId": "student_id",
    "dateOfBirth": "date_of_birth",
    "program": "program",
    "usi": "usi",
    "campus": "campus",
    "intakeDate": "intake_date",
}
