"""
Filters Module - Structured attribute and experience predicates.
================================================================

Each tenant declares its attribute filters in config/settings.yaml. The
registry turns a query's filter values into record predicates, all of which
must pass (filters are conjunctive).

Filter kinds:
- equality: field == value
- membership: field is one of the selected values (strings or numbers)
- boolean: field is truthy/falsy as requested
- credits_range: course credit range overlaps the requested range
- no_prerequisites: requisites are empty
- any_true: any of the selected boolean attribute columns is set

Keys without a definition fall back to generic matching: a list value is a
membership test, anything else an equality test. A record without the field
never matches.
"""

import math
import re
from typing import Any, Callable, Iterable, Optional

from campusfy.shared.config import FilterDefinition, TenantConfig
from campusfy.shared.logging import get_logger
from campusfy.shared.schemas import CourseRecord, ExperienceFilter
from campusfy.shared.utils import to_number

logger = get_logger(__name__)

Predicate = Callable[[CourseRecord], bool]
PredicateBuilder = Callable[[FilterDefinition, Any, TenantConfig], Optional[Predicate]]


# ─────────────────────────────────────────────────────────────────────────────
# Experience Predicates
# ─────────────────────────────────────────────────────────────────────────────

EASY_MAX_DIFFICULTY = 3.0
LIGHT_MAX_WORKLOAD = 3.0
FUN_MIN_SCORE = 3.0
HIGH_GPA_MIN = 3.0


def _metric_at_most(field_name: str, limit: float) -> Predicate:
    def _check(record: CourseRecord) -> bool:
        value = to_number(record.attribute(field_name))
        return not math.isnan(value) and value <= limit

    return _check


def _metric_at_least(field_name: str, limit: float) -> Predicate:
    def _check(record: CourseRecord) -> bool:
        value = to_number(record.attribute(field_name))
        return not math.isnan(value) and value >= limit

    return _check


EXPERIENCE_PREDICATES: dict[ExperienceFilter, Predicate] = {
    ExperienceFilter.EASY: _metric_at_most("indexed_difficulty", EASY_MAX_DIFFICULTY),
    ExperienceFilter.LIGHT_WORKLOAD: _metric_at_most("indexed_workload", LIGHT_MAX_WORKLOAD),
    ExperienceFilter.FUN: _metric_at_least("indexed_fun", FUN_MIN_SCORE),
    ExperienceFilter.HIGH_GPA: _metric_at_least("gpa", HIGH_GPA_MIN),
}


def experience_predicate(experience: ExperienceFilter | str) -> Predicate:
    """
    Predicate for one experience filter.

    Raises:
        ValueError: If the name is not a known experience filter
    """
    return EXPERIENCE_PREDICATES[ExperienceFilter(experience)]


def passes_experience_filters(
    record: CourseRecord, filters: Iterable[ExperienceFilter | str]
) -> bool:
    """Whether a record satisfies every selected experience filter."""
    return all(experience_predicate(name)(record) for name in filters)


# ─────────────────────────────────────────────────────────────────────────────
# Value Helpers
# ─────────────────────────────────────────────────────────────────────────────


def is_inactive(value: Any) -> bool:
    """None, empty strings and empty collections do not filter anything."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "y"):
            return True
        if lowered in ("false", "0", "no", "n", ""):
            return False
    return None


def parse_credits(value: Any) -> Optional[tuple[float, float]]:
    """
    Parse a credits value into (min, max).

    Example:
        >>> parse_credits("1-3"), parse_credits("4"), parse_credits(2)
        ((1.0, 3.0), (4.0, 4.0), (2.0, 2.0))
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
        return None if math.isnan(number) else (number, number)

    numbers = [float(n) for n in re.findall(r"\d+(?:\.\d+)?", str(value))]
    if not numbers:
        return None
    return (min(numbers), max(numbers))


def _requested_range(value: Any) -> Optional[tuple[float, float]]:
    """Accepts {"credits_min": a, "credits_max": b}, [a, b] or a single number."""
    if isinstance(value, dict):
        low = to_number(value.get("credits_min", value.get("min")))
        high = to_number(value.get("credits_max", value.get("max")))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = to_number(value[0]), to_number(value[1])
    else:
        low = high = to_number(value)

    low = -math.inf if math.isnan(low) else low
    high = math.inf if math.isnan(high) else high
    if low == -math.inf and high == math.inf:
        return None
    return (low, high)


# ─────────────────────────────────────────────────────────────────────────────
# Predicate Builders
# ─────────────────────────────────────────────────────────────────────────────


def _equality(definition: FilterDefinition, value: Any, tenant: TenantConfig) -> Predicate:
    wanted = value[0] if isinstance(value, (list, tuple)) and len(value) == 1 else value

    def _check(record: CourseRecord) -> bool:
        return record.has_attribute(definition.field) and (
            record.attribute(definition.field) == wanted
        )

    return _check


def _membership(definition: FilterDefinition, value: Any, tenant: TenantConfig) -> Predicate:
    if definition.value_type == "number":
        allowed = {n for n in (to_number(v) for v in _as_list(value)) if not math.isnan(n)}

        def _check(record: CourseRecord) -> bool:
            return to_number(record.attribute(definition.field)) in allowed

    else:
        allowed_text = {str(v) for v in _as_list(value)}

        def _check(record: CourseRecord) -> bool:
            field_value = record.attribute(definition.field)
            return field_value is not None and str(field_value) in allowed_text

    return _check


def _boolean(definition: FilterDefinition, value: Any, tenant: TenantConfig) -> Predicate:
    wanted = _as_bool(value)

    def _check(record: CourseRecord) -> bool:
        actual = _as_bool(record.attribute(definition.field))
        return actual is not None and actual == wanted

    return _check


def _credits_range(
    definition: FilterDefinition, value: Any, tenant: TenantConfig
) -> Optional[Predicate]:
    requested = _requested_range(value)
    if requested is None:
        return None
    low, high = requested

    def _course_range(record: CourseRecord) -> Optional[tuple[float, float]]:
        if tenant.credits_mode == "min_max":
            course_min = to_number(record.min_credits)
            course_max = to_number(record.max_credits)
            if math.isnan(course_min) and math.isnan(course_max):
                return None
            if math.isnan(course_min):
                course_min = course_max
            if math.isnan(course_max):
                course_max = course_min
            return (course_min, course_max)
        return parse_credits(record.attribute(definition.field))

    def _check(record: CourseRecord) -> bool:
        course = _course_range(record)
        if course is None:
            return False
        course_min, course_max = course
        return course_max >= low and course_min <= high

    return _check


def _no_prerequisites(
    definition: FilterDefinition, value: Any, tenant: TenantConfig
) -> Optional[Predicate]:
    if not _as_bool(value):
        return None

    def _check(record: CourseRecord) -> bool:
        requisites = record.attribute(definition.field)
        return requisites is None or not str(requisites).strip()

    return _check


def _any_true(definition: FilterDefinition, value: Any, tenant: TenantConfig) -> Predicate:
    columns = [str(column) for column in _as_list(value)]

    def _check(record: CourseRecord) -> bool:
        return any(_as_bool(record.attribute(column)) is True for column in columns)

    return _check


BUILDERS: dict[str, PredicateBuilder] = {
    "equality": _equality,
    "membership": _membership,
    "boolean": _boolean,
    "credits_range": _credits_range,
    "no_prerequisites": _no_prerequisites,
    "any_true": _any_true,
}


def _generic(key: str, value: Any) -> Predicate:
    if isinstance(value, (list, tuple, set)):
        allowed = list(value)

        def _check(record: CourseRecord) -> bool:
            return record.has_attribute(key) and record.attribute(key) in allowed

    else:

        def _check(record: CourseRecord) -> bool:
            return record.has_attribute(key) and record.attribute(key) == value

    return _check


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────


class FilterRegistry:
    """
    Tenant-specific filter definitions.

    Example:
        >>> registry = FilterRegistry.for_tenant(settings.get_tenant("wisco"))
        >>> predicates = registry.build({"breadth": ["Humanities"], "credits": [3, 4]})
        >>> matches = [r for r in records if registry.matches(r, predicates)]
    """

    def __init__(self, tenant: TenantConfig):
        self.tenant = tenant
        self.definitions: dict[str, FilterDefinition] = {d.key: d for d in tenant.filters}

    @classmethod
    def for_tenant(cls, tenant: TenantConfig) -> "FilterRegistry":
        return cls(tenant)

    @property
    def keys(self) -> list[str]:
        return list(self.definitions)

    def predicate(self, key: str, value: Any) -> Optional[Predicate]:
        """Predicate for one filter, None when the value does not filter anything."""
        if is_inactive(value):
            return None

        definition = self.definitions.get(key)
        if definition is None:
            logger.debug(f"No filter definition for '{key}' in {self.tenant.id}, matching generically")
            return _generic(key, value)

        return BUILDERS[definition.kind](definition, value, self.tenant)

    def build(self, filters: dict[str, Any]) -> list[Predicate]:
        """Predicates for every active filter in `filters`."""
        predicates = []
        for key, value in filters.items():
            predicate = self.predicate(key, value)
            if predicate is not None:
                predicates.append(predicate)
        return predicates

    @staticmethod
    def matches(record: CourseRecord, predicates: Iterable[Predicate]) -> bool:
        return all(predicate(record) for predicate in predicates)

    def apply(self, records: Iterable[CourseRecord], filters: dict[str, Any]) -> list[CourseRecord]:
        """Records passing every active filter, in input order."""
        predicates = self.build(filters)
        if not predicates:
            return list(records)
        return [record for record in records if self.matches(record, predicates)]
