"""
Measure registry and the selection observer that drives the choropleth.

The registry is the single list of selectable county indicators. Each measure
maps the key used on the map/dropdown to the column it is read from in the
health CSV (only `poverty` is renamed, from `poverty_perc`).
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Iterator, List, Tuple

from loguru import logger


class UnknownMeasureError(KeyError):
    """Raised when a key is not part of the measure registry."""


@dataclass(frozen=True)
class Measure:
    key: str
    column: str


class MeasureRegistry:
    """Ordered, read-only collection of selectable measures."""

    def __init__(self, measures: Tuple[Measure, ...]):
        self._measures = measures
        self._by_key: Dict[str, Measure] = {m.key: m for m in measures}

    def __iter__(self) -> Iterator[Measure]:
        return iter(self._measures)

    def __len__(self) -> int:
        return len(self._measures)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def keys(self) -> List[str]:
        return [m.key for m in self._measures]

    def columns(self) -> List[str]:
        return [m.column for m in self._measures]

    def column_for(self, key: str) -> str:
        return self.validate(key).column

    def validate(self, key: str) -> Measure:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownMeasureError(f"Unknown measure: {key!r}") from None

    def options(self) -> List[Dict[str, str]]:
        """Dropdown options; value and label are both the key text."""
        return [{"label": m.key, "value": m.key} for m in self._measures]


@lru_cache(maxsize=1)
def measure_registry() -> MeasureRegistry:
    """
    Returns:
        The fixed registry of county health measures, in dropdown order.
    """
    return MeasureRegistry((
        Measure("poverty", "poverty_perc"),
        Measure("median_household_income", "median_household_income"),
        Measure("education_less_than_high_school_percent", "education_less_than_high_school_percent"),
        Measure("air_quality", "air_quality"),
        Measure("park_access", "park_access"),
        Measure("percent_inactive", "percent_inactive"),
        Measure("percent_smoking", "percent_smoking"),
        Measure("elderly_percentage", "elderly_percentage"),
        Measure("number_of_hospitals", "number_of_hospitals"),
        Measure("number_of_primary_care_physicians", "number_of_primary_care_physicians"),
        Measure("percent_no_heath_insurance", "percent_no_heath_insurance"),
        Measure("percent_high_blood_pressure", "percent_high_blood_pressure"),
        Measure("percent_coronary_heart_disease", "percent_coronary_heart_disease"),
        Measure("percent_stroke", "percent_stroke"),
        Measure("percent_high_cholesterol", "percent_high_cholesterol"),
    ))


DEFAULT_MEASURE = "poverty"


class MeasureSelection:
    """
    Holds the currently selected measure and notifies subscribers when the
    selection control emits a change. Subscribers run synchronously, in the
    order they subscribed.
    """

    def __init__(self, initial: str = DEFAULT_MEASURE):
        self.current = initial
        self._subscribers: List[Callable[[str], None]] = []

    def subscribe(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def measure_changed(self, key: str) -> None:
        logger.info(f"Measure changed: {self.current} -> {key}")
        self.current = key
        for callback in list(self._subscribers):
            callback(key)
