"""
Meter total aggregation.

Sums the cumulative energy counters of a user's metering plugs into one
total. Only plugs that are registered to the user and carry at least one
appliance count towards the total.
"""

import math
import logging
from typing import Iterable, Mapping, Optional, Set, Union

from emonhub.models import MeterReading

log = logging.getLogger(__name__)

Readings = Union[Mapping[str, MeterReading], Iterable[MeterReading]]


def _iter_readings(readings: Readings) -> Iterable[MeterReading]:
    if isinstance(readings, Mapping):
        return readings.values()
    return readings


def _energy_kwh(reading: MeterReading) -> float:
    value = reading.energy_total_kwh
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    if value < 0:
        log.debug(f"Ignoring negative energy total {value} from {reading.serial_number}")
        return 0.0
    return value


def aggregate_total(readings: Readings, owned_serials: Optional[Set[str]] = None) -> float:
    """
    Sum cumulative energy across readings.

    Args:
        readings: readings (or a serial -> reading map)
        owned_serials: serial numbers that count for the user; None counts every reading

    Returns:
        Total energy in kWh. Non-finite values count as 0.
    """
    total = 0.0
    for reading in _iter_readings(readings):
        if owned_serials is not None and reading.serial_number not in owned_serials:
            continue
        total += _energy_kwh(reading)
    return total


def filtered_total(uid: str, readings: Readings, directory) -> float:
    """
    Total energy for a user's plugs that have registered appliances.

    Falls back to the unfiltered total when the ownership lookup fails, so a
    transient directory error does not zero the dashboard.
    """
    readings = list(_iter_readings(readings))
    try:
        owned = directory.metered_serials(uid)
    except Exception as e:
        log.warning(f"Device ownership lookup failed for {uid}, using unfiltered total: {e}")
        return aggregate_total(readings)
    return aggregate_total(readings, owned)
