"""
Analytics helpers over chart series: efficiency rating, recommendations,
cost estimates and value formatting.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

from emonhub.models import ChartData, TimePeriod

DEFAULT_RATE_PER_KWH = 0.12
MAX_RECOMMENDATIONS = 4


@dataclass(frozen=True)
class EfficiencyRating:
    rating: str
    color: str
    description: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# (minimum score, rating, color, description), best first
_RATING_BANDS = [
    (85, "A+", "#4CAF50", "Excellent energy efficiency with stable consumption patterns"),
    (70, "A", "#8BC34A", "Good energy efficiency with minor fluctuations"),
    (55, "B", "#FFC107", "Fair energy efficiency, room for improvement"),
    (40, "C", "#FF9800", "Below average efficiency, consider optimizing usage"),
]
_LOWEST_BAND = ("D", "#F44336", "Poor energy efficiency, immediate attention needed")


def variability(chart: ChartData) -> float:
    """Peak-to-low spread relative to the average; 0 when there is no consumption."""
    if chart.average <= 0:
        return 0.0
    return (chart.peak - chart.low) / chart.average


def efficiency_score(chart: ChartData) -> float:
    penalty = (chart.average - 150) * 0.2 if chart.average > 150 else 0.0
    return max(0.0, 100 - variability(chart) * 50 - penalty)


def calculate_efficiency_rating(chart: ChartData) -> EfficiencyRating:
    score = efficiency_score(chart)
    for minimum, rating, color, description in _RATING_BANDS:
        if score >= minimum:
            return EfficiencyRating(rating, color, description, score)
    return EfficiencyRating(*_LOWEST_BAND, score)


def calculate_energy_cost(energy_kwh: float, rate_per_kwh: float = DEFAULT_RATE_PER_KWH) -> float:
    return energy_kwh * rate_per_kwh


def _average_threshold(period: TimePeriod) -> float:
    if period == TimePeriod.REALTIME:
        return 0.1
    if period == TimePeriod.DAILY:
        return 2.0
    return 10.0


def generate_recommendations(chart: ChartData, period: TimePeriod) -> List[str]:
    """Up to four usage recommendations derived from a chart series."""
    period = TimePeriod(period)
    recommendations: List[str] = []

    if chart.average > _average_threshold(period):
        recommendations.append("Consider using energy-efficient appliances to reduce overall energy consumption")
        recommendations.append("Schedule high-energy devices during off-peak hours to save on electricity costs")

    if variability(chart) > 1.5:
        recommendations.append("Your energy consumption shows high variability - try to spread usage more evenly")
        recommendations.append("Consider using smart timers for appliances to optimize energy distribution")

    if chart.peak > chart.average * 2:
        recommendations.append("Peak energy usage is significantly high - identify and manage energy-intensive appliances")
        recommendations.append("Use energy monitoring to track which devices cause consumption spikes")

    if period == TimePeriod.DAILY and len(chart.data) >= 22:
        # 18:00 - 21:00
        if any(v > chart.average * 1.3 for v in chart.data[18:22]):
            recommendations.append("Evening consumption is high - consider reducing lighting and entertainment device usage")
    elif period == TimePeriod.WEEKLY and len(chart.data) == 7:
        weekend_avg = (chart.data[5] + chart.data[6]) / 2
        weekday_avg = sum(chart.data[:5]) / 5
        if weekend_avg > weekday_avg * 1.2:
            recommendations.append("Weekend consumption is notably higher - be mindful of increased home activity energy usage")

    if calculate_efficiency_rating(chart).rating in ("C", "D"):
        recommendations.append("Consider an energy audit to identify inefficient appliances and systems")
        recommendations.append("Implement smart home automation to optimize energy usage patterns")

    if not recommendations:
        recommendations = [
            "Your energy usage is well-managed - maintain current consumption patterns",
            "Consider renewable energy options to further reduce your carbon footprint",
            "Regular monitoring helps maintain optimal energy efficiency",
        ]
    return recommendations[:MAX_RECOMMENDATIONS]


def get_bar_color(value: float, average: float) -> str:
    """Chart bar colour by how far a value sits from the average."""
    if average <= 0:
        return "#5B934E"
    ratio = value / average
    if ratio >= 1.3:
        return "#F44336"
    if ratio >= 1.1:
        return "#FF9800"
    if ratio >= 0.9:
        return "#5B934E"
    if ratio >= 0.7:
        return "#4CAF50"
    return "#2E7D32"


def format_consumption_value(value: float, period: TimePeriod) -> str:
    period = TimePeriod(period)
    if period == TimePeriod.REALTIME:
        return f"{value:.3f}kWh"
    if period == TimePeriod.DAILY:
        return f"{value:.2f}kWh"
    return f"{value:.1f}kWh"


def generate_analysis_text(chart: ChartData, period: TimePeriod, live_total: Optional[float] = None,
                           rate_per_kwh: float = DEFAULT_RATE_PER_KWH) -> str:
    """One-paragraph description of a chart series."""
    period = TimePeriod(period)
    cost = calculate_energy_cost(chart.total, rate_per_kwh)
    peak_label = chart.labels[chart.data.index(chart.peak)] if chart.data and chart.peak in chart.data else "n/a"

    if period == TimePeriod.REALTIME:
        current = live_total if live_total is not None else chart.total
        if current > chart.average * 1.1:
            status = "above"
        elif current < chart.average * 0.9:
            status = "below"
        else:
            status = "at"
        return (
            f"Current energy consumption is {current:.3f}kWh, which is {status} your recent average of "
            f"{chart.average:.3f}kWh. Peak energy usage was {chart.peak:.3f}kWh and lowest was {chart.low:.3f}kWh. "
            f"Total energy consumed in this monitoring period is {chart.total:.3f}kWh."
        )
    if period == TimePeriod.DAILY:
        return (
            f"Your average hourly energy consumption is {chart.average:.2f}kWh. Peak usage occurred at "
            f"{peak_label} with {chart.peak:.2f}kWh. Total daily energy consumption is {chart.total:.2f}kWh, "
            f"costing approximately ${cost:.2f}."
        )
    if period == TimePeriod.WEEKLY:
        return (
            f"Weekly average daily energy consumption is {chart.average:.1f}kWh. Highest consumption was on "
            f"{peak_label} with {chart.peak:.1f}kWh. Total weekly energy consumption is {chart.total:.1f}kWh, "
            f"costing approximately ${cost:.2f}."
        )
    return (
        f"Monthly average weekly energy consumption is {chart.average:.1f}kWh. Peak week was {peak_label} "
        f"with {chart.peak:.1f}kWh. Total monthly consumption is {chart.total:.1f}kWh, "
        f"costing approximately ${cost:.2f}."
    )
