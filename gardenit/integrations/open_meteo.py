"""Open-Meteo forecast integration — weather signals for garden rules.

Fetches a two-day forecast for a location and reduces it to the handful of
numbers the weather conditions read.

Gracefully degrades: returns None on any failure (timeout, HTTP error,
unexpected payload), and weather rules then simply do not trigger.
"""

from __future__ import annotations

import logging

import httpx

from gardenit.data.models import WeatherSnapshot

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 5
_HOURS_AHEAD = 24

_HOURLY_FIELDS = (
    "precipitation_probability",
    "temperature_2m",
    "soil_temperature_10cm",
    "soil_moisture_0_to_1cm",
    "wind_gusts_10m",
)
_DAILY_FIELDS = ("temperature_2m_min", "temperature_2m_max")


def _next_day(values: list | None) -> list[float]:
    """First 24 hourly values, without the gaps Open-Meteo reports as null."""
    return [v for v in (values or [])[:_HOURS_AHEAD] if v is not None]


def _at(values: list | None, index: int) -> float | None:
    if not values or len(values) <= index:
        return None
    return values[index]


def reduce_forecast(data: dict) -> WeatherSnapshot:
    """Turn an Open-Meteo forecast payload into a WeatherSnapshot."""
    hourly = data.get("hourly") or {}
    daily = data.get("daily") or {}

    precip = _next_day(hourly.get("precipitation_probability"))
    gusts = _next_day(hourly.get("wind_gusts_10m"))
    soil_temps = _next_day(hourly.get("soil_temperature_10cm"))
    soil_moisture = _next_day(hourly.get("soil_moisture_0_to_1cm"))

    precip_prob = max(precip) / 100 if precip else 0.0
    min_temp = _at(daily.get("temperature_2m_min"), 0)
    max_tomorrow = _at(daily.get("temperature_2m_max"), 1)
    if max_tomorrow is None:
        max_tomorrow = _at(daily.get("temperature_2m_max"), 0)

    # No frost model upstream: a sub-zero minimum counts as an even chance.
    frost_probability = 0.5 if min_temp is not None and min_temp <= 0 else precip_prob

    return WeatherSnapshot(
        timezone=data.get("timezone") or "UTC",
        precip_prob_next_24h=precip_prob,
        min_temp_next_24h=min_temp,
        max_temp_tomorrow=max_tomorrow,
        frost_probability=frost_probability,
        gusts_next_24h=max(gusts) if gusts else None,
        soil_temp_10cm=sum(soil_temps) / len(soil_temps) if soil_temps else None,
        soil_moisture=sum(soil_moisture) / len(soil_moisture) if soil_moisture else None,
    )


async def fetch_weather_snapshot(
    latitude: float,
    longitude: float,
    base_url: str | None = None,
) -> WeatherSnapshot | None:
    """Fetch the forecast for a location, or None on any failure."""
    if base_url is None:
        from gardenit.config import settings
        base_url = settings.OPEN_METEO_BASE_URL

    try:
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            resp = await client.get(
                base_url,
                params={
                    "latitude": latitude,
                    "longitude": longitude,
                    "hourly": ",".join(_HOURLY_FIELDS),
                    "daily": ",".join(_DAILY_FIELDS),
                    "forecast_days": 2,
                    "timezone": "auto",
                },
            )
            resp.raise_for_status()
            data = resp.json()

        snapshot = reduce_forecast(data)
        logger.debug(
            "Weather for %.3f,%.3f: rain %.0f%%, min %s, gusts %s",
            latitude, longitude, snapshot.precip_prob_next_24h * 100,
            snapshot.min_temp_next_24h, snapshot.gusts_next_24h,
        )
        return snapshot
    except Exception as exc:
        logger.warning("Weather fetch failed for %.3f,%.3f: %s", latitude, longitude, exc)
        return None
