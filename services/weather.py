"""
Hava durumu ve güneş üretim kestirimleri (OpenWeatherMap).

Anlık durum ve 5 günlük / 3 saatlik tahmin, ışınım kestirimine ve verilen
büyüklükteki bir PV sistemin beklenen üretimine çevrilir.
"""

import logging
import math
from datetime import datetime, timedelta, timezone

import requests

from errors import APIError

app_logger = logging.getLogger("application")

OWM_BASE_URL = 'https://api.openweathermap.org/data/2.5'

MAX_IRRADIANCE = 1000  # tepe güneşte W/m2
PANEL_EFFICIENCY = 0.18
PERFORMANCE_RATIO = 0.85
DEFAULT_SYSTEM_SIZE_KW = 10


def _round(value):
    return int(math.floor(value + 0.5))


def solar_irradiance(cloud_cover, hour):
    """Yerel saat ve bulut oranı için ışınım kestirimi (W/m2)."""
    time_of_day = max(0.0, math.sin((hour - 6) * math.pi / 12))
    cloud_factor = max(0.1, 1 - (cloud_cover / 100) * 0.8)
    return _round(MAX_IRRADIANCE * time_of_day * cloud_factor)


def energy_output(irradiance, system_size=DEFAULT_SYSTEM_SIZE_KW):
    """``system_size`` kW'lık santralin saatlik üretimi (kWh)."""
    return _round(irradiance * system_size * PANEL_EFFICIENCY * PERFORMANCE_RATIO) / 1000


def uv_index(irradiance):
    return max(0, min(11, _round(irradiance / 100)))


def weather_impact(cloud_cover):
    if cloud_cover > 70:
        return 'high'
    if cloud_cover > 40:
        return 'medium'
    return 'low'


def _local(ts, offset_seconds):
    return datetime.fromtimestamp(ts, tz=timezone.utc) + timedelta(seconds=offset_seconds or 0)


def _iso(ts):
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _condition(item):
    weather = (item.get('weather') or [{}])[0]
    return {
        'main': weather.get('main'),
        'description': weather.get('description'),
        'icon': weather.get('icon'),
    }


def hourly_forecast(forecast, system_size=DEFAULT_SYSTEM_SIZE_KW):
    """Işınım ve üretim kestirimli tahmin kayıtları (3 saatlik adımlar)."""
    offset = (forecast.get('city') or {}).get('timezone', 0)
    entries = []
    for item in forecast.get('list', [])[:40]:
        local = _local(item['dt'], offset)
        irradiance = solar_irradiance(item['clouds']['all'], local.hour)
        entries.append({
            'date': local.date().isoformat(),
            'datetime': item.get('dt_txt'),
            'temperature': {
                'min': _round(item['main']['temp_min']),
                'max': _round(item['main']['temp_max']),
                'current': _round(item['main']['temp']),
            },
            'weather': _condition(item),
            'cloud_cover': item['clouds']['all'],
            'wind_speed': _round(item['wind']['speed'] * 3.6),
            'humidity': item['main']['humidity'],
            'estimated_output': energy_output(irradiance, system_size),
            'irradiance': irradiance,
        })
    return entries


def daily_forecast(hourly):
    """Saatlik kayıtları güne göre toplar: min/maks sıcaklık, toplam üretim, ortalama ışınım."""
    days = {}
    for entry in hourly:
        day = days.get(entry['date'])
        if day is None:
            day = days[entry['date']] = {
                'date': entry['date'],
                'temperature': dict(min=entry['temperature']['min'], max=entry['temperature']['max']),
                'cloud_cover': entry['cloud_cover'],
                'weather': entry['weather'],
                'output': 0.0,
                'irradiance': 0,
                'count': 0,
            }
        day['temperature']['min'] = min(day['temperature']['min'], entry['temperature']['min'])
        day['temperature']['max'] = max(day['temperature']['max'], entry['temperature']['max'])
        day['output'] += entry['estimated_output']
        day['irradiance'] += entry['irradiance']
        day['count'] += 1

    return [{
        'date': day['date'],
        'temperature': day['temperature'],
        'cloud_cover': day['cloud_cover'],
        'estimated_output': _round(day['output']),
        'avg_irradiance': _round(day['irradiance'] / day['count']),
        'weather': day['weather'],
    } for day in days.values()]


def build_weather_report(lat, lng, current, forecast, system_size=DEFAULT_SYSTEM_SIZE_KW):
    """
    OpenWeatherMap anlık ve tahmin yanıtlarını API yanıtında birleştirir.

    Saatler konumun yerel saatine göre değerlendirilir (yanıtlardaki
    ``timezone`` farkı).
    """
    local_now = _local(current['dt'], current.get('timezone', 0))
    cloud_cover = current['clouds']['all']
    irradiance = solar_irradiance(cloud_cover, local_now.hour)

    hourly = hourly_forecast(forecast, system_size)
    daily = daily_forecast(hourly)
    first_day = daily[0] if daily else None

    return {
        'location': {
            'name': current.get('name'),
            'coordinates': [lng, lat],
        },
        'system_size_kw': system_size,
        'current': {
            'temperature': _round(current['main']['temp']),
            'feels_like': _round(current['main']['feels_like']),
            'humidity': current['main']['humidity'],
            'pressure': current['main']['pressure'],
            'wind_speed': _round(current['wind']['speed'] * 3.6),
            'wind_direction': current['wind'].get('deg'),
            'cloud_cover': cloud_cover,
            'visibility': _round(current.get('visibility', 0) / 1000),
            'irradiance': irradiance,
            'uv_index': uv_index(irradiance),
            'weather': _condition(current),
            'sunrise': _iso(current['sys']['sunrise']),
            'sunset': _iso(current['sys']['sunset']),
            'last_updated': _iso(current['dt']),
        },
        'forecast': daily[:7],
        'hourly_forecast': hourly[:24],
        'solar_metrics': {
            'current_irradiance': irradiance,
            'peak_sun_hours': _round(first_day['avg_irradiance'] / 100 * 8) if first_day else 0,
            'estimated_daily_output': first_day['estimated_output'] if first_day else 0,
            'weather_impact': weather_impact(cloud_cover),
        },
    }


class WeatherClient:
    """
    İnce OpenWeatherMap istemcisi.

    Args:
        api_key (str): ``OPENWEATHERMAP_API_KEY``.
        session: ``requests.Session`` (veya benzeri).
    """

    def __init__(self, api_key, session=None, base_url=OWM_BASE_URL, timeout=10):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.base_url = base_url
        self.timeout = timeout

    def _get(self, endpoint, lat, lng):
        response = self.session.get(
            f"{self.base_url}/{endpoint}",
            params={'lat': lat, 'lon': lng, 'appid': self.api_key, 'units': 'metric'},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def report(self, lat, lng, system_size=DEFAULT_SYSTEM_SIZE_KW):
        """
        Hava durumu raporunu çeker ve oluşturur.

        Raises:
            APIError: Anahtar yoksa veya OpenWeatherMap hata verirse 500.
        """
        if not self.api_key:
            raise APIError('OpenWeatherMap API key not configured')
        try:
            current = self._get('weather', lat, lng)
            forecast = self._get('forecast', lat, lng)
            return build_weather_report(lat, lng, current, forecast, system_size)
        except (requests.RequestException, KeyError, ValueError) as e:
            app_logger.warning("WEATHER_FETCH_FAILED", extra={
                'event': 'INTEGRATION_FAILURE',
                'service': 'openweathermap',
                'error': str(e)
            })
            raise APIError('Failed to fetch weather data')
