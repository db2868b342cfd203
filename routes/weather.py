"""Bir konum (veya projenin konumu) için güneş odaklı hava tahmini."""

import logging

from flask import Blueprint, current_app, jsonify
from flask_login import current_user

from errors import NotFoundError
from extensions import db, limiter
from models import Project
from permissions import permission_required
from schemas import WeatherArgs, parse_args
from services.weather import DEFAULT_SYSTEM_SIZE_KW, WeatherClient
from tenancy import ensure_access

weather_bp = Blueprint('weather', __name__, url_prefix='/api/weather')
app_logger = logging.getLogger("application")


@weather_bp.route('')
@permission_required('projects:read')
@limiter.limit("30 per minute")
def get_weather():
    """
        Anlık durum, tahminler ve PV üretim kestirimleri.

        ``lat`` / ``lng`` zorunludur. ``project_id`` verilirse kestirim
        varsayılan 10 kW yerine projenin ``capacity_kw`` değerini kullanır.
    """
    args = parse_args(WeatherArgs)

    system_size = DEFAULT_SYSTEM_SIZE_KW
    if args.project_id is not None:
        project = db.session.get(Project, args.project_id)
        if not project:
            raise NotFoundError('Proje bulunamadı')
        ensure_access(project, current_user, 'projects')
        if project.capacity_kw:
            system_size = float(project.capacity_kw)

    client = WeatherClient(
        current_app.config.get('OPENWEATHERMAP_API_KEY'),
        session=current_app.extensions.get('weather_session'),
    )
    report = client.report(args.lat, args.lng, system_size)
    app_logger.info("WEATHER_REPORT", extra={
        'event': 'WEATHER_LOOKUP',
        'user': current_user.email,
        'project_id': args.project_id,
        'system_size_kw': system_size
    })
    return jsonify({'success': True, 'data': report})
