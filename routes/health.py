import logging

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import utcnow

health_bp = Blueprint('health', __name__)
error_logger = logging.getLogger("error")


@health_bp.route('/api/health')
def health():
    """Canlılık ve veritabanı bağlantısı; veritabanına ulaşılamazsa 503."""
    try:
        db.session.execute(text("SELECT 1"))
        database = 'ok'
    except SQLAlchemyError:
        db.session.rollback()
        error_logger.error("HEALTHCHECK_DB_FAILURE", exc_info=True, extra={'event': 'SYSTEM_FAILURE'})
        database = 'unavailable'

    healthy = database == 'ok'
    return jsonify({
        'success': healthy,
        'status': 'healthy' if healthy else 'degraded',
        'database': database,
        'timestamp': utcnow().isoformat(),
    }), 200 if healthy else 503
