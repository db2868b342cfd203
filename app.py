"""
Uygulamanın giriş noktası (Application Factory).

`create_app`:
1. Yapılandırmayı ortam değişkenlerinden (``.env``) yükler.
2. İmzalı JSON log kanallarını kurar.
3. Veritabanı, oturum, CSRF, istek sınırlama ve e-posta eklentilerini bağlar.
4. JSON hata işleyicilerini ve API blueprint'lerini kaydeder.
5. Etkinse arka plan zamanlayıcısını başlatır.
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from errors import register_error_handlers
from extensions import csrf, db, limiter, login_manager, mail
from logger_config import setup_logging
from models import User
from routes.admin import admin_bp
from routes.auth import auth_bp
from routes.customers import customers_bp
from routes.exchange_rates import exchange_rates_bp
from routes.health import health_bp
from routes.hr import hr_bp
from routes.kvkk import application_status, kvkk_bp, submit_application
from routes.partners import partners_bp
from routes.photo_requests import photo_requests_bp, public_photo_upload
from routes.projects import projects_bp
from routes.quotes import quotes_bp
from routes.reports import reports_bp
from routes.weather import weather_bp
from services.exchange_rates import ExchangeRateService
from services.kvkk_scheduler import init_scheduler

BLUEPRINTS = (
    auth_bp, admin_bp, customers_bp, projects_bp, quotes_bp, hr_bp, photo_requests_bp,
    partners_bp, kvkk_bp, exchange_rates_bp, weather_bp, reports_bp, health_bp,
)


def _env_flag(name, default='false'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


def _email_list(value):
    return [address.strip() for address in (value or '').split(',') if address.strip()]


def load_config(app):
    """``app.config`` değerlerini ortam değişkenlerinden doldurur."""
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY')
    uri = os.getenv('DATABASE_URL')
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = uri
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    is_production = os.getenv('FLASK_ENV') == 'production'
    app.config['SESSION_COOKIE_SECURE'] = is_production
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    app.config['REMEMBER_COOKIE_HTTPONLY'] = True
    app.config['DEBUG'] = _env_flag('FLASK_DEBUG')
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024

    app.config['LOG_DIR'] = os.getenv('LOG_DIR', 'logs')
    app.config['LOG_SECRET_KEY'] = os.getenv('LOG_SECRET_KEY')

    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER', 'localhost')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', '25'))
    app.config['MAIL_USE_TLS'] = _env_flag('MAIL_USE_TLS')
    app.config['MAIL_USE_SSL'] = _env_flag('MAIL_USE_SSL')
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD')
    app.config['MAIL_SUPPRESS_SEND'] = _env_flag('MAIL_SUPPRESS_SEND')
    app.config['FROM_EMAIL'] = os.getenv('FROM_EMAIL', 'noreply@ges-crm.local')
    app.config['MAIL_DEFAULT_SENDER'] = app.config['FROM_EMAIL']
    app.config['KVKK_ADMIN_EMAILS'] = _email_list(os.getenv('KVKK_ADMIN_EMAILS'))
    app.config['APP_URL'] = os.getenv('APP_URL', 'http://localhost:5000')

    app.config['TCMB_API_URL'] = os.getenv('TCMB_API_URL')
    app.config['EXTERNAL_RATES_URL'] = os.getenv('EXTERNAL_RATES_URL')
    app.config['EXCHANGE_RATE_CACHE_TTL'] = int(os.getenv('EXCHANGE_RATE_CACHE_TTL', '3600'))
    app.config['OPENWEATHERMAP_API_KEY'] = os.getenv('OPENWEATHERMAP_API_KEY')

    app.config['SCHEDULER_ENABLED'] = _env_flag('SCHEDULER_ENABLED')
    app.config['CREATE_TABLES'] = _env_flag('CREATE_TABLES')
    app.config['RATELIMIT_STORAGE_URI'] = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')
    app.config['RATELIMIT_ENABLED'] = _env_flag('RATELIMIT_ENABLED', 'true')
    app.config['RATELIMIT_DEFAULT'] = os.getenv('RATELIMIT_DEFAULT', '1000 per day;200 per hour')
    app.config['WTF_CSRF_ENABLED'] = _env_flag('WTF_CSRF_ENABLED', 'true')
    app.config['WTF_CSRF_HEADERS'] = ['X-CSRFToken', 'X-CSRF-Token']


def create_app(test_config=None):
    """
    GES CRM API için Application Factory.

    Yapılandırma:
    - Eklentiler: ORM, oturum yönetimi, CSRF, istek sınırlayıcı, e-posta.
    - Güvenlik katmanı: CSRF koruması (herkese açık KVKK formu ve fotoğraf
      yükleme hariç), üretimde Secure / HttpOnly çerezler, anonim API
      çağrılarına JSON 401.
    - Blueprint'ler ve genel JSON hata işleyicileri (denetim izi).

    Args:
        test_config (dict): Ortam değişkenlerinden sonra uygulanan değerler.

    Returns:
        Flask: Yapılandırılmış uygulama.
    """
    load_dotenv()
    app = Flask(__name__)
    load_config(app)
    if test_config:
        app.config.update(test_config)

    setup_logging(app.config['LOG_DIR'], app.config['LOG_SECRET_KEY'])

    db.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    mail.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        """Flask-Login oturum kullanıcısı; kilitli hesapların oturumu sonlanır."""
        user = db.session.get(User, int(user_id))
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        logging.getLogger("security").warning("UNAUTHENTICATED_ACCESS", extra={
            'event': 'AUTH_REQUIRED',
            'url': request.path,
            'src_ip': request.remote_addr
        })
        return jsonify({'success': False, 'error': 'Unauthorized'}), 401

    register_error_handlers(app)
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    for view in (submit_application, application_status, public_photo_upload):
        csrf.exempt(view)

    app.extensions['exchange_rates'] = ExchangeRateService.from_config(app.config)
    app.extensions.setdefault('weather_session', None)

    @app.after_request
    def log_access(response):
        logging.getLogger("access").info("HTTP_REQUEST", extra={
            'method': request.method,
            'path': request.path,
            'status': response.status_code,
            'src_ip': request.remote_addr
        })
        return response

    if app.config.get('CREATE_TABLES'):
        with app.app_context():
            db.create_all()

    if app.config.get('SCHEDULER_ENABLED'):
        init_scheduler(app)

    logging.getLogger("application").info("APP_STARTUP", extra={
        'event': 'SYSTEM_BOOT',
        'env': os.getenv('FLASK_ENV', 'development'),
        'debug_mode': app.config['DEBUG'],
        'scheduler': app.config.get('SCHEDULER_ENABLED')
    })
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5000)
