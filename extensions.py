"""
Flask eklenti nesneleri.

Eklentiler burada uygulamasız oluşturulur ve `create_app` (app.py) içinde
bağlanır. Modeller, route'lar ve servisler onları bu modülden içe aktarır.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_mail import Mail
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

#: SQLAlchemy veritabanı nesnesi
db = SQLAlchemy()

#: Oturum tabanlı kimlik doğrulama
login_manager = LoginManager()

#: Durum değiştiren istekler için CSRF koruması
csrf = CSRFProtect()

#: İstek sınırlama (girişte ve açık formlarda kaba kuvvet koruması)
limiter = Limiter(key_func=get_remote_address)

#: Giden e-posta (KVKK bildirimleri, teklifler, fotoğraf talepleri)
mail = Mail()

#: Arka plan işleri (KVKK izleme, teklif süresi)
scheduler = BackgroundScheduler(timezone="UTC")
