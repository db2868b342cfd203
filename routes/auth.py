"""
Güvenlik denetim kaydı tutan kimlik doğrulama uç noktaları.

Oturum açma / kapatma, oturumdaki kullanıcının profili (yetkiler ve menü),
CSRF jetonu ve CUSTOMER / FARMER hesaplarının herkese açık kaydı.

**Güvenlik logu**
Her kimlik doğrulama olayı imzalı JSON olarak ``security`` kanalına yazılır.

Örnek (JSON)::
{
    "timestamp": "2026-02-11T18:20:01.123Z",
    "level": "WARNING",
    "event": "AUTH_FAILURE",
    "user_attempted": "ali@example.com",
    "src_ip": "192.168.1.15",
    "details": "Failed login: invalid credentials",
    "signature": "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
}
"""
import logging
import re
import secrets
import string

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthenticationError, ConflictError
from extensions import db, limiter
from models import User, utcnow
from permissions import PermissionManager
from schemas import LoginSchema, RegisterSchema, parse_body

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')
security_logger = logging.getLogger("security")
error_logger = logging.getLogger("error")


def generate_strong_password():
    """
        Kriptografik olarak güvenli geçici parola üreteci.

        Yönetici hesap açarken kullanılır; zayıf bir varsayılan parola
        hiçbir zaman verilmez.

        **Uygulama:**
        `secrets` modülünden (`random` değil) seçer ve aday parola politikayı
        (büyük harfler, özel karakterler) sağlayana kadar döngüde kalır.

        Returns:
            str: 14 karakterlik rastgele parola.
    """
    special = "!@#$%^&*(),.?\":{}|<>"
    all_chars = string.ascii_letters + string.digits + special

    while True:
        password = ''.join(secrets.choice(all_chars) for _ in range(14))
        if (len(re.findall(r'[A-Z]', password)) >= 2 and
                len(re.findall(r'[!@#$%^&*(),.?":{}|<>]', password)) >= 2):
            return password


def session_payload(user):
    """``user`` için profil, yetki listesi ve menü."""
    manager = PermissionManager.for_user(user)
    return {
        'user': user.to_dict(),
        'permissions': manager.get_user_permissions(),
        'menu': manager.get_authorized_menu_items(),
    }


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("5 per minute")
def login():
    """
        Katmanlı korumalı oturum açma.

        **Katmanlar**
        1. Kaba kuvvete karşı IP başına istek sınırı (Flask-Limiter).
        2. Tuzlu özet doğrulaması (`check_password_hash`).
        3. Hesap durumu: yumuşak silinmiş hesaplar (`deleted_at`) reddedilir
           (yönetimsel kilit).
        4. Oturum çerezi (HttpOnly, üretimde Secure).

        Returns:
            Response: oturum bilgisiyle 200, hatalı bilgilerde 401,
            kilitli hesapta 403.
    """
    data = parse_body(LoginSchema)
    src_ip = request.remote_addr
    user = User.query.filter_by(email=data.email.lower()).first()

    if not user or not check_password_hash(user.password_hash, data.password):
        security_logger.warning("USER_LOGIN_FAILURE", extra={
            'event': 'AUTH_FAILURE',
            'user_attempted': data.email,
            'src_ip': src_ip,
            'details': 'Failed login: invalid credentials'
        })
        raise AuthenticationError('Invalid email or password')

    if not user.is_active:
        security_logger.warning("ACCOUNT_LOCKED_ATTEMPT", extra={
            'event': 'AUTH_LOCKOUT',
            'user': user.email,
            'src_ip': src_ip,
            'details': 'Login attempt on an administratively locked account'
        })
        return jsonify({'success': False, 'error': 'Account is disabled'}), 403

    login_user(user)
    user.last_login_at = utcnow()
    db.session.commit()
    security_logger.info("USER_LOGIN_SUCCESS", extra={
        'event': 'AUTH_SUCCESS',
        'user': user.email,
        'role': user.role,
        'src_ip': src_ip
    })
    return jsonify(dict(session_payload(user), success=True))


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """Oturumu sonlandırır; eski oturum çerezi geçersiz olur."""
    email = current_user.email
    logout_user()
    security_logger.info("USER_LOGOUT", extra={
        'event': 'AUTH_LOGOUT',
        'user': email,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify(dict(session_payload(current_user), success=True))


@auth_bp.route('/csrf-token')
def csrf_token():
    """Durum değiştiren isteklerin ``X-CSRFToken`` başlığı için jeton."""
    return jsonify({'csrf_token': generate_csrf()})


@auth_bp.route('/register', methods=['POST'])
@limiter.limit("10 per hour")
def register():
    """
        CUSTOMER ve FARMER hesaplarının herkese açık kaydı.

        Parola politikaya uymalıdır (en az 12 karakter, 2 büyük harf,
        2 özel karakter). Diğer rolleri yalnızca yönetici açar
        (`routes.admin.create_user`).

        Returns:
            Response: yeni kullanıcıyla 201, e-posta kullanılıyorsa 409.
    """
    data = parse_body(RegisterSchema)
    email = data.email.lower()

    if User.query.filter_by(email=email).first():
        raise ConflictError('An account with this email already exists')

    user = User(
        email=email,
        name=data.name,
        phone=data.phone,
        role=data.role,
        password_hash=generate_password_hash(data.password),
    )
    try:
        db.session.add(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("REGISTER_ERROR", exc_info=True, extra={'user_attempted': email})
        raise

    security_logger.info("USER_SELF_REGISTERED", extra={
        'event': 'USER_PROVISIONING',
        'new_user': email,
        'role': user.role,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'user': user.to_dict()}), 201
