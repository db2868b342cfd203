"""
Tam denetim kaydıyla kullanıcı yönetimi.

Hesapların listelenmesi ve açılması, rol değişiklikleri, yönetimsel kilit
(yumuşak silme) ve oturumdaki kullanıcının parola değişikliği.

**Denetim logu**

Her yönetimsel işlem, yöneticinin ``src_ip`` değeri ve HMAC-SHA256 zincir
imzasıyla ``security`` kanalına yazılır.

Rol değişikliği örneği (JSON)::
{
    "timestamp": "2026-01-11T19:05:12.456Z",
    "level": "INFO",
    "event": "USER_MODIFICATION",
    "admin": "admin@ges.local",
    "target_user": "bank@example.com",
    "new_role": "BANK",
    "account_active": true,
    "signature": "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
}
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from werkzeug.security import check_password_hash, generate_password_hash

from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models import Company, User, utcnow
from permissions import ROLES, PermissionManager, deny, permission_required
from routes.auth import generate_strong_password
from schemas import AdminUserCreateSchema, AdminUserUpdateSchema, PasswordChangeSchema, parse_body

admin_bp = Blueprint('admin', __name__)
security_logger = logging.getLogger("security")
app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")


def _get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        error_logger.error(f"USER_NOT_FOUND_EDIT: ID {user_id}", extra={'admin': current_user.email})
        raise NotFoundError('User not found')
    return user


def _check_company(company_id):
    if company_id is not None and not db.session.get(Company, company_id):
        raise ValidationError('Company not found')


@admin_bp.route('/api/admin/users')
@permission_required('users:read')
def users_list():
    """
        Yönetim paneli için hesap listesi.

        **Sorgu parametreleri**
        - ``role``: `permissions.ROLES` değerlerinden biri.
        - ``company_id``: firma filtresi.
        - ``include_deleted``: ``true`` ise kilitli hesaplar da listelenir.

        Kilitli hesaplar varsayılan olarak gizlenir ama silinmez; her proje
        ve denetim kaydı sahibini korur (bilgi bütünlüğü).
    """
    query = User.query
    role = request.args.get('role')
    if role:
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        query = query.filter_by(role=role)
    company_id = request.args.get('company_id', type=int)
    if company_id is not None:
        query = query.filter_by(company_id=company_id)
    if request.args.get('include_deleted', 'false').lower() != 'true':
        query = query.filter(User.deleted_at.is_(None))

    users = query.order_by(User.id).all()
    return jsonify({'success': True, 'users': [u.to_dict() for u in users], 'count': len(users)})


@admin_bp.route('/api/admin/users', methods=['POST'])
@permission_required('users:create')
def create_user():
    """
        Üretilen geçici parolayla hesap açar.

        Parola (`routes.auth.generate_strong_password`) yanıtta bir kez
        döner ve hiçbir zaman loglanmaz.

        Returns:
            Response: kullanıcı ve ``temporary_password`` ile 201;
            e-posta kullanılıyorsa 409.
    """
    data = parse_body(AdminUserCreateSchema)
    email = data.email.lower()
    if User.query.filter_by(email=email).first():
        raise ConflictError('An account with this email already exists')
    _check_company(data.company_id)

    temp_password = generate_strong_password()
    user = User(
        email=email,
        name=data.name,
        role=data.role,
        phone=data.phone,
        company_id=data.company_id,
        password_hash=generate_password_hash(temp_password),
    )
    try:
        db.session.add(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("USER_CREATE_ERROR", exc_info=True, extra={'admin': current_user.email})
        raise

    security_logger.info("ADMIN_CREATED_USER", extra={
        'event': 'USER_PROVISIONING',
        'admin': current_user.email,
        'new_user': email,
        'role': user.role,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'user': user.to_dict(), 'temporary_password': temp_password}), 201


@admin_bp.route('/api/admin/users/<int:user_id>')
@permission_required('users:read')
def get_user(user_id):
    user = _get_user(user_id)
    manager = PermissionManager.for_user(user)
    return jsonify({'success': True, 'user': user.to_dict(), 'permissions': manager.get_user_permissions()})


@admin_bp.route('/api/admin/users/<int:user_id>', methods=['PATCH', 'PUT'])
@permission_required('users:update')
def update_user(user_id):
    """
        Hesabın profilini, rolünü ve etkinliğini günceller.

        **Kurallar**
        1. ``role`` değişikliği ayrıca ``users:manage_roles`` ister.
        2. ``is_active: false`` yumuşak silmedir: `deleted_at` atanır ve
           kullanıcı artık giriş yapamaz; geçmiş korunur.
           ``users:delete`` yetkisi gerekir.
        3. Yönetici kendi hesabını kilitleyemez.
    """
    user = _get_user(user_id)
    data = parse_body(AdminUserUpdateSchema)
    changes = data.model_dump(exclude_unset=True)
    manager = PermissionManager.for_user(current_user)

    if 'role' in changes and changes['role'] != user.role and not manager.has_permission('users:manage_roles'):
        deny(['users:manage_roles'])
    if 'is_active' in changes and changes['is_active'] != user.is_active:
        if not manager.has_permission('users:delete'):
            deny(['users:delete'])
        if user.id == current_user.id:
            raise ValidationError('You cannot lock your own account')
    if 'company_id' in changes:
        _check_company(changes['company_id'])

    is_active = changes.pop('is_active', None)
    for field, value in changes.items():
        if field in ('name', 'role') and value is None:
            continue
        setattr(user, field, value)
    if is_active is not None:
        user.deleted_at = None if is_active else (user.deleted_at or utcnow())

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("USER_UPDATE_ERROR", exc_info=True, extra={'admin': current_user.email})
        raise

    security_logger.info("ADMIN_UPDATED_USER_ACCOUNT", extra={
        'event': 'USER_MODIFICATION',
        'admin': current_user.email,
        'target_user': user.email,
        'new_role': user.role,
        'account_active': user.is_active,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'user': user.to_dict()})


@admin_bp.route('/api/admin/users/<int:user_id>', methods=['DELETE'])
@permission_required('users:delete')
def delete_user(user_id):
    """Hesabı kilitler (yumuşak silme); sahip olduğu kayıtlar korunur."""
    user = _get_user(user_id)
    if user.id == current_user.id:
        raise ValidationError('You cannot lock your own account')
    if user.deleted_at is None:
        user.deleted_at = utcnow()
        db.session.commit()

    security_logger.warning("ADMIN_LOCKED_USER_ACCOUNT", extra={
        'event': 'USER_LOCKOUT',
        'admin': current_user.email,
        'target_user': user.email,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'user': user.to_dict()})


@admin_bp.route('/api/account/password', methods=['POST'])
@login_required
def change_password():
    """
        Oturumdaki kullanıcının parola değişikliği.

        Mevcut parola doğrulanmalıdır; yeni parola politikaya uymalı ve
        eskisinden farklı olmalıdır.
    """
    data = parse_body(PasswordChangeSchema)

    if not check_password_hash(current_user.password_hash, data.old_password):
        security_logger.warning("PASSWORD_CHANGE_FAILED", extra={
            'event': 'CREDENTIAL_CHANGE_FAILURE',
            'user': current_user.email,
            'src_ip': request.remote_addr,
            'details': 'Old password mismatch'
        })
        raise ValidationError('Current password is incorrect')
    if check_password_hash(current_user.password_hash, data.new_password):
        raise ValidationError('New password must differ from the current one')

    current_user.password_hash = generate_password_hash(data.new_password)
    db.session.commit()
    security_logger.info("PASSWORD_CHANGED", extra={
        'event': 'CREDENTIAL_CHANGE',
        'user': current_user.email,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True})
