"""
Rol tabanlı erişim kontrolü.

`ROLE_PERMISSIONS` altı rolün sabit yetki tablosudur. Uygulamadaki her
kontrol bu tabloda küme üyeliği sorgusudur:

- `PermissionManager` tek bir kullanıcı için yanıt verir (tek yetki,
  listenin herhangi biri / tamamı, sahiplik kurallı kaynak erişimi, menü).
- `permission_required` / `role_required` Flask görünümlerini korur ve
  reddedilen denemeleri ``security`` kanalına yazar.

Reddedilen erişim logu örneği (JSON)::
{
    "timestamp": "2026-03-02T09:14:27.512Z",
    "level": "WARNING",
    "event": "ACCESS_VIOLATION",
    "user": "bank@example.com",
    "role": "BANK",
    "required": ["projects:delete"],
    "src_ip": "10.0.0.7",
    "signature": "6f1c0e..."
}
"""

import logging
from functools import wraps

from flask import request
from flask_login import current_user

from errors import AuthenticationError, AuthorizationError

security_logger = logging.getLogger("security")

ROLES = ('ADMIN', 'COMPANY', 'CUSTOMER', 'FARMER', 'BANK', 'SUPPORT')

ALL_PERMISSIONS = (
    # kullanıcılar
    'users:create', 'users:read', 'users:update', 'users:delete', 'users:manage_roles',
    # firmalar
    'companies:create', 'companies:read', 'companies:update', 'companies:delete',
    'companies:verify', 'companies:suspend',
    # projeler
    'projects:create', 'projects:read', 'projects:update', 'projects:delete',
    'projects:approve', 'projects:assign',
    # teklifler
    'quotes:create', 'quotes:read', 'quotes:update', 'quotes:delete', 'quotes:approve', 'quotes:send',
    # müşteriler
    'customers:create', 'customers:read', 'customers:update', 'customers:delete',
    'customers:import', 'customers:export',
    # ürünler
    'products:create', 'products:read', 'products:update', 'products:delete', 'products:manage_pricing',
    # finans
    'finance:read', 'finance:update', 'finance:reports', 'finance:invoicing', 'finance:payments',
    # analiz ve raporlama
    'analytics:read', 'analytics:advanced', 'reports:create', 'reports:read', 'reports:export',
    # sistem
    'system:settings', 'system:monitoring', 'system:integrations', 'system:backups', 'system:logs',
    # araçlar
    'designer:use', 'designer:advanced', 'calculator:use', 'calculator:advanced',
    # içerik
    'content:create', 'content:read', 'content:update', 'content:delete', 'content:publish',
)

ROLE_PERMISSIONS = {
    'ADMIN': frozenset(ALL_PERMISSIONS),

    'COMPANY': frozenset([
        'projects:create', 'projects:read', 'projects:update', 'projects:delete', 'projects:assign',
        'quotes:create', 'quotes:read', 'quotes:update', 'quotes:delete', 'quotes:send',
        'customers:create', 'customers:read', 'customers:update', 'customers:delete',
        'customers:import', 'customers:export',
        'products:read', 'products:update',
        'finance:read', 'finance:reports', 'finance:invoicing', 'finance:payments',
        'analytics:read', 'reports:create', 'reports:read', 'reports:export',
        'designer:use', 'designer:advanced', 'calculator:use', 'calculator:advanced',
        'content:read',
    ]),

    'CUSTOMER': frozenset([
        'projects:read',
        'quotes:read',
        'customers:read', 'customers:update',
        'products:read',
        'finance:read',
        'designer:use', 'calculator:use',
        'content:read',
    ]),

    # tarımsal GES müşterileri kendi projelerini açabilir
    'FARMER': frozenset([
        'projects:read', 'projects:create',
        'quotes:read',
        'customers:read', 'customers:update',
        'products:read',
        'finance:read',
        'designer:use', 'calculator:use', 'calculator:advanced',
        'content:read',
    ]),

    'BANK': frozenset([
        'projects:read',
        'quotes:read',
        'customers:read',
        'finance:read', 'finance:reports',
        'analytics:read', 'reports:read',
        'content:read',
    ]),

    'SUPPORT': frozenset([
        'users:read', 'users:update',
        'companies:read', 'companies:update',
        'projects:read', 'projects:update',
        'quotes:read', 'quotes:update',
        'customers:read', 'customers:update', 'customers:import', 'customers:export',
        'products:read',
        'analytics:read', 'reports:read',
        'content:read', 'content:create', 'content:update',
    ]),
}

#: (etiket, yol, ikon, yetkiler; herhangi biri girişi açar)
MENU_ITEMS = (
    ('Analytics', '/dashboard/analytics', 'BarChart3', ('analytics:read',)),
    ('Firmalar', '/dashboard/admin/companies', 'Building', ('companies:read', 'companies:create')),
    ('Sistem İzleme', '/dashboard/admin/monitoring', 'Monitor', ('system:monitoring',)),
    ('Entegrasyonlar', '/dashboard/admin/integrations', 'Plug', ('system:integrations',)),
    ('3D Designer', '/dashboard/designer', 'Box', ('designer:use',)),
    ('Hesaplayıcı', '/dashboard/calculator', 'Calculator', ('calculator:use',)),
    ('Projeler', '/dashboard/projects', 'FolderOpen', ('projects:read', 'projects:create')),
    ('Teklifler', '/dashboard/quotes', 'FileText', ('quotes:read', 'quotes:create')),
    ('Müşteriler', '/dashboard/customers', 'Users', ('customers:read', 'customers:create')),
    ('Finans', '/dashboard/finance', 'DollarSign', ('finance:read',)),
)


class PermissionManager:
    """
    Tek kullanıcı için yetki kontrolleri.

    Args:
        role (str): `ROLES` değerlerinden biri. Bilinmeyen rolün yetkisi yoktur.
        user_id: Kullanıcının id'si.
        company_id: Varsa kullanıcının firması.
    """

    def __init__(self, role, user_id, company_id=None):
        self.role = role
        self.user_id = user_id
        self.company_id = company_id

    @classmethod
    def for_user(cls, user):
        return cls(user.role, user.id, user.company_id)

    def has_permission(self, permission):
        return permission in ROLE_PERMISSIONS.get(self.role, frozenset())

    def has_any_permission(self, permissions):
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions):
        return all(self.has_permission(p) for p in permissions)

    def get_user_permissions(self):
        """Rolün yetkileri, tablo sırasıyla."""
        granted = ROLE_PERMISSIONS.get(self.role, frozenset())
        return [p for p in ALL_PERMISSIONS if p in granted]

    def can_access_resource(self, resource_type, owner_id=None, company_id=None):
        """
        Kullanıcı tek bir kaynağı açabilir mi.

        **Kurallar (ilk eşleşen geçerlidir)**
        1. ADMIN: her zaman.
        2. COMPANY, firmaya bağlı kaynak: yalnızca kendi firması.
        3. CUSTOMER / FARMER, sahibi olan kaynak: yalnızca kendisininki.
        4. Diğer durumlar: ``<resource_type>:read`` yetkisi belirler.
        """
        if self.role == 'ADMIN':
            return True
        if self.role == 'COMPANY' and company_id is not None:
            return self.company_id == company_id
        if self.role in ('CUSTOMER', 'FARMER') and owner_id is not None:
            return self.user_id == owner_id
        return self.has_permission(f"{resource_type}:read")

    def get_contextual_permissions(self, context=None):
        """
        Çalışma bağlamına göre daraltılmış yetkiler.

        ``context='own_resources'`` ile müşteri ve çiftçiler silme ve
        oluşturma yetkilerini kaybeder; müşteri profili yetkileri ile
        ``projects:create`` kalır. Diğer tüm durumlarda tam liste döner.
        """
        permissions = self.get_user_permissions()
        if context == 'own_resources' and self.role in ('CUSTOMER', 'FARMER'):
            return [
                p for p in permissions
                if ('delete' not in p and 'create' not in p)
                or 'customers:' in p
                or 'projects:create' in p
            ]
        return permissions

    def get_authorized_menu_items(self):
        return [
            {'label': label, 'path': path, 'icon': icon}
            for label, path, icon, required in MENU_ITEMS
            if self.has_any_permission(required)
        ]


def check_api_permissions(role, user_id, required, company_id=None):
    """Rol ``required`` içindeki tüm yetkilere sahipse True."""
    return PermissionManager(role, user_id, company_id).has_all_permissions(required)


def deny(required):
    security_logger.warning("UNAUTHORIZED_ACCESS_ATTEMPT", extra={
        'event': 'ACCESS_VIOLATION',
        'user': current_user.email,
        'role': current_user.role,
        'required': list(required),
        'target': request.endpoint,
        'src_ip': request.remote_addr
    })
    raise AuthorizationError()


def permission_required(*permissions):
    """
    Görünüm dekoratörü: oturum yoksa 401, kullanıcının rolü
    ``permissions`` listesinin tamamına sahip değilse 403.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationError()
            if not check_api_permissions(current_user.role, current_user.id,
                                         permissions, current_user.company_id):
                deny(permissions)
            return view(*args, **kwargs)
        return wrapper
    return decorator


def role_required(*roles):
    """Görünümü verilen rollerle sınırlayan dekoratör."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                raise AuthenticationError()
            if current_user.role not in roles:
                deny([f"role:{r}" for r in roles])
            return view(*args, **kwargs)
        return wrapper
    return decorator
