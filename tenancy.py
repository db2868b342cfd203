"""
Liste sorgularının firmaya göre kısıtlanması ve tek kayıt erişim kontrolü.

Liste uç noktaları temel sorgularını `scope_query` üzerinden geçirir; detay
uç noktaları yüklenen kayıt için `ensure_access` çağırır. İkisi de
`permissions.PermissionManager.can_access_resource` sahiplik kurallarına uyar:

- ADMIN: kısıtlama yok.
- COMPANY: kendi firmasının kayıtları veya sahibi olduğu kayıtlar.
- CUSTOMER / FARMER: sahibi olduğu kayıtlar veya müşteri kaydı hesabına
  bağlı (`Customer.user_id`) kayıtlar.
- BANK / SUPPORT: tüm firmaları okuyabilir.
"""

from sqlalchemy import false, or_

from models import Customer
from permissions import PermissionManager, deny


def _owner_column(model):
    for name in ('owner_id', 'requested_by'):
        if hasattr(model, name):
            return getattr(model, name)
    return None


def _linked_customer_ids(user):
    return [row.id for row in Customer.query.with_entities(Customer.id).filter_by(user_id=user.id)]


def scope_query(query, model, user):
    """
    ``model`` üzerindeki ``query`` sorgusunu ``user`` kullanıcısının
    görebileceği satırlarla sınırlar.

    Args:
        query: ``model`` seçen SQLAlchemy sorgusu.
        model: ``company_id``, ``owner_id`` / ``requested_by``,
            ``customer_id`` / ``user_id`` kolonlarından bazılarını taşıyan model.
        user: Oturum açmış `models.User`.

    Returns:
        Filtrelenmiş sorgu.
    """
    role = user.role
    if role in ('ADMIN', 'BANK', 'SUPPORT'):
        return query

    owner = _owner_column(model)

    if role == 'COMPANY':
        conditions = []
        if hasattr(model, 'company_id') and user.company_id is not None:
            conditions.append(model.company_id == user.company_id)
        if owner is not None:
            conditions.append(owner == user.id)
        return query.filter(or_(*conditions)) if conditions else query.filter(false())

    if role in ('CUSTOMER', 'FARMER'):
        conditions = []
        if owner is not None:
            conditions.append(owner == user.id)
        if model is Customer:
            conditions.append(Customer.user_id == user.id)
        elif hasattr(model, 'customer_id'):
            linked = _linked_customer_ids(user)
            if linked:
                conditions.append(model.customer_id.in_(linked))
        return query.filter(or_(*conditions)) if conditions else query.filter(false())

    return query.filter(false())


def can_access(record, user, resource_type):
    """``user`` kullanıcısı ``record`` kaydını açabilir mi (bkz. modül açıklaması)."""
    manager = PermissionManager.for_user(user)
    owner_id = getattr(record, 'owner_id', None) or getattr(record, 'requested_by', None)
    company_id = getattr(record, 'company_id', None)

    if user.role in ('CUSTOMER', 'FARMER'):
        if isinstance(record, Customer) and record.user_id == user.id:
            return True
        customer_id = getattr(record, 'customer_id', None)
        if customer_id is not None and customer_id in _linked_customer_ids(user):
            return True

    if user.role == 'COMPANY' and owner_id == user.id:
        return True

    return manager.can_access_resource(resource_type, owner_id=owner_id, company_id=company_id)


def ensure_access(record, user, resource_type):
    """`can_access` izin vermiyorsa 403 fırlatır ve loglar."""
    if not can_access(record, user, resource_type):
        deny([f"{resource_type}:{getattr(record, 'id', '?')}"])
    return record
