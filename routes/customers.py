"""
Firmaya ait müşteri kayıtları.

Bireysel müşteriler ad/soyad, kurumsal müşteriler firma adı ve vergi
numarası taşır. Listeler firma kapsamındadır (`tenancy.scope_query`);
tekil işlemler `tenancy.ensure_access` üzerinden geçer.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user
from sqlalchemy import or_

from errors import ConflictError, NotFoundError
from extensions import db
from models import Customer, PhotoRequest, Quote
from permissions import permission_required
from schemas import CustomerCreateSchema, CustomerUpdateSchema, parse_body
from tenancy import ensure_access, scope_query

customers_bp = Blueprint('customers', __name__, url_prefix='/api/customers')
app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")


def _load(customer_id):
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError('Müşteri bulunamadı')
    return ensure_access(customer, current_user, 'customers')


def _email_taken(email, exclude_id=None):
    query = Customer.query.filter(Customer.email == email.lower())
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    return db.session.query(query.exists()).scalar()


@customers_bp.route('')
@permission_required('customers:read')
def list_customers():
    """
        Sayfalı müşteri listesi.

        Sorgu parametreleri: ``search`` (ad, firma, e-posta, telefon),
        ``customer_type``, ``city``, ``page``, ``limit`` (en fazla 100).
    """
    page = max(request.args.get('page', 1, type=int), 1)
    limit = min(max(request.args.get('limit', 20, type=int), 1), 100)

    query = scope_query(Customer.query, Customer, current_user)
    search = request.args.get('search', '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.company_name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    if request.args.get('customer_type'):
        query = query.filter(Customer.customer_type == request.args['customer_type'])
    if request.args.get('city'):
        query = query.filter(Customer.city == request.args['city'])

    result = query.order_by(Customer.created_at.desc(), Customer.id.desc()).paginate(
        page=page, per_page=limit, error_out=False)
    return jsonify({
        'success': True,
        'customers': [c.to_dict() for c in result.items],
        'pagination': {'page': page, 'limit': limit, 'total': result.total, 'pages': result.pages},
    })


@customers_bp.route('', methods=['POST'])
@permission_required('customers:create')
def create_customer():
    data = parse_body(CustomerCreateSchema)
    if _email_taken(data.email):
        raise ConflictError('Bu e-posta adresiyle kayıtlı bir müşteri zaten var')

    values = data.model_dump()
    values['email'] = values['email'].lower()
    customer = Customer(owner_id=current_user.id, company_id=current_user.company_id, **values)
    try:
        db.session.add(customer)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("CUSTOMER_CREATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.info("CUSTOMER_CREATED", extra={
        'event': 'CUSTOMER_CREATE',
        'user': current_user.email,
        'customer_id': customer.id,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'customer': customer.to_dict()}), 201


@customers_bp.route('/<int:customer_id>')
@permission_required('customers:read')
def get_customer(customer_id):
    customer = _load(customer_id)
    data = customer.to_dict()
    data['projects'] = [p.to_dict() for p in customer.projects]
    return jsonify({'success': True, 'customer': data})


@customers_bp.route('/<int:customer_id>', methods=['PUT', 'PATCH'])
@permission_required('customers:update')
def update_customer(customer_id):
    customer = _load(customer_id)
    changes = parse_body(CustomerUpdateSchema).model_dump(exclude_unset=True)

    if changes.get('email'):
        changes['email'] = changes['email'].lower()
        if _email_taken(changes['email'], exclude_id=customer.id):
            raise ConflictError('Bu e-posta adresiyle kayıtlı bir müşteri zaten var')
    for field, value in changes.items():
        if field in ('email', 'customer_type') and value is None:
            continue
        setattr(customer, field, value)

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("CUSTOMER_UPDATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.info("CUSTOMER_UPDATED", extra={
        'event': 'CUSTOMER_UPDATE',
        'user': current_user.email,
        'customer_id': customer.id,
        'fields': sorted(changes)
    })
    return jsonify({'success': True, 'customer': customer.to_dict()})


@customers_bp.route('/<int:customer_id>', methods=['DELETE'])
@permission_required('customers:delete')
def delete_customer(customer_id):
    """
        Müşteriyi siler.

        Müşteriye bağlı proje veya teklif varsa 409 döner. Fotoğraf
        talepleri korunur, müşteri bağlantıları kaldırılır.
    """
    customer = _load(customer_id)
    if customer.projects.count():
        raise ConflictError('Projesi bulunan müşteri silinemez')
    if Quote.query.filter_by(customer_id=customer.id).count():
        raise ConflictError('Teklifi bulunan müşteri silinemez')

    try:
        PhotoRequest.query.filter_by(customer_id=customer.id).update(
            {PhotoRequest.customer_id: None}, synchronize_session=False)
        db.session.delete(customer)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("CUSTOMER_DELETE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise
    app_logger.warning("CUSTOMER_DELETED", extra={
        'event': 'CUSTOMER_DELETE',
        'user': current_user.email,
        'customer_id': customer_id,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True})
