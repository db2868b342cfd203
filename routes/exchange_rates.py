"""
Döviz kuru uç noktaları.

Kurlar `services.exchange_rates.ExchangeRateService` servisinden gelir
(`create_app` tarafından ``app.extensions['exchange_rates']`` içine konur);
etkin `models.ManualExchangeRate` kayıtları bunların üzerine uygulanır.
Yöneticiler sabit kurları burada yönetir; bir para biriminin en fazla bir
etkin sabit kuru olabilir.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from errors import ConflictError, NotFoundError
from extensions import db, limiter
from models import ManualExchangeRate
from permissions import PermissionManager, permission_required
from schemas import ConversionSchema, ManualRateCreateSchema, ManualRateUpdateSchema, parse_body

exchange_rates_bp = Blueprint('exchange_rates', __name__, url_prefix='/api/exchange-rates')
app_logger = logging.getLogger("application")
security_logger = logging.getLogger("security")


def rate_service():
    return current_app.extensions['exchange_rates']


def _can_manage():
    return (current_user.is_authenticated
            and PermissionManager.for_user(current_user).has_permission('system:integrations'))


@exchange_rates_bp.route('')
@limiter.limit("60 per minute")
def get_rates():
    """
        Güncel TRY kurları.

        ``currency=USD`` tek bir kur döner (bilinmiyorsa 404).
        ``refresh=true`` önce önbellekteki piyasa verisini atar; yalnızca
        entegrasyon yönetme yetkisi olan kullanıcılar için geçerlidir.
    """
    service = rate_service()
    if request.args.get('refresh', 'false').lower() == 'true' and _can_manage():
        service.refresh()

    currency = request.args.get('currency')
    if currency:
        return jsonify(dict(service.get_rate(currency), success=True))
    return jsonify(dict(service.get_rates(), success=True))


@exchange_rates_bp.route('/convert', methods=['POST'])
@permission_required('calculator:use')
def convert():
    data = parse_body(ConversionSchema)
    result = rate_service().convert(data.amount, data.from_currency, data.to_currency)
    return jsonify({'success': True, 'conversion': result})


# sabit kurlar

def _active_rate(currency, exclude_id=None):
    query = ManualExchangeRate.query.filter_by(currency=currency, is_active=True)
    if exclude_id is not None:
        query = query.filter(ManualExchangeRate.id != exclude_id)
    return query.first()


def _manual_rate(rate_id):
    row = db.session.get(ManualExchangeRate, rate_id)
    if not row:
        raise NotFoundError('Manual rate not found')
    return row


@exchange_rates_bp.route('/manual')
@permission_required('system:integrations')
def list_manual_rates():
    query = ManualExchangeRate.query
    if request.args.get('currency'):
        query = query.filter_by(currency=request.args['currency'].upper())
    active = request.args.get('active')
    if active is not None:
        query = query.filter_by(is_active=active.lower() == 'true')
    rows = query.order_by(ManualExchangeRate.currency, ManualExchangeRate.created_at.desc()).all()
    return jsonify({'success': True, 'rates': [r.to_dict() for r in rows]})


@exchange_rates_bp.route('/manual', methods=['POST'])
@permission_required('system:integrations')
def create_manual_rate():
    """
        Sabit kur tanımlar (birim başına TRY).

        Returns:
            Response: kur ile 201; para biriminin etkin sabit kuru zaten
            varsa 409.
    """
    data = parse_body(ManualRateCreateSchema)
    if _active_rate(data.currency):
        raise ConflictError(f"An active manual rate for {data.currency} already exists")

    row = ManualExchangeRate(currency=data.currency, rate=data.rate, description=data.description,
                             is_active=True, created_by=current_user.id)
    db.session.add(row)
    db.session.commit()
    security_logger.info("MANUAL_RATE_CREATED", extra={
        'event': 'RATE_OVERRIDE',
        'admin': current_user.email,
        'currency': row.currency,
        'rate': data.rate,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'rate': row.to_dict()}), 201


@exchange_rates_bp.route('/manual/<int:rate_id>', methods=['PUT', 'PATCH'])
@permission_required('system:integrations')
def update_manual_rate(rate_id):
    row = _manual_rate(rate_id)
    changes = parse_body(ManualRateUpdateSchema).model_dump(exclude_unset=True)
    if changes.get('is_active') and not row.is_active and _active_rate(row.currency, exclude_id=row.id):
        raise ConflictError(f"An active manual rate for {row.currency} already exists")

    for field, value in changes.items():
        if field in ('rate', 'is_active') and value is None:
            continue
        setattr(row, field, value)
    db.session.commit()
    security_logger.info("MANUAL_RATE_UPDATED", extra={
        'event': 'RATE_OVERRIDE',
        'admin': current_user.email,
        'currency': row.currency,
        'rate': float(row.rate),
        'is_active': row.is_active,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'rate': row.to_dict()})


@exchange_rates_bp.route('/manual/<int:rate_id>', methods=['DELETE'])
@permission_required('system:integrations')
def delete_manual_rate(rate_id):
    row = _manual_rate(rate_id)
    currency = row.currency
    db.session.delete(row)
    db.session.commit()
    security_logger.warning("MANUAL_RATE_DELETED", extra={
        'event': 'RATE_OVERRIDE',
        'admin': current_user.email,
        'currency': currency,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True})
