"""
Sunucu tarafında fiyatlanan teklifler.

**Fiyatlama**

Teklifte saklanan tutarların tek kaynağı `compute_totals` fonksiyonudur.
Her kalem için::

    gross    = quantity * unit_price
    discount = gross * discount% / 100
    tax      = (gross - discount) * tax_rate% / 100
    total    = gross - discount + tax

Teklifin ``subtotal`` / ``discount`` / ``tax`` / ``total`` alanları bu
değerlerin toplamıdır. Tutarlar `Decimal` olup kuruşa (0.01) yukarı
yuvarlanır.

**Yaşam döngüsü**

DRAFT -> SENT -> APPROVED / REJECTED; ``valid_until`` geçince EXPIRED
(`services.kvkk_scheduler.expire_quotes`). Yalnızca taslaklar
düzenlenebilir veya silinebilir.
"""

import logging
import secrets
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import Blueprint, current_app, jsonify, render_template, request
from flask_login import current_user
from flask_mail import Message

from errors import NotFoundError, ValidationError
from extensions import db, mail
from models import Customer, Project, Quote, QuoteItem, utcnow
from permissions import permission_required
from schemas import QuoteCreateSchema, QuoteDecisionSchema, QuoteUpdateSchema, parse_body
from tenancy import can_access, ensure_access, scope_query

quotes_bp = Blueprint('quotes', __name__, url_prefix='/api/quotes')
app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")

CENT = Decimal('0.01')


def _money(value):
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(items):
    """
    Kalem listesini fiyatlar.

    Args:
        items: ``quantity``, ``unit_price``, ``discount`` ve ``tax_rate``
            (yüzde) içeren eşlemeler.

    Returns:
        tuple: (satır toplamları, subtotal, discount, tax, total sözlüğü).
    """
    subtotal = discount = tax = Decimal('0')
    lines = []
    for item in items:
        gross = Decimal(str(item['quantity'])) * Decimal(str(item['unit_price']))
        line_discount = gross * Decimal(str(item.get('discount', 0))) / 100
        line_tax = (gross - line_discount) * Decimal(str(item.get('tax_rate', 20))) / 100
        lines.append(_money(gross - line_discount + line_tax))
        subtotal += gross
        discount += line_discount
        tax += line_tax

    totals = {
        'subtotal': _money(subtotal),
        'discount': _money(discount),
        'tax': _money(tax),
    }
    totals['total'] = totals['subtotal'] - totals['discount'] + totals['tax']
    return lines, totals


def generate_quote_number(today=None):
    """Q-YYYYMMDD-XXXXXX (altı rastgele onaltılık hane)."""
    today = today or utcnow()
    while True:
        number = f"Q-{today:%Y%m%d}-{secrets.token_hex(3).upper()}"
        if not Quote.query.filter_by(quote_number=number).first():
            return number


def _apply_items(quote, items):
    lines, totals = compute_totals(items)
    quote.items = [
        QuoteItem(
            name=item['name'],
            category=item['category'],
            quantity=item['quantity'],
            unit_price=item['unit_price'],
            discount=item['discount'],
            tax_rate=item['tax_rate'],
            total=line,
        )
        for item, line in zip(items, lines)
    ]
    for field, value in totals.items():
        setattr(quote, field, value)


def _load(quote_id):
    quote = db.session.get(Quote, quote_id)
    if not quote:
        raise NotFoundError('Teklif bulunamadı')
    return ensure_access(quote, current_user, 'quotes')


def _require_draft(quote):
    if quote.status != 'DRAFT':
        raise ValidationError(f"Only draft quotes can be modified (status: {quote.status})")


@quotes_bp.route('')
@permission_required('quotes:read')
def list_quotes():
    page = max(request.args.get('page', 1, type=int), 1)
    limit = min(max(request.args.get('limit', 20, type=int), 1), 100)

    query = scope_query(Quote.query, Quote, current_user)
    if request.args.get('status'):
        query = query.filter(Quote.status == request.args['status'])
    project_id = request.args.get('project_id', type=int)
    if project_id is not None:
        query = query.filter(Quote.project_id == project_id)

    result = query.order_by(Quote.created_at.desc(), Quote.id.desc()).paginate(
        page=page, per_page=limit, error_out=False)
    return jsonify({
        'success': True,
        'quotes': [q.to_dict() for q in result.items],
        'pagination': {'page': page, 'limit': limit, 'total': result.total, 'pages': result.pages},
    })


@quotes_bp.route('', methods=['POST'])
@permission_required('quotes:create')
def create_quote():
    """
        Taslak teklif oluşturur.

        ``customer_id`` ve ``project_id`` verilirse kayıtlar var olmalı ve
        çağırana görünür olmalıdır; aksi halde 400. Projenin müşterisi,
        gövdede boş bırakılan müşteri alanlarını doldurur. İstemcinin
        gönderdiği toplamlar dikkate alınmaz.
    """
    data = parse_body(QuoteCreateSchema)
    values = data.model_dump()

    if data.customer_id is not None:
        customer = db.session.get(Customer, data.customer_id)
        if not customer or not can_access(customer, current_user, 'customers'):
            raise ValidationError('Müşteri bulunamadı')

    project = None
    if data.project_id is not None:
        project = db.session.get(Project, data.project_id)
        if not project or not can_access(project, current_user, 'projects'):
            raise ValidationError('Proje bulunamadı')
        customer = project.customer
        if customer is not None:
            values['customer_id'] = values['customer_id'] or customer.id
            values['customer_name'] = values['customer_name'] or customer.display_name
            values['customer_email'] = values['customer_email'] or customer.email
            values['customer_phone'] = values['customer_phone'] or customer.phone
        if values['capacity_kw'] is None and project.capacity_kw is not None:
            values['capacity_kw'] = float(project.capacity_kw)

    now = utcnow()
    quote = Quote(
        quote_number=generate_quote_number(now),
        status='DRAFT',
        project_id=data.project_id,
        customer_id=values['customer_id'],
        customer_name=values['customer_name'],
        customer_email=values['customer_email'],
        customer_phone=values['customer_phone'],
        capacity_kw=values['capacity_kw'],
        valid_until=now + timedelta(days=data.valid_days),
        notes=data.notes,
        terms=data.terms,
        owner_id=current_user.id,
        company_id=project.company_id if project is not None else current_user.company_id,
    )
    _apply_items(quote, values['items'])

    try:
        db.session.add(quote)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("QUOTE_CREATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.info("QUOTE_CREATED", extra={
        'event': 'QUOTE_CREATE',
        'user': current_user.email,
        'quote_number': quote.quote_number,
        'total': str(quote.total),
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'quote': quote.to_dict()}), 201


@quotes_bp.route('/<int:quote_id>')
@permission_required('quotes:read')
def get_quote(quote_id):
    return jsonify({'success': True, 'quote': _load(quote_id).to_dict()})


@quotes_bp.route('/<int:quote_id>', methods=['PUT', 'PATCH'])
@permission_required('quotes:update')
def update_quote(quote_id):
    quote = _load(quote_id)
    _require_draft(quote)
    data = parse_body(QuoteUpdateSchema)
    changes = data.model_dump(exclude_unset=True)

    items = changes.pop('items', None)
    valid_days = changes.pop('valid_days', None)
    for field, value in changes.items():
        setattr(quote, field, value)
    if items:
        _apply_items(quote, [item.model_dump() for item in data.items])
    if valid_days:
        quote.valid_until = utcnow() + timedelta(days=valid_days)

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("QUOTE_UPDATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise
    return jsonify({'success': True, 'quote': quote.to_dict()})


@quotes_bp.route('/<int:quote_id>', methods=['DELETE'])
@permission_required('quotes:delete')
def delete_quote(quote_id):
    quote = _load(quote_id)
    _require_draft(quote)
    db.session.delete(quote)
    db.session.commit()
    app_logger.warning("QUOTE_DELETED", extra={
        'event': 'QUOTE_DELETE',
        'user': current_user.email,
        'quote_number': quote.quote_number
    })
    return jsonify({'success': True})


def _deliver(quote):
    """Teklif özetini müşteriye e-postayla gönderir; gidip gitmediğini döner."""
    if not quote.customer_email:
        return False
    msg = Message(
        subject=f"Güneş Enerjisi Teklifiniz - {quote.quote_number}",
        recipients=[quote.customer_email],
        sender=current_app.config.get('FROM_EMAIL'),
        html=render_template('email/quote_sent.html', quote=quote,
                             app_url=current_app.config.get('APP_URL', '')),
    )
    try:
        mail.send(msg)
    except Exception:
        error_logger.error("QUOTE_EMAIL_FAILED", exc_info=True, extra={
            'event': 'INTEGRATION_FAILURE',
            'quote_number': quote.quote_number
        })
        return False
    return True


@quotes_bp.route('/<int:quote_id>/send', methods=['POST'])
@permission_required('quotes:send')
def send_quote(quote_id):
    """
        Taslağı müşteriye gönderir.

        Teklifte müşteri e-postası veya telefonu bulunmalıdır. Durum SENT
        olur; bağlı proje hâlâ DRAFT / DESIGN ise QUOTE_SENT olur.
    """
    quote = _load(quote_id)
    if quote.status != 'DRAFT':
        raise ValidationError(f"Quote cannot be sent in status {quote.status}")
    if not (quote.customer_email or quote.customer_phone):
        raise ValidationError('Customer email or phone is required to send the quote')

    quote.status = 'SENT'
    quote.sent_at = utcnow()
    if quote.project is not None and quote.project.status in ('DRAFT', 'DESIGN'):
        quote.project.status = 'QUOTE_SENT'
    db.session.commit()

    email_sent = _deliver(quote)
    app_logger.info("QUOTE_SENT", extra={
        'event': 'QUOTE_DELIVERY',
        'user': current_user.email,
        'quote_number': quote.quote_number,
        'email_sent': email_sent,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'quote': quote.to_dict(), 'email_sent': email_sent})


@quotes_bp.route('/<int:quote_id>/decision', methods=['POST'])
@permission_required('quotes:read')
def decide_quote(quote_id):
    """
        Gönderilmiş teklif için müşteri kararı (APPROVED veya REJECTED).

        ``valid_until`` tarihi geçmiş teklif EXPIRED olarak işaretlenir ve
        karar reddedilir. Onay, bağlı projeyi APPROVED yapar.
    """
    quote = _load(quote_id)
    data = parse_body(QuoteDecisionSchema)
    if quote.status != 'SENT':
        raise ValidationError(f"Quote cannot be decided in status {quote.status}")

    now = utcnow()
    if quote.valid_until is not None and quote.valid_until < now:
        quote.status = 'EXPIRED'
        db.session.commit()
        raise ValidationError('Teklifin geçerlilik süresi dolmuş')

    quote.status = data.decision
    quote.decided_at = now
    if data.reason:
        quote.notes = f"{quote.notes}\n{data.reason}" if quote.notes else data.reason
    if data.decision == 'APPROVED' and quote.project is not None:
        quote.project.status = 'APPROVED'
    db.session.commit()

    app_logger.info("QUOTE_DECIDED", extra={
        'event': 'QUOTE_DECISION',
        'user': current_user.email,
        'quote_number': quote.quote_number,
        'decision': data.decision
    })
    return jsonify({'success': True, 'quote': quote.to_dict()})
