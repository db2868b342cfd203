"""
Fotoğraf talepleri: müşteriden bağlantı ile çatı / saha fotoğrafı istenir.

Mühendis talebi oluşturur (`create_photo_request`); müşteri
``<APP_URL>/photo-upload/<token>`` bağlantılı bir e-posta alır. Herkese
açık uç noktalar talebi yalnızca 64 haneli onaltılık jetonla tanır ve hesap
istemez (CSRF muafiyeti, istek sınırı).

Durumlar: PENDING -> UPLOADED -> REVIEWED. ``expires_at`` sonrasında
açılan PENDING talep EXPIRED olur ve 410 döner.

Örnek (JSON)::
{
    "timestamp": "2026-04-18T14:02:55.101Z",
    "level": "INFO",
    "event": "PHOTO_UPLOAD",
    "photo_request_id": 17,
    "photo_count": 6,
    "src_ip": "88.230.14.2",
    "signature": "b5bb9d8014a0f9b1d61e21e796d78dccdf1352f23cd32812f4850b878ae4944c"
}
"""

import logging
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, render_template, request
from flask_login import current_user
from flask_mail import Message

from errors import GoneError, NotFoundError, ValidationError
from extensions import db, limiter, mail
from models import Customer, PhotoRequest, Project, utcnow
from permissions import role_required
from schemas import PhotoRequestCreateSchema, PhotoReviewSchema, PhotoUploadSchema, parse_body
from tenancy import can_access, ensure_access, scope_query

photo_requests_bp = Blueprint('photo_requests', __name__, url_prefix='/api/photo-requests')
app_logger = logging.getLogger("application")
security_logger = logging.getLogger("security")
error_logger = logging.getLogger("error")


def upload_url(token):
    return f"{current_app.config.get('APP_URL', '')}/photo-upload/{token}"


def _send_request_email(photo_request):
    msg = Message(
        subject=f"{photo_request.engineer_name} fotoğraf talep ediyor",
        recipients=[photo_request.customer_email],
        sender=current_app.config.get('FROM_EMAIL'),
        html=render_template(
            'email/photo_request.html',
            customer_name=photo_request.customer_name,
            engineer_name=photo_request.engineer_name,
            engineer_title=photo_request.engineer_title,
            message=photo_request.message,
            guidelines=photo_request.guidelines,
            upload_url=upload_url(photo_request.token),
            expires_at=photo_request.expires_at.strftime('%d.%m.%Y'),
        ),
    )
    mail.send(msg)


def _load(request_id):
    photo_request = db.session.get(PhotoRequest, request_id)
    if not photo_request:
        raise NotFoundError('Photo request not found')
    return ensure_access(photo_request, current_user, 'projects')


def _by_token(token):
    photo_request = PhotoRequest.query.filter_by(token=token).first()
    if not photo_request:
        security_logger.warning("PHOTO_TOKEN_INVALID", extra={
            'event': 'INVALID_TOKEN',
            'token_prefix': token[:8],
            'src_ip': request.remote_addr
        })
        raise NotFoundError('Photo request not found')
    if photo_request.status in ('PENDING', 'EXPIRED') and photo_request.expires_at < utcnow():
        if photo_request.status != 'EXPIRED':
            photo_request.status = 'EXPIRED'
            db.session.commit()
        raise GoneError('Bu fotoğraf talebinin süresi dolmuş')
    return photo_request


@photo_requests_bp.route('', methods=['POST'])
@role_required('ADMIN', 'COMPANY')
def create_photo_request():
    """
        Talep oluşturur ve yükleme bağlantısını müşteriye e-postayla gönderir.

        Returns:
            Response: talep, ``upload_url`` ve ``email_sent`` ile 201;
            bağlanan müşteri veya proje bilinmiyorsa 400.
    """
    data = parse_body(PhotoRequestCreateSchema)
    if data.customer_id is not None:
        customer = db.session.get(Customer, data.customer_id)
        if not customer or not can_access(customer, current_user, 'customers'):
            raise ValidationError('Customer not found')
    if data.project_id is not None:
        project = db.session.get(Project, data.project_id)
        if not project or not can_access(project, current_user, 'projects'):
            raise ValidationError('Project not found')

    values = data.model_dump()
    expiry_days = values.pop('expiry_days')
    photo_request = PhotoRequest(
        token=secrets.token_hex(32),
        status='PENDING',
        expires_at=utcnow() + timedelta(days=expiry_days),
        requested_by=current_user.id,
        company_id=current_user.company_id,
        **values
    )
    try:
        db.session.add(photo_request)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("PHOTO_REQUEST_CREATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    email_sent = False
    if photo_request.customer_email:
        try:
            _send_request_email(photo_request)
            email_sent = True
        except Exception:
            error_logger.error("PHOTO_REQUEST_EMAIL_FAILED", exc_info=True, extra={
                'event': 'INTEGRATION_FAILURE',
                'photo_request_id': photo_request.id
            })

    app_logger.info("PHOTO_REQUEST_CREATED", extra={
        'event': 'PHOTO_REQUEST',
        'user': current_user.email,
        'photo_request_id': photo_request.id,
        'expiry_days': expiry_days,
        'email_sent': email_sent
    })
    return jsonify({
        'success': True,
        'photo_request': photo_request.to_dict(),
        'upload_url': upload_url(photo_request.token),
        'email_sent': email_sent,
    }), 201


@photo_requests_bp.route('')
@role_required('ADMIN', 'COMPANY')
def list_photo_requests():
    query = scope_query(PhotoRequest.query, PhotoRequest, current_user)
    if request.args.get('status'):
        query = query.filter(PhotoRequest.status == request.args['status'])
    project_id = request.args.get('project_id', type=int)
    if project_id is not None:
        query = query.filter(PhotoRequest.project_id == project_id)
    items = query.order_by(PhotoRequest.created_at.desc(), PhotoRequest.id.desc()).all()
    return jsonify({'success': True, 'photo_requests': [p.to_dict() for p in items]})


@photo_requests_bp.route('/<int:request_id>')
@role_required('ADMIN', 'COMPANY')
def get_photo_request(request_id):
    return jsonify({'success': True, 'photo_request': _load(request_id).to_dict()})


@photo_requests_bp.route('/<int:request_id>/review', methods=['POST'])
@role_required('ADMIN', 'COMPANY')
def review_photo_request(request_id):
    photo_request = _load(request_id)
    data = parse_body(PhotoReviewSchema)
    if photo_request.status != 'UPLOADED':
        raise ValidationError(f"Photo request cannot be reviewed in status {photo_request.status}")

    photo_request.status = 'REVIEWED'
    photo_request.reviewed_at = utcnow()
    photo_request.review_notes = data.notes
    db.session.commit()
    app_logger.info("PHOTO_REQUEST_REVIEWED", extra={
        'event': 'PHOTO_REVIEW',
        'user': current_user.email,
        'photo_request_id': photo_request.id
    })
    return jsonify({'success': True, 'photo_request': photo_request.to_dict()})


@photo_requests_bp.route('/public/<token>')
@limiter.limit("30 per minute")
def public_photo_request(token):
    """Müşterinin bağlantıyı açınca gördüğü bilgi (iç alanlar olmadan)."""
    photo_request = _by_token(token)
    return jsonify({'success': True, 'photo_request': photo_request.to_dict(public=True)})


@photo_requests_bp.route('/public/<token>/upload', methods=['POST'])
@limiter.limit("10 per minute")
def public_photo_upload(token):
    """
        Müşterinin yüklemesinin tamamlanması.

        Yalnızca PENDING talepler yükleme kabul eder; talep, alınan fotoğraf
        sayısıyla UPLOADED olur.
    """
    photo_request = _by_token(token)
    if photo_request.status != 'PENDING':
        raise ValidationError('Photos have already been uploaded for this request')
    data = parse_body(PhotoUploadSchema)

    photo_request.status = 'UPLOADED'
    photo_request.photo_count = data.photo_count
    photo_request.uploaded_at = utcnow()
    db.session.commit()

    app_logger.info("PHOTOS_UPLOADED", extra={
        'event': 'PHOTO_UPLOAD',
        'photo_request_id': photo_request.id,
        'photo_count': data.photo_count,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'photo_request': photo_request.to_dict(public=True)})
