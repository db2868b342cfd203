"""
İş ortağı kaydı (kurulumcular, tedarikçiler, danışmanlar, finansörler).

Bir firmanın en fazla bir iş ortağı kaydı olur. Kayıt, ``companies:verify``
yetkili bir yönetici kontrol ettikten sonra doğrulanmış görünür.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models import Company, Partner, utcnow
from permissions import deny, permission_required, role_required
from schemas import PartnerRegisterSchema, parse_body

partners_bp = Blueprint('partners', __name__, url_prefix='/api/partners')
app_logger = logging.getLogger("application")
security_logger = logging.getLogger("security")


def _matches(partner, service_area=None, specialty=None, capacity_kw=None):
    if service_area and service_area not in (partner.service_areas or []):
        return False
    if specialty and specialty not in (partner.specialties or []):
        return False
    if capacity_kw is not None:
        if partner.min_project_size_kw is not None and capacity_kw < partner.min_project_size_kw:
            return False
        if partner.max_project_size_kw is not None and capacity_kw > partner.max_project_size_kw:
            return False
    return True


@partners_bp.route('/register', methods=['POST'])
@role_required('ADMIN', 'COMPANY')
def register_partner():
    """
        Firmanın iş ortağı kaydını açar.

        COMPANY hesapları yalnızca kendi firmalarını kaydedebilir.

        Returns:
            Response: kayıt ile 201; firmanın kaydı zaten varsa 409;
            bilinmeyen firmada 400.
    """
    data = parse_body(PartnerRegisterSchema)
    if current_user.role == 'COMPANY' and data.company_id != current_user.company_id:
        deny([f"companies:{data.company_id}"])
    if not db.session.get(Company, data.company_id):
        raise ValidationError('Company not found')
    if Partner.query.filter_by(company_id=data.company_id).first():
        raise ConflictError('This company is already registered as a partner')

    partner = Partner(**data.model_dump())
    db.session.add(partner)
    db.session.commit()
    app_logger.info("PARTNER_REGISTERED", extra={
        'event': 'PARTNER_REGISTER',
        'user': current_user.email,
        'company_id': partner.company_id,
        'partner_type': partner.partner_type
    })
    return jsonify({'success': True, 'partner': partner.to_dict()}), 201


@partners_bp.route('')
@login_required
def list_partners():
    """
        İş ortağı kayıtları.

        **Sorgu parametreleri**
        - ``partner_type``, ``verified`` (``true`` / ``false``): sütun filtreleri.
        - ``service_area``, ``specialty``: kaydın listelerinde yer alma.
        - ``capacity_kw``: proje büyüklüğü kaydın min/max aralığında.
    """
    query = Partner.query
    if request.args.get('partner_type'):
        query = query.filter(Partner.partner_type == request.args['partner_type'])
    verified = request.args.get('verified')
    if verified is not None:
        query = query.filter(Partner.is_verified == (verified.lower() == 'true'))

    capacity = request.args.get('capacity_kw', type=float)
    partners = [
        p for p in query.order_by(Partner.is_verified.desc(), Partner.created_at.desc()).all()
        if _matches(p, request.args.get('service_area'), request.args.get('specialty'), capacity)
    ]
    return jsonify({'success': True, 'partners': [p.to_dict() for p in partners], 'count': len(partners)})


@partners_bp.route('/<int:partner_id>')
@login_required
def get_partner(partner_id):
    partner = db.session.get(Partner, partner_id)
    if not partner:
        raise NotFoundError('Partner not found')
    return jsonify({'success': True, 'partner': partner.to_dict()})


@partners_bp.route('/<int:partner_id>/verify', methods=['POST'])
@permission_required('companies:verify')
def verify_partner(partner_id):
    partner = db.session.get(Partner, partner_id)
    if not partner:
        raise NotFoundError('Partner not found')

    partner.is_verified = True
    partner.verified_at = utcnow()
    if partner.company is not None:
        partner.company.is_verified = True
    db.session.commit()
    security_logger.info("PARTNER_VERIFIED", extra={
        'event': 'COMPANY_VERIFICATION',
        'admin': current_user.email,
        'company_id': partner.company_id,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'partner': partner.to_dict()})
