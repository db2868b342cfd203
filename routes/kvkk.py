"""
KVKK başvuruları ve uyum izleme.

**Herkese açık**

- ``POST /api/legal/kvkk-application``: ilgili kişi başvurusu. Hesap
  gerekmez, CSRF muafiyeti ve istek sınırı vardır. Yanıt süresi
  (başvuru + 30 gün) başvuruyla birlikte saklanır.
- ``GET /api/legal/kvkk-application``: ``application_no`` ve / veya
  ``email`` ile durum sorgusu.

**Yönetim** (yalnızca ADMIN)

Başvuru listesi ve durum yönetimi, izleme paneli
(`services.kvkk_compliance.build_monitoring_overview`), eskalasyon ve
hatırlatmalar, uyum raporları ve zamanlayıcı işlerinin elle çalıştırılması.

Her durum değişikliği bir `models.KVKKAuditLog` kaydı ve ``compliance``
kanalında bir log satırı bırakır.

Örnek (JSON)::
{
    "timestamp": "2026-06-01T10:41:09.330Z",
    "level": "INFO",
    "event": "KVKK_APPLICATION",
    "application_no": "KVKK-2026-512034781",
    "request_type": "DATA_DELETION",
    "src_ip": "78.186.3.40",
    "signature": "2c26b46b68ffc68ff99b453c1d30413413422d706483bfa0f98a5e886266e7ae"
}
"""

import logging
import secrets
import time

from flask import Blueprint, jsonify, request
from flask_login import current_user

from errors import NotFoundError, ValidationError
from extensions import db, limiter
from models import KVKKApplication, KVKKAuditLog, utcnow
from permissions import role_required
from schemas import (KVKKApplicationSchema, KVKKMonitoringActionSchema, KVKKSchedulerActionSchema,
                     KVKKStatusUpdateSchema, parse_body)
from services.kvkk_compliance import (OPEN_STATUSES, build_monitoring_overview, calculate_compliance_metrics,
                                      calculate_response_deadline, compliance_trend, generate_automated_report,
                                      load_applications, record_metrics)
from services.kvkk_notifications import KVKKNotifier
from services.kvkk_scheduler import SCHEDULER_ACTIONS

kvkk_bp = Blueprint('kvkk', __name__)
compliance_logger = logging.getLogger("compliance")
error_logger = logging.getLogger("error")

SUMMARY_LIMIT = 10


def generate_application_no(now=None):
    """KVKK-<yıl>-<ms saatinin son 6 hanesi><3 rastgele hane>"""
    now = now or utcnow()
    stamp = str(int(time.time() * 1000))[-6:]
    return f"KVKK-{now.year}-{stamp}{secrets.randbelow(1000):03d}"


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.headers.get('X-Real-IP') or request.remote_addr or 'unknown'


def _application(application_id):
    application = db.session.get(KVKKApplication, application_id)
    if not application:
        raise NotFoundError('Başvuru bulunamadı')
    return application


# herkese açık

@kvkk_bp.route('/api/legal/kvkk-application', methods=['POST'])
@limiter.limit("5 per hour")
def submit_application():
    """
        İlgili kişi başvurusu (KVKK madde 11).

        T.C. kimlik numarası 11 haneli olmalı; açık rıza ve koşullar kabul
        edilmelidir. Dış talep türleri (``info``, ``deletion``...) iç
        türler (``DATA_ACCESS``, ``DATA_DELETION``...) olarak saklanır.

        Returns:
            Response: ``application_no`` ve ``response_deadline`` ile 201.
    """
    data = parse_body(KVKKApplicationSchema)
    ip_address = _client_ip()
    user_agent = (request.headers.get('User-Agent') or 'unknown')[:300]
    now = utcnow()

    application_no = generate_application_no(now)
    while KVKKApplication.query.filter_by(application_no=application_no).first():
        application_no = generate_application_no(now)

    address = ", ".join(p for p in (data.address, data.district, data.city, data.postal_code) if p)
    application = KVKKApplication(
        application_no=application_no,
        request_type=data.mapped_request_type,
        status='PENDING',
        applicant_name=data.full_name,
        applicant_tc_no=data.tc_no,
        applicant_email=data.email,
        applicant_phone=data.phone,
        applicant_address=address,
        request_details=data.details,
        ip_address=ip_address,
        user_agent=user_agent,
        submitted_at=now,
        response_deadline=calculate_response_deadline(now),
    )
    try:
        db.session.add(application)
        db.session.flush()
        db.session.add(KVKKAuditLog(
            action='APPLICATION_SUBMITTED',
            application_id=application.id,
            performed_by=data.email,
            ip_address=ip_address,
            details={
                'application_no': application_no,
                'request_type': data.request_type,
                'applicant_email': data.email,
                'previous_application_no': data.previous_application_no if data.previous_application else None,
                'ip_address': ip_address,
                'user_agent': user_agent,
            },
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("KVKK_APPLICATION_ERROR", exc_info=True, extra={'src_ip': ip_address})
        raise

    compliance_logger.info("KVKK_APPLICATION_SUBMITTED", extra={
        'event': 'KVKK_APPLICATION',
        'application_no': application_no,
        'request_type': application.request_type,
        'src_ip': ip_address
    })
    return jsonify({
        'success': True,
        'application_no': application_no,
        'response_deadline': application.response_deadline.isoformat(),
        'message': 'Başvurunuz başarıyla alındı',
    }), 201


@kvkk_bp.route('/api/legal/kvkk-application')
@limiter.limit("30 per hour")
def application_status():
    application_no = request.args.get('application_no')
    email = request.args.get('email')
    if not application_no and not email:
        raise ValidationError('Başvuru numarası veya e-posta gerekli')

    query = KVKKApplication.query
    if application_no:
        query = query.filter(KVKKApplication.application_no == application_no)
    if email:
        query = query.filter(KVKKApplication.applicant_email == email)
    application = query.order_by(KVKKApplication.submitted_at.desc()).first()
    if not application:
        raise NotFoundError('Başvuru bulunamadı')
    return jsonify({'success': True, 'application': application.to_status_dict()})


# yönetim

@kvkk_bp.route('/api/admin/kvkk/applications')
@role_required('ADMIN')
def list_applications():
    """
        Başvuru listesi.

        ``status`` / ``request_type`` filtreler (``all`` durum filtresini
        kapatır); ``summary=true`` panel bileşeni için en yeni 10 kaydı
        döner; aksi halde ``page`` / ``limit`` (varsayılan 50) sayfalar.
    """
    query = KVKKApplication.query
    status = request.args.get('status')
    if status and status != 'all':
        query = query.filter(KVKKApplication.status == status)
    if request.args.get('request_type'):
        query = query.filter(KVKKApplication.request_type == request.args['request_type'])
    query = query.order_by(KVKKApplication.submitted_at.desc(), KVKKApplication.id.desc())

    if request.args.get('summary', 'false').lower() == 'true':
        latest = query.limit(SUMMARY_LIMIT).all()
        return jsonify({'success': True, 'applications': [a.to_dict() for a in latest]})

    page = max(request.args.get('page', 1, type=int), 1)
    limit = min(max(request.args.get('limit', 50, type=int), 1), 100)
    result = query.paginate(page=page, per_page=limit, error_out=False)
    return jsonify({
        'success': True,
        'applications': [a.to_dict() for a in result.items],
        'pagination': {'page': page, 'limit': limit, 'total': result.total, 'pages': result.pages},
    })


@kvkk_bp.route('/api/admin/kvkk/applications/<int:application_id>')
@role_required('ADMIN')
def get_application(application_id):
    application = _application(application_id)
    data = application.to_dict()
    data['audit_logs'] = [log.to_dict() for log in application.audit_logs.order_by(KVKKAuditLog.performed_at)]
    return jsonify({'success': True, 'application': data})


@kvkk_bp.route('/api/admin/kvkk/applications/<int:application_id>', methods=['PUT', 'PATCH'])
@role_required('ADMIN')
def update_application(application_id):
    """Durum değişikliği; ``processed_at`` COMPLETED ile atanır, başvuru yeniden açılınca silinir."""
    application = _application(application_id)
    data = parse_body(KVKKStatusUpdateSchema)
    if application.status == 'CANCELLED':
        raise ValidationError('Cancelled applications cannot be changed')

    old_status = application.status
    application.status = data.status
    if data.response_details is not None:
        application.response_details = data.response_details
    if data.assigned_to is not None:
        application.assigned_to = data.assigned_to
    if data.status == 'COMPLETED' and application.processed_at is None:
        application.processed_at = utcnow()
    elif data.status in OPEN_STATUSES:
        application.processed_at = None

    db.session.add(KVKKAuditLog(
        action='STATUS_UPDATED',
        application_id=application.id,
        performed_by=current_user.email,
        ip_address=request.remote_addr,
        details={'old_status': old_status, 'new_status': data.status,
                 'response_details': data.response_details},
    ))
    db.session.commit()
    compliance_logger.info("KVKK_STATUS_UPDATED", extra={
        'event': 'KVKK_STATUS_CHANGE',
        'user': current_user.email,
        'application_no': application.application_no,
        'old_status': old_status,
        'new_status': data.status
    })
    return jsonify({'success': True, 'application': application.to_dict()})


@kvkk_bp.route('/api/admin/kvkk/applications/<int:application_id>', methods=['DELETE'])
@role_required('ADMIN')
def cancel_application(application_id):
    """Başvuruyu iptal eder. Kayıt ve denetim geçmişi korunur."""
    application = _application(application_id)
    old_status = application.status
    application.status = 'CANCELLED'
    db.session.add(KVKKAuditLog(
        action='APPLICATION_CANCELLED',
        application_id=application.id,
        performed_by=current_user.email,
        ip_address=request.remote_addr,
        details={'old_status': old_status},
    ))
    db.session.commit()
    compliance_logger.warning("KVKK_APPLICATION_CANCELLED", extra={
        'event': 'KVKK_STATUS_CHANGE',
        'user': current_user.email,
        'application_no': application.application_no,
        'old_status': old_status
    })
    return jsonify({'success': True, 'message': 'Başvuru iptal edildi'})


@kvkk_bp.route('/api/admin/kvkk/monitoring')
@role_required('ADMIN')
def monitoring_overview():
    overview = build_monitoring_overview(load_applications(), utcnow())
    return jsonify(dict(overview, success=True))


@kvkk_bp.route('/api/admin/kvkk/monitoring', methods=['POST'])
@role_required('ADMIN')
def monitoring_action():
    """
        Elle eskalasyon ve hatırlatma.

        ``escalate_overdue``: ``application_ids`` içindeki açık ve süresi
        geçmiş başvuruları eskale edilmiş olarak işaretler ve yöneticileri
        bilgilendirir. ``send_reminders``: bu başvurular için süre
        hatırlatması gönderir. ``application_ids`` verilmezse güncel süresi
        geçmiş (veya süresi yaklaşan) liste kullanılır.
    """
    data = parse_body(KVKKMonitoringActionSchema)
    now = utcnow()
    overview = None
    if data.application_ids is None:
        overview = build_monitoring_overview(load_applications(), now)

    notifier = KVKKNotifier()
    if data.action == 'escalate_overdue':
        ids = data.application_ids
        if ids is None:
            ids = [a['id'] for a in overview['overdue_applications']]
        applications = (KVKKApplication.query
                        .filter(KVKKApplication.id.in_(ids), KVKKApplication.status.in_(OPEN_STATUSES),
                                KVKKApplication.response_deadline < now)
                        .all()) if ids else []
        for application in applications:
            application.escalated_at = now
            db.session.add(KVKKAuditLog(
                action='APPLICATION_ESCALATED',
                application_id=application.id,
                performed_by=current_user.email,
                details={'reason': 'Deadline exceeded', 'escalated_at': now.isoformat()},
            ))
        db.session.commit()
        result = notifier.send_overdue_notifications([a.id for a in applications])
        affected = len(applications)
    elif data.action == 'send_reminders':
        ids = data.application_ids
        if ids is None:
            ids = [a['id'] for a in overview['due_soon_applications']]
        existing = [row.id for row in KVKKApplication.query.with_entities(KVKKApplication.id)
                    .filter(KVKKApplication.id.in_(ids)).all()] if ids else []
        for application_id in existing:
            db.session.add(KVKKAuditLog(
                action='REMINDER_SENT',
                application_id=application_id,
                performed_by=current_user.email,
                details={'reminder_type': 'deadline_approaching', 'sent_at': now.isoformat()},
            ))
        db.session.commit()
        result = notifier.send_reminder_notifications(existing)
        affected = len(existing)
    else:
        raise ValidationError('Geçersiz eylem')

    compliance_logger.info("KVKK_MONITORING_ACTION", extra={
        'event': 'KVKK_ESCALATION',
        'user': current_user.email,
        'action': data.action,
        'applications': affected,
        'notification_success': result.get('success')
    })
    return jsonify({
        'success': True,
        'message': 'Eylem başarıyla gerçekleştirildi',
        'affected': affected,
        'notification': result,
    })


@kvkk_bp.route('/api/admin/kvkk/compliance')
@role_required('ADMIN')
def compliance_report():
    """
        Uyum rakamları.

        ``type``: ``summary`` (denetim geçmişine yazılan metrikler),
        ``trend`` (günlük puanlar) veya ``full_report``; ``days`` dönemi
        belirler (varsayılan 30).
    """
    report_type = request.args.get('type', 'summary')
    period_days = request.args.get('days', 30, type=int)
    if period_days < 1 or period_days > 365:
        raise ValidationError('days must be between 1 and 365')
    now = utcnow()
    applications = load_applications()

    if report_type == 'summary':
        metrics = calculate_compliance_metrics(applications, now, period_days)
        record_metrics(metrics, period_days, performed_by=current_user.email)
        return jsonify({'success': True, 'metrics': metrics})
    if report_type == 'trend':
        return jsonify({'success': True, 'trend': compliance_trend(applications, now, period_days)})
    if report_type == 'full_report':
        report = generate_automated_report(applications, now, period_days)
        record_metrics(report['summary'], period_days, performed_by=current_user.email)
        return jsonify({'success': True, 'report': report})
    raise ValidationError('Geçersiz rapor türü')


@kvkk_bp.route('/api/admin/kvkk/scheduler', methods=['POST'])
@role_required('ADMIN')
def run_scheduler_action():
    """Bir zamanlayıcı işini hemen çalıştırır (bkz. `services.kvkk_scheduler.SCHEDULER_ACTIONS`)."""
    data = parse_body(KVKKSchedulerActionSchema)
    result = SCHEDULER_ACTIONS[data.action]()
    compliance_logger.info("KVKK_SCHEDULER_MANUAL_RUN", extra={
        'event': 'KVKK_SCHEDULER',
        'user': current_user.email,
        'action': data.action
    })
    return jsonify({'success': True, 'action': data.action, 'result': result})
