"""
KVKK süreleri için e-posta bildirimleri (Flask-Mail).

Alıcılar ``KVKK_ADMIN_EMAILS`` adresleridir. Giden her ileti bir
`KVKKAuditLog` kaydı bırakır; zamanlayıcı aynı başvuruyu iki kez
bildirmemek için bu kayıtlara bakar.

Bildirim logu örneği (JSON)::
{
    "timestamp": "2026-05-04T09:00:04.871Z",
    "level": "INFO",
    "event": "KVKK_NOTIFICATION",
    "notification_type": "overdue",
    "application_no": "KVKK-2026-4821930417",
    "days_overdue": 3,
    "signature": "0c7d51..."
}
"""

import logging
import math
from datetime import timedelta

from flask import current_app, render_template
from flask_mail import Message

from extensions import db, mail
from models import KVKKApplication, KVKKAuditLog, utcnow
from services.kvkk_compliance import OPEN_STATUSES, average_response_days, completed_on_time, deadline_of, js_round

compliance_logger = logging.getLogger("compliance")
error_logger = logging.getLogger("error")

REQUEST_TYPE_LABELS = {
    'DATA_ACCESS': 'Bilgi Edinme / Erişim',
    'DATA_CORRECTION': 'Düzeltme',
    'DATA_DELETION': 'Silme',
    'DATA_PORTABILITY': 'Taşınabilirlik',
    'DATA_OBJECTION': 'İtiraz',
    'OTHER': 'Diğer',
}

NOT_CONFIGURED = {'success': False, 'message': 'Email service not configured'}
SECONDS_PER_DAY = 24 * 60 * 60


def format_tr(value):
    """dd.mm.yyyy HH:MM"""
    return value.strftime('%d.%m.%Y %H:%M')


def days_between(later, earlier):
    """``earlier`` ile ``later`` arasındaki gün sayısı, yukarı yuvarlanmış."""
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


class KVKKNotifier:
    """
    Süre aşımı bildirimlerini, süre hatırlatmalarını ve günlük uyum raporunu gönderir.

    Args:
        admin_emails (list): Alıcılar. Varsayılan ``KVKK_ADMIN_EMAILS``.
        clock (callable): Saat dilimsiz UTC "şimdi" döner. Varsayılan `models.utcnow`.
    """

    def __init__(self, admin_emails=None, clock=None):
        if admin_emails is None:
            admin_emails = current_app.config.get('KVKK_ADMIN_EMAILS', [])
        self.admin_emails = list(admin_emails)
        self.clock = clock or utcnow

    @property
    def configured(self):
        return bool(self.admin_emails) and 'mail' in current_app.extensions

    def _send(self, subject, template, context, text_template=None):
        context = dict(context, app_url=current_app.config.get('APP_URL', ''))
        msg = Message(
            subject=subject,
            recipients=self.admin_emails,
            sender=current_app.config.get('FROM_EMAIL'),
            html=render_template(f"email/{template}", **context),
        )
        if text_template:
            msg.body = render_template(f"email/{text_template}", **context)
        mail.send(msg)

    def _context(self, application):
        return {
            'application_no': application.application_no,
            'applicant_name': application.applicant_name,
            'applicant_email': application.applicant_email,
            'request_type_label': REQUEST_TYPE_LABELS.get(application.request_type, application.request_type),
            'submitted_at': format_tr(application.submitted_at),
            'response_deadline': format_tr(deadline_of(application)),
        }

    def _open_applications(self, application_ids):
        if not application_ids:
            return []
        return (KVKKApplication.query
                .filter(KVKKApplication.id.in_(application_ids),
                        KVKKApplication.status.in_(OPEN_STATUSES))
                .all())

    def _audit(self, action, application, details):
        db.session.add(KVKKAuditLog(
            action=action,
            application_id=application.id if application is not None else None,
            performed_by='SYSTEM',
            details=dict(details, admin_emails=self.admin_emails),
        ))

    def send_overdue_notifications(self, application_ids):
        """
        Süresi geçmiş başvuruları yöneticilere bildirir.

        Açık olmayan veya henüz süresi geçmemiş başvurular atlanır.

        Returns:
            dict: ``success``, ``message`` ve gönderilen bildirim sayısı ``sent``.
        """
        if not self.configured:
            return dict(NOT_CONFIGURED)

        now = self.clock()
        sent = 0
        try:
            for application in self._open_applications(application_ids):
                days_overdue = days_between(now, deadline_of(application))
                if days_overdue <= 0:
                    continue
                context = self._context(application)
                context['days_overdue'] = days_overdue
                self._send(f"Acil: KVKK Başvuru Süresi Geçti - {application.application_no}",
                           'kvkk_overdue.html', context, 'kvkk_overdue.txt')
                self._audit('OVERDUE_NOTIFICATION_SENT', application, {
                    'days_overdue': days_overdue,
                    'notification_type': 'overdue',
                })
                compliance_logger.warning("KVKK_OVERDUE_NOTIFICATION", extra={
                    'event': 'KVKK_NOTIFICATION',
                    'notification_type': 'overdue',
                    'application_no': application.application_no,
                    'days_overdue': days_overdue
                })
                sent += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            error_logger.error("KVKK_OVERDUE_NOTIFICATION_ERROR", exc_info=True)
            return {'success': False, 'message': 'Failed to send overdue notifications'}

        return {'success': True, 'message': f"Overdue notifications sent for {sent} applications", 'sent': sent}

    def send_reminder_notifications(self, application_ids):
        """Süresi 1 ile 7 gün içinde dolacak başvuruları yöneticilere hatırlatır."""
        if not self.configured:
            return dict(NOT_CONFIGURED)

        now = self.clock()
        sent = 0
        try:
            for application in self._open_applications(application_ids):
                days_remaining = days_between(deadline_of(application), now)
                if days_remaining <= 0 or days_remaining > 7:
                    continue
                context = self._context(application)
                context['days_remaining'] = days_remaining
                self._send(f"Hatırlatma: KVKK Başvuru Süresi Yaklaşıyor - {application.application_no}",
                           'kvkk_reminder.html', context, 'kvkk_reminder.txt')
                self._audit('REMINDER_NOTIFICATION_SENT', application, {
                    'days_remaining': days_remaining,
                    'notification_type': 'reminder',
                })
                compliance_logger.info("KVKK_REMINDER_NOTIFICATION", extra={
                    'event': 'KVKK_NOTIFICATION',
                    'notification_type': 'reminder',
                    'application_no': application.application_no,
                    'days_remaining': days_remaining
                })
                sent += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            error_logger.error("KVKK_REMINDER_NOTIFICATION_ERROR", exc_info=True)
            return {'success': False, 'message': 'Failed to send reminder notifications'}

        return {'success': True, 'message': f"Reminder notifications sent for {sent} applications", 'sent': sent}

    def daily_report_data(self, now=None):
        """
        Günlük raporun rakamları.

        Süresi geçen / yaklaşan ayrımı, son tarihe kalan yukarı yuvarlanmış
        gün sayısına göre yapılır (sıfırın altı geçmiş, 7'ye kadar
        yaklaşan); uyum oranı son 30 günü kapsar.
        """
        now = now or self.clock()
        open_apps = KVKKApplication.query.filter(KVKKApplication.status.in_(OPEN_STATUSES)).all()

        overdue_count = 0
        due_soon_count = 0
        for application in open_apps:
            days_left = days_between(deadline_of(application), now)
            if days_left < 0:
                overdue_count += 1
            elif days_left <= 7:
                due_soon_count += 1

        completed = KVKKApplication.query.filter_by(status='COMPLETED').all()
        recent = KVKKApplication.query.filter(
            KVKKApplication.submitted_at >= now - timedelta(days=30)).all()
        on_time = sum(1 for a in recent if completed_on_time(a))

        return {
            'overdue_count': overdue_count,
            'due_soon_count': due_soon_count,
            'compliance_rate': js_round(on_time / len(recent) * 100) if recent else 100,
            'total_pending': len(open_apps),
            'avg_response_days': average_response_days(completed),
        }

    def send_daily_compliance_report(self):
        if not self.configured:
            return dict(NOT_CONFIGURED)

        now = self.clock()
        try:
            report = self.daily_report_data(now)
            context = dict(report, report_date=format_tr(now))
            self._send(f"KVKK Uyumluluk Raporu - {format_tr(now)}", 'kvkk_report.html', context)
            self._audit('COMPLIANCE_REPORT_SENT', None, {
                'report_data': report,
                'report_type': 'daily_compliance',
            })
            db.session.commit()
        except Exception:
            db.session.rollback()
            error_logger.error("KVKK_COMPLIANCE_REPORT_ERROR", exc_info=True)
            return {'success': False, 'message': 'Failed to send compliance report'}

        compliance_logger.info("KVKK_COMPLIANCE_REPORT_SENT", extra={
            'event': 'KVKK_NOTIFICATION',
            'notification_type': 'daily_report',
            'recipients': len(self.admin_emails)
        })
        return {'success': True, 'message': 'Daily compliance report sent successfully', 'report': report}
