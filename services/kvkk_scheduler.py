"""
Periyodik KVKK ve teklif bakım işleri.

Buradaki fonksiyonları APScheduler (bkz. `init_scheduler`) ve
``/api/admin/kvkk/scheduler`` uç noktası çalıştırır. Her biri kendi
penceresinde tekrarlanabilir: süre aşımı bildirimi başvuru başına günde bir,
hatırlatma başvuru başına 3 günde bir, günlük rapor günde bir kez gider.
Dönen ``notified`` yalnızca gerçekten gönderilen bildirimleri sayar.
"""

import logging
from datetime import timedelta

from extensions import db, scheduler
from models import KVKKApplication, KVKKAuditLog, Quote, utcnow
from services.kvkk_compliance import OPEN_STATUSES, DUE_SOON_DAYS
from services.kvkk_notifications import KVKKNotifier

compliance_logger = logging.getLogger("compliance")
app_logger = logging.getLogger("application")

REMINDER_INTERVAL_DAYS = 3
DAILY_REPORT_HOUR = 9
DAILY_REPORT_WINDOW_MINUTES = 30


def _start_of_day(now):
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _notified_ids(action, since, application_ids):
    rows = (KVKKAuditLog.query
            .with_entities(KVKKAuditLog.application_id)
            .filter(KVKKAuditLog.action == action,
                    KVKKAuditLog.performed_at >= since,
                    KVKKAuditLog.application_id.in_(application_ids))
            .all())
    return {row.application_id for row in rows}


def _sent(result):
    if not result or not result.get('success'):
        return 0
    return result.get('sent', 0)


def check_overdue_applications(now=None, notifier=None):
    """Bugün henüz bildirilmemiş açık başvurular için süre aşımı bildirimi gönderir."""
    now = now or utcnow()
    overdue_ids = [row.id for row in (KVKKApplication.query
                                      .with_entities(KVKKApplication.id)
                                      .filter(KVKKApplication.response_deadline < now,
                                              KVKKApplication.status.in_(OPEN_STATUSES))
                                      .all())]
    if not overdue_ids:
        return {'found': 0, 'notified': 0, 'result': None}

    done = _notified_ids('OVERDUE_NOTIFICATION_SENT', _start_of_day(now), overdue_ids)
    pending = [i for i in overdue_ids if i not in done]
    result = None
    if pending:
        notifier = notifier or KVKKNotifier(clock=lambda: now)
        result = notifier.send_overdue_notifications(pending)
    return {'found': len(overdue_ids), 'notified': _sent(result), 'result': result}


def check_reminder_applications(now=None, notifier=None):
    """Süresi 7 gün içinde dolacak başvuruları, her biri için en fazla 3 günde bir hatırlatır."""
    now = now or utcnow()
    due_ids = [row.id for row in (KVKKApplication.query
                                  .with_entities(KVKKApplication.id)
                                  .filter(KVKKApplication.response_deadline >= now,
                                          KVKKApplication.response_deadline <= now + timedelta(days=DUE_SOON_DAYS),
                                          KVKKApplication.status.in_(OPEN_STATUSES))
                                  .all())]
    if not due_ids:
        return {'found': 0, 'notified': 0, 'result': None}

    done = _notified_ids('REMINDER_NOTIFICATION_SENT', now - timedelta(days=REMINDER_INTERVAL_DAYS), due_ids)
    pending = [i for i in due_ids if i not in done]
    result = None
    if pending:
        notifier = notifier or KVKKNotifier(clock=lambda: now)
        result = notifier.send_reminder_notifications(pending)
    return {'found': len(due_ids), 'notified': _sent(result), 'result': result}


def send_daily_report(now=None, notifier=None):
    """Bugün gönderilmediyse uyum raporunu gönderir."""
    now = now or utcnow()
    already_sent = (KVKKAuditLog.query
                    .filter(KVKKAuditLog.action == 'COMPLIANCE_REPORT_SENT',
                            KVKKAuditLog.performed_at >= _start_of_day(now))
                    .first())
    if already_sent:
        return {'sent': False, 'message': 'Daily compliance report already sent today'}
    notifier = notifier or KVKKNotifier(clock=lambda: now)
    result = notifier.send_daily_compliance_report()
    return {'sent': result['success'], 'result': result}


def automated_monitoring(now=None, notifier=None):
    """
    Tek izleme turu: süre aşımı kontrolü, hatırlatma kontrolü ve tur
    09:00 ile 09:30 arasında çalışıyorsa günlük rapor.
    """
    now = now or utcnow()
    summary = {
        'overdue': check_overdue_applications(now, notifier),
        'reminders': check_reminder_applications(now, notifier),
        'daily_report': None,
    }
    if now.hour == DAILY_REPORT_HOUR and now.minute < DAILY_REPORT_WINDOW_MINUTES:
        summary['daily_report'] = send_daily_report(now, notifier)

    db.session.add(KVKKAuditLog(
        action='AUTOMATED_MONITORING_EXECUTED',
        performed_by='SYSTEM',
        details={'executed_at': now.isoformat(), 'monitoring_type': 'automated'},
    ))
    db.session.commit()
    compliance_logger.info("AUTOMATED_MONITORING_EXECUTED", extra={
        'event': 'KVKK_MONITORING',
        'overdue_found': summary['overdue']['found'],
        'reminders_found': summary['reminders']['found']
    })
    return summary


def expire_quotes(now=None):
    """Geçerlilik süresi dolan SENT teklifleri EXPIRED yapar."""
    now = now or utcnow()
    expired = (Quote.query
               .filter(Quote.status == 'SENT', Quote.valid_until.isnot(None), Quote.valid_until < now)
               .all())
    for quote in expired:
        quote.status = 'EXPIRED'
    db.session.commit()
    if expired:
        app_logger.info("QUOTES_EXPIRED", extra={
            'event': 'QUOTE_EXPIRY',
            'count': len(expired),
            'quote_numbers': [q.quote_number for q in expired]
        })
    return len(expired)


SCHEDULER_ACTIONS = {
    'check_overdue_applications': check_overdue_applications,
    'check_reminder_applications': check_reminder_applications,
    'send_daily_report': send_daily_report,
    'automated_monitoring': automated_monitoring,
}


def _in_context(app, func):
    def job():
        with app.app_context():
            func()
    return job


def init_scheduler(app):
    """Arka plan işlerini kaydeder ve zamanlayıcıyı başlatır (süreç başına bir kez)."""
    if scheduler.running:
        return
    scheduler.add_job(_in_context(app, automated_monitoring), 'interval', minutes=30,
                      id='kvkk_automated_monitoring', replace_existing=True)
    scheduler.add_job(_in_context(app, expire_quotes), 'interval', hours=1,
                      id='quote_expiry', replace_existing=True)
    scheduler.start()
    app_logger.info("SCHEDULER_STARTED", extra={
        'event': 'SYSTEM_BOOT',
        'jobs': [job.id for job in scheduler.get_jobs()]
    })
