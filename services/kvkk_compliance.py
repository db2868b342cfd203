"""
KVKK yanıt süresi (SLA) motoru.

Veri sorumlusu, ilgili kişi başvurusunu başvuru tarihinden itibaren 30 gün
içinde yanıtlamalıdır. Bu modül başvuru listesinden uyum metriklerini,
günlük eğilimi, otomatik raporu ve yönetim panelindeki izleme özetini
üretir.

Hesaplamalar başvuru nesneleri (``status``, ``submitted_at``,
``processed_at`` ve isteğe bağlı ``response_deadline`` taşıyan her şey)
ve açıkça verilen ``now`` üzerinde çalışan düz fonksiyonlardır;
veritabanına yalnızca ``load_*`` / ``record_*`` yardımcıları dokunur.

Metrik logu örneği (JSON)::
{
    "timestamp": "2026-05-04T09:00:03.118Z",
    "level": "INFO",
    "event": "COMPLIANCE_METRICS",
    "compliance_score": 82,
    "risk_level": "MEDIUM",
    "overdue_count": 1,
    "signature": "a41b9c..."
}
"""

import logging
import math
from datetime import timedelta

from extensions import db
from models import KVKKApplication, KVKKAuditLog, utcnow

compliance_logger = logging.getLogger("compliance")

RESPONSE_DAYS = 30
OPEN_STATUSES = ('PENDING', 'IN_PROGRESS')
DUE_SOON_DAYS = 7
OVERVIEW_WINDOW_DAYS = 90
CRITICAL_ISSUE_LIMIT = 10


def js_round(value):
    """Yarımı yukarı yuvarlar (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def calculate_response_deadline(submitted_at):
    return submitted_at + timedelta(days=RESPONSE_DAYS)


def deadline_of(application):
    return getattr(application, 'response_deadline', None) or calculate_response_deadline(application.submitted_at)


def is_open(application):
    return application.status in OPEN_STATUSES


def is_overdue(application, now):
    return is_open(application) and deadline_of(application) < now


def completed_on_time(application):
    return (application.status == 'COMPLETED' and application.processed_at is not None
            and application.processed_at <= deadline_of(application))


def completed_late(application):
    return (application.status == 'COMPLETED' and application.processed_at is not None
            and application.processed_at > deadline_of(application))


def average_response_days(applications):
    """Tamamlanan başvurularda başvuru ile işlem arasındaki tam gün ortalaması."""
    durations = [
        (a.processed_at - a.submitted_at).days
        for a in applications
        if a.status == 'COMPLETED' and a.processed_at is not None
    ]
    if not durations:
        return 0
    return js_round(sum(durations) / len(durations))


def determine_risk_level(score, overdue_count, avg_days):
    if overdue_count > 5 or score < 50:
        return 'CRITICAL'
    if overdue_count > 2 or score < 70 or avg_days > 25:
        return 'HIGH'
    if overdue_count > 0 or score < 85 or avg_days > 20:
        return 'MEDIUM'
    return 'LOW'


def generate_recommendations(score, overdue_count, avg_days, still_pending):
    recommendations = []
    if overdue_count > 0:
        recommendations.append(f"{overdue_count} süresi geçen başvuru için acil müdahale gerekli")
    if score < 70:
        recommendations.append("Düşük uyumluluk skoru - süreç iyileştirmesi kritik")
    if avg_days > 25:
        recommendations.append("Yüksek ortalama yanıt süresi - kaynak artırımı önerili")
    if still_pending > 10:
        recommendations.append("Yüksek bekleyen başvuru sayısı - iş akışı optimizasyonu gerekli")
    if score >= 90:
        recommendations.append("Mükemmel uyumluluk performansı - mevcut süreçleri koruyun")
    if not recommendations:
        recommendations.append("Genel uyumluluk durumu tatmin edici")
    return recommendations


def calculate_compliance_metrics(applications, now, period_days=30):
    """
    Son ``period_days`` gün içinde yapılan başvuruların uyum metrikleri.

    **Puan**
    - Dönemde başvuru yoksa 100.
    - Aksi halde ``round(on_time_rate * 100) - round(overdue_rate * 50)``;
      ortalama yanıt 25 günü aşarsa 10, 30 günü aşarsa 10 puan daha
      düşülür, puan 0'ın altına inmez.
    - ``on_time_rate`` zamanında / (zamanında + geç) oranıdır; henüz
      tamamlanan yoksa 1.0 sayılır.

    Args:
        applications (iterable): Başvuru nesneleri (her dönem; burada süzülür).
        now (datetime): Saat dilimsiz UTC referans zamanı.
        period_days (int): Geriye bakılan gün sayısı.

    Returns:
        dict: total_applications, completed_on_time, completed_late,
        still_pending, overdue_count, avg_response_days, compliance_score,
        risk_level, recommendations.
    """
    period_start = now - timedelta(days=period_days)
    period = [a for a in applications if a.submitted_at >= period_start]

    total = len(period)
    on_time = sum(1 for a in period if completed_on_time(a))
    late = sum(1 for a in period if completed_late(a))
    still_pending = sum(1 for a in period if is_open(a))
    overdue = sum(1 for a in period if is_overdue(a, now))
    avg_days = average_response_days(period)

    score = 100
    if total > 0:
        completed = on_time + late
        on_time_rate = on_time / completed if completed else 1.0
        overdue_rate = overdue / total
        score = js_round(on_time_rate * 100)
        score -= js_round(overdue_rate * 50)
        if avg_days > 25:
            score -= 10
        if avg_days > 30:
            score -= 10
        score = max(0, score)

    return {
        'total_applications': total,
        'completed_on_time': on_time,
        'completed_late': late,
        'still_pending': still_pending,
        'overdue_count': overdue,
        'avg_response_days': avg_days,
        'compliance_score': score,
        'risk_level': determine_risk_level(score, overdue, avg_days),
        'recommendations': generate_recommendations(score, overdue, avg_days, still_pending),
    }


def compliance_trend(applications, now, days=30):
    """Başvuru günü başına zamanında yüzdesi ve süresi geçen sayısı, en eski gün önce."""
    start = now - timedelta(days=days)
    buckets = {}
    for a in applications:
        if a.submitted_at < start:
            continue
        buckets.setdefault(a.submitted_at.date(), []).append(a)

    trend = []
    for day in sorted(buckets):
        group = buckets[day]
        total = len(group)
        on_time = sum(1 for a in group if completed_on_time(a))
        trend.append({
            'date': day.isoformat(),
            'score': js_round(on_time / total * 100) if total else 100,
            'total_applications': total,
            'overdue_count': sum(1 for a in group if is_overdue(a, now)),
        })
    return trend


def _issue(application):
    return {
        'id': application.id,
        'application_no': application.application_no,
        'applicant_name': application.applicant_name,
        'request_type': application.request_type,
        'submitted_at': application.submitted_at.isoformat(),
        'response_deadline': deadline_of(application).isoformat(),
    }


def build_action_items(summary):
    items = []
    if summary['overdue_count'] > 0:
        items.append({
            'priority': 'CRITICAL',
            'title': 'Süresi Geçen Başvurular',
            'description': f"{summary['overdue_count']} başvuru için acil müdahale",
            'action': 'immediate_review',
        })
    if summary['avg_response_days'] > 25:
        items.append({
            'priority': 'HIGH',
            'title': 'Yanıt Süresi Optimizasyonu',
            'description': f"Ortalama {summary['avg_response_days']} gün - hedef maksimum 20 gün",
            'action': 'process_improvement',
        })
    if summary['compliance_score'] < 85:
        items.append({
            'priority': 'MEDIUM',
            'title': 'Uyumluluk Skoru İyileştirmesi',
            'description': f"Mevcut skor %{summary['compliance_score']} - hedef minimum %85",
            'action': 'compliance_review',
        })
    return items


def generate_automated_report(applications, now, period_days=30):
    """
    Özet metrikler, eğilim, süresi geçmiş en eski 10 başvuru ve
    önceliklendirilmiş eylem maddeleri.
    """
    applications = list(applications)
    summary = calculate_compliance_metrics(applications, now, period_days)
    overdue = sorted((a for a in applications if is_overdue(a, now)), key=lambda a: a.submitted_at)
    return {
        'summary': summary,
        'trend': compliance_trend(applications, now, period_days),
        'critical_issues': [_issue(a) for a in overdue[:CRITICAL_ISSUE_LIMIT]],
        'action_items': build_action_items(summary),
    }


def build_monitoring_overview(applications, now):
    """
    Panel özeti: süresi geçen ve yaklaşan listeleri, açık başvuru sayısı,
    tüm zamanların ortalama yanıt günü, 90 günlük uyum oranı, uyarılar ve
    öneriler.
    """
    applications = list(applications)
    open_apps = [a for a in applications if is_open(a)]
    overdue = sorted((a for a in open_apps if deadline_of(a) < now), key=deadline_of)
    due_soon_limit = now + timedelta(days=DUE_SOON_DAYS)
    due_soon = sorted((a for a in open_apps if now <= deadline_of(a) <= due_soon_limit), key=deadline_of)

    avg_days = average_response_days(applications)

    window_start = now - timedelta(days=OVERVIEW_WINDOW_DAYS)
    window = [a for a in applications if a.submitted_at >= window_start]
    window_on_time = sum(1 for a in window if completed_on_time(a))
    compliance_rate = js_round(window_on_time / len(window) * 100) if window else 100

    overdue_count = len(overdue)
    due_soon_count = len(due_soon)
    total_open = len(open_apps)

    alerts = []
    if overdue_count > 0:
        alerts.append({
            'type': 'critical',
            'title': 'Süresi Geçen Başvurular',
            'message': f"{overdue_count} başvurunun yasal süresi geçmiş",
            'count': overdue_count,
            'action': 'Acil müdahale gerekli',
        })
    if due_soon_count > 0:
        alerts.append({
            'type': 'warning',
            'title': 'Yaklaşan Süreler',
            'message': f"{due_soon_count} başvurunun süresi 7 gün içinde dolacak",
            'count': due_soon_count,
            'action': 'Öncelik verilmeli',
        })
    if compliance_rate < 90:
        alerts.append({
            'type': 'warning',
            'title': 'Düşük Uyumluluk Oranı',
            'message': f"Son 90 günde uyumluluk oranı %{compliance_rate}",
            'count': compliance_rate,
            'action': 'Süreç iyileştirmesi önerilir',
        })
    if avg_days > 25:
        alerts.append({
            'type': 'info',
            'title': 'Yüksek Ortalama Yanıt Süresi',
            'message': f"Ortalama yanıt süresi {avg_days} gün",
            'count': avg_days,
            'action': 'Süreç optimizasyonu önerilir',
        })

    recommendations = []
    if overdue_count > 0:
        recommendations.append({
            'priority': 'high',
            'title': 'Acil Eylem Gerekli',
            'description': 'Süresi geçen başvuruları hemen değerlendirin',
            'action': 'view_overdue',
        })
    if total_open > 10:
        recommendations.append({
            'priority': 'medium',
            'title': 'Yüksek Başvuru Sayısı',
            'description': 'Bekleyen başvuru sayısı normalin üzerinde',
            'action': 'increase_capacity',
        })
    if compliance_rate < 95:
        recommendations.append({
            'priority': 'medium',
            'title': 'Uyumluluk İyileştirmesi',
            'description': 'Süreç standardizasyonu ve otomasyon önerilir',
            'action': 'improve_process',
        })

    return {
        'overview': {
            'overdue_count': overdue_count,
            'due_soon_count': due_soon_count,
            'total_pending_applications': total_open,
            'avg_response_days': avg_days,
            'compliance_rate': compliance_rate,
        },
        'alerts': alerts,
        'recommendations': recommendations,
        'overdue_applications': [a.to_dict() for a in overdue],
        'due_soon_applications': [a.to_dict() for a in due_soon],
        'last_updated': now.isoformat(),
    }


def load_applications():
    """İptal edilmemiş tüm başvurular, en eskisi önce."""
    return (KVKKApplication.query
            .filter(KVKKApplication.status != 'CANCELLED')
            .order_by(KVKKApplication.submitted_at.asc())
            .all())


def record_metrics(metrics, period_days, performed_by='SYSTEM'):
    """Metrikleri ``COMPLIANCE_METRICS_CALCULATED`` denetim kaydı olarak saklar."""
    details = dict(metrics)
    details['period_days'] = period_days
    details['calculated_at'] = utcnow().isoformat()
    db.session.add(KVKKAuditLog(
        action='COMPLIANCE_METRICS_CALCULATED',
        performed_by=performed_by,
        details=details,
    ))
    db.session.commit()
    compliance_logger.info("COMPLIANCE_METRICS_CALCULATED", extra={
        'event': 'COMPLIANCE_METRICS',
        'compliance_score': metrics['compliance_score'],
        'risk_level': metrics['risk_level'],
        'overdue_count': metrics['overdue_count'],
        'period_days': period_days
    })


def current_metrics(period_days=30, now=None, performed_by='SYSTEM'):
    """Canlı veri için metrikleri hesaplar, kaydeder ve döner."""
    now = now or utcnow()
    metrics = calculate_compliance_metrics(load_applications(), now, period_days)
    record_metrics(metrics, period_days, performed_by)
    return metrics
