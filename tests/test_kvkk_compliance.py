from datetime import datetime, timedelta

from services.kvkk_compliance import (average_response_days, build_monitoring_overview,
                                      calculate_compliance_metrics, calculate_response_deadline,
                                      compliance_trend, determine_risk_level, generate_automated_report,
                                      js_round)

NOW = datetime(2026, 5, 4, 9, 0)


class FakeApplication:
    def __init__(self, ident, days_ago, status='PENDING', processed_after_days=None):
        self.id = ident
        self.application_no = f"KVKK-2026-{ident:09d}"
        self.applicant_name = 'Test Başvuran'
        self.request_type = 'DATA_ACCESS'
        self.status = status
        self.submitted_at = NOW - timedelta(days=days_ago)
        self.response_deadline = calculate_response_deadline(self.submitted_at)
        self.processed_at = (self.submitted_at + timedelta(days=processed_after_days)
                             if processed_after_days is not None else None)

    def to_dict(self):
        return {'id': self.id, 'application_no': self.application_no}


def test_js_round_is_half_up():
    assert js_round(2.5) == 3
    assert js_round(-2.5) == -2
    assert js_round(2.4999) == 2


def test_deadline_is_thirty_days():
    submitted = datetime(2026, 1, 31, 12, 0)
    assert calculate_response_deadline(submitted) == datetime(2026, 3, 2, 12, 0)


def test_empty_period_scores_100():
    metrics = calculate_compliance_metrics([], NOW)
    assert metrics['compliance_score'] == 100
    assert metrics['risk_level'] == 'LOW'
    assert metrics['recommendations'] == ["Mükemmel uyumluluk performansı - mevcut süreçleri koruyun"]


def test_nothing_completed_counts_as_on_time():
    metrics = calculate_compliance_metrics([FakeApplication(1, 3)], NOW)
    assert metrics['still_pending'] == 1
    assert metrics['overdue_count'] == 0
    assert metrics['compliance_score'] == 100


def test_score_combines_on_time_and_overdue_rates():
    applications = [
        FakeApplication(1, 20, 'COMPLETED', processed_after_days=10),
        FakeApplication(2, 25, 'COMPLETED', processed_after_days=10),
        FakeApplication(3, 28, 'COMPLETED', processed_after_days=10),
        # late: processed after its 30-day deadline, submitted inside a 60-day window
        FakeApplication(4, 45, 'COMPLETED', processed_after_days=35),
    ]
    metrics = calculate_compliance_metrics(applications, NOW, period_days=60)
    assert metrics['completed_on_time'] == 3
    assert metrics['completed_late'] == 1
    # round(0.75 * 100) - round(0 * 50)
    assert metrics['compliance_score'] == 75
    assert metrics['avg_response_days'] == js_round((10 + 10 + 10 + 35) / 4)
    assert metrics['risk_level'] == 'MEDIUM'


def test_overdue_applications_lower_the_score():
    applications = [FakeApplication(i, 40) for i in range(1, 4)] + [FakeApplication(9, 2)]
    metrics = calculate_compliance_metrics(applications, NOW, period_days=60)
    assert metrics['overdue_count'] == 3
    # on-time rate 1.0 (nothing completed), overdue rate 3/4 -> 100 - 38
    assert metrics['compliance_score'] == 62
    assert metrics['risk_level'] == 'HIGH'
    assert metrics['recommendations'][0].startswith('3 süresi geçen')


def test_slow_answers_are_penalised():
    applications = [FakeApplication(i, 31, 'COMPLETED', processed_after_days=31) for i in range(1, 3)]
    metrics = calculate_compliance_metrics(applications, NOW, period_days=60)
    # all late, avg 31 days: 0 - 0 - 10 - 10, floored at 0
    assert metrics['compliance_score'] == 0
    assert metrics['risk_level'] == 'CRITICAL'


def test_risk_levels():
    assert determine_risk_level(95, 0, 10) == 'LOW'
    assert determine_risk_level(95, 1, 10) == 'MEDIUM'
    assert determine_risk_level(95, 0, 26) == 'HIGH'
    assert determine_risk_level(95, 6, 10) == 'CRITICAL'
    assert determine_risk_level(49, 0, 10) == 'CRITICAL'


def test_average_ignores_unfinished():
    applications = [
        FakeApplication(1, 10, 'COMPLETED', processed_after_days=4),
        FakeApplication(2, 10, 'PENDING'),
        FakeApplication(3, 10, 'COMPLETED', processed_after_days=7),
    ]
    assert average_response_days(applications) == 6
    assert average_response_days([]) == 0


def test_trend_groups_by_submission_day():
    applications = [
        FakeApplication(1, 5, 'COMPLETED', processed_after_days=1),
        FakeApplication(2, 5, 'PENDING'),
        FakeApplication(3, 2, 'COMPLETED', processed_after_days=1),
        FakeApplication(4, 90, 'PENDING'),
    ]
    trend = compliance_trend(applications, NOW, days=30)
    assert [day['total_applications'] for day in trend] == [2, 1]
    assert [day['score'] for day in trend] == [50, 100]
    assert trend[0]['date'] < trend[1]['date']


def test_automated_report_lists_oldest_overdue_first():
    applications = [FakeApplication(i, 30 + i) for i in range(1, 13)]
    report = generate_automated_report(applications, NOW, period_days=60)
    issues = report['critical_issues']
    assert len(issues) == 10
    assert issues[0]['id'] == 12
    priorities = [item['priority'] for item in report['action_items']]
    assert priorities[0] == 'CRITICAL'


def test_monitoring_overview_buckets():
    applications = [
        FakeApplication(1, 35),                      # overdue
        FakeApplication(2, 26),                      # due in 4 days
        FakeApplication(3, 5),                       # open, not due soon
        FakeApplication(4, 40, 'COMPLETED', 10),     # closed
        FakeApplication(5, 40, 'REJECTED'),
    ]
    overview = build_monitoring_overview(applications, NOW)
    assert overview['overview']['overdue_count'] == 1
    assert overview['overview']['due_soon_count'] == 1
    assert overview['overview']['total_pending_applications'] == 3
    assert [a['id'] for a in overview['overdue_applications']] == [1]
    assert [a['id'] for a in overview['due_soon_applications']] == [2]
    alert_types = [alert['type'] for alert in overview['alerts']]
    assert alert_types[0] == 'critical'
    assert overview['recommendations'][0]['action'] == 'view_overdue'
