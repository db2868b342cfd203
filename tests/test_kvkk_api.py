import re
from datetime import datetime

from extensions import db, mail
from models import KVKKApplication, KVKKAuditLog
from routes.kvkk import generate_application_no

APPLICATION = {
    'request_type': 'deletion',
    'full_name': 'Mehmet Demir',
    'tc_no': '12345678901',
    'email': 'mehmet@example.com',
    'phone': '05321234567',
    'address': 'Atatürk Cad. No: 5',
    'city': 'Konya',
    'district': 'Selçuklu',
    'details': 'Hesabıma ait tüm kişisel verilerin silinmesini talep ediyorum.',
    'consent_to_process': True,
    'accept_terms': True,
}


def audit_actions(application_id=None):
    query = KVKKAuditLog.query
    if application_id is not None:
        query = query.filter_by(application_id=application_id)
    return [row.action for row in query.order_by(KVKKAuditLog.id)]


def test_application_number_format():
    number = generate_application_no(datetime(2026, 7, 1))
    assert re.fullmatch(r'KVKK-2026-\d{9}', number)


def test_submit_application(client):
    response = client.post('/api/legal/kvkk-application', json=APPLICATION,
                           headers={'X-Forwarded-For': '203.0.113.9, 10.0.0.1'})
    assert response.status_code == 201
    body = response.get_json()

    application = KVKKApplication.query.filter_by(application_no=body['application_no']).one()
    assert application.request_type == 'DATA_DELETION'
    assert application.status == 'PENDING'
    assert application.ip_address == '203.0.113.9'
    assert (application.response_deadline - application.submitted_at).days == 30
    assert application.applicant_address == 'Atatürk Cad. No: 5, Selçuklu, Konya'
    assert audit_actions(application.id) == ['APPLICATION_SUBMITTED']


def test_submit_requires_consent_and_valid_tc(client):
    response = client.post('/api/legal/kvkk-application', json=dict(APPLICATION, consent_to_process=False))
    assert response.status_code == 400

    response = client.post('/api/legal/kvkk-application', json=dict(APPLICATION, tc_no='1234567890A'))
    assert response.status_code == 400
    assert KVKKApplication.query.count() == 0


def test_public_status_lookup(client):
    number = client.post('/api/legal/kvkk-application', json=APPLICATION).get_json()['application_no']

    response = client.get(f'/api/legal/kvkk-application?application_no={number}')
    assert response.status_code == 200
    status = response.get_json()['application']
    assert status['status'] == 'PENDING'
    assert 'applicant_email' not in status

    assert client.get('/api/legal/kvkk-application?email=mehmet@example.com').status_code == 200
    mismatch = client.get(f'/api/legal/kvkk-application?application_no={number}&email=other@example.com')
    assert mismatch.status_code == 404
    assert client.get('/api/legal/kvkk-application').status_code == 400


def test_admin_endpoints_require_admin(client, company_user, login):
    assert client.get('/api/admin/kvkk/applications').status_code == 401
    login(company_user)
    assert client.get('/api/admin/kvkk/applications').status_code == 403


def test_status_update_and_cancel(client, admin, make_application, login):
    application = make_application(days_ago=3)
    login(admin)

    response = client.put(f'/api/admin/kvkk/applications/{application.id}',
                          json={'status': 'COMPLETED', 'response_details': 'Veriler silindi.'})
    assert response.status_code == 200
    assert response.get_json()['application']['processed_at'] is not None

    detail = client.get(f'/api/admin/kvkk/applications/{application.id}').get_json()['application']
    assert [log['action'] for log in detail['audit_logs']] == ['STATUS_UPDATED']
    assert detail['audit_logs'][0]['details']['old_status'] == 'PENDING'

    assert client.delete(f'/api/admin/kvkk/applications/{application.id}').status_code == 200
    assert db.session.get(KVKKApplication, application.id).status == 'CANCELLED'
    assert audit_actions(application.id) == ['STATUS_UPDATED', 'APPLICATION_CANCELLED']

    frozen = client.patch(f'/api/admin/kvkk/applications/{application.id}', json={'status': 'IN_PROGRESS'})
    assert frozen.status_code == 400


def test_list_filters(client, admin, make_application, login):
    make_application(days_ago=1)
    make_application(days_ago=2, status='COMPLETED', processed_after_days=1)
    login(admin)

    assert client.get('/api/admin/kvkk/applications').get_json()['pagination']['total'] == 2
    pending = client.get('/api/admin/kvkk/applications?status=PENDING').get_json()
    assert [a['status'] for a in pending['applications']] == ['PENDING']
    summary = client.get('/api/admin/kvkk/applications?summary=true').get_json()
    assert 'pagination' not in summary


def test_monitoring_overview(client, admin, make_application, login):
    make_application(days_ago=35)
    make_application(days_ago=27)
    login(admin)
    body = client.get('/api/admin/kvkk/monitoring').get_json()
    assert body['overview']['overdue_count'] == 1
    assert body['overview']['due_soon_count'] == 1


def test_escalation_notifies_admins(client, admin, make_application, login):
    overdue = make_application(days_ago=35)
    make_application(days_ago=3)
    login(admin)

    with mail.record_messages() as outbox:
        response = client.post('/api/admin/kvkk/monitoring', json={'action': 'escalate_overdue'})

    assert response.status_code == 200
    body = response.get_json()
    assert body['affected'] == 1
    assert body['notification']['sent'] == 1
    assert db.session.get(KVKKApplication, overdue.id).escalated_at is not None
    assert audit_actions(overdue.id) == ['APPLICATION_ESCALATED', 'OVERDUE_NOTIFICATION_SENT']

    assert len(outbox) == 1
    assert outbox[0].recipients == ['kvkk@ges.example']
    assert overdue.application_no in outbox[0].subject
    assert overdue.applicant_name in outbox[0].body


def test_reminders_for_given_ids(client, admin, make_application, login):
    due_soon = make_application(days_ago=26)
    login(admin)

    with mail.record_messages() as outbox:
        response = client.post('/api/admin/kvkk/monitoring',
                               json={'action': 'send_reminders', 'application_ids': [due_soon.id]})

    assert response.get_json()['affected'] == 1
    assert audit_actions(due_soon.id) == ['REMINDER_SENT', 'REMINDER_NOTIFICATION_SENT']
    assert len(outbox) == 1


def test_unknown_monitoring_action(client, admin, login):
    login(admin)
    response = client.post('/api/admin/kvkk/monitoring', json={'action': 'delete_everything'})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Geçersiz eylem'


def test_compliance_report_types(client, admin, make_application, login):
    make_application(days_ago=40)
    make_application(days_ago=5, status='COMPLETED', processed_after_days=2)
    login(admin)

    summary = client.get('/api/admin/kvkk/compliance?type=summary&days=60').get_json()['metrics']
    assert summary['total_applications'] == 2
    assert summary['overdue_count'] == 1
    assert 'COMPLIANCE_METRICS_CALCULATED' in audit_actions()

    trend = client.get('/api/admin/kvkk/compliance?type=trend&days=60').get_json()['trend']
    assert len(trend) == 2

    report = client.get('/api/admin/kvkk/compliance?type=full_report&days=60').get_json()['report']
    assert len(report['critical_issues']) == 1

    assert client.get('/api/admin/kvkk/compliance?days=0').status_code == 400
    assert client.get('/api/admin/kvkk/compliance?type=pie').status_code == 400


def test_scheduler_action_deduplicates(client, admin, make_application, login):
    make_application(days_ago=35)
    login(admin)

    first = client.post('/api/admin/kvkk/scheduler', json={'action': 'check_overdue_applications'}).get_json()
    assert first['result']['notified'] == 1
    second = client.post('/api/admin/kvkk/scheduler', json={'action': 'check_overdue_applications'}).get_json()
    assert second['result'] == {'found': 1, 'notified': 0, 'result': None}

    assert client.post('/api/admin/kvkk/scheduler', json={'action': 'rm -rf'}).status_code == 400


def test_reopening_clears_processed_at(client, admin, make_application, login):
    application = make_application(days_ago=3)
    login(admin)
    client.put(f'/api/admin/kvkk/applications/{application.id}', json={'status': 'COMPLETED'})

    reopened = client.put(f'/api/admin/kvkk/applications/{application.id}', json={'status': 'IN_PROGRESS'})
    assert reopened.get_json()['application']['processed_at'] is None


def test_escalation_skips_applications_within_deadline(client, admin, make_application, login):
    overdue = make_application(days_ago=35)
    recent = make_application(days_ago=3)
    login(admin)

    with mail.record_messages():
        response = client.post('/api/admin/kvkk/monitoring',
                               json={'action': 'escalate_overdue', 'application_ids': [overdue.id, recent.id]})

    assert response.get_json()['affected'] == 1
    assert db.session.get(KVKKApplication, recent.id).escalated_at is None
    assert audit_actions(recent.id) == []


def test_scheduler_counts_only_sent_notices(app, client, admin, make_application, login):
    make_application(days_ago=35)
    app.config['KVKK_ADMIN_EMAILS'] = []
    login(admin)

    body = client.post('/api/admin/kvkk/scheduler', json={'action': 'check_overdue_applications'}).get_json()
    assert body['result']['found'] == 1
    assert body['result']['notified'] == 0
    assert body['result']['result']['success'] is False
