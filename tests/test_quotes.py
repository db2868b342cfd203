import re
from datetime import datetime, timedelta
from decimal import Decimal

from extensions import db, mail
from models import Company, Project, Quote, utcnow
from routes.quotes import compute_totals, generate_quote_number
from services.kvkk_scheduler import expire_quotes

PANELS = {'name': '550W Panel', 'category': 'PANEL', 'quantity': 18, 'unit_price': 4250.00,
          'discount': 5, 'tax_rate': 20}
INVERTER = {'name': '10kW Inverter', 'category': 'INVERTER', 'quantity': 1, 'unit_price': 38999.99,
            'discount': 0, 'tax_rate': 20}


def test_compute_totals():
    lines, totals = compute_totals([PANELS, INVERTER])
    # 18 * 4250 = 76500, -5% = 72675, +20% = 87210
    assert lines[0] == Decimal('87210.00')
    # 38999.99 * 1.2 = 46799.988
    assert lines[1] == Decimal('46799.99')
    assert totals['subtotal'] == Decimal('115499.99')
    assert totals['discount'] == Decimal('3825.00')
    assert totals['tax'] == Decimal('22335.00')
    assert totals['total'] == totals['subtotal'] - totals['discount'] + totals['tax']


def test_compute_totals_rounds_half_up():
    _, totals = compute_totals([{'quantity': 1, 'unit_price': 0.125, 'discount': 0, 'tax_rate': 0}])
    assert totals['subtotal'] == Decimal('0.13')


def test_quote_number_format(app):
    number = generate_quote_number(datetime(2026, 3, 9))
    assert re.fullmatch(r'Q-20260309-[0-9A-F]{6}', number)


def create_quote(client, project, **extra):
    payload = {'project_id': project.id, 'items': [PANELS, INVERTER], 'subtotal': 1, 'total': 1}
    payload.update(extra)
    response = client.post('/api/quotes', json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['quote']


def test_create_quote_prices_on_server(client, company_user, project, login):
    login(company_user)
    quote = create_quote(client, project)
    assert quote['status'] == 'DRAFT'
    assert quote['total'] == 134009.99
    assert quote['customer_email'] == 'ayse@musteri.example'
    assert quote['customer_name'] == 'Ayşe Yılmaz'
    assert quote['capacity_kw'] == 10.0
    assert len(quote['items']) == 2


def test_create_quote_requires_items(client, company_user, project, login):
    login(company_user)
    response = client.post('/api/quotes', json={'project_id': project.id, 'items': []})
    assert response.status_code == 400


def test_only_drafts_are_editable(client, company_user, project, login):
    login(company_user)
    quote = create_quote(client, project)

    response = client.patch(f"/api/quotes/{quote['id']}", json={'items': [INVERTER], 'notes': 'Sadece inverter'})
    assert response.status_code == 200
    assert response.get_json()['quote']['total'] == 46799.99

    assert client.post(f"/api/quotes/{quote['id']}/send").status_code == 200
    assert client.patch(f"/api/quotes/{quote['id']}", json={'notes': 'geç'}).status_code == 400
    assert client.delete(f"/api/quotes/{quote['id']}").status_code == 400


def test_send_quote_emails_customer(client, company_user, project, login):
    login(company_user)
    quote = create_quote(client, project)

    with mail.record_messages() as outbox:
        response = client.post(f"/api/quotes/{quote['id']}/send")

    assert response.status_code == 200
    body = response.get_json()
    assert body['email_sent'] is True
    assert body['quote']['status'] == 'SENT'
    assert body['quote']['sent_at'] is not None
    assert db.session.get(Project, project.id).status == 'QUOTE_SENT'
    assert outbox[0].recipients == ['ayse@musteri.example']
    assert quote['quote_number'] in outbox[0].subject


def test_send_requires_contact(client, company_user, login):
    login(company_user)
    response = client.post('/api/quotes', json={'customer_name': 'İsimsiz', 'items': [INVERTER]})
    quote_id = response.get_json()['quote']['id']
    assert client.post(f'/api/quotes/{quote_id}/send').status_code == 400


def test_decision_approves_project(client, company_user, project, login):
    login(company_user)
    quote = create_quote(client, project)
    client.post(f"/api/quotes/{quote['id']}/send")

    response = client.post(f"/api/quotes/{quote['id']}/decision", json={'decision': 'APPROVED'})
    assert response.status_code == 200
    assert response.get_json()['quote']['status'] == 'APPROVED'
    assert db.session.get(Project, project.id).status == 'APPROVED'

    again = client.post(f"/api/quotes/{quote['id']}/decision", json={'decision': 'REJECTED'})
    assert again.status_code == 400


def test_decision_on_expired_quote(client, company_user, project, login):
    login(company_user)
    quote = create_quote(client, project)
    client.post(f"/api/quotes/{quote['id']}/send")
    db.session.get(Quote, quote['id']).valid_until = utcnow() - timedelta(days=1)
    db.session.commit()

    response = client.post(f"/api/quotes/{quote['id']}/decision", json={'decision': 'APPROVED'})
    assert response.status_code == 400
    assert db.session.get(Quote, quote['id']).status == 'EXPIRED'


def test_expire_quotes_job(app, company_user):
    now = utcnow()
    db.session.add_all([
        Quote(quote_number='Q-1', status='SENT', valid_until=now - timedelta(hours=1), owner_id=company_user.id),
        Quote(quote_number='Q-2', status='SENT', valid_until=now + timedelta(days=3), owner_id=company_user.id),
        Quote(quote_number='Q-3', status='DRAFT', valid_until=now - timedelta(days=3), owner_id=company_user.id),
    ])
    db.session.commit()

    assert expire_quotes(now) == 1
    statuses = {q.quote_number: q.status for q in Quote.query.all()}
    assert statuses == {'Q-1': 'EXPIRED', 'Q-2': 'SENT', 'Q-3': 'DRAFT'}


def test_quote_customer_must_belong_to_tenant(client, make_user, customer_record, login):
    rival = Company(name='Rakip Enerji Ltd.', tax_number='9876543210')
    db.session.add(rival)
    db.session.commit()
    login(make_user('COMPANY', email='rakip@ges.example', company=rival))

    foreign = client.post('/api/quotes', json={'customer_id': customer_record.id, 'items': [PANELS]})
    assert foreign.status_code == 400
    missing = client.post('/api/quotes', json={'customer_id': 9999, 'items': [PANELS]})
    assert missing.status_code == 400
    assert Quote.query.count() == 0


def test_quote_for_own_customer(client, company_user, customer_record, login):
    login(company_user)
    response = client.post('/api/quotes', json={'customer_id': customer_record.id, 'items': [PANELS]})
    assert response.status_code == 201
    assert response.get_json()['quote']['customer_id'] == customer_record.id
