from datetime import timedelta

from extensions import db, mail
from models import PhotoRequest, utcnow


def create_request(client, customer_record, **extra):
    payload = {
        'customer_id': customer_record.id,
        'customer_name': 'Ayşe Yılmaz',
        'customer_email': 'ayse@musteri.example',
        'engineer_name': 'Murat Şahin',
        'message': 'Çatınızın güney cephesinden fotoğraf rica ediyoruz.',
        'expiry_days': 3,
    }
    payload.update(extra)
    return client.post('/api/photo-requests', json=payload)


def test_create_sends_link(client, company_user, customer_record, login):
    login(company_user)
    with mail.record_messages() as outbox:
        response = create_request(client, customer_record)

    assert response.status_code == 201
    body = response.get_json()
    token = body['photo_request']['token']
    assert len(token) == 64
    assert body['upload_url'] == f'http://testserver/photo-upload/{token}'
    assert body['email_sent'] is True
    assert outbox[0].recipients == ['ayse@musteri.example']
    assert body['upload_url'] in outbox[0].html


def test_create_requires_contact(client, company_user, customer_record, login):
    login(company_user)
    response = create_request(client, customer_record, customer_email=None)
    assert response.status_code == 400


def test_customer_role_cannot_create(client, make_user, customer_record, login):
    login(make_user('CUSTOMER'))
    assert create_request(client, customer_record).status_code == 403


def test_public_flow(client, company_user, customer_record, login):
    login(company_user)
    created = create_request(client, customer_record).get_json()['photo_request']
    token = created['token']

    public = client.get(f'/api/photo-requests/public/{token}').get_json()['photo_request']
    assert public['engineer_name'] == 'Murat Şahin'
    assert 'token' not in public
    assert 'customer_email' not in public

    assert client.post(f'/api/photo-requests/public/{token}/upload', json={'photo_count': 0}).status_code == 400
    uploaded = client.post(f'/api/photo-requests/public/{token}/upload', json={'photo_count': 6})
    assert uploaded.status_code == 200
    assert uploaded.get_json()['photo_request']['status'] == 'UPLOADED'

    again = client.post(f'/api/photo-requests/public/{token}/upload', json={'photo_count': 2})
    assert again.status_code == 400

    reviewed = client.post(f"/api/photo-requests/{created['id']}/review", json={'notes': 'Yeterli'})
    assert reviewed.get_json()['photo_request']['status'] == 'REVIEWED'
    assert reviewed.get_json()['photo_request']['photo_count'] == 6


def test_expired_link_is_gone(client, company_user, customer_record, login):
    login(company_user)
    created = create_request(client, customer_record).get_json()['photo_request']
    photo_request = db.session.get(PhotoRequest, created['id'])
    photo_request.expires_at = utcnow() - timedelta(minutes=1)
    db.session.commit()

    response = client.get(f"/api/photo-requests/public/{created['token']}")
    assert response.status_code == 410
    assert db.session.get(PhotoRequest, created['id']).status == 'EXPIRED'

    upload = client.post(f"/api/photo-requests/public/{created['token']}/upload", json={'photo_count': 1})
    assert upload.status_code == 410


def test_unknown_token(client):
    assert client.get('/api/photo-requests/public/' + 'f' * 64).status_code == 404


def test_review_requires_upload(client, company_user, customer_record, login):
    login(company_user)
    created = create_request(client, customer_record).get_json()['photo_request']
    response = client.post(f"/api/photo-requests/{created['id']}/review", json={})
    assert response.status_code == 400
