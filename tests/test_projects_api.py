from datetime import timedelta

from extensions import db
from models import Company, Customer, PhotoRequest, Project, Quote, utcnow


def other_tenant(make_user):
    rival = Company(name='Rakip Enerji Ltd.', tax_number='9876543210')
    db.session.add(rival)
    db.session.commit()
    return make_user('COMPANY', email='rakip@ges.example', company=rival)


def test_create_project(client, company_user, customer_record, login):
    login(company_user)
    response = client.post('/api/projects', json={
        'name': 'Tarımsal GES', 'project_type': 'AGRICULTURAL', 'capacity_kw': 250,
        'city': 'Konya', 'customer_id': customer_record.id,
    })
    assert response.status_code == 201
    project = response.get_json()['project']
    assert project['owner_id'] == company_user.id
    assert project['company_id'] == company_user.company_id
    assert project['customer_name'] == 'Ayşe Yılmaz'
    assert project['status'] == 'DRAFT'


def test_create_project_validation(client, company_user, login):
    login(company_user)
    response = client.post('/api/projects', json={'name': '', 'capacity_kw': -5, 'project_type': 'SPACE'})
    assert response.status_code == 400
    fields = {tuple(error['loc']) for error in response.get_json()['details']}
    assert ('name',) in fields
    assert ('capacity_kw',) in fields
    assert ('project_type',) in fields


def test_create_project_with_foreign_customer(client, make_user, customer_record, login):
    rival_user = other_tenant(make_user)
    login(rival_user)
    response = client.post('/api/projects', json={'name': 'Çalıntı', 'customer_id': customer_record.id})
    assert response.status_code == 400


def test_customer_role_cannot_create(client, make_user, login):
    login(make_user('CUSTOMER'))
    assert client.post('/api/projects', json={'name': 'Ev'}).status_code == 403


def test_list_is_scoped_to_tenant(client, make_user, project, login):
    rival_user = other_tenant(make_user)
    db.session.add(Project(name='Rakip Çatı', owner_id=rival_user.id, company_id=rival_user.company_id))
    db.session.commit()

    login(rival_user)
    body = client.get('/api/projects').get_json()
    assert [p['name'] for p in body['projects']] == ['Rakip Çatı']
    assert body['pagination'] == {'page': 1, 'limit': 20, 'total': 1, 'pages': 1}

    assert client.get(f'/api/projects/{project.id}').status_code == 403


def test_bank_reads_across_tenants(client, make_user, project, login):
    login(make_user('BANK'))
    body = client.get('/api/projects').get_json()
    assert body['pagination']['total'] == 1
    assert client.patch(f'/api/projects/{project.id}', json={'name': 'x'}).status_code == 403


def test_linked_customer_sees_own_project(client, make_user, project, customer_record, login):
    portal_user = make_user('CUSTOMER', email='ayse@musteri.example')
    customer_record.user_id = portal_user.id
    db.session.commit()

    login(portal_user)
    body = client.get('/api/projects').get_json()
    assert [p['id'] for p in body['projects']] == [project.id]
    assert client.get(f'/api/projects/{project.id}').status_code == 200


def test_list_filters_and_pagination(client, company_user, login):
    for i in range(5):
        db.session.add(Project(name=f"Proje {i}", city='Ankara' if i % 2 else 'İzmir', status='DESIGN',
                               owner_id=company_user.id, company_id=company_user.company_id))
    db.session.commit()
    login(company_user)

    page = client.get('/api/projects?limit=2&page=2').get_json()
    assert len(page['projects']) == 2
    assert page['pagination']['pages'] == 3

    ankara = client.get('/api/projects?search=ankara').get_json()
    assert ankara['pagination']['total'] == 2

    assert client.get('/api/projects?status=UNKNOWN').status_code == 400


def test_update_project_status(client, company_user, project, login):
    login(company_user)
    response = client.put(f'/api/projects/{project.id}', json={'status': 'DESIGN', 'capacity_kw': 12.5})
    assert response.status_code == 200
    body = response.get_json()['project']
    assert body['status'] == 'DESIGN'
    assert body['capacity_kw'] == 12.5


def test_get_project_includes_quotes(client, company_user, project, login):
    db.session.add(Quote(quote_number='Q-20260101-ABCDEF', project_id=project.id, owner_id=company_user.id,
                         company_id=company_user.company_id))
    db.session.commit()
    login(company_user)
    body = client.get(f'/api/projects/{project.id}').get_json()['project']
    assert [q['quote_number'] for q in body['quotes']] == ['Q-20260101-ABCDEF']


def test_delete_project_removes_quotes(client, company_user, project, login):
    db.session.add(Quote(quote_number='Q-20260101-000001', project_id=project.id, owner_id=company_user.id))
    db.session.commit()
    login(company_user)

    response = client.delete(f'/api/projects/{project.id}')
    assert response.status_code == 200
    assert response.get_json()['message'] == 'Proje başarıyla silindi'
    assert Quote.query.count() == 0
    assert client.get(f'/api/projects/{project.id}').status_code == 404


def test_customer_crud(client, company_user, login):
    login(company_user)
    response = client.post('/api/customers', json={
        'customer_type': 'CORPORATE', 'company_name': 'Tarım Kooperatifi', 'email': 'koop@example.com',
        'tax_number': '1111111111', 'city': 'Konya',
    })
    assert response.status_code == 201
    customer_id = response.get_json()['customer']['id']

    duplicate = client.post('/api/customers', json={
        'first_name': 'A', 'last_name': 'B', 'email': 'koop@example.com'})
    assert duplicate.status_code == 409

    missing_names = client.post('/api/customers', json={'email': 'x@example.com'})
    assert missing_names.status_code == 400

    listed = client.get('/api/customers?search=koop').get_json()
    assert listed['pagination']['total'] == 1

    updated = client.patch(f'/api/customers/{customer_id}', json={'phone': '03320000000'})
    assert updated.get_json()['customer']['phone'] == '03320000000'

    db.session.add(Project(name='Kooperatif GES', customer_id=customer_id, owner_id=company_user.id,
                           company_id=company_user.company_id))
    db.session.commit()
    assert client.delete(f'/api/customers/{customer_id}').status_code == 409


def test_delete_customer_without_projects(client, company_user, customer_record, login):
    login(company_user)
    assert client.delete(f'/api/customers/{customer_record.id}').status_code == 200
    assert db.session.get(Customer, customer_record.id) is None


def test_delete_project_keeps_photo_requests(client, company_user, project, customer_record, login):
    photo_request = PhotoRequest(token='a' * 64, customer_id=customer_record.id, project_id=project.id,
                                 customer_name='Ayşe Yılmaz', engineer_name='Murat Şahin',
                                 expires_at=utcnow() + timedelta(days=7), requested_by=company_user.id,
                                 company_id=company_user.company_id)
    db.session.add(photo_request)
    db.session.commit()
    login(company_user)

    assert client.delete(f'/api/projects/{project.id}').status_code == 200
    kept = db.session.get(PhotoRequest, photo_request.id)
    assert kept is not None
    assert kept.project_id is None
    assert kept.customer_id == customer_record.id


def test_customer_with_quote_cannot_be_deleted(client, company_user, customer_record, login):
    db.session.add(Quote(quote_number='Q-20260101-000002', customer_id=customer_record.id,
                         owner_id=company_user.id, company_id=company_user.company_id))
    db.session.commit()
    login(company_user)

    response = client.delete(f'/api/customers/{customer_record.id}')
    assert response.status_code == 409
    assert db.session.get(Customer, customer_record.id) is not None


def test_delete_customer_unlinks_photo_requests(client, company_user, customer_record, login):
    photo_request = PhotoRequest(token='b' * 64, customer_id=customer_record.id, customer_name='Ayşe Yılmaz',
                                 engineer_name='Murat Şahin', expires_at=utcnow() + timedelta(days=7),
                                 requested_by=company_user.id, company_id=company_user.company_id)
    db.session.add(photo_request)
    db.session.commit()
    login(company_user)

    assert client.delete(f'/api/customers/{customer_record.id}').status_code == 200
    assert db.session.get(PhotoRequest, photo_request.id).customer_id is None
