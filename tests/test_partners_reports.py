from extensions import db
from models import Company, Partner

LISTING = {
    'partner_type': 'INSTALLER',
    'service_areas': ['Konya', 'Karaman'],
    'specialties': ['ROOFTOP', 'AGRIVOLTAIC'],
    'min_project_size_kw': 5,
    'max_project_size_kw': 500,
}


def test_register_partner(client, company_user, login):
    login(company_user)
    response = client.post('/api/partners/register', json=dict(LISTING, company_id=company_user.company_id))
    assert response.status_code == 201
    partner = response.get_json()['partner']
    assert partner['company_name'] == 'Güneş Kurulum A.Ş.'
    assert partner['is_verified'] is False

    again = client.post('/api/partners/register', json=dict(LISTING, company_id=company_user.company_id))
    assert again.status_code == 409


def test_company_cannot_register_another_company(client, company_user, login):
    rival = Company(name='Rakip Enerji Ltd.', tax_number='9876543210')
    db.session.add(rival)
    db.session.commit()
    login(company_user)
    response = client.post('/api/partners/register', json=dict(LISTING, company_id=rival.id))
    assert response.status_code == 403


def test_register_validates_size_range(client, admin, login):
    login(admin)
    response = client.post('/api/partners/register', json=dict(
        LISTING, company_id=admin.company_id, min_project_size_kw=100, max_project_size_kw=50))
    assert response.status_code == 400


def test_list_filters_and_verify(client, admin, company, login):
    supplier_company = Company(name='Panel Tedarik A.Ş.')
    db.session.add(supplier_company)
    db.session.flush()
    db.session.add_all([
        Partner(company_id=company.id, partner_type='INSTALLER', service_areas=['Konya'],
                specialties=['ROOFTOP'], min_project_size_kw=5, max_project_size_kw=100),
        Partner(company_id=supplier_company.id, partner_type='SUPPLIER', service_areas=['İzmir'],
                specialties=['PANELS']),
    ])
    db.session.commit()
    login(admin)

    assert client.get('/api/partners').get_json()['count'] == 2
    konya = client.get('/api/partners?service_area=Konya').get_json()['partners']
    assert [p['company_id'] for p in konya] == [company.id]
    too_big = client.get('/api/partners?partner_type=INSTALLER&capacity_kw=250').get_json()
    assert too_big['count'] == 0

    installer_id = konya[0]['id']
    verified = client.post(f'/api/partners/{installer_id}/verify').get_json()['partner']
    assert verified['is_verified'] is True
    assert db.session.get(Company, company.id).is_verified is True
    assert client.get('/api/partners?verified=true').get_json()['count'] == 1


def test_verify_requires_admin(client, company_user, login):
    partner = Partner(company_id=company_user.company_id, partner_type='CONSULTANT',
                      service_areas=['Konya'], specialties=['FEASIBILITY'])
    db.session.add(partner)
    db.session.commit()
    login(company_user)
    assert client.post(f'/api/partners/{partner.id}/verify').status_code == 403


def test_dashboard_counts(client, company_user, project, login):
    login(company_user)
    data = client.get('/api/reports/dashboard').get_json()['data']
    assert data['projects']['total'] == 1
    assert data['projects']['by_status'] == {'DRAFT': 1}
    assert data['projects']['total_capacity_kw'] == 10.0
    assert data['customers']['total'] == 1
    assert 'kvkk' not in data


def test_dashboard_denied_for_customer(client, make_user, login):
    login(make_user('CUSTOMER'))
    assert client.get('/api/reports/dashboard').status_code == 403


def test_project_export_is_excel_friendly(client, company_user, project, login):
    login(company_user)
    response = client.get('/api/reports/export/projects')
    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'projeler.csv' in response.headers['Content-Disposition']
    assert response.data.startswith(b'\xef\xbb\xbf')
    text = response.data.decode('utf-8-sig')
    assert 'Çatı GES 10 kW' in text
    assert ';DRAFT;' in text
    assert '10,00' in text


def test_customer_export_masks_personal_data(client, company_user, admin, customer_record, login):
    login(company_user)
    masked = client.get('/api/reports/export/customers').data.decode('utf-8-sig')
    assert '05551112233' not in masked
    assert '***' in masked

    client.post('/api/auth/logout')
    login(admin)
    clear = client.get('/api/reports/export/customers').data.decode('utf-8-sig')
    assert '05551112233' in clear


def test_bank_cannot_export(client, make_user, login):
    login(make_user('BANK'))
    assert client.get('/api/reports/export/quotes').status_code == 403


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['database'] == 'ok'
