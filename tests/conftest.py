from datetime import timedelta

import pytest
import requests
from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from models import Company, Customer, KVKKApplication, Project, User, utcnow

PASSWORD = "Str0ng!!PassWORD"


class FakeResponse:
    def __init__(self, payload=None, text='', status_code=200):
        self._payload = payload
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Stand-in for ``requests.Session``: answers by URL substring."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, params=None, timeout=None, headers=None):
        self.calls.append((url, params))
        for fragment, answer in self.routes.items():
            if fragment in url:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        raise requests.ConnectionError(f"no route for {url}")


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'WTF_CSRF_ENABLED': False,
        'RATELIMIT_ENABLED': False,
        'SCHEDULER_ENABLED': False,
        'CREATE_TABLES': False,
        'LOG_DIR': str(tmp_path / 'logs'),
        'LOG_SECRET_KEY': 'test-log-key',
        'MAIL_SUPPRESS_SEND': True,
        'KVKK_ADMIN_EMAILS': ['kvkk@ges.example'],
        'APP_URL': 'http://testserver',
        'TCMB_API_URL': None,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def company(app):
    company = Company(name='Güneş Kurulum A.Ş.', tax_number='1234567890', city='Konya', is_verified=True)
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def make_user(app):
    def factory(role, email=None, company=None, password=PASSWORD):
        user = User(
            email=email or f"{role.lower()}@ges.example",
            name=f"{role.title()} User",
            role=role,
            password_hash=generate_password_hash(password),
            company_id=company.id if company is not None else None,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return factory


@pytest.fixture
def login(client):
    def do_login(user, password=PASSWORD):
        response = client.post('/api/auth/login', json={'email': user.email, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response
    return do_login


@pytest.fixture
def admin(make_user, company):
    return make_user('ADMIN', company=company)


@pytest.fixture
def company_user(make_user, company):
    return make_user('COMPANY', email='firma@ges.example', company=company)


@pytest.fixture
def customer_record(company_user):
    customer = Customer(
        customer_type='INDIVIDUAL',
        first_name='Ayşe',
        last_name='Yılmaz',
        email='ayse@musteri.example',
        phone='05551112233',
        city='Konya',
        owner_id=company_user.id,
        company_id=company_user.company_id,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def project(company_user, customer_record):
    project = Project(
        name='Çatı GES 10 kW',
        project_type='RESIDENTIAL',
        status='DRAFT',
        capacity_kw=10,
        customer_id=customer_record.id,
        owner_id=company_user.id,
        company_id=company_user.company_id,
    )
    db.session.add(project)
    db.session.commit()
    return project


@pytest.fixture
def make_application(app):
    counter = {'n': 0}

    def factory(days_ago, status='PENDING', processed_after_days=None, email='basvuru@ges.example'):
        counter['n'] += 1
        submitted = utcnow() - timedelta(days=days_ago)
        application = KVKKApplication(
            application_no=f"KVKK-TEST-{counter['n']:04d}",
            request_type='DATA_ACCESS',
            status=status,
            applicant_name='Mehmet Demir',
            applicant_email=email,
            request_details='Kişisel verilerimin listesini talep ediyorum.',
            submitted_at=submitted,
            response_deadline=submitted + timedelta(days=30),
            processed_at=(submitted + timedelta(days=processed_after_days)
                          if processed_after_days is not None else None),
        )
        db.session.add(application)
        db.session.commit()
        return application
    return factory


@pytest.fixture
def fake_session():
    return FakeSession()
