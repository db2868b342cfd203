"""
Veritabanı modelleri (ORM).

GES CRM tabloları: firmalar ve kullanıcıları, satış süreci (müşteriler,
projeler, teklifler), İK (personel, izin talepleri), fotoğraf talepleri,
iş ortağı kaydı, denetim izleriyle birlikte KVKK başvuruları ve yönetici
tarafından tanımlanan döviz kurları.

Zaman damgaları saat dilimi bilgisi olmadan UTC olarak saklanır (`utcnow`).
"""

from datetime import datetime, timezone

from flask_login import UserMixin

from extensions import db


def utcnow():
    """Saat dilimi bilgisi olmadan şu anki UTC zamanı (tüm modellerin saklama biçimi)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


def _num(value):
    return float(value) if value is not None else None


class Company(db.Model):
    """
    Sistemdeki firma (kurulum firması, banka, tarım kooperatifi).
    """
    __tablename__ = 'company'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    #: Vergi numarası
    tax_number = db.Column(db.String(20), unique=True)
    city = db.Column(db.String(80))
    phone = db.Column(db.String(30))
    email = db.Column(db.String(120))
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    users = db.relationship('User', backref='company', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'tax_number': self.tax_number,
            'city': self.city,
            'phone': self.phone,
            'email': self.email,
            'is_verified': self.is_verified,
            'created_at': _iso(self.created_at),
        }


class User(UserMixin, db.Model):
    """
    Sisteme giriş hesabı.

    `permissions.ROLE_PERMISSIONS` için rolü ve `tenancy.scope_query` için
    firmayı (`company_id`) taşır. Hesaplar fiziksel olarak silinmez:
    `deleted_at` hesabı kilitler, sahip olduğu proje, teklif ve denetim
    kayıtları korunur.
    """
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    #: Tekil giriş adı (e-posta adresi)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    #: Parola özeti (werkzeug scrypt/pbkdf2)
    password_hash = db.Column(db.String(256), nullable=False)
    #: ADMIN, COMPANY, CUSTOMER, FARMER, BANK veya SUPPORT
    role = db.Column(db.String(20), nullable=False, default='CUSTOMER')
    phone = db.Column(db.String(30))
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_login_at = db.Column(db.DateTime)
    #: Yumuşak silme. NULL ise hesap etkindir.
    deleted_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_active(self):
        """Flask-Login kilitli hesaplara oturum açtırmaz."""
        return self.deleted_at is None

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'phone': self.phone,
            'company_id': self.company_id,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'last_login_at': _iso(self.last_login_at),
        }


class Customer(db.Model):
    """Firmanın bireysel veya kurumsal müşterisi."""
    __tablename__ = 'customer'

    id = db.Column(db.Integer, primary_key=True)
    #: INDIVIDUAL veya CORPORATE
    customer_type = db.Column(db.String(20), nullable=False, default='INDIVIDUAL')
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    company_name = db.Column(db.String(200))
    tax_number = db.Column(db.String(20))
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    address = db.Column(db.String(300))
    city = db.Column(db.String(80))
    district = db.Column(db.String(80))
    notes = db.Column(db.Text)
    #: Kaydı oluşturan hesap
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'))
    #: Müşterinin kendi portal hesabı (CUSTOMER / FARMER rolü)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    projects = db.relationship('Project', backref='customer', lazy='dynamic')

    @property
    def display_name(self):
        if self.customer_type == 'CORPORATE' and self.company_name:
            return self.company_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'customer_type': self.customer_type,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'company_name': self.company_name,
            'display_name': self.display_name,
            'tax_number': self.tax_number,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'city': self.city,
            'district': self.district,
            'notes': self.notes,
            'owner_id': self.owner_id,
            'company_id': self.company_id,
            'user_id': self.user_id,
            'project_count': self.projects.count(),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Project(db.Model):
    """Güneş enerjisi kurulum projesi (çatı, arazi, tarımsal GES...)."""
    __tablename__ = 'project'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    #: RESIDENTIAL, COMMERCIAL, INDUSTRIAL veya AGRICULTURAL
    project_type = db.Column(db.String(20), nullable=False, default='RESIDENTIAL')
    #: DRAFT, DESIGN, QUOTE_SENT, APPROVED, INSTALLATION, COMPLETED veya CANCELLED
    status = db.Column(db.String(20), nullable=False, default='DRAFT')
    capacity_kw = db.Column(db.Numeric(10, 2))
    estimated_cost = db.Column(db.Numeric(14, 2))
    address = db.Column(db.String(300))
    city = db.Column(db.String(80))
    district = db.Column(db.String(80))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'))
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'))
    start_date = db.Column(db.Date)
    completion_date = db.Column(db.Date)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = db.relationship('User', foreign_keys=[owner_id])

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'project_type': self.project_type,
            'status': self.status,
            'capacity_kw': _num(self.capacity_kw),
            'estimated_cost': _num(self.estimated_cost),
            'address': self.address,
            'city': self.city,
            'district': self.district,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'customer_id': self.customer_id,
            'customer_name': self.customer.display_name if self.customer else None,
            'owner_id': self.owner_id,
            'company_id': self.company_id,
            'start_date': _iso(self.start_date),
            'completion_date': _iso(self.completion_date),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Quote(db.Model):
    """
    Proje için fiyatlandırılmış teklif.

    Toplamlar her zaman sunucuda kalemlerden yeniden hesaplanır
    (`routes.quotes.compute_totals`); istemcinin gönderdiği toplamlar yok sayılır.
    """
    __tablename__ = 'quote'

    id = db.Column(db.Integer, primary_key=True)
    #: Q-YYYYMMDD-XXXXXX
    quote_number = db.Column(db.String(40), unique=True, nullable=False)
    #: DRAFT, SENT, APPROVED, REJECTED veya EXPIRED
    status = db.Column(db.String(20), nullable=False, default='DRAFT')
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'))
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'))
    customer_name = db.Column(db.String(200))
    customer_email = db.Column(db.String(120))
    customer_phone = db.Column(db.String(30))
    capacity_kw = db.Column(db.Numeric(10, 2))
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    valid_until = db.Column(db.DateTime)
    notes = db.Column(db.Text)
    terms = db.Column(db.Text)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'))
    sent_at = db.Column(db.DateTime)
    decided_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = db.relationship('QuoteItem', backref='quote', cascade='all, delete-orphan',
                            order_by='QuoteItem.id')
    project = db.relationship('Project')
    customer = db.relationship('Customer')

    def to_dict(self):
        return {
            'id': self.id,
            'quote_number': self.quote_number,
            'status': self.status,
            'project_id': self.project_id,
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'customer_phone': self.customer_phone,
            'capacity_kw': _num(self.capacity_kw),
            'items': [item.to_dict() for item in self.items],
            'subtotal': _num(self.subtotal),
            'discount': _num(self.discount),
            'tax': _num(self.tax),
            'total': _num(self.total),
            'valid_until': _iso(self.valid_until),
            'notes': self.notes,
            'terms': self.terms,
            'owner_id': self.owner_id,
            'company_id': self.company_id,
            'sent_at': _iso(self.sent_at),
            'decided_at': _iso(self.decided_at),
            'created_at': _iso(self.created_at),
        }


class QuoteItem(db.Model):
    __tablename__ = 'quote_item'

    id = db.Column(db.Integer, primary_key=True)
    quote_id = db.Column(db.Integer, db.ForeignKey('quote.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    #: PANEL, INVERTER, MOUNTING, CABLE, LABOR veya OTHER
    category = db.Column(db.String(30), default='OTHER')
    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    #: Yüzde, satıra uygulanır
    discount = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    #: Yüzde KDV, satır indiriminden sonra uygulanır
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=20)
    total = db.Column(db.Numeric(14, 2), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'quantity': _num(self.quantity),
            'unit_price': _num(self.unit_price),
            'discount': _num(self.discount),
            'tax_rate': _num(self.tax_rate),
            'total': _num(self.total),
        }


class Employee(db.Model):
    """Firma personeli (İK modülü). `is_active` ile yumuşak silinir."""
    __tablename__ = 'employee'

    id = db.Column(db.Integer, primary_key=True)
    employee_code = db.Column(db.String(20), unique=True, nullable=False)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30))
    department = db.Column(db.String(80))
    position = db.Column(db.String(80))
    hire_date = db.Column(db.Date, nullable=False)
    #: Takvim yılı başına ücretli yıllık izin günü
    annual_leave_entitlement = db.Column(db.Integer, nullable=False, default=30)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    leave_requests = db.relationship('LeaveRequest', backref='employee', lazy='dynamic')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'employee_code': self.employee_code,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'department': self.department,
            'position': self.position,
            'hire_date': _iso(self.hire_date),
            'annual_leave_entitlement': self.annual_leave_entitlement,
            'is_active': self.is_active,
            'company_id': self.company_id,
        }


class LeaveRequest(db.Model):
    __tablename__ = 'leave_request'

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey('employee.id'), nullable=False)
    #: VACATION, SICK, PERSONAL, MATERNITY, PATERNITY veya UNPAID
    leave_type = db.Column(db.String(20), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    #: İş günü (hafta sonları hariç)
    total_days = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text)
    #: PENDING, APPROVED veya REJECTED
    status = db.Column(db.String(20), nullable=False, default='PENDING')
    approver_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    approver_notes = db.Column(db.Text)
    approved_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'employee_name': self.employee.full_name if self.employee else None,
            'leave_type': self.leave_type,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'total_days': self.total_days,
            'reason': self.reason,
            'status': self.status,
            'approver_id': self.approver_id,
            'approver_notes': self.approver_notes,
            'approved_at': _iso(self.approved_at),
            'rejected_at': _iso(self.rejected_at),
            'created_at': _iso(self.created_at),
        }


class PhotoRequest(db.Model):
    """
    Müşteriden çatı / saha fotoğrafı isteyen bağlantı.

    Müşteri bağlantıyı `token` ile hesap açmadan kullanır.
    """
    __tablename__ = 'photo_request'

    id = db.Column(db.Integer, primary_key=True)
    #: 64 onaltılık karakter
    token = db.Column(db.String(64), unique=True, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey('customer.id'))
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'))
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(120))
    customer_phone = db.Column(db.String(30))
    engineer_name = db.Column(db.String(120), nullable=False)
    engineer_title = db.Column(db.String(80), nullable=False, default='Mühendis')
    message = db.Column(db.Text)
    guidelines = db.Column(db.Text)
    #: PENDING, UPLOADED, REVIEWED veya EXPIRED
    status = db.Column(db.String(20), nullable=False, default='PENDING')
    photo_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime, nullable=False)
    uploaded_at = db.Column(db.DateTime)
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)
    requested_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self, public=False):
        data = {
            'customer_name': self.customer_name,
            'engineer_name': self.engineer_name,
            'engineer_title': self.engineer_title,
            'message': self.message,
            'guidelines': self.guidelines,
            'status': self.status,
            'expires_at': _iso(self.expires_at),
        }
        if public:
            return data
        data.update({
            'id': self.id,
            'token': self.token,
            'customer_id': self.customer_id,
            'project_id': self.project_id,
            'customer_email': self.customer_email,
            'customer_phone': self.customer_phone,
            'photo_count': self.photo_count,
            'uploaded_at': _iso(self.uploaded_at),
            'reviewed_at': _iso(self.reviewed_at),
            'review_notes': self.review_notes,
            'requested_by': self.requested_by,
            'company_id': self.company_id,
            'created_at': _iso(self.created_at),
        })
        return data


class Partner(db.Model):
    """Firmanın kurulumcu / tedarikçi kaydı (firma başına bir tane)."""
    __tablename__ = 'partner'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('company.id'), unique=True, nullable=False)
    #: INSTALLER, SUPPLIER, CONSULTANT veya FINANCIER
    partner_type = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text)
    service_areas = db.Column(db.JSON, nullable=False, default=list)
    specialties = db.Column(db.JSON, nullable=False, default=list)
    min_project_size_kw = db.Column(db.Float)
    max_project_size_kw = db.Column(db.Float)
    response_time_hours = db.Column(db.Integer, nullable=False, default=24)
    #: EMAIL, PHONE veya WHATSAPP
    preferred_contact = db.Column(db.String(20), nullable=False, default='EMAIL')
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    company = db.relationship('Company')

    def to_dict(self):
        return {
            'id': self.id,
            'company_id': self.company_id,
            'company_name': self.company.name if self.company else None,
            'partner_type': self.partner_type,
            'description': self.description,
            'service_areas': self.service_areas or [],
            'specialties': self.specialties or [],
            'min_project_size_kw': self.min_project_size_kw,
            'max_project_size_kw': self.max_project_size_kw,
            'response_time_hours': self.response_time_hours,
            'preferred_contact': self.preferred_contact,
            'is_verified': self.is_verified,
            'verified_at': _iso(self.verified_at),
            'created_at': _iso(self.created_at),
        }


class KVKKApplication(db.Model):
    """
    KVKK 11. madde kapsamında ilgili kişi başvurusu.

    Veri sorumlusu `submitted_at` tarihinden itibaren 30 gün içinde yanıt
    vermelidir (`response_deadline`). İptal edilen başvurunun durumu
    CANCELLED olur; satırlar hiç silinmez.
    """
    __tablename__ = 'kvkk_application'

    id = db.Column(db.Integer, primary_key=True)
    #: KVKK-<yıl>-<rakamlar>
    application_no = db.Column(db.String(40), unique=True, nullable=False)
    #: DATA_ACCESS, DATA_CORRECTION, DATA_DELETION, DATA_PORTABILITY, DATA_OBJECTION veya OTHER
    request_type = db.Column(db.String(30), nullable=False)
    #: PENDING, IN_PROGRESS, COMPLETED, REJECTED veya CANCELLED
    status = db.Column(db.String(20), nullable=False, default='PENDING')
    applicant_name = db.Column(db.String(200), nullable=False)
    #: T.C. kimlik numarası (11 hane)
    applicant_tc_no = db.Column(db.String(11))
    applicant_email = db.Column(db.String(120), nullable=False)
    applicant_phone = db.Column(db.String(30))
    applicant_address = db.Column(db.String(300))
    request_details = db.Column(db.Text, nullable=False)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(300))
    submitted_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    response_deadline = db.Column(db.DateTime, nullable=False)
    processed_at = db.Column(db.DateTime)
    response_details = db.Column(db.Text)
    assigned_to = db.Column(db.Integer, db.ForeignKey('user.id'))
    escalated_at = db.Column(db.DateTime)

    audit_logs = db.relationship('KVKKAuditLog', backref='application', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'application_no': self.application_no,
            'request_type': self.request_type,
            'status': self.status,
            'applicant_name': self.applicant_name,
            'applicant_email': self.applicant_email,
            'applicant_phone': self.applicant_phone,
            'applicant_address': self.applicant_address,
            'request_details': self.request_details,
            'submitted_at': _iso(self.submitted_at),
            'response_deadline': _iso(self.response_deadline),
            'processed_at': _iso(self.processed_at),
            'response_details': self.response_details,
            'assigned_to': self.assigned_to,
            'escalated_at': _iso(self.escalated_at),
        }

    def to_status_dict(self):
        """Herkese açık durum sorgusunda başvurana gösterilen alanlar."""
        return {
            'application_no': self.application_no,
            'request_type': self.request_type,
            'status': self.status,
            'submitted_at': _iso(self.submitted_at),
            'response_deadline': _iso(self.response_deadline),
            'processed_at': _iso(self.processed_at),
        }


class KVKKAuditLog(db.Model):
    """KVKK işlemlerinin yalnızca eklenen izi (başvuru, durum değişikliği, bildirim)."""
    __tablename__ = 'kvkk_audit_log'

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(60), nullable=False, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey('kvkk_application.id'))
    #: Kullanıcı id, e-posta veya SYSTEM
    performed_by = db.Column(db.String(120), nullable=False, default='SYSTEM')
    details = db.Column(db.JSON)
    ip_address = db.Column(db.String(64))
    performed_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'application_id': self.application_id,
            'performed_by': self.performed_by,
            'details': self.details,
            'performed_at': _iso(self.performed_at),
        }


class ManualExchangeRate(db.Model):
    """Yönetici tarafından sabitlenen TRY kuru (döviz başına en fazla bir etkin kayıt)."""
    __tablename__ = 'manual_exchange_rate'

    id = db.Column(db.Integer, primary_key=True)
    #: ISO 4217 kodu, büyük harf
    currency = db.Column(db.String(3), nullable=False, index=True)
    #: Bir birim `currency` karşılığı TRY
    rate = db.Column(db.Numeric(12, 4), nullable=False)
    description = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'currency': self.currency,
            'rate': _num(self.rate),
            'description': self.description,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
