"""
İstek gövdesi şemaları (pydantic).

Route'lar `parse_body(Schema)` çağırır; geçersiz gövde ``details`` içinde
pydantic hata listesiyle 400 olur. Güncelleme şemalarında her alan
isteğe bağlıdır ve ``model_dump(exclude_unset=True)`` ile uygulanır.
"""

import re
from datetime import date
from typing import List, Literal, Optional

from flask import request
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError, pydantic_details

PASSWORD_SPECIALS = r'[!@#$%^&*(),.?":{}|<>]'

CustomerType = Literal['INDIVIDUAL', 'CORPORATE']
ProjectType = Literal['RESIDENTIAL', 'COMMERCIAL', 'INDUSTRIAL', 'AGRICULTURAL']
ProjectStatus = Literal['DRAFT', 'DESIGN', 'QUOTE_SENT', 'APPROVED', 'INSTALLATION', 'COMPLETED', 'CANCELLED']
LeaveType = Literal['VACATION', 'SICK', 'PERSONAL', 'MATERNITY', 'PATERNITY', 'UNPAID']
PartnerType = Literal['INSTALLER', 'SUPPLIER', 'CONSULTANT', 'FINANCIER']
KVKKStatus = Literal['PENDING', 'IN_PROGRESS', 'COMPLETED', 'REJECTED']


def password_problems(password):
    """
    Parola politikası kontrolü.

    **Kurallar:**
    - En az 12 karakter.
    - En az 2 büyük harf [A-Z].
    - En az 2 özel karakter (ör. !@#).

    Returns:
        list: Okunabilir ihlaller; parola kabul edilirse boş.
    """
    problems = []
    if len(password) < 12:
        problems.append("Password must be at least 12 characters long")
    if len(re.findall(r'[A-Z]', password)) < 2:
        problems.append("Password must contain at least 2 upper-case letters")
    if len(re.findall(PASSWORD_SPECIALS, password)) < 2:
        problems.append("Password must contain at least 2 special characters")
    return problems


class Schema(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


def parse_body(schema, data=None):
    """JSON gövdesini (veya ``data``) ``schema`` ile doğrular."""
    if data is None:
        data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(details=pydantic_details(e))


def parse_args(schema):
    """Sorgu parametrelerini ``schema`` ile doğrular."""
    return parse_body(schema, request.args.to_dict())


# kimlik doğrulama / kullanıcılar

class LoginSchema(Schema):
    email: EmailStr
    password: str = Field(min_length=1)


class RegisterSchema(Schema):
    name: str = Field(min_length=2, max_length=120)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    role: Literal['CUSTOMER', 'FARMER'] = 'CUSTOMER'

    @field_validator('password')
    @classmethod
    def strong_password(cls, value):
        problems = password_problems(value)
        if problems:
            raise ValueError("; ".join(problems))
        return value


class AdminUserCreateSchema(Schema):
    name: str = Field(min_length=2, max_length=120)
    email: EmailStr
    role: Literal['ADMIN', 'COMPANY', 'CUSTOMER', 'FARMER', 'BANK', 'SUPPORT']
    phone: Optional[str] = None
    company_id: Optional[int] = None


class AdminUserUpdateSchema(Schema):
    name: Optional[str] = Field(None, min_length=2, max_length=120)
    role: Optional[Literal['ADMIN', 'COMPANY', 'CUSTOMER', 'FARMER', 'BANK', 'SUPPORT']] = None
    phone: Optional[str] = None
    company_id: Optional[int] = None
    is_active: Optional[bool] = None


class PasswordChangeSchema(Schema):
    old_password: str = Field(min_length=1)
    new_password: str
    new_password_confirm: str

    @model_validator(mode='after')
    def check_new_password(self):
        if self.new_password != self.new_password_confirm:
            raise ValueError("New passwords do not match")
        problems = password_problems(self.new_password)
        if problems:
            raise ValueError("; ".join(problems))
        return self


# müşteriler / projeler / teklifler

class CustomerCreateSchema(Schema):
    customer_type: CustomerType = 'INDIVIDUAL'
    first_name: Optional[str] = Field(None, max_length=80)
    last_name: Optional[str] = Field(None, max_length=80)
    company_name: Optional[str] = Field(None, max_length=200)
    tax_number: Optional[str] = Field(None, max_length=20)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = None
    district: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[int] = None

    @model_validator(mode='after')
    def check_names(self):
        if self.customer_type == 'CORPORATE':
            if not self.company_name:
                raise ValueError("company_name is required for corporate customers")
        elif not (self.first_name and self.last_name):
            raise ValueError("first_name and last_name are required for individual customers")
        return self


class CustomerUpdateSchema(Schema):
    customer_type: Optional[CustomerType] = None
    first_name: Optional[str] = Field(None, max_length=80)
    last_name: Optional[str] = Field(None, max_length=80)
    company_name: Optional[str] = Field(None, max_length=200)
    tax_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = None
    district: Optional[str] = None
    notes: Optional[str] = None


class ProjectCreateSchema(Schema):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    project_type: ProjectType = 'RESIDENTIAL'
    status: ProjectStatus = 'DRAFT'
    capacity_kw: Optional[float] = Field(None, gt=0)
    estimated_cost: Optional[float] = Field(None, ge=0)
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = None
    district: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    customer_id: Optional[int] = None
    start_date: Optional[date] = None
    completion_date: Optional[date] = None


class ProjectUpdateSchema(Schema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    project_type: Optional[ProjectType] = None
    status: Optional[ProjectStatus] = None
    capacity_kw: Optional[float] = Field(None, gt=0)
    estimated_cost: Optional[float] = Field(None, ge=0)
    address: Optional[str] = Field(None, max_length=300)
    city: Optional[str] = None
    district: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    customer_id: Optional[int] = None
    start_date: Optional[date] = None
    completion_date: Optional[date] = None


class ProjectListArgs(Schema):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    search: Optional[str] = None
    status: Optional[ProjectStatus] = None
    project_type: Optional[ProjectType] = None
    customer_id: Optional[int] = None


class QuoteItemSchema(Schema):
    name: str = Field(min_length=1, max_length=200)
    category: Literal['PANEL', 'INVERTER', 'MOUNTING', 'CABLE', 'LABOR', 'OTHER'] = 'OTHER'
    quantity: float = Field(gt=0)
    unit_price: float = Field(ge=0)
    discount: float = Field(0, ge=0, le=100)
    tax_rate: float = Field(20, ge=0, le=100)


class QuoteCreateSchema(Schema):
    project_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    capacity_kw: Optional[float] = Field(None, gt=0)
    items: List[QuoteItemSchema] = Field(min_length=1)
    valid_days: int = Field(30, ge=1, le=365)
    notes: Optional[str] = None
    terms: Optional[str] = None


class QuoteUpdateSchema(Schema):
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    capacity_kw: Optional[float] = Field(None, gt=0)
    items: Optional[List[QuoteItemSchema]] = Field(None, min_length=1)
    valid_days: Optional[int] = Field(None, ge=1, le=365)
    notes: Optional[str] = None
    terms: Optional[str] = None


class QuoteDecisionSchema(Schema):
    decision: Literal['APPROVED', 'REJECTED']
    reason: Optional[str] = None


# İK

class EmployeeCreateSchema(Schema):
    employee_code: str = Field(min_length=1, max_length=20)
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    email: EmailStr
    phone: Optional[str] = None
    department: Optional[str] = None
    position: str = Field(min_length=1, max_length=80)
    hire_date: date
    annual_leave_entitlement: int = Field(30, ge=0, le=60)
    user_id: Optional[int] = None


class EmployeeUpdateSchema(Schema):
    first_name: Optional[str] = Field(None, min_length=1, max_length=80)
    last_name: Optional[str] = Field(None, min_length=1, max_length=80)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = Field(None, min_length=1, max_length=80)
    annual_leave_entitlement: Optional[int] = Field(None, ge=0, le=60)
    is_active: Optional[bool] = None


class LeaveRequestSchema(Schema):
    employee_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(min_length=1)

    @model_validator(mode='after')
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class LeaveDecisionSchema(Schema):
    action: Literal['approve', 'reject']
    notes: Optional[str] = None


# fotoğraf talepleri / iş ortakları

class PhotoRequestCreateSchema(Schema):
    customer_id: Optional[int] = None
    project_id: Optional[int] = None
    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    engineer_name: str = Field(min_length=1, max_length=120)
    engineer_title: str = Field('Mühendis', max_length=80)
    message: Optional[str] = None
    guidelines: Optional[str] = None
    expiry_days: int = Field(7, ge=1, le=30)

    @model_validator(mode='after')
    def check_contact(self):
        if not (self.customer_email or self.customer_phone):
            raise ValueError("customer_email or customer_phone is required")
        return self


class PhotoUploadSchema(Schema):
    photo_count: int = Field(ge=1, le=50)


class PhotoReviewSchema(Schema):
    notes: Optional[str] = None


class PartnerRegisterSchema(Schema):
    company_id: int
    partner_type: PartnerType
    description: Optional[str] = Field(None, max_length=2000)
    service_areas: List[str] = Field(min_length=1)
    specialties: List[str] = Field(min_length=1)
    min_project_size_kw: Optional[float] = Field(None, gt=0)
    max_project_size_kw: Optional[float] = Field(None, gt=0)
    response_time_hours: int = Field(24, ge=1, le=168)
    preferred_contact: Literal['EMAIL', 'PHONE', 'WHATSAPP'] = 'EMAIL'

    @model_validator(mode='after')
    def check_sizes(self):
        if (self.min_project_size_kw is not None and self.max_project_size_kw is not None
                and self.min_project_size_kw >= self.max_project_size_kw):
            raise ValueError("min_project_size_kw must be smaller than max_project_size_kw")
        return self


# KVKK

KVKK_REQUEST_TYPES = {
    'info': 'DATA_ACCESS',
    'access': 'DATA_ACCESS',
    'correction': 'DATA_CORRECTION',
    'deletion': 'DATA_DELETION',
    'portability': 'DATA_PORTABILITY',
    'objection': 'DATA_OBJECTION',
    'other': 'OTHER',
}


class KVKKApplicationSchema(Schema):
    request_type: Literal['info', 'access', 'correction', 'deletion', 'portability', 'objection', 'other']
    full_name: str = Field(min_length=1, max_length=200)
    tc_no: str = Field(min_length=11, max_length=11)
    email: EmailStr
    phone: str = Field(min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    district: str = Field(min_length=1)
    postal_code: Optional[str] = None
    details: str = Field(min_length=10)
    previous_application: bool = False
    previous_application_no: Optional[str] = None
    consent_to_process: bool
    accept_terms: bool

    @field_validator('tc_no')
    @classmethod
    def digits_only(cls, value):
        if not value.isdigit():
            raise ValueError("T.C. Kimlik No 11 haneli olmalıdır")
        return value

    @field_validator('consent_to_process')
    @classmethod
    def consent_given(cls, value):
        if value is not True:
            raise ValueError("İşleme izni gerekli")
        return value

    @field_validator('accept_terms')
    @classmethod
    def terms_accepted(cls, value):
        if value is not True:
            raise ValueError("Şartları kabul etmelisiniz")
        return value

    @property
    def mapped_request_type(self):
        return KVKK_REQUEST_TYPES[self.request_type]


class KVKKStatusUpdateSchema(Schema):
    status: KVKKStatus
    response_details: Optional[str] = None
    assigned_to: Optional[int] = None


class KVKKMonitoringActionSchema(Schema):
    action: str
    application_ids: Optional[List[int]] = None


class KVKKSchedulerActionSchema(Schema):
    action: Literal['check_overdue_applications', 'check_reminder_applications', 'send_daily_report',
                    'automated_monitoring']


# döviz kurları / hava durumu

class ManualRateCreateSchema(Schema):
    currency: str = Field(min_length=3, max_length=3)
    rate: float = Field(ge=0.01, le=1000)
    description: Optional[str] = Field(None, max_length=200)

    @field_validator('currency')
    @classmethod
    def currency_code(cls, value):
        if not value.isalpha():
            raise ValueError("currency must be a 3 letter code")
        return value.upper()


class ManualRateUpdateSchema(Schema):
    rate: Optional[float] = Field(None, ge=0.01, le=1000)
    description: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None


class ConversionSchema(Schema):
    amount: float = Field(gt=0)
    from_currency: str = Field(min_length=3, max_length=3)
    to_currency: str = Field(min_length=3, max_length=3)

    @field_validator('from_currency', 'to_currency')
    @classmethod
    def upper(cls, value):
        return value.upper()


class WeatherArgs(Schema):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    project_id: Optional[int] = None
