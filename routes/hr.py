"""
İK modülü: personel ve izin yönetimi.

Tüm uç noktalar bir firmaya bağlı ADMIN hesaplarıyla sınırlıdır ve yalnızca
o firmanın personelini görür.

**İzin kuralları**

1. ``total_days`` başlangıç ve bitiş tarihleri dahil iş günlerini
   (Pazartesi..Cuma) sayar (`business_days`).
2. Bir talep aynı personelin reddedilmemiş başka bir talebiyle çakışamaz.
3. VACATION talepleri yıllık bakiyeye sığmalıdır: personelin
   ``annual_leave_entitlement`` değerinden aynı takvim yılında başlayan
   onaylı VACATION günleri düşülür.
4. Yalnızca PENDING talepler karara bağlanabilir; başlamış izin
   onaylanamaz.
"""

import logging
from datetime import date, timedelta

from flask import Blueprint, jsonify, request
from flask_login import current_user

from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models import Employee, LeaveRequest, utcnow
from permissions import role_required
from schemas import (EmployeeCreateSchema, EmployeeUpdateSchema, LeaveDecisionSchema, LeaveRequestSchema,
                     parse_body)

hr_bp = Blueprint('hr', __name__, url_prefix='/api/hr')
app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")


def business_days(start, end):
    """[start, end] aralığındaki hafta içi gün sayısı."""
    count = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def used_vacation_days(employee_id, year):
    rows = (LeaveRequest.query
            .filter(LeaveRequest.employee_id == employee_id,
                    LeaveRequest.status == 'APPROVED',
                    LeaveRequest.leave_type == 'VACATION',
                    LeaveRequest.start_date >= date(year, 1, 1),
                    LeaveRequest.start_date < date(year + 1, 1, 1))
            .all())
    return sum(r.total_days for r in rows)


def find_overlap(employee_id, start, end, exclude_id=None):
    query = LeaveRequest.query.filter(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.status != 'REJECTED',
        LeaveRequest.start_date <= end,
        LeaveRequest.end_date >= start,
    )
    if exclude_id is not None:
        query = query.filter(LeaveRequest.id != exclude_id)
    return query.first()


def _company_id():
    if current_user.company_id is None:
        raise ValidationError('Company not found')
    return current_user.company_id


def _employee(employee_id, active_only=False):
    query = Employee.query.filter_by(id=employee_id, company_id=_company_id())
    if active_only:
        query = query.filter_by(is_active=True)
    employee = query.first()
    if not employee:
        raise NotFoundError('Employee not found or inactive' if active_only else 'Employee not found')
    return employee


# personel

@hr_bp.route('/employees')
@role_required('ADMIN')
def list_employees():
    query = Employee.query.filter_by(company_id=_company_id())
    if request.args.get('department'):
        query = query.filter_by(department=request.args['department'])
    if request.args.get('include_inactive', 'false').lower() != 'true':
        query = query.filter_by(is_active=True)
    employees = query.order_by(Employee.last_name, Employee.first_name).all()
    return jsonify({'success': True, 'employees': [e.to_dict() for e in employees]})


@hr_bp.route('/employees', methods=['POST'])
@role_required('ADMIN')
def create_employee():
    company_id = _company_id()
    data = parse_body(EmployeeCreateSchema)
    if Employee.query.filter_by(employee_code=data.employee_code).first():
        raise ConflictError('Employee code already exists')

    employee = Employee(company_id=company_id, **data.model_dump())
    try:
        db.session.add(employee)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("EMPLOYEE_CREATE_ERROR", exc_info=True, extra={'admin': current_user.email})
        raise

    app_logger.info("EMPLOYEE_CREATED", extra={
        'event': 'HR_EMPLOYEE_CREATE',
        'admin': current_user.email,
        'employee_code': employee.employee_code,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'employee': employee.to_dict()}), 201


@hr_bp.route('/employees/<int:employee_id>')
@role_required('ADMIN')
def get_employee(employee_id):
    employee = _employee(employee_id)
    data = employee.to_dict()
    data['leave_requests'] = [r.to_dict() for r in employee.leave_requests.order_by(LeaveRequest.start_date.desc())]
    return jsonify({'success': True, 'employee': data})


@hr_bp.route('/employees/<int:employee_id>', methods=['PUT', 'PATCH'])
@role_required('ADMIN')
def update_employee(employee_id):
    employee = _employee(employee_id)
    changes = parse_body(EmployeeUpdateSchema).model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field in ('first_name', 'last_name', 'email', 'annual_leave_entitlement', 'is_active'):
            continue
        setattr(employee, field, value)
    db.session.commit()
    app_logger.info("EMPLOYEE_UPDATED", extra={
        'event': 'HR_EMPLOYEE_UPDATE',
        'admin': current_user.email,
        'employee_code': employee.employee_code,
        'fields': sorted(changes)
    })
    return jsonify({'success': True, 'employee': employee.to_dict()})


@hr_bp.route('/employees/<int:employee_id>', methods=['DELETE'])
@role_required('ADMIN')
def deactivate_employee(employee_id):
    """Yumuşak silme: personel ve izin geçmişi veritabanında kalır."""
    employee = _employee(employee_id)
    employee.is_active = False
    db.session.commit()
    app_logger.warning("EMPLOYEE_DEACTIVATED", extra={
        'event': 'HR_EMPLOYEE_DEACTIVATE',
        'admin': current_user.email,
        'employee_code': employee.employee_code
    })
    return jsonify({'success': True, 'employee': employee.to_dict()})


# izinler

@hr_bp.route('/leave/requests')
@role_required('ADMIN')
def list_leave_requests():
    query = (LeaveRequest.query
             .join(Employee, LeaveRequest.employee_id == Employee.id)
             .filter(Employee.company_id == _company_id()))
    if request.args.get('status'):
        query = query.filter(LeaveRequest.status == request.args['status'])
    employee_id = request.args.get('employee_id', type=int)
    if employee_id is not None:
        query = query.filter(LeaveRequest.employee_id == employee_id)
    requests_ = query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()
    return jsonify({'success': True, 'leave_requests': [r.to_dict() for r in requests_]})


@hr_bp.route('/leave/request', methods=['POST'])
@role_required('ADMIN')
def create_leave_request():
    """
        Etkin bir personel için izin talebi açar.

        Returns:
            Response: talep ile 201; çakışmada (çakışan talep ile) veya
            yetersiz yıllık izin bakiyesinde (rakamlarla) 400; bilinmeyen
            ya da pasif personelde 404.
    """
    data = parse_body(LeaveRequestSchema)
    employee = _employee(data.employee_id, active_only=True)

    conflict = find_overlap(employee.id, data.start_date, data.end_date)
    if conflict:
        raise ValidationError('Leave request conflicts with existing leave', details={
            'conflicting_request': {
                'id': conflict.id,
                'start_date': conflict.start_date.isoformat(),
                'end_date': conflict.end_date.isoformat(),
                'status': conflict.status,
            }
        })

    total_days = business_days(data.start_date, data.end_date)
    if total_days == 0:
        raise ValidationError('Leave request contains no business days')

    if data.leave_type == 'VACATION':
        used = used_vacation_days(employee.id, data.start_date.year)
        available = employee.annual_leave_entitlement - used
        if total_days > available:
            raise ValidationError('Insufficient vacation balance', details={
                'requested': total_days,
                'available': available,
                'used': used,
                'total': employee.annual_leave_entitlement,
            })

    leave = LeaveRequest(
        employee_id=employee.id,
        leave_type=data.leave_type,
        start_date=data.start_date,
        end_date=data.end_date,
        total_days=total_days,
        reason=data.reason,
        status='PENDING',
    )
    db.session.add(leave)
    db.session.commit()
    app_logger.info("LEAVE_REQUESTED", extra={
        'event': 'HR_LEAVE_REQUEST',
        'admin': current_user.email,
        'employee_code': employee.employee_code,
        'leave_type': leave.leave_type,
        'total_days': total_days
    })
    return jsonify({'success': True, 'leave_request': leave.to_dict()}), 201


@hr_bp.route('/leave/<int:leave_id>/approve', methods=['PUT', 'POST'])
@role_required('ADMIN')
def decide_leave_request(leave_id):
    data = parse_body(LeaveDecisionSchema)
    leave = (LeaveRequest.query
             .join(Employee, LeaveRequest.employee_id == Employee.id)
             .filter(LeaveRequest.id == leave_id, Employee.company_id == _company_id())
             .first())
    if not leave:
        raise NotFoundError('Leave request not found')
    if leave.status != 'PENDING':
        raise ValidationError('Leave request has already been processed',
                              details={'current_status': leave.status})

    now = utcnow()
    if data.action == 'approve':
        if leave.start_date < now.date():
            raise ValidationError('Cannot approve leave request for past dates')
        leave.status = 'APPROVED'
        leave.approved_at = now
    else:
        leave.status = 'REJECTED'
        leave.rejected_at = now
    leave.approver_id = current_user.id
    leave.approver_notes = data.notes
    db.session.commit()

    app_logger.info("LEAVE_DECIDED", extra={
        'event': 'HR_LEAVE_DECISION',
        'admin': current_user.email,
        'leave_id': leave.id,
        'decision': leave.status
    })
    return jsonify({'success': True, 'leave_request': leave.to_dict()})


@hr_bp.route('/leave/balance')
@role_required('ADMIN')
def leave_balance():
    """
        ``year`` yılı için personel başına yıllık izin bakiyesi
        (varsayılan: içinde bulunulan yıl).

        ``used`` onaylı yıllık izni, ``pending`` karar bekleyen yıllık izin
        günlerini sayar. 1..9998 dışındaki yıl 400 döner.
    """
    year = request.args.get('year', utcnow().year, type=int)
    if not 1 <= year < 9999:
        raise ValidationError('Geçersiz yıl', details={'year': year})
    query = Employee.query.filter_by(company_id=_company_id(), is_active=True)
    employee_id = request.args.get('employee_id', type=int)
    if employee_id is not None:
        query = query.filter_by(id=employee_id)

    balances = []
    for employee in query.order_by(Employee.last_name, Employee.first_name):
        in_year = [r for r in employee.leave_requests
                   if date(year, 1, 1) <= r.start_date < date(year + 1, 1, 1)]
        used = sum(r.total_days for r in in_year if r.status == 'APPROVED' and r.leave_type == 'VACATION')
        pending = sum(r.total_days for r in in_year if r.status == 'PENDING' and r.leave_type == 'VACATION')
        by_type = {}
        for r in in_year:
            if r.status == 'APPROVED':
                by_type[r.leave_type] = by_type.get(r.leave_type, 0) + r.total_days
        balances.append({
            'employee_id': employee.id,
            'employee_name': employee.full_name,
            'employee_code': employee.employee_code,
            'department': employee.department,
            'total': employee.annual_leave_entitlement,
            'used': used,
            'pending': pending,
            'available': employee.annual_leave_entitlement - used,
            'used_by_type': by_type,
        })
    return jsonify({'success': True, 'year': year, 'balances': balances})
