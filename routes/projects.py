"""
GES proje uç noktaları.

**Listeleme**

`list_projects` firma kapsamını (`tenancy.scope_query`)
`schemas.ProjectListArgs` filtreleriyle birleştirir:

- ``search``: ad, şehir ve açıklamada büyük/küçük harf duyarsız arama,
- ``status`` / ``project_type`` / ``customer_id``: tam eşleşme,
- ``page`` / ``limit``: sayfalama (``limit`` en fazla 100).

**Silme**

Proje silinince teklifleri (kalemleriyle) de silinir; fotoğraf talepleri
kalır ve proje bağlantıları kaldırılır.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user
from sqlalchemy import or_

from errors import NotFoundError, ValidationError
from extensions import db
from models import Customer, PhotoRequest, Project, Quote
from permissions import permission_required
from schemas import ProjectCreateSchema, ProjectListArgs, ProjectUpdateSchema, parse_args, parse_body
from tenancy import can_access, ensure_access, scope_query

projects_bp = Blueprint('projects', __name__, url_prefix='/api/projects')
app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")


def _load(project_id):
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError('Proje bulunamadı')
    return ensure_access(project, current_user, 'projects')


def _check_customer(customer_id):
    """Bağlanan müşteri var olmalı ve çağırana görünür olmalı."""
    if customer_id is None:
        return
    customer = db.session.get(Customer, customer_id)
    if not customer or not can_access(customer, current_user, 'customers'):
        raise ValidationError('Müşteri bulunamadı')


@projects_bp.route('')
@permission_required('projects:read')
def list_projects():
    args = parse_args(ProjectListArgs)

    query = scope_query(Project.query, Project, current_user)
    if args.search:
        pattern = f"%{args.search}%"
        query = query.filter(or_(
            Project.name.ilike(pattern),
            Project.city.ilike(pattern),
            Project.description.ilike(pattern),
        ))
    if args.status:
        query = query.filter(Project.status == args.status)
    if args.project_type:
        query = query.filter(Project.project_type == args.project_type)
    if args.customer_id is not None:
        query = query.filter(Project.customer_id == args.customer_id)

    result = query.order_by(Project.created_at.desc(), Project.id.desc()).paginate(
        page=args.page, per_page=args.limit, error_out=False)
    return jsonify({
        'success': True,
        'projects': [p.to_dict() for p in result.items],
        'pagination': {
            'page': args.page,
            'limit': args.limit,
            'total': result.total,
            'pages': result.pages,
        },
    })


@projects_bp.route('', methods=['POST'])
@permission_required('projects:create')
def create_project():
    """
        Çağıranın firmasında, çağırana ait bir proje açar.

        Returns:
            Response: proje ile 201; bağlanan müşteri yoksa veya çağırana
            görünmüyorsa 400.
    """
    data = parse_body(ProjectCreateSchema)
    _check_customer(data.customer_id)

    project = Project(owner_id=current_user.id, company_id=current_user.company_id, **data.model_dump())
    try:
        db.session.add(project)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("PROJECT_CREATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.info("PROJECT_CREATED", extra={
        'event': 'PROJECT_CREATE',
        'user': current_user.email,
        'project_id': project.id,
        'capacity_kw': data.capacity_kw,
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'project': project.to_dict()}), 201


@projects_bp.route('/<int:project_id>')
@permission_required('projects:read')
def get_project(project_id):
    project = _load(project_id)
    data = project.to_dict()
    quotes = Quote.query.filter_by(project_id=project.id).order_by(Quote.created_at.desc()).all()
    data['quotes'] = [q.to_dict() for q in quotes]
    return jsonify({'success': True, 'project': data})


@projects_bp.route('/<int:project_id>', methods=['PUT', 'PATCH'])
@permission_required('projects:update')
def update_project(project_id):
    project = _load(project_id)
    changes = parse_body(ProjectUpdateSchema).model_dump(exclude_unset=True)
    if 'customer_id' in changes:
        _check_customer(changes['customer_id'])

    old_status = project.status
    for field, value in changes.items():
        if field in ('name', 'project_type', 'status') and value is None:
            continue
        setattr(project, field, value)

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("PROJECT_UPDATE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.info("PROJECT_UPDATED", extra={
        'event': 'PROJECT_UPDATE',
        'user': current_user.email,
        'project_id': project.id,
        'fields': sorted(changes),
        'status_change': [old_status, project.status] if old_status != project.status else None
    })
    return jsonify({'success': True, 'project': project.to_dict()})


@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@permission_required('projects:delete')
def delete_project(project_id):
    project = _load(project_id)
    quotes = Quote.query.filter_by(project_id=project.id).all()
    try:
        for quote in quotes:
            db.session.delete(quote)
        # fotoğraf talepleri müşteride kalır
        PhotoRequest.query.filter_by(project_id=project.id).update(
            {PhotoRequest.project_id: None}, synchronize_session=False)
        db.session.delete(project)
        db.session.commit()
    except Exception:
        db.session.rollback()
        error_logger.error("PROJECT_DELETE_ERROR", exc_info=True, extra={'user': current_user.email})
        raise

    app_logger.warning("PROJECT_DELETED", extra={
        'event': 'PROJECT_DELETE',
        'user': current_user.email,
        'project_id': project_id,
        'deleted_quotes': len(quotes),
        'src_ip': request.remote_addr
    })
    return jsonify({'success': True, 'message': 'Proje başarıyla silindi'})
