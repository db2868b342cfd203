"""
Erişim denetimli panel rakamları ve CSV dışa aktarımları.

Her rakam ve dışa aktarım `tenancy.scope_query` ile firma kapsamındadır.

**Denetim logu (veri gizliliği)**

Dışa aktarımlar yüksek riskli olay sayılır; çağıranın IP adresi ve kişisel
verinin maskelenip maskelenmediği ile ``security`` kanalına yazılır.

Dışa aktarım logu örneği (JSON)::
{
    "timestamp": "2026-01-11T20:45:12.123Z",
    "level": "INFO",
    "event": "DATA_EXPORT",
    "user": "firma@example.com",
    "report": "projeler.csv",
    "rows": 42,
    "src_ip": "192.168.1.100",
    "signature": "df8a92..."
}
"""

import csv
import io
import logging

from flask import Blueprint, Response, jsonify, request
from flask_login import current_user
from sqlalchemy import func

from extensions import db
from models import Customer, KVKKApplication, PhotoRequest, Project, Quote
from permissions import permission_required
from services.kvkk_compliance import OPEN_STATUSES
from tenancy import scope_query

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')
security_logger = logging.getLogger("security")


def _decimal_comma(value):
    """Ondalık virgül, iki hane (tablo programları için)."""
    return f"{float(value or 0):.2f}".replace('.', ',')


def _grouped(model, column):
    query = scope_query(db.session.query(column, func.count(model.id)), model, current_user)
    return {key: count for key, count in query.group_by(column).all()}


@reports_bp.route('/dashboard')
@permission_required('analytics:read')
def dashboard():
    """
        Panel için özet sayılar.

        - Durum başına projeler, toplam ve kurulu kapasite (kW).
        - Durum başına teklifler ve onaylı tekliflerin tutarı.
        - Müşteri sayısı ve müşteriden yanıt bekleyen fotoğraf talepleri.
        - Yöneticiler açık KVKK başvurularının sayısını da alır.
    """
    projects = scope_query(Project.query, Project, current_user)
    quotes = scope_query(Quote.query, Quote, current_user)

    total_capacity = projects.with_entities(func.coalesce(func.sum(Project.capacity_kw), 0)).scalar()
    installed_capacity = (projects.filter(Project.status == 'COMPLETED')
                          .with_entities(func.coalesce(func.sum(Project.capacity_kw), 0)).scalar())
    approved_value = (quotes.filter(Quote.status == 'APPROVED')
                      .with_entities(func.coalesce(func.sum(Quote.total), 0)).scalar())

    data = {
        'projects': {
            'total': projects.count(),
            'by_status': _grouped(Project, Project.status),
            'total_capacity_kw': float(total_capacity or 0),
            'installed_capacity_kw': float(installed_capacity or 0),
        },
        'quotes': {
            'total': quotes.count(),
            'by_status': _grouped(Quote, Quote.status),
            'approved_value': float(approved_value or 0),
        },
        'customers': {
            'total': scope_query(Customer.query, Customer, current_user).count(),
        },
        'photo_requests': {
            'pending': scope_query(PhotoRequest.query, PhotoRequest, current_user)
            .filter(PhotoRequest.status == 'PENDING').count(),
        },
    }
    if current_user.role == 'ADMIN':
        data['kvkk'] = {
            'open_applications': KVKKApplication.query.filter(KVKKApplication.status.in_(OPEN_STATUSES)).count(),
        }
    return jsonify({'success': True, 'data': data})


@reports_bp.route('/export/projects')
@permission_required('reports:export')
def export_projects_csv():
    projects = (scope_query(Project.query, Project, current_user)
                .order_by(Project.created_at.desc()).all())

    output = io.StringIO()
    writer = csv.writer(output, delimiter=';')
    writer.writerow(['ID', 'Proje', 'Tür', 'Durum', 'Kapasite (kW)', 'Tahmini Maliyet', 'İl', 'İlçe',
                     'Müşteri', 'Oluşturulma'])
    for p in projects:
        writer.writerow([
            p.id, p.name, p.project_type, p.status,
            _decimal_comma(p.capacity_kw), _decimal_comma(p.estimated_cost),
            p.city or '', p.district or '',
            p.customer.display_name if p.customer else '',
            p.created_at.strftime('%d.%m.%Y'),
        ])

    security_logger.info("EXPORT_PROJECTS", extra={
        'event': 'DATA_EXPORT',
        'user': current_user.email,
        'report': 'projeler.csv',
        'rows': len(projects),
        'src_ip': request.remote_addr
    })
    return generate_csv_response(output, "projeler.csv")


@reports_bp.route('/export/quotes')
@permission_required('reports:export')
def export_quotes_csv():
    quotes = scope_query(Quote.query, Quote, current_user).order_by(Quote.created_at.desc()).all()

    output = io.StringIO()
    writer = csv.writer(output, delimiter=';')
    writer.writerow(['Teklif No', 'Durum', 'Müşteri', 'Ara Toplam', 'İndirim', 'KDV', 'Toplam', 'Geçerlilik'])
    for q in quotes:
        writer.writerow([
            q.quote_number, q.status, q.customer_name or '',
            _decimal_comma(q.subtotal), _decimal_comma(q.discount), _decimal_comma(q.tax), _decimal_comma(q.total),
            q.valid_until.strftime('%d.%m.%Y') if q.valid_until else '',
        ])

    security_logger.info("EXPORT_QUOTES", extra={
        'event': 'DATA_EXPORT',
        'user': current_user.email,
        'report': 'teklifler.csv',
        'rows': len(quotes),
        'src_ip': request.remote_addr
    })
    return generate_csv_response(output, "teklifler.csv")


@reports_bp.route('/export/customers')
@permission_required('customers:export')
def export_customers_csv():
    """
        Kişisel veri maskelemeli müşteri listesi dışa aktarımı.

        Vergi ve telefon numaralarını yalnızca yöneticiler açık görür;
        diğer herkes için bu sütunlar ``***`` olur.
    """
    masked = current_user.role != 'ADMIN'
    customers = (scope_query(Customer.query, Customer, current_user)
                 .order_by(Customer.created_at.desc()).all())

    output = io.StringIO()
    writer = csv.writer(output, delimiter=';')
    writer.writerow(['ID', 'Müşteri', 'Tür', 'E-posta', 'Telefon', 'Vergi No', 'İl'])
    for c in customers:
        writer.writerow([
            c.id, c.display_name, c.customer_type, c.email,
            '***' if masked and c.phone else (c.phone or ''),
            '***' if masked and c.tax_number else (c.tax_number or ''),
            c.city or '',
        ])

    security_logger.info("EXPORT_CUSTOMERS", extra={
        'event': 'DATA_EXPORT_PII',
        'user': current_user.email,
        'report': 'musteriler.csv',
        'rows': len(customers),
        'pii_masked': masked,
        'src_ip': request.remote_addr
    })
    return generate_csv_response(output, "musteriler.csv")


def generate_csv_response(output, filename):
    """
        CSV indirme yanıtı.

        Gövde BOM'lu UTF-8 (``utf-8-sig``) olarak kodlanır, böylece Excel
        Türkçe karakterleri (ş, ğ, ı) doğru gösterir; ``Content-Disposition:
        attachment`` tarayıcının dosyayı kaydetmesini sağlar.

        Args:
            output (io.StringIO): CSV metnini tutan tampon.
            filename (str): Kullanıcıya önerilen dosya adı.
    """
    output.seek(0)
    return Response(
        output.getvalue().encode('utf-8-sig'),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment;filename={filename}"}
    )
