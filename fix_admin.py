"""
Yönetici hesabı oluşturma / kurtarma betiği.

Gerekirse tabloları oluşturur ve etkin bir ADMIN hesabı bulunmasını sağlar:

- bilinmeyen e-posta için yeni bir ADMIN hesabı açılır,
- mevcut hesap ADMIN yapılır, kilidi açılır ve yeni parola alır
  (projeleri, teklifleri ve denetim kayıtları korunur).

Kullanım::

    python fix_admin.py admin@example.com [firma adı]

Parola ``ADMIN_PASSWORD`` değişkeninden alınır ya da üretilip bir kez yazdırılır.
"""

import os
import sys

from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from models import Company, User
from routes.auth import generate_strong_password
from schemas import password_problems


def ensure_admin(email, password, company_name=None):
    """
    ``email`` adresli ADMIN hesabını oluşturur veya onarır.

    Returns:
        tuple: (user, created)
    """
    company = None
    if company_name:
        company = Company.query.filter_by(name=company_name).first()
        if company is None:
            company = Company(name=company_name, is_verified=True)
            db.session.add(company)
            db.session.flush()

    user = User.query.filter_by(email=email.lower()).first()
    created = user is None
    if created:
        user = User(email=email.lower(), name='Administrator')
        db.session.add(user)

    user.role = 'ADMIN'
    user.password_hash = generate_password_hash(password)
    user.deleted_at = None
    if company is not None:
        user.company_id = company.id
    db.session.commit()
    return user, created


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(__doc__)
        return 2

    email = argv[0]
    company_name = argv[1] if len(argv) > 1 else None
    password = os.getenv('ADMIN_PASSWORD')
    generated = not password
    if generated:
        password = generate_strong_password()
    problems = password_problems(password)
    if problems:
        print("ADMIN_PASSWORD rejected: " + "; ".join(problems))
        return 1

    app = create_app()
    with app.app_context():
        db.create_all()
        user, created = ensure_admin(email, password, company_name)
        print(f"{'Created' if created else 'Repaired'} ADMIN account: {user.email} (ID: {user.id})")

    if generated:
        print(f"Temporary password: {password}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
