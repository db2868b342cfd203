"""
API istisnaları ve JSON gösterimleri.

Route fonksiyonları hata yanıtını elle kurmak yerine bunları fırlatır;
`register_error_handlers` (`create_app` içinden çağrılır) şu yanıtı üretir::

    {"success": false, "error": "Proje bulunamadı"}

`ValidationError` ayrıca bir ``details`` alanı taşır (pydantic hata listesi).
"""

import logging

from flask import jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

security_logger = logging.getLogger("security")
error_logger = logging.getLogger("error")


class APIError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        if self.details is not None:
            body['details'] = self.details
        return body


class ValidationError(APIError):
    status_code = 400
    message = "Validation error"


class AuthenticationError(APIError):
    status_code = 401
    message = "Unauthorized"


class AuthorizationError(APIError):
    status_code = 403
    message = "Insufficient permissions"


class NotFoundError(APIError):
    status_code = 404
    message = "Not found"


class ConflictError(APIError):
    status_code = 409
    message = "Conflict"


class GoneError(APIError):
    status_code = 410
    message = "Gone"


def pydantic_details(exc):
    """Girdi değerleri ve doküman bağlantıları olmadan pydantic hata listesi."""
    return exc.errors(include_url=False, include_context=False, include_input=False)


def register_error_handlers(app):
    """
    Uygulamaya JSON hata işleyicilerini ekler.

    - `APIError` alt sınıfları kendi durum kodlarıyla döner.
    - Route dışına taşan pydantic doğrulama hataları 400 olur.
    - werkzeug HTTP hataları (404, 405, Flask-Limiter 429, CSRF 400)
      kodlarını korur, gövde JSON olur.
    - Diğer her şey ``error`` kanalına traceback ile yazılır ve genel bir
      500 yanıtı döner.
    """

    @app.errorhandler(APIError)
    def handle_api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(PydanticValidationError)
    def handle_pydantic_error(e):
        return jsonify(ValidationError(details=pydantic_details(e)).to_dict()), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        if e.code == 404:
            security_logger.warning("PAGE_NOT_FOUND", extra={
                'event': 'RECONNAISSANCE',
                'url': request.url,
                'src_ip': request.remote_addr,
                'user_agent': request.headers.get('User-Agent')
            })
        elif e.code == 429:
            security_logger.warning("RATE_LIMIT_EXCEEDED", extra={
                'event': 'RATE_LIMIT',
                'url': request.path,
                'src_ip': request.remote_addr,
                'limit': e.description
            })
        return jsonify({'success': False, 'error': e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        error_logger.critical("INTERNAL_SERVER_ERROR", exc_info=e, extra={
            'event': 'SYSTEM_FAILURE',
            'url': request.url,
            'src_ip': request.remote_addr
        })
        return jsonify({'success': False, 'error': 'Internal server error'}), 500
