"""
Kriptografik zincirlemeli yapılandırılmış JSON loglama.

Her kanal kendi dosyasına yazar. Her kayıt bir önceki kaydın HMAC-SHA256
imzasını (``prev_signature``) ve ``prev_signature|timestamp|level|message``
üzerinden hesaplanan kendi ``signature`` alanını taşır; bir satırın
silinmesi veya değiştirilmesi zinciri bozar. ``verify_audit.py`` dosyayı
aynı anahtarla doğrular.

Kanallar:
- ``access``: gelen trafik.
- ``application``: iş işlemleri (projeler, teklifler, İK).
- ``security``: kimlik doğrulama, yetkilendirme ve veri dışa aktarımı.
- ``compliance``: KVKK başvuru süreci ve bildirimleri.
- ``error``: hatalar (root logger'a bağlı).
"""

import hashlib
import hmac
import json
import logging
import os
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

GENESIS_SIGNATURE = "0" * 64

CHANNELS = ("access", "application", "security", "compliance")

#: `setup_logging` tarafından kurulan handler işareti
_HANDLER_MARK = "_ges_chained"


def compute_signature(secret, prev_signature, timestamp, level, message):
    """Bir zincir halkası için HMAC-SHA256."""
    payload = f"{prev_signature}|{timestamp}|{level}|{message}"
    return hmac.new(secret, msg=payload.encode("utf-8"), digestmod=hashlib.sha256).hexdigest()


class ChainedJsonFormatter(jsonlogger.JsonFormatter):
    """
    Her kaydı imzalayan ve bir öncekine bağlayan JSON formatter.

    Bir formatter nesnesi tek bir log dosyasına aittir; zincir durumu
    (``prev_signature``) nesnede tutulur.

    Args:
        secret (bytes): HMAC anahtarı (``LOG_SECRET_KEY``).
        prev_signature (str): Dosyadaki son kaydın imzası.
    """

    def __init__(self, *args, secret=b"", prev_signature=GENESIS_SIGNATURE, **kwargs):
        super().__init__(*args, **kwargs)
        self.secret = secret
        self.prev_signature = prev_signature

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname

        signature = compute_signature(
            self.secret,
            self.prev_signature,
            log_record["timestamp"],
            log_record["level"],
            log_record.get("message", ""),
        )
        log_record["prev_signature"] = self.prev_signature
        log_record["signature"] = signature
        self.prev_signature = signature


def _last_signature(path):
    """``path`` içindeki son geçerli kaydın imzası (yoksa başlangıç imzası)."""
    if not os.path.exists(path):
        return GENESIS_SIGNATURE
    last = GENESIS_SIGNATURE
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                last = json.loads(line).get("signature", last)
            except json.JSONDecodeError:
                continue
    return last


def _create_handler(log_dir, filename, level, secret):
    """Kendi zincirli formatter'ı olan FileHandler; mevcut zincirden devam eder."""
    path = os.path.join(log_dir, filename)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(ChainedJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        secret=secret,
        prev_signature=_last_signature(path),
    ))
    handler.setLevel(level)
    setattr(handler, _HANDLER_MARK, True)
    return handler


def _replace_handlers(logger, handler):
    for existing in list(logger.handlers):
        if getattr(existing, _HANDLER_MARK, False):
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)


def setup_logging(log_dir="logs", secret_key=None):
    """
    Kanal logger'larını ve zincirli dosya handler'larını kurar.

    Birden fazla çağrılabilir: önceki çağrının handler'ları kapatılıp
    değiştirilir, her zincir dosyasındaki son imzadan devam eder.

    Args:
        log_dir (str): ``<kanal>.log`` dosyalarının dizini.
        secret_key (str): HMAC anahtarı. Verilmezse ``LOG_SECRET_KEY``.

    Raises:
        RuntimeError: İmza anahtarı yoksa.
    """
    secret_key = secret_key or os.getenv("LOG_SECRET_KEY")
    if not secret_key:
        raise RuntimeError("LOG_SECRET_KEY is not configured")
    secret = secret_key.encode()

    os.makedirs(log_dir, exist_ok=True)

    for channel in CHANNELS:
        logger = logging.getLogger(channel)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        _replace_handlers(logger, _create_handler(log_dir, f"{channel}.log", logging.INFO, secret))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    _replace_handlers(root_logger, _create_handler(log_dir, "error.log", logging.ERROR, secret))
