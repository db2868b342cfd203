"""
Zincirli JSON log dosyaları için komut satırı doğrulayıcısı.

Kullanım::

    python verify_audit.py logs/compliance.log
    python verify_audit.py            # LOG_DIR içindeki tüm kanal dosyaları
"""

import json
import os
import sys

from dotenv import load_dotenv

from logger_config import CHANNELS, GENESIS_SIGNATURE, compute_signature


def verify_log_file(file_path, secret_key):
    """
    Tek bir log dosyasının imza zincirini doğrular.

    Args:
        file_path (str): `setup_logging` tarafından yazılmış ``*.log`` dosyası.
        secret_key (str): Dosyanın yazıldığı ``LOG_SECRET_KEY``.

    Returns:
        tuple: ``(ok, problems)``; ``problems`` bir ``(satır_no, neden)`` listesi.
    """
    secret = secret_key.encode()
    expected_prev = GENESIS_SIGNATURE
    problems = []

    with open(file_path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                log_record = json.loads(line)
            except json.JSONDecodeError:
                problems.append((line_number, "invalid JSON"))
                continue

            if log_record.get("prev_signature") != expected_prev:
                problems.append((line_number, "broken chain: prev_signature mismatch"))

            computed = compute_signature(
                secret,
                log_record.get("prev_signature", ""),
                log_record.get("timestamp", ""),
                log_record.get("level", ""),
                log_record.get("message", ""),
            )
            if log_record.get("signature") != computed:
                problems.append((line_number, "tampered: signature mismatch"))

            expected_prev = log_record.get("signature")

    return not problems, problems


def main(argv=None):
    argv = sys.argv if argv is None else argv
    load_dotenv()
    secret_key = os.getenv("LOG_SECRET_KEY")
    if not secret_key:
        print("ERROR: LOG_SECRET_KEY is not set")
        return 2

    if len(argv) > 1:
        files = argv[1:]
    else:
        log_dir = os.getenv("LOG_DIR", "logs")
        files = [os.path.join(log_dir, f"{name}.log") for name in CHANNELS + ("error",)]

    exit_code = 0
    for path in files:
        if not os.path.exists(path):
            continue
        ok, problems = verify_log_file(path, secret_key)
        if ok:
            print(f"OK: {path}")
        else:
            exit_code = 1
            print(f"ALERT: {path}")
            for line_number, reason in problems:
                print(f"  line {line_number}: {reason}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
