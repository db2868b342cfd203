import json
import logging
import os

import pytest

from logger_config import GENESIS_SIGNATURE, setup_logging
from verify_audit import main, verify_log_file

SECRET = 'chain-test-key'


def write_records(log_dir, count=3):
    setup_logging(str(log_dir), SECRET)
    logger = logging.getLogger('compliance')
    for i in range(count):
        logger.info("KVKK_TEST_EVENT", extra={'event': 'TEST', 'sequence': i})
    for handler in logger.handlers:
        handler.flush()
    return os.path.join(str(log_dir), 'compliance.log')


def read_lines(path):
    with open(path, encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


def test_records_are_chained(tmp_path):
    path = write_records(tmp_path)
    records = read_lines(path)
    assert len(records) == 3
    assert records[0]['prev_signature'] == GENESIS_SIGNATURE
    assert records[1]['prev_signature'] == records[0]['signature']
    assert records[2]['event'] == 'TEST'
    assert records[2]['sequence'] == 2
    assert verify_log_file(path, SECRET) == (True, [])


def test_chain_resumes_after_restart(tmp_path):
    path = write_records(tmp_path, count=2)
    write_records(tmp_path, count=1)
    records = read_lines(path)
    assert len(records) == 3
    assert records[2]['prev_signature'] == records[1]['signature']
    ok, _ = verify_log_file(path, SECRET)
    assert ok


def test_edited_line_is_detected(tmp_path):
    path = write_records(tmp_path)
    records = read_lines(path)
    records[1]['message'] = 'KVKK_NOTHING_HAPPENED'
    with open(path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(record) + '\n')

    ok, problems = verify_log_file(path, SECRET)
    assert not ok
    assert problems == [(2, 'tampered: signature mismatch')]


def test_removed_line_breaks_chain(tmp_path):
    path = write_records(tmp_path)
    with open(path, encoding='utf-8') as f:
        lines = f.readlines()
    with open(path, 'w', encoding='utf-8') as f:
        f.writelines([lines[0], lines[2]])

    ok, problems = verify_log_file(path, SECRET)
    assert not ok
    assert problems[0] == (2, 'broken chain: prev_signature mismatch')


def test_wrong_key_fails(tmp_path):
    path = write_records(tmp_path)
    ok, problems = verify_log_file(path, 'another-key')
    assert not ok
    assert len(problems) == 3


def test_setup_requires_key(tmp_path, monkeypatch):
    monkeypatch.delenv('LOG_SECRET_KEY', raising=False)
    with pytest.raises(RuntimeError):
        setup_logging(str(tmp_path), None)


def test_cli_exit_codes(tmp_path, monkeypatch, capsys):
    path = write_records(tmp_path)
    monkeypatch.setenv('LOG_SECRET_KEY', SECRET)
    assert main(['verify_audit.py', path]) == 0
    assert 'OK:' in capsys.readouterr().out

    with open(path, 'a', encoding='utf-8') as f:
        f.write('{not json}\n')
    assert main(['verify_audit.py', path]) == 1
    assert 'invalid JSON' in capsys.readouterr().out

    monkeypatch.delenv('LOG_SECRET_KEY')
    monkeypatch.setattr('verify_audit.load_dotenv', lambda: None)
    assert main(['verify_audit.py', path]) == 2
