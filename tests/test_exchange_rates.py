import pytest
import requests

from conftest import FakeResponse, FakeSession
from errors import NotFoundError
from services.exchange_rates import (FALLBACK_WARNING, SOURCE_EXTERNAL, SOURCE_FALLBACK, SOURCE_TCMB,
                                     STALE_WARNING, ExchangeRateService, RateSourceError, parse_external_rates,
                                     parse_rate, parse_tcmb_bulletin)

TCMB_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Tarih_Date Tarih="10.04.2026" Date="04/10/2026" Bulten_No="2026/68">
  <Currency CrossOrder="0" Kod="USD" CurrencyCode="USD">
    <Unit>1</Unit>
    <CurrencyName>US DOLLAR</CurrencyName>
    <ForexBuying>38,1000</ForexBuying>
    <ForexSelling>38,2000</ForexSelling>
    <BanknoteBuying>38,0500</BanknoteBuying>
    <BanknoteSelling>38,3000</BanknoteSelling>
  </Currency>
  <Currency CrossOrder="1" Kod="JPY" CurrencyCode="JPY">
    <Unit>100</Unit>
    <CurrencyName>JAPANESE YEN</CurrencyName>
    <ForexBuying>25,5000</ForexBuying>
    <ForexSelling>25,7000</ForexSelling>
    <BanknoteBuying></BanknoteBuying>
    <BanknoteSelling></BanknoteSelling>
  </Currency>
</Tarih_Date>
"""

EXTERNAL_PAYLOAD = {'base': 'TRY', 'rates': {'USD': 0.025, 'EUR': 0.02, 'GBP': 0.0, 'CNY': 'x'}}


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def service(routes, clock=None, tcmb_url='https://tcmb.example/kurlar/today.xml'):
    return ExchangeRateService(
        tcmb_url=tcmb_url,
        external_url='https://rates.example/v4/latest/TRY',
        ttl=60,
        session=FakeSession(routes),
        clock=clock or Clock(),
    )


def test_parse_rate_accepts_comma_and_dot():
    assert parse_rate('30,1234') == pytest.approx(30.1234)
    assert parse_rate(' 30.5 ') == pytest.approx(30.5)
    assert parse_rate('') is None
    assert parse_rate('n/a') is None


def test_parse_tcmb_bulletin():
    date, bulletin_no, rates = parse_tcmb_bulletin(TCMB_XML)
    assert date == '04/10/2026'
    assert bulletin_no == '2026/68'
    assert rates['USD']['buying'] == pytest.approx(38.05)
    assert rates['USD']['source'] == SOURCE_TCMB
    assert rates['JPY']['unit'] == 100
    assert rates['JPY']['selling'] is None


def test_parse_tcmb_rejects_other_documents():
    with pytest.raises(RateSourceError):
        parse_tcmb_bulletin('<html><body>maintenance</body></html>')
    with pytest.raises(RateSourceError):
        parse_tcmb_bulletin('not xml at all')


def test_external_rates_are_inverted_and_filtered():
    rates = parse_external_rates(EXTERNAL_PAYLOAD)
    assert set(rates) == {'USD', 'EUR'}
    assert rates['USD']['selling'] == pytest.approx(40.0)
    assert rates['EUR']['source'] == SOURCE_EXTERNAL
    with pytest.raises(RateSourceError):
        parse_external_rates({'rates': {}})


def test_tcmb_first_then_external_then_fallback():
    rates_service = service({
        'tcmb.example': FakeResponse(text=TCMB_XML),
        'rates.example': FakeResponse(payload=EXTERNAL_PAYLOAD),
    })
    snapshot = rates_service.build_snapshot()
    rates = snapshot['rates']
    assert rates['USD']['source'] == SOURCE_TCMB
    assert rates['EUR']['source'] == SOURCE_EXTERNAL
    assert rates['GBP']['source'] == SOURCE_FALLBACK
    assert snapshot['bulletin_no'] == '2026/68'
    assert snapshot['warning'] == FALLBACK_WARNING


def test_tcmb_step_skipped_without_url():
    rates_service = service({'rates.example': FakeResponse(payload=EXTERNAL_PAYLOAD)}, tcmb_url=None)
    snapshot = rates_service.build_snapshot()
    assert snapshot['rates']['USD']['source'] == SOURCE_EXTERNAL
    assert all('tcmb' not in url for url, _ in rates_service.session.calls)


def test_all_sources_down_uses_fallback_table():
    rates_service = service({
        'tcmb.example': requests.Timeout('read timed out'),
        'rates.example': FakeResponse(status_code=503),
    })
    snapshot = rates_service.build_snapshot()
    assert {rate['source'] for rate in snapshot['rates'].values()} == {SOURCE_FALLBACK}
    assert snapshot['warning'] == FALLBACK_WARNING


def test_snapshot_is_cached_until_ttl():
    clock = Clock()
    rates_service = service({'tcmb.example': FakeResponse(text=TCMB_XML),
                             'rates.example': FakeResponse(payload=EXTERNAL_PAYLOAD)}, clock=clock)
    first = rates_service.market_snapshot()
    calls = len(rates_service.session.calls)
    clock.now += 30
    assert rates_service.market_snapshot() is first
    assert len(rates_service.session.calls) == calls
    clock.now += 31
    rates_service.market_snapshot()
    assert len(rates_service.session.calls) > calls


def test_stale_snapshot_served_when_rebuild_fails(monkeypatch):
    clock = Clock()
    rates_service = service({'rates.example': FakeResponse(payload=EXTERNAL_PAYLOAD)}, clock=clock)
    first = rates_service.market_snapshot()
    clock.now += 120

    def broken():
        raise RuntimeError('parser crashed')
    monkeypatch.setattr(rates_service, 'build_snapshot', broken)

    stale = rates_service.market_snapshot()
    assert stale['rates'] == first['rates']
    assert stale['warning'] == STALE_WARNING


def test_refresh_drops_cache():
    rates_service = service({'rates.example': FakeResponse(payload=EXTERNAL_PAYLOAD)})
    rates_service.market_snapshot()
    calls = len(rates_service.session.calls)
    rates_service.refresh()
    rates_service.market_snapshot()
    assert len(rates_service.session.calls) > calls


def test_manual_override_wins():
    rates_service = service({'tcmb.example': FakeResponse(text=TCMB_XML)})
    data = rates_service.get_rates(overrides={'USD': (40.0, 'Manuel (Sabit kur)')})
    usd = data['major_currencies']['USD']
    assert usd['buying'] == 40.0
    assert usd['unit'] == 1
    assert usd['source'] == 'Manuel (Sabit kur)'


def test_get_rate_unknown_currency():
    rates_service = service({})
    with pytest.raises(NotFoundError):
        rates_service.get_rate('XYZ', overrides={})


def test_convert_rules():
    rates_service = service({'tcmb.example': FakeResponse(text=TCMB_XML)})
    overrides = {}

    to_usd = rates_service.convert(3830, 'try', 'usd', overrides)
    assert to_usd['converted_amount'] == 100.0
    assert to_usd['exchange_rate'] == pytest.approx(38.3)

    to_try = rates_service.convert(100, 'USD', 'TRY', overrides)
    assert to_try['converted_amount'] == 3805.0

    # JPY has no banknote rate: forex rates and the 100 unit apply
    yen = rates_service.convert(1000, 'JPY', 'TRY', overrides)
    assert yen['converted_amount'] == 255.0

    same = rates_service.convert(50, 'TRY', 'TRY', overrides)
    assert same['converted_amount'] == 50
    assert same['exchange_rate'] == 1

    with pytest.raises(NotFoundError):
        rates_service.convert(10, 'TRY', 'XYZ', overrides)


def test_exchange_rate_endpoints(client, make_user, login, app):
    app.extensions['exchange_rates'] = service({'tcmb.example': FakeResponse(text=TCMB_XML)})
    user = make_user('CUSTOMER')
    login(user)

    response = client.get('/api/exchange-rates?currency=usd')
    assert response.status_code == 200
    assert response.get_json()['rate']['code'] == 'USD'

    response = client.post('/api/exchange-rates/convert',
                           json={'amount': 100, 'from_currency': 'USD', 'to_currency': 'TRY'})
    assert response.status_code == 200
    assert response.get_json()['conversion']['converted_amount'] == 3805.0

    # only integration administrators may force a refresh or manage manual rates
    assert client.get('/api/exchange-rates/manual').status_code == 403


def test_manual_rate_lifecycle(client, admin, login, app):
    app.extensions['exchange_rates'] = service({'tcmb.example': FakeResponse(text=TCMB_XML)})
    login(admin)

    response = client.post('/api/exchange-rates/manual', json={'currency': 'usd', 'rate': 40, 'description': 'Sabit'})
    assert response.status_code == 201
    rate_id = response.get_json()['rate']['id']

    duplicate = client.post('/api/exchange-rates/manual', json={'currency': 'USD', 'rate': 41})
    assert duplicate.status_code == 409

    rates = client.get('/api/exchange-rates?currency=USD').get_json()
    assert rates['rate']['buying'] == 40.0
    assert rates['rate']['source'] == 'Manuel (Sabit)'

    assert client.delete(f'/api/exchange-rates/manual/{rate_id}').status_code == 200
    rates = client.get('/api/exchange-rates?currency=USD').get_json()
    assert rates['rate']['source'] == SOURCE_TCMB
