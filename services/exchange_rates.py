"""
Yedek kaynak zincirli TRY döviz kurları.

Piyasa kurları, her para birimi için yanıt veren ilk kaynaktan alınır:

1. TCMB günlük bülteni (``TCMB_API_URL``, XML).
2. exchangerate-api.com ``latest/TRY`` (JSON, birim başına TRY'ye çevrilir).
3. Yerleşik yaklaşık kur tablosu.

Etkin `ManualExchangeRate` kayıtları her okumada kendi para biriminin
piyasa kurunu ezer. Piyasa verisi ``EXCHANGE_RATE_CACHE_TTL`` saniye
bellekte tutulur; her kur ``source`` alanında kaynağını taşır.

Yedek kaynak logu örneği (JSON)::
{
    "timestamp": "2026-04-12T07:30:00.921Z",
    "level": "WARNING",
    "event": "EXCHANGE_RATE_SOURCE_FAILED",
    "source": "TCMB",
    "error": "HTTPSConnectionPool(host='www.tcmb.gov.tr', port=443): Read timed out.",
    "signature": "b8e2f0..."
}
"""

import logging
import math
import threading
import time
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

import requests

from errors import NotFoundError, ValidationError
from models import ManualExchangeRate

app_logger = logging.getLogger("application")
error_logger = logging.getLogger("error")

TRACKED_CURRENCIES = ('USD', 'EUR', 'GBP', 'JPY', 'CHF', 'CAD', 'CNY')
MAJOR_CURRENCIES = ('USD', 'EUR', 'GBP', 'JPY')
#: Paneller (USD), inverterler (EUR), bileşenler (CNY)
SOLAR_INDUSTRY_CURRENCIES = ('USD', 'EUR', 'CNY')

SOURCE_TCMB = 'TCMB'
SOURCE_EXTERNAL = 'ExchangeRate-API'
SOURCE_FALLBACK = 'Yaklaşık'

FALLBACK_WARNING = 'Güncel kurlar alınamadı, yaklaşık değerler kullanılıyor'
STALE_WARNING = 'Using cached data due to API unavailability'

DEFAULT_EXTERNAL_URL = 'https://api.exchangerate-api.com/v4/latest/TRY'

#: kod: (ad, birim, alış, satış, döviz alış, döviz satış)
FALLBACK_RATES = {
    'USD': ('US DOLLAR', 1, 30.0234, 30.4456, 30.1234, 30.3456),
    'EUR': ('EURO', 1, 32.7765, 33.2234, 32.8765, 33.1234),
    'GBP': ('POUND STERLING', 1, 38.3567, 38.8890, 38.4567, 38.7890),
    'JPY': ('JAPANESE YEN', 100, 20.0234, 20.4456, 20.1234, 20.3456),
    'CHF': ('SWISS FRANK', 1, 33.4678, 33.9901, 33.5678, 33.8901),
    'CAD': ('CANADIAN DOLLAR', 1, 22.0234, 22.4456, 22.1234, 22.3456),
    'CNY': ('CHINESE YUAN', 1, 4.0734, 4.2956, 4.1234, 4.2456),
}


class RateSourceError(Exception):
    """Piyasa kaynağı kullanılabilir bir veri döndürmedi."""


def round_half_up(value, digits=0):
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def parse_rate(value):
    """Bülten sayısı (``"30,1234"`` veya ``"30.1234"``) ya da None."""
    if not value:
        return None
    try:
        return float(value.strip().replace(',', '.'))
    except ValueError:
        return None


def make_rate(code, name, unit, buying, selling, forex_buying, forex_selling, source):
    return {
        'code': code,
        'name': name,
        'unit': unit,
        'buying': buying,
        'selling': selling,
        'forex_buying': forex_buying,
        'forex_selling': forex_selling,
        'source': source,
    }


def parse_tcmb_bulletin(xml_text):
    """
    TCMB ``today.xml`` bültenini ayrıştırır.

    Returns:
        tuple: ``(date, bulletin_no, {code: rate})``.

    Raises:
        RateSourceError: Belge bülten değilse veya hiç para birimi içermiyorsa.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise RateSourceError(f"Invalid XML from TCMB: {e}")

    if root.tag != 'Tarih_Date':
        raise RateSourceError("Invalid XML structure from TCMB")

    rates = {}
    for node in root.findall('Currency'):
        code = node.get('CurrencyCode') or node.get('Kod')
        if not code:
            continue
        try:
            unit = int(node.get('Unit') or node.findtext('Unit') or 1)
        except ValueError:
            unit = 1
        rates[code] = make_rate(
            code,
            node.get('CurrencyName') or node.findtext('CurrencyName') or code,
            unit,
            parse_rate(node.findtext('BanknoteBuying')),
            parse_rate(node.findtext('BanknoteSelling')),
            parse_rate(node.findtext('ForexBuying')),
            parse_rate(node.findtext('ForexSelling')),
            SOURCE_TCMB,
        )
    if not rates:
        raise RateSourceError("TCMB bulletin lists no currency")
    return root.get('Date'), root.get('Bulten_No'), rates


def parse_external_rates(payload, wanted=TRACKED_CURRENCIES):
    """
    exchangerate-api ``latest/TRY`` yanıtını (1 TRY başına yabancı birim)
    istenen her para biriminin bir birimi başına TRY değerine çevirir.
    """
    quoted = (payload or {}).get('rates') or {}
    rates = {}
    for code in wanted:
        value = quoted.get(code)
        if not isinstance(value, (int, float)) or value <= 0:
            continue
        per_unit = 1 / value
        name = FALLBACK_RATES[code][0] if code in FALLBACK_RATES else code
        rates[code] = make_rate(code, name, 1, per_unit, per_unit, per_unit, per_unit, SOURCE_EXTERNAL)
    if not rates:
        raise RateSourceError("External API returned no usable rate")
    return rates


def fallback_rates():
    return {
        code: make_rate(code, name, unit, buying, selling, fbuying, fselling, SOURCE_FALLBACK)
        for code, (name, unit, buying, selling, fbuying, fselling) in FALLBACK_RATES.items()
    }


def manual_overrides():
    """Etkin sabit kurlar, ``{code: (rate, source_label)}`` biçiminde."""
    overrides = {}
    for row in ManualExchangeRate.query.filter_by(is_active=True).order_by(ManualExchangeRate.updated_at).all():
        overrides[row.currency] = (float(row.rate), f"Manuel ({row.description or 'Admin girişi'})")
    return overrides


class ExchangeRateService:
    """
    Önbellekli TRY kur sağlayıcısı.

    Args:
        tcmb_url (str): Bülten adresi; boşsa TCMB adımı atlanır.
        external_url (str): exchangerate-api ``latest/TRY`` adresi.
        ttl (int): Piyasa verisinin taze kaldığı saniye.
        timeout (float): İstek başına zaman aşımı (saniye).
        session: HTTP için kullanılan ``requests.Session`` (veya benzeri).
        clock (callable): Önbellek süresi için saniye sayacı.
    """

    def __init__(self, tcmb_url=None, external_url=DEFAULT_EXTERNAL_URL, ttl=3600, timeout=5,
                 session=None, clock=time.time):
        self.tcmb_url = tcmb_url
        self.external_url = external_url
        self.ttl = ttl
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock
        self._lock = threading.Lock()
        self._snapshot = None
        self._fetched_at = None

    @classmethod
    def from_config(cls, config):
        return cls(
            tcmb_url=config.get('TCMB_API_URL'),
            external_url=config.get('EXTERNAL_RATES_URL') or DEFAULT_EXTERNAL_URL,
            ttl=int(config.get('EXCHANGE_RATE_CACHE_TTL', 3600)),
        )

    # kaynaklar

    def _fetch_tcmb(self):
        if not self.tcmb_url:
            raise RateSourceError("TCMB API URL not configured")
        response = self.session.get(self.tcmb_url, timeout=self.timeout,
                                    headers={'User-Agent': 'GES-CRM/1.0'})
        response.raise_for_status()
        return parse_tcmb_bulletin(response.text)

    def _fetch_external(self):
        if not self.external_url:
            raise RateSourceError("External rate API URL not configured")
        response = self.session.get(self.external_url, timeout=self.timeout)
        response.raise_for_status()
        return parse_external_rates(response.json())

    def _source_failed(self, source, error):
        app_logger.warning("EXCHANGE_RATE_SOURCE_FAILED", extra={
            'event': 'EXCHANGE_RATE_SOURCE_FAILED',
            'source': source,
            'error': str(error)
        })

    def build_snapshot(self):
        """
        Kaynakları sırayla sorgular ve kurları birleştirir; her para birimi
        için onu veren ilk kaynak geçerlidir.
        """
        now = datetime.now(timezone.utc)
        date = now.strftime('%d/%m/%Y')
        bulletin_no = None
        rates = {}
        used_fallback = False

        try:
            date, bulletin_no, tcmb = self._fetch_tcmb()
            rates.update(tcmb)
        except (requests.RequestException, RateSourceError, ValueError) as e:
            self._source_failed(SOURCE_TCMB, e)

        if any(code not in rates for code in TRACKED_CURRENCIES):
            try:
                for code, rate in self._fetch_external().items():
                    rates.setdefault(code, rate)
            except (requests.RequestException, RateSourceError, ValueError) as e:
                self._source_failed(SOURCE_EXTERNAL, e)

        for code, rate in fallback_rates().items():
            if code not in rates:
                rates[code] = rate
                used_fallback = True

        snapshot = {
            'date': date,
            'bulletin_no': bulletin_no,
            'rates': rates,
            'last_updated': now.isoformat(),
        }
        if used_fallback:
            snapshot['warning'] = FALLBACK_WARNING
        return snapshot

    # önbellek

    def _fresh(self):
        return self._snapshot is not None and (self.clock() - self._fetched_at) < self.ttl

    def market_snapshot(self):
        """Önbellekteki veri; ``ttl`` saniyeden eskiyse yeniden oluşturulur."""
        with self._lock:
            if self._fresh():
                return self._snapshot
            try:
                snapshot = self.build_snapshot()
            except Exception:
                if self._snapshot is None:
                    raise
                error_logger.error("EXCHANGE_RATE_REFRESH_FAILED", exc_info=True)
                stale = dict(self._snapshot)
                stale['warning'] = STALE_WARNING
                return stale
            self._snapshot = snapshot
            self._fetched_at = self.clock()
            return snapshot

    def refresh(self):
        """Önbelleği boşaltır; sonraki okuma kaynakları yeniden sorgular."""
        with self._lock:
            self._snapshot = None
            self._fetched_at = None

    # okuma

    def get_rates(self, overrides=None):
        """
        Sabit kurlar uygulanmış güncel kurlar.

        Args:
            overrides (dict): ``{code: (rate, source)}``; verilmezse
                veritabanından okunur.

        Returns:
            dict: date, bulletin_no, rates (liste), last_updated,
            major_currencies, solar_industry_rates ve gerekirse warning.
        """
        snapshot = self.market_snapshot()
        if overrides is None:
            overrides = manual_overrides()

        rates = {code: dict(rate) for code, rate in snapshot['rates'].items()}
        for code, (value, source) in overrides.items():
            base = rates.get(code)
            name = base['name'] if base else code
            rates[code] = make_rate(code, name, 1, value, value, value, value, source)

        data = {
            'date': snapshot['date'],
            'bulletin_no': snapshot['bulletin_no'],
            'rates': list(rates.values()),
            'last_updated': snapshot['last_updated'],
            'major_currencies': {code: rates.get(code) for code in MAJOR_CURRENCIES},
            'solar_industry_rates': {code: rates.get(code) for code in SOLAR_INDUSTRY_CURRENCIES},
        }
        if snapshot.get('warning'):
            data['warning'] = snapshot['warning']
        return data

    def get_rate(self, code, overrides=None):
        """Tek para birimi görünümü ya da `NotFoundError`."""
        data = self.get_rates(overrides)
        code = code.upper()
        for rate in data['rates']:
            if rate['code'] == code:
                result = {
                    'date': data['date'],
                    'bulletin_no': data['bulletin_no'],
                    'rate': rate,
                    'last_updated': data['last_updated'],
                }
                if data.get('warning'):
                    result['warning'] = data['warning']
                return result
        raise NotFoundError('Currency not found')

    def convert(self, amount, from_currency, to_currency, overrides=None):
        """
        ``amount`` tutarını TRY ile izlenen para birimleri arasında çevirir.

        **Kurallar**
        - TRY'den yabancıya: ``amount / selling * unit`` (efektif kur yoksa
          döviz satış).
        - Yabancıdan TRY'ye: ``amount * buying / unit`` (yoksa döviz alış).
        - Yabancıdan yabancıya: yukarıdaki iki kuralla TRY üzerinden.
        - Sonuç 2 haneye yukarı yuvarlanır.

        Raises:
            NotFoundError: Para birimi kur listesinde yok.
            ValidationError: Gereken kur eksik.
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        data = self.get_rates(overrides)
        by_code = {rate['code']: rate for rate in data['rates']}

        from_rate = None if from_currency == 'TRY' else by_code.get(from_currency)
        to_rate = None if to_currency == 'TRY' else by_code.get(to_currency)
        if (from_currency != 'TRY' and from_rate is None) or (to_currency != 'TRY' and to_rate is None):
            raise NotFoundError('Currency not found in exchange rates')

        def buying(rate):
            return rate['buying'] or rate['forex_buying']

        def selling(rate):
            return rate['selling'] or rate['forex_selling']

        if from_currency == 'TRY' and to_currency != 'TRY':
            rate = selling(to_rate)
            if not rate:
                raise ValidationError('Selling rate not available for target currency')
            converted = amount / rate * (to_rate['unit'] or 1)
            used_rate = rate
        elif from_currency != 'TRY' and to_currency == 'TRY':
            rate = buying(from_rate)
            if not rate:
                raise ValidationError('Buying rate not available for source currency')
            converted = amount * rate / (from_rate['unit'] or 1)
            used_rate = rate
        elif from_currency != 'TRY' and to_currency != 'TRY':
            from_buying = buying(from_rate)
            to_selling = selling(to_rate)
            if not from_buying or not to_selling:
                raise ValidationError('Required rates not available for cross-currency conversion')
            try_amount = amount * from_buying / (from_rate['unit'] or 1)
            converted = try_amount / to_selling * (to_rate['unit'] or 1)
            used_rate = from_buying
        else:
            converted = amount
            used_rate = 1

        return {
            'original_amount': amount,
            'converted_amount': round_half_up(converted, 2),
            'from_currency': from_currency,
            'to_currency': to_currency,
            'exchange_rate': used_rate,
            'date': data['date'],
            'calculated_at': datetime.now(timezone.utc).isoformat(),
        }
