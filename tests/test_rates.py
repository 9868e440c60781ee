"""
Test suite for benchmark rate sources

The key rate client is exercised against httpx.MockTransport, no network.
"""

import httpx
import pytest

from credit_core.rates import KeyRateClient, StaticRateSource
from credit_core.errors import DependencyFailureError


KEY_RATE_RESPONSE = b"""<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope">
  <soap:Body>
    <KeyRateXMLResponse xmlns="http://web.cbr.ru/">
      <KeyRateXMLResult>
        <KeyRate xmlns="">
          <KR><DT>2024-03-14T00:00:00+03:00</DT><Rate>16.00</Rate></KR>
          <KR><DT>2024-03-13T00:00:00+03:00</DT><Rate>15.50</Rate></KR>
          <KR><DT>2024-02-16T00:00:00+03:00</DT><Rate>15.00</Rate></KR>
        </KeyRate>
      </KeyRateXMLResult>
    </KeyRateXMLResponse>
  </soap:Body>
</soap:Envelope>"""


def make_client(handler) -> KeyRateClient:
    return KeyRateClient(url="https://rates.example.com/DailyInfo.asmx", transport=httpx.MockTransport(handler))


class TestStaticRateSource:

    def test_returns_configured_rate(self):
        assert StaticRateSource(16.0).get_benchmark_rate() == 16.0


class TestKeyRateClient:
    """Test the SOAP key rate client"""

    def test_latest_rate_wins(self):
        client = make_client(lambda request: httpx.Response(200, content=KEY_RATE_RESPONSE))

        assert client.get_benchmark_rate() == 16.0
        client.close()

    def test_request_format(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, content=KEY_RATE_RESPONSE)

        client = make_client(handler)
        client.get_benchmark_rate()

        request = captured["request"]
        assert request.method == "POST"
        assert str(request.url) == "https://rates.example.com/DailyInfo.asmx"
        assert request.headers["content-type"] == "application/soap+xml; charset=utf-8"
        body = request.content.decode("utf-8")
        assert "<KeyRateXML" in body
        assert "<fromDate>" in body and "<ToDate>" in body

    def test_http_error(self):
        client = make_client(lambda request: httpx.Response(500, content=b"Server Error"))

        with pytest.raises(DependencyFailureError):
            client.get_benchmark_rate()

    def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(DependencyFailureError) as exc_info:
            client.get_benchmark_rate()
        assert exc_info.value.retryable

    def test_malformed_response(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<not-xml"))

        with pytest.raises(DependencyFailureError):
            client.get_benchmark_rate()


class TestParseKeyRate:
    """Test response parsing"""

    def test_rows_in_any_order(self):
        payload = b"""<KeyRate>
            <KR><DT>2024-01-01T00:00:00</DT><Rate>16.00</Rate></KR>
            <KR><DT>2024-03-01T00:00:00</DT><Rate>17,25</Rate></KR>
            <KR><DT>2024-02-01T00:00:00</DT><Rate>16.50</Rate></KR>
        </KeyRate>"""

        assert KeyRateClient.parse_key_rate(payload) == 17.25

    def test_no_rows(self):
        with pytest.raises(DependencyFailureError):
            KeyRateClient.parse_key_rate(b"<KeyRate></KeyRate>")

    def test_invalid_rate_value(self):
        payload = b"<KeyRate><KR><DT>2024-01-01</DT><Rate>n/a</Rate></KR></KeyRate>"

        with pytest.raises(DependencyFailureError):
            KeyRateClient.parse_key_rate(payload)
