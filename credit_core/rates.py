"""
Benchmark Rate Source Module

Provides the annual benchmark rate used to price a credit at origination.
KeyRateClient queries the central bank DailyInfo SOAP service for the key
rate over a recent window and returns the most recent value.
"""

import httpx
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from xml.etree import ElementTree

from .errors import DependencyFailureError

logger = logging.getLogger("credit_core.rates")

CBR_NAMESPACE = "http://web.cbr.ru/"

SOAP_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<soap12:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xmlns:xsd="http://www.w3.org/2001/XMLSchema" xmlns:soap12="http://www.w3.org/2003/05/soap-envelope">
  <soap12:Body>
    <KeyRateXML xmlns="http://web.cbr.ru/">
      <fromDate>{from_date}</fromDate>
      <ToDate>{to_date}</ToDate>
    </KeyRateXML>
  </soap12:Body>
</soap12:Envelope>"""


class RateSource(ABC):
    """Source of the current annual benchmark rate, in percent"""

    @abstractmethod
    def get_benchmark_rate(self) -> float:
        pass


class StaticRateSource(RateSource):
    """Fixed rate, for tests and offline deployments"""

    def __init__(self, rate: float):
        self.rate = rate

    def get_benchmark_rate(self) -> float:
        return self.rate


class KeyRateClient(RateSource):
    """SOAP client for the central bank key rate"""

    def __init__(
        self,
        url: str = "https://www.cbr.ru/DailyInfoWebServ/DailyInfo.asmx",
        timeout: float = 10.0,
        lookback_days: int = 30,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.url = url
        self.timeout = timeout
        self.lookback_days = lookback_days
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def get_benchmark_rate(self) -> float:
        """
        Fetch the latest key rate.

        Raises:
            DependencyFailureError: on timeout, transport or HTTP error, or an
                unparseable response. The caller may retry.
        """
        now = datetime.now(timezone.utc)
        body = SOAP_ENVELOPE.format(
            from_date=(now - timedelta(days=self.lookback_days)).strftime("%Y-%m-%d"),
            to_date=now.strftime("%Y-%m-%d")
        )

        start = time.time()
        try:
            response = self._client.post(
                self.url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/soap+xml; charset=utf-8"}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Key rate request failed: {e}")
            raise DependencyFailureError(f"Key rate request failed: {e}") from e

        latency_ms = (time.time() - start) * 1000
        rate = self.parse_key_rate(response.content)
        logger.info(f"Key rate {rate} received in {latency_ms:.0f} ms")
        return rate

    @staticmethod
    def parse_key_rate(payload: bytes) -> float:
        """Extract the most recent KR/Rate value from a KeyRateXML response"""
        try:
            root = ElementTree.fromstring(payload)
        except ElementTree.ParseError as e:
            raise DependencyFailureError(f"Malformed key rate response: {e}") from e

        rows: List[Tuple[str, str]] = []
        for element in root.iter():
            if _local_name(element.tag) != "KR":
                continue
            values = {_local_name(child.tag): (child.text or "").strip() for child in element}
            if "Rate" in values:
                rows.append((values.get("DT", ""), values["Rate"]))

        if not rows:
            raise DependencyFailureError("Key rate response contains no rates")

        # ISO timestamps sort chronologically; ties keep document order
        latest_date, latest_rate = max(enumerate(rows), key=lambda item: (item[1][0], item[0]))[1]
        try:
            return float(latest_rate.replace(",", "."))
        except ValueError as e:
            raise DependencyFailureError(f"Invalid key rate value {latest_rate!r} for {latest_date}") from e

    def close(self):
        """Close the HTTP client"""
        self._client.close()


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]
