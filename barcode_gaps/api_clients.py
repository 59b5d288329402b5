"""
Thin wrappers for the external biodiversity APIs.

Each client shares a requests session with urllib3 retry/backoff and raises
SourceUnavailable once retries are exhausted. Tests replace the session with
a mock, so no real HTTP calls are made there.
"""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from barcode_gaps.errors import SourceUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = 'pacific-barcode-gaps/0.3 (+https://www.boldsystems.org)'


def get_session(max_retries: int = 3, backoff_factor: float = 1.0) -> requests.Session:
    """Create a session that retries on rate limiting and server errors."""
    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=['GET'],
    )
    session = requests.Session()
    session.headers.update({'User-Agent': USER_AGENT, 'Accept': 'application/json'})
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


class _BaseClient:
    """Shared HTTP plumbing for the API clients."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        max_retries: int = 3,
        min_interval: float = 0.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.min_interval = min_interval
        self.session = session if session is not None else get_session(max_retries)
        self._lock = threading.Lock()
        self._last_request = 0.0

    def _throttle(self) -> None:
        # Space requests at least min_interval apart, across worker threads
        if self.min_interval <= 0:
            return
        with self._lock:
            wait = self._last_request + self.min_interval - time.monotonic()
            if wait > 0:
                time.sleep(wait)
            self._last_request = time.monotonic()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue a GET request and decode the JSON body.

        HTTP 204 and empty bodies decode to an empty list; error statuses raise
        even when the body is empty.

        Raises:
            SourceUnavailable: On transport errors, error statuses that survive
                the retry policy, or a body that is not JSON.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        self._throttle()
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            if response.status_code == 204:
                return []
            response.raise_for_status()
            if not response.content:
                return []
        except requests.RequestException as e:
            raise SourceUnavailable(f"Request to {url} failed: {e}") from e

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise SourceUnavailable(
                f"Non-JSON response from {url} (status {response.status_code})"
            ) from e


class OBISClient(_BaseClient):
    """
    Client for the Ocean Biodiversity Information System API.

    Docs: https://api.obis.org/v3
    """

    def __init__(self, base_url: str = 'https://api.obis.org/v3', page_size: int = 1000, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.page_size = page_size

    def get_checklist(
        self,
        geometry: Optional[str] = None,
        area_id: Optional[int] = None,
        taxon_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get the full species checklist for an area, following pagination.

        OBIS returns one row per taxon with its occurrence record count.

        Args:
            geometry: WKT polygon for spatial filtering
            area_id: OBIS numeric area ID
            taxon_id: WoRMS AphiaID to restrict the checklist to a clade

        Returns:
            list: Checklist rows as returned by OBIS
        """
        params: Dict[str, Any] = {'size': self.page_size}
        if geometry:
            params['geometry'] = geometry
        if area_id is not None:
            params['areaid'] = area_id
        if taxon_id is not None:
            params['taxonid'] = taxon_id

        rows: List[Dict[str, Any]] = []
        skip = 0
        while True:
            params['skip'] = skip
            page = self._get('checklist', params=dict(params))
            if not isinstance(page, dict):
                break
            results = page.get('results') or []
            rows.extend(results)
            total = page.get('total') or 0
            skip += len(results)
            if not results or skip >= total:
                break

        logger.info(f"OBIS checklist returned {len(rows)} taxa")
        return rows


class GBIFClient(_BaseClient):
    """
    Client for the GBIF species API.

    Docs: https://techdocs.gbif.org/en/openapi/v1/species
    """

    def __init__(self, base_url: str = 'https://api.gbif.org/v1', page_size: int = 1000, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.page_size = page_size

    def search_dataset(self, dataset_key: str, rank: Optional[str] = 'SPECIES') -> List[Dict[str, Any]]:
        """List every name usage of a checklist dataset, following pagination."""
        params: Dict[str, Any] = {'datasetKey': dataset_key, 'limit': self.page_size}
        if rank:
            params['rank'] = rank

        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            params['offset'] = offset
            page = self._get('species/search', params=dict(params))
            if not isinstance(page, dict):
                break
            results = page.get('results') or []
            rows.extend(results)
            offset += len(results)
            if page.get('endOfRecords', True) or not results:
                break

        logger.info(f"GBIF dataset {dataset_key} returned {len(rows)} name usages")
        return rows


def _marker_counts(value: Any) -> Dict[str, int]:
    """Read sequence and specimen counts from one marker entry of a BOLD summary."""
    if isinstance(value, dict):
        sequences = value.get('sequences', value.get('count', 0))
        specimens = value.get('specimens', value.get('records', sequences))
    else:
        sequences = specimens = value
    return {
        'sequenceCount': int(sequences or 0),
        'specimenRecordCount': int(specimens or 0),
    }


class BoldClient(_BaseClient):
    """
    Client for the BOLD Systems portal API.

    A statistics lookup takes three calls: the preprocessor matches the name
    to a taxonomy term, the query endpoint returns a query id, and the
    summary endpoint counts the records of that query per marker code.

    Docs: https://portal.boldsystems.org/api/docs
    """

    def __init__(self, base_url: str = 'https://portal.boldsystems.org/api', **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)

    def match_taxon(self, taxon_name: str) -> Optional[str]:
        """Return the preprocessed taxonomy term for a name, or None if BOLD does not know it."""
        result = self._get('query/preprocessor', params={'query': f'tax:{taxon_name}'})
        if not isinstance(result, dict):
            return None
        for term in result.get('successful_terms') or []:
            matched = term.get('matched')
            if matched:
                return matched
        return None

    def statistics(self, taxon_name: str) -> List[Dict[str, Any]]:
        """
        Per-marker counts for one taxon name.

        Args:
            taxon_name: Scientific name to query

        Returns:
            list: One dict per marker code with markerCode, sequenceCount and
                  specimenRecordCount; empty if the name is not in BOLD

        Raises:
            SourceUnavailable: If BOLD cannot be reached or answers with a
                payload of unexpected shape
        """
        try:
            return self._statistics(taxon_name)
        except (AttributeError, TypeError, ValueError) as e:
            raise SourceUnavailable(f"Unexpected BOLD response for '{taxon_name}': {e}") from e

    def _statistics(self, taxon_name: str) -> List[Dict[str, Any]]:
        term = self.match_taxon(taxon_name)
        if term is None:
            logger.debug(f"BOLD has no taxon matching '{taxon_name}'")
            return []

        query = self._get('query', params={'query': term, 'extent': 'full'})
        query_id = query.get('query_id') if isinstance(query, dict) else None
        if not query_id:
            return []

        summary = self._get(
            'summary',
            params={'query_id': query_id, 'fields': 'marker_code', 'reduce_operation': 'count'},
        )
        markers = summary.get('marker_code') if isinstance(summary, dict) else None
        if not isinstance(markers, dict):
            return []

        return [
            {'markerCode': code, **_marker_counts(value)}
            for code, value in sorted(markers.items())
            if code
        ]
