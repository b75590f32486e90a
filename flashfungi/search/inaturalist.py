"""iNaturalist observation fetcher with a fixed delay before every request."""

import logging
import time
from collections.abc import Callable, Iterable, Iterator

import requests
from pydantic import ValidationError

from flashfungi.core.config import INaturalistSettings
from flashfungi.search.models import FetchFailure, Observation, Taxon

logger = logging.getLogger(__name__)

_MAX_PER_PAGE = 200


class INaturalistError(RuntimeError):
    """Raised for any non-success response from the iNaturalist API."""


# ── Client ───────────────────────────────────────────────────────────


class INaturalistClient:
    """Paginated, rate-limited access to the iNaturalist v1 API."""

    def __init__(
        self,
        settings: INaturalistSettings | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or INaturalistSettings()
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")
        self._sleep = sleep

    # ── Public API ───────────────────────────────────────────

    def iter_observations(
        self, limit: int, excluded_taxa: Iterable[int] | None = None
    ) -> Iterator[Observation | FetchFailure]:
        """Yield detailed observations, one detail request per search result.

        A failed detail fetch is yielded as a FetchFailure so the caller can
        skip it; a failed search page raises.
        """
        for summary in self.search_observations(limit, excluded_taxa):
            obs_id = summary["id"]
            try:
                yield self.get_observation(obs_id)
            except (requests.RequestException, INaturalistError, ValidationError) as exc:
                logger.warning("Detail fetch failed for observation %s: %s", obs_id, exc)
                yield FetchFailure(observation_id=obs_id, reason=str(exc))

    def search_observations(
        self, limit: int, excluded_taxa: Iterable[int] | None = None
    ) -> Iterator[dict]:
        """Yield up to ``limit`` summary records, newest first."""
        params = self._search_params(excluded_taxa)
        per_page = min(self.settings.per_page, _MAX_PER_PAGE, limit)
        fetched = 0
        page = 1

        while fetched < limit:
            # per_page stays fixed so page offsets line up
            data = self._get("/observations", {**params, "per_page": per_page, "page": page})
            results = data.get("results") or []
            if page == 1:
                logger.info(
                    "iNaturalist reports %s matching observations",
                    data.get("total_results", "?"),
                )
            for record in results:
                yield record
                fetched += 1
                if fetched >= limit:
                    return
            if len(results) < per_page:
                return
            page += 1

    def get_observation(self, obs_id: int) -> Observation:
        data = self._get(f"/observations/{obs_id}")
        results = data.get("results") or []
        if not results:
            raise INaturalistError(f"Observation {obs_id} not found")
        return Observation.from_api(results[0])

    def get_taxon(self, taxon_id: int) -> Taxon:
        """Fetch a taxon with its full ancestry."""
        data = self._get(f"/taxa/{taxon_id}")
        results = data.get("results") or []
        if not results:
            raise INaturalistError(f"Taxon {taxon_id} not found")
        return Taxon.model_validate(results[0])

    # ── Transport ────────────────────────────────────────────

    def _search_params(self, excluded_taxa: Iterable[int] | None) -> dict:
        s = self.settings
        if excluded_taxa is None:
            excluded_taxa = s.excluded_taxa.values()
        params = {
            "place_id": s.place_id,
            "taxon_id": s.taxon_id,
            "quality_grade": s.quality_grade,
            "photos": "true",
            "order_by": "created_at",
            "order": "desc",
        }
        excluded = ",".join(str(t) for t in excluded_taxa)
        if excluded:
            params["without_taxon_id"] = excluded
        return params

    def _get(self, path: str, params: dict | None = None) -> dict:
        """GET a JSON document, sleeping ``request_delay`` first."""
        self._sleep(self.settings.request_delay)
        url = self.settings.api_base.rstrip("/") + path
        resp = self.session.get(url, params=params, timeout=self.settings.timeout)
        if resp.status_code != 200:
            raise INaturalistError(f"iNaturalist API error {resp.status_code} for {path}")
        return resp.json()
