"""HTTP client for the coordinator that owns catalogs and results."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List
from urllib import error, parse, request

from emubot.config import BotIdentity, redact_secret
from emubot.errors import CoordinatorError
from emubot.models import (
    Build,
    CatalogRom,
    ExistingResult,
    ResultRecord,
    RomMovie,
    ScenarioKind,
    TestDefinition,
)

LOGGER = logging.getLogger(__name__)


class CoordinatorClient:
    """Thin JSON wrapper over the coordinator REST API."""

    def __init__(
        self,
        identity: BotIdentity,
        *,
        timeout_seconds: int = 60,
        opener: Callable[..., Any] = request.urlopen,
    ) -> None:
        self.identity = identity
        self.timeout_seconds = timeout_seconds
        self._opener = opener

    def list_builds(self) -> List[Build]:
        return [Build.from_json(raw) for raw in self._get("api/CitraBuilds/List")]

    def list_test_definitions(self) -> List[TestDefinition]:
        return [TestDefinition.from_json(raw) for raw in self._get("api/TestDefinitions/List")]

    def list_test_results(self) -> List[ExistingResult]:
        raw = self._get("api/TestResults/List", janitraBotId=self.identity.bot_id)
        return [ExistingResult.from_test_json(item) for item in raw]

    def list_roms(self) -> List[CatalogRom]:
        return [CatalogRom.from_json(raw) for raw in self._get("api/Roms/List")]

    def list_rom_movies(self, rom_id: int) -> List[RomMovie]:
        raw = self._get("api/RomMovies/ListByRomId", romId=rom_id)
        movies = []
        for item in raw:
            item = dict(item)
            item.setdefault("romId", rom_id)
            movies.append(RomMovie.from_json(item))
        return movies

    def list_rom_movie_results(self) -> List[ExistingResult]:
        raw = self._get("api/RomMovieResults/List", janitraBotId=self.identity.bot_id)
        return [ExistingResult.from_movie_json(item) for item in raw]

    def submit_result(self, record: ResultRecord) -> None:
        if record.scenario_kind is ScenarioKind.TEST:
            path = "api/TestResults/Add"
        else:
            path = "api/RomMovieResults/Add"
        LOGGER.info(
            "Submitting %s for build %s scenario %s",
            record.outcome.value,
            record.build_id,
            record.scenario_id,
        )
        self._send("POST", path, record.to_payload())

    def _get(self, path: str, **query: Any) -> List[Dict[str, Any]]:
        payload = self._send("GET", path, None, query)
        if not isinstance(payload, list):
            raise CoordinatorError(f"Expected a JSON list from {path}")
        return payload

    def _send(
        self,
        method: str,
        path: str,
        body: Dict[str, Any] | None,
        query: Dict[str, Any] | None = None,
    ) -> Any:
        url = self.identity.endpoint(path)
        if query:
            url = f"{url}?{parse.urlencode(query)}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Accept": "application/json"}
        if data is not None:
            headers["Content-Type"] = "application/json"
        req = request.Request(url, data=data, headers=headers, method=method)
        try:
            with self._opener(req, timeout=self.timeout_seconds) as resp:
                status = getattr(resp, "status", None) or resp.getcode()
                body_bytes = resp.read() or b""
        except error.HTTPError as http_exc:
            detail = http_exc.read().decode("utf-8", errors="ignore")
            LOGGER.error("%s %s rejected (status %s): %s", method, url, http_exc.code, detail)
            raise CoordinatorError(
                f"{method} {path} failed with HTTP {http_exc.code}", status=http_exc.code
            ) from http_exc
        except error.URLError as net_exc:
            LOGGER.error(
                "Network error calling %s (bot %s, key %s): %s",
                url,
                self.identity.bot_id,
                redact_secret(self.identity.access_key),
                net_exc.reason,
            )
            raise CoordinatorError(f"{method} {path} unreachable: {net_exc.reason}") from net_exc
        if not 200 <= status < 300:
            raise CoordinatorError(f"{method} {path} failed with HTTP {status}", status=status)
        if not body_bytes:
            return None
        try:
            return json.loads(body_bytes.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise CoordinatorError(f"{method} {path} returned invalid JSON") from exc
