"""
HTTP feature storage — a client for the feature registry API served by app.py.
"""

from __future__ import annotations

import binascii
import logging
import re
from typing import Any, Iterable

import httpx
from pydantic import ValidationError

from models.api import APIError, FeatureMetaModel, FeatureModel, ResolveResponse
from models.errors import CycleDetected, EmptyInput, NotFound, StoreError
from models.schemas import Feature, FeatureMeta, ResolvedSet

log = logging.getLogger(__name__)


class HttpStorage:
    """Feature store backed by a remote registry.

    Dependency resolution is delegated to the registry's ``/resolve`` endpoint
    so a whole build needs a single round trip.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def get_feature(self, name: str) -> Feature:
        data = self._get(f"/features/{name}", feature=name)
        model = self._parse(FeatureModel, data)
        try:
            return model.to_feature()
        except binascii.Error as e:
            raise StoreError(f"Registry returned undecodable files for {name}: {e}") from e

    def get_meta(self, name: str) -> FeatureMeta:
        data = self._get(f"/features/{name}/meta", feature=name)
        return self._parse(FeatureMetaModel, data).to_meta()

    def search_meta(self, pattern: str | re.Pattern) -> list[FeatureMeta]:
        if isinstance(pattern, re.Pattern):
            pattern = pattern.pattern
        data = self._get("/features", params={"q": pattern})
        if not isinstance(data, list):
            raise StoreError("Registry returned a malformed search result")
        return [self._parse(FeatureMetaModel, item).to_meta() for item in data]

    def resolve(self, names: Iterable[str]) -> ResolvedSet:
        names = list(names)
        if not names:
            raise EmptyInput()
        data = self._get("/resolve", params={"name": ",".join(names)})
        response = self._parse(ResolveResponse, data)
        try:
            return response.to_resolved()
        except (KeyError, ValueError) as e:
            raise StoreError(f"Registry returned an inconsistent resolution: {e}") from e

    # ── Helpers ──

    def _get(self, path: str, params: dict[str, str] | None = None,
             feature: str | None = None) -> Any:
        try:
            resp = self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise StoreError(f"Registry request {path} failed: {e}") from e

        if resp.status_code != 200:
            self._raise_api_error(resp, feature)
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"Registry returned invalid JSON for {path}") from e

    @staticmethod
    def _raise_api_error(resp: httpx.Response, feature: str | None) -> None:
        try:
            detail = resp.json().get("detail")
            error = APIError.model_validate(detail)
        except (ValueError, AttributeError, ValidationError):
            if resp.status_code == 404 and feature:
                raise NotFound(feature)
            raise StoreError(f"Registry error {resp.status_code}: {resp.text[:500]}")

        if error.code == "not_found":
            raise NotFound(error.feature or feature or "")
        if error.code == "cycle":
            raise CycleDetected(error.cycle)
        if error.code == "empty_input":
            raise EmptyInput()
        if error.code == "bad_request":
            raise ValueError(error.message)
        raise StoreError(f"Registry error {resp.status_code}: {error.message}")

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise StoreError(f"Registry returned a malformed {model.__name__}: {e}") from e
