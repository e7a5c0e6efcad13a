"""
Pydantic models for the feature registry HTTP API.

Shared by the FastAPI app (responses) and the HTTP storage client (parsing),
together with the conversions to and from the domain dataclasses.
"""

from __future__ import annotations

import base64
from datetime import datetime

from pydantic import BaseModel, Field

from models.schemas import Feature, FeatureMeta, ResolvedSet


class FeatureMetaModel(BaseModel):
    name: str
    description: str = ""
    author: str = ""
    dependencies: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None

    @classmethod
    def from_meta(cls, meta: FeatureMeta) -> "FeatureMetaModel":
        return cls(
            name=meta.name,
            description=meta.description,
            author=meta.author,
            dependencies=list(meta.dependencies),
            updated_at=meta.updated_at,
        )

    def to_meta(self) -> FeatureMeta:
        return FeatureMeta(
            name=self.name,
            description=self.description,
            author=self.author,
            dependencies=tuple(self.dependencies),
            updated_at=self.updated_at,
        )


class FeatureModel(BaseModel):
    meta: FeatureMetaModel
    snippet: str = ""
    test_instruction: str = ""
    # relative path -> base64 content
    files: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_feature(cls, feature: Feature) -> "FeatureModel":
        return cls(
            meta=FeatureMetaModel.from_meta(feature.meta),
            snippet=feature.snippet,
            test_instruction=feature.test_instruction,
            files={
                path: base64.b64encode(data).decode("ascii")
                for path, data in feature.files.items()
            },
        )

    def to_feature(self) -> Feature:
        return Feature(
            meta=self.meta.to_meta(),
            snippet=self.snippet,
            test_instruction=self.test_instruction,
            files={
                path: base64.b64decode(data, validate=True)
                for path, data in self.files.items()
            },
        )


class ResolveResponse(BaseModel):
    order: list[str]
    features: list[FeatureModel]

    @classmethod
    def from_resolved(cls, resolved: ResolvedSet) -> "ResolveResponse":
        return cls(
            order=list(resolved.order),
            features=[FeatureModel.from_feature(f) for f in resolved.ordered_features()],
        )

    def to_resolved(self) -> ResolvedSet:
        resolved = ResolvedSet()
        by_name = {m.meta.name: m for m in self.features}
        for name in self.order:
            resolved.add(by_name[name].to_feature())
        return resolved


class APIError(BaseModel):
    """Error body returned in ``detail`` by the registry."""
    code: str
    message: str
    feature: str | None = None
    cycle: list[str] = Field(default_factory=list)
