"""
Helm chart repository index document.

IndexDocument mirrors the structure of a Helm ``index.yaml``: a mapping of
chart name to the list of published chart versions. Documents are parsed from
untrusted YAML/JSON, so they are pydantic models; unknown fields are kept so
that republishing never drops metadata.
"""

import json
from typing import Dict, List, Optional

import yaml
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict, Field, ValidationError

_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class _IndexLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps as written, nanoseconds included."""


_IndexLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _TIMESTAMP_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


class IndexParseError(Exception):
    """Raised when an index payload cannot be decoded into an IndexDocument."""

    pass


class ChartVersion(BaseModel):
    """One published release of a chart."""

    # index.yaml often carries bare numbers such as ``appVersion: 1.5``
    model_config = ConfigDict(
        extra="allow", populate_by_name=True, coerce_numbers_to_str=True
    )

    name: str = ""
    version: str = ""
    app_version: Optional[str] = Field(None, alias="appVersion")
    api_version: Optional[str] = Field(None, alias="apiVersion")
    description: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    digest: Optional[str] = None
    created: Optional[str] = None


class IndexDocument(BaseModel):
    """Catalog contents: chart entries keyed by chart name."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field("v1", alias="apiVersion")
    generated: Optional[str] = None
    entries: Dict[str, List[ChartVersion]] = Field(default_factory=dict)

    def add(self, chart_version: ChartVersion) -> None:
        self.entries.setdefault(chart_version.name, []).append(chart_version)

    def sort_entries(self) -> None:
        """
        Order entries deterministically.

        Entry keys are ordered ascending; within an entry, versions are
        ordered newest first by semantic version. Versions that do not parse
        are placed after the parseable ones, in string order. Sorting is
        stable, so equal versions keep their input order.
        """
        ordered: Dict[str, List[ChartVersion]] = {}
        for key in sorted(self.entries):
            parsed = []
            unparsed = []
            for chart_version in self.entries[key]:
                try:
                    parsed.append((Version(chart_version.version), chart_version))
                except InvalidVersion:
                    unparsed.append(chart_version)

            parsed.sort(key=lambda pair: pair[0], reverse=True)
            unparsed.sort(key=lambda cv: cv.version)
            ordered[key] = [cv for _, cv in parsed] + unparsed
        self.entries = ordered

    def to_json_bytes(self) -> bytes:
        """Serialize to compact JSON with sorted keys (byte-stable)."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return (json.dumps(data, sort_keys=True, separators=(",", ":")) + "\n").encode(
            "utf-8"
        )

    @classmethod
    def from_json_bytes(cls, payload: bytes) -> "IndexDocument":
        try:
            return cls.model_validate(json.loads(payload))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise IndexParseError(f"Invalid JSON index document: {e}")


def parse_index_yaml(content: bytes) -> Optional[IndexDocument]:
    """
    Parse a Helm index.yaml payload.

    Returns:
        IndexDocument, or None if the payload is empty

    Raises:
        IndexParseError: If the payload is not a valid index
    """
    if not content or not content.strip():
        return None

    try:
        data = yaml.load(content, Loader=_IndexLoader)
    except yaml.YAMLError as e:
        raise IndexParseError(f"Invalid YAML index: {e}")

    if data is None:
        return None
    if not isinstance(data, dict):
        raise IndexParseError(
            f"Index must be a mapping, got {type(data).__name__}"
        )
    if data.get("entries") is None:
        data["entries"] = {}

    try:
        return IndexDocument.model_validate(data)
    except ValidationError as e:
        raise IndexParseError(f"Invalid index structure: {e}")
