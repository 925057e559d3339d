"""Endpoint descriptor loading, normalization and caching."""

import json
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationError, NotFoundError, ErrorContext, get_logger, log_operation
from ..models import EndpointDescriptor, HttpMethod, WRITE_METHODS
from ..security import strip_brackets

logger = get_logger(__name__)

ENDPOINT_NAME = re.compile(r"^[A-Za-z0-9_\-]+$")

WEBHOOKS_ENDPOINT = "Webhooks"
DEFAULT_WEBHOOKS_OBJECT = "DefaultWebhooksHandler"


def webhooks_fallback() -> EndpointDescriptor:
    return EndpointDescriptor(
        name=WEBHOOKS_ENDPOINT,
        object_name=DEFAULT_WEBHOOKS_OBJECT,
        schema="dbo",
        allowed_methods=(HttpMethod.POST,),
    )


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def build_descriptor(name: str, raw: Dict[str, Any], issues: Optional[List[str]] = None) -> Optional[EndpointDescriptor]:
    """
    Normalize a raw entity.json document into an EndpointDescriptor.

    Unknown method tokens and write methods without a backing procedure are
    dropped from the effective allowed set; each drop is logged and, when
    ``issues`` is given, recorded there.

    Returns:
        The descriptor, or None when the document has no DatabaseObjectName
    """
    issues = issues if issues is not None else []

    object_name = strip_brackets(str(raw.get("DatabaseObjectName") or ""))
    if not object_name:
        logger.warning("Invalid or missing DatabaseObjectName", endpoint=name)
        issues.append("missing DatabaseObjectName")
        return None

    schema = strip_brackets(str(raw.get("DatabaseSchema") or "")) or "dbo"
    procedure = (raw.get("Procedure") or "").strip() or None

    columns: List[str] = []
    seen_columns = set()
    for column in _string_list(raw.get("AllowedColumns")):
        if column.lower() not in seen_columns:
            seen_columns.add(column.lower())
            columns.append(column)

    declared = _string_list(raw.get("AllowedMethods"))
    if not declared:
        declared = [method.value for method in HttpMethod] if procedure else [HttpMethod.GET.value]

    methods: List[HttpMethod] = []
    for token in declared:
        try:
            method = HttpMethod(token.upper())
        except ValueError:
            logger.warning("Dropping unrecognized HTTP method", endpoint=name, method=token)
            issues.append(f"unrecognized method '{token}' dropped")
            continue
        if method in WRITE_METHODS and not procedure:
            logger.warning("Dropping write method without a procedure", endpoint=name, method=method.value)
            issues.append(f"{method.value} dropped: no Procedure configured")
            continue
        if method not in methods:
            methods.append(method)

    return EndpointDescriptor(
        name=name,
        object_name=object_name,
        schema=schema,
        allowed_columns=tuple(columns),
        allowed_methods=tuple(methods),
        procedure=procedure,
    )


class FileEndpointLoader:
    """Reads <base_dir>/<name>/entity.json documents."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def _directory_for(self, name: str) -> Optional[Path]:
        exact = self.base_dir / name
        if exact.is_dir():
            return exact
        if not self.base_dir.is_dir():
            return None
        lowered = name.lower()
        for entry in self.base_dir.iterdir():
            if entry.is_dir() and entry.name.lower() == lowered:
                return entry
        return None

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        directory = self._directory_for(name)
        if directory is None or not (directory / "entity.json").is_file():
            logger.debug("entity.json not found", endpoint=name)
            return None

        entity_file = directory / "entity.json"
        try:
            document = json.loads(entity_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Error loading endpoint config: {name}",
                config_key=str(entity_file),
                context=ErrorContext(operation="load_endpoint", resource=name),
                cause=e
            ) from e

        if not isinstance(document, dict):
            raise ConfigurationError(
                f"Endpoint config must be a JSON object: {name}",
                config_key=str(entity_file),
                context=ErrorContext(operation="load_endpoint", resource=name)
            )
        return document

    def names(self) -> List[str]:
        if not self.base_dir.is_dir():
            logger.warning("Endpoints folder not found", path=str(self.base_dir))
            return []
        return sorted(entry.name for entry in self.base_dir.iterdir() if (entry / "entity.json").is_file())


class EndpointRegistry:
    """Resolves endpoint names (case-insensitively) to cached, immutable descriptors."""

    def __init__(self, loader: FileEndpointLoader):
        self.loader = loader
        self._cache: Dict[str, EndpointDescriptor] = {}
        self._lock = threading.Lock()

    def find(self, name: str) -> Optional[EndpointDescriptor]:
        if not name or not ENDPOINT_NAME.match(name):
            return None

        key = name.lower()
        descriptor = self._cache.get(key)
        if descriptor is not None:
            return descriptor

        raw = self.loader.load(name)
        descriptor = build_descriptor(name, raw) if raw is not None else None
        if descriptor is None:
            if key == WEBHOOKS_ENDPOINT.lower():
                return webhooks_fallback()
            return None

        with self._lock:
            return self._cache.setdefault(key, descriptor)

    def resolve(self, name: str) -> EndpointDescriptor:
        """
        Resolve an endpoint name to its descriptor.

        Raises:
            NotFoundError: If no descriptor exists for the name
        """
        descriptor = self.find(name)
        if descriptor is None:
            raise NotFoundError(f"Endpoint '{name}' not found.", resource=name, error_code="ENDPOINT_NOT_FOUND")
        return descriptor

    def list_endpoints(self) -> Dict[str, EndpointDescriptor]:
        endpoints: Dict[str, EndpointDescriptor] = {}
        for name in self.loader.names():
            try:
                descriptor = self.find(name)
            except ConfigurationError as e:
                logger.warning("Skipping endpoint with invalid config", endpoint=name, error=e.message)
                continue
            if descriptor is not None:
                endpoints[name] = descriptor
        return endpoints

    def reload(self) -> int:
        """Rebuild the cache from the loader and swap it in; returns the endpoint count."""
        fresh: Dict[str, EndpointDescriptor] = {}
        for name in self.loader.names():
            try:
                raw = self.loader.load(name)
            except ConfigurationError as e:
                logger.warning("Skipping endpoint with invalid config", endpoint=name, error=e.message)
                continue
            descriptor = build_descriptor(name, raw) if raw is not None else None
            if descriptor is not None:
                fresh[name.lower()] = descriptor

        with self._lock:
            self._cache = fresh

        log_operation(logger, "endpoints_reloaded", count=len(fresh))
        return len(fresh)
