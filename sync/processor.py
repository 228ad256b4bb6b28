"""Remote record normalization.

Turns raw platform payloads into RemoteContact / RemoteCompany / RemoteDeal.
Bad records never fail the batch: a record without an id becomes an error
entry, a record with nothing to identify it by is skipped, and unparsable
values fall back to safe defaults with a warning.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.models import (
    BatchResult,
    EntityType,
    ProcessingError,
    RemoteCompany,
    RemoteContact,
    RemoteDeal,
    RemoteEntity,
    SkippedRecord,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9]?\.[a-zA-Z]{2,}$")

# Canonical fields a record must have at least one of
IDENTIFYING_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.CONTACTS: ("email", "first_name", "last_name"),
    EntityType.COMPANIES: ("name", "domain"),
    EntityType.DEALS: ("name",),
}


# =============================================================================
# Field maps
# =============================================================================

@dataclass(frozen=True)
class FieldMap:
    """Where a platform keeps each canonical field.

    Each canonical field maps to candidate remote names, tried in order
    in the properties object and then at the top level of the record.
    """
    id_field: str = "id"
    properties_key: Optional[str] = None
    fields: Mapping[EntityType, Mapping[str, Tuple[str, ...]]] = field(default_factory=dict)

    def remote_names(self, entity_type: EntityType, canonical: str) -> Tuple[str, ...]:
        return self.fields.get(entity_type, {}).get(canonical, (canonical,))


HUBSPOT_FIELD_MAP = FieldMap(
    id_field="id",
    properties_key="properties",
    fields={
        EntityType.CONTACTS: {
            "email": ("email",),
            "first_name": ("firstname",),
            "last_name": ("lastname",),
            "phone": ("phone",),
            "company": ("company",),
            "created_at": ("createdate", "createdAt"),
            "modified_at": ("lastmodifieddate", "hs_lastmodifieddate", "updatedAt"),
        },
        EntityType.COMPANIES: {
            "name": ("name",),
            "domain": ("domain",),
            "industry": ("industry",),
            "phone": ("phone",),
            "city": ("city",),
            "state": ("state",),
            "country": ("country",),
            "created_at": ("createdate", "createdAt"),
            "modified_at": ("hs_lastmodifieddate", "lastmodifieddate", "updatedAt"),
        },
        EntityType.DEALS: {
            "name": ("dealname",),
            "amount": ("amount",),
            "stage": ("dealstage",),
            "pipeline": ("pipeline",),
            "close_date": ("closedate",),
            "created_at": ("createdate", "createdAt"),
            "modified_at": ("hs_lastmodifieddate", "lastmodifieddate", "updatedAt"),
        },
    },
)

# Platforms without a map are expected to send canonical names
DEFAULT_FIELD_MAP = FieldMap()

FIELD_MAPS: Dict[str, FieldMap] = {
    "hubspot": HUBSPOT_FIELD_MAP,
}


# =============================================================================
# Value parsers
# =============================================================================

def clean_string(value: Any) -> Optional[str]:
    """Trimmed string, or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def clean_phone(value: Any) -> Optional[str]:
    """Digits with at most one leading plus sign."""
    text = clean_string(value)
    if text is None:
        return None
    kept = re.sub(r"[^\d+]", "", text)
    digits = kept.replace("+", "")
    if not digits:
        return None
    return ("+" if kept.startswith("+") else "") + digits


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO 8601 or epoch milliseconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        text = str(value).strip()
        if not text:
            return None
        if re.fullmatch(r"-?\d+", text):
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except (ValueError, OverflowError, OSError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_amount(value: Any) -> Tuple[Optional[Decimal], bool]:
    """Parse a monetary amount.

    Returns:
        (amount, ok). Missing values give (None, True); unparsable ones (0, False).
    """
    if value is None:
        return None, True
    if isinstance(value, bool):
        return Decimal("0"), False
    if isinstance(value, Decimal):
        return (value, True) if value.is_finite() else (Decimal("0"), False)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return Decimal("0"), False
        return Decimal(str(value)), True

    text = str(value).strip().replace("$", "").replace(",", "")
    if text == "":
        return None, True
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return Decimal("0"), False
    if not amount.is_finite():
        return Decimal("0"), False
    return amount, True


# =============================================================================
# Processor
# =============================================================================

class RemoteEntityProcessor:
    """Validates and normalizes pages of raw remote records.

    Usage:
        processor = RemoteEntityProcessor()
        result = processor.process_batch(page.records, "hubspot", EntityType.CONTACTS)
    """

    def __init__(
        self,
        field_maps: Optional[Mapping[str, FieldMap]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.field_maps = dict(FIELD_MAPS if field_maps is None else field_maps)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def process_batch(
        self,
        raw_records: Iterable[Any],
        platform: str,
        entity_type: EntityType,
    ) -> BatchResult:
        """Normalize a page. Never raises for a single bad record."""
        entity_type = EntityType(entity_type)
        platform = (platform or "").lower()
        field_map = self.field_maps.get(platform, DEFAULT_FIELD_MAP)
        result = BatchResult()

        for index, raw in enumerate(raw_records):
            try:
                self._process_record(raw, index, platform, entity_type, field_map, result)
            except Exception as e:
                external_id = _external_id(raw, field_map)
                logger.error(
                    f"Failed to normalize {entity_type.value} record at index {index}: {e}",
                    extra_fields={"external_id": external_id},
                )
                result.errors.append(ProcessingError(index=index, message=str(e), external_id=external_id))

        if result.skipped or result.errors:
            logger.info(
                f"Processed {entity_type.value} batch: {len(result.normalized)} normalized, "
                f"{len(result.skipped)} skipped, {len(result.errors)} errors"
            )
        return result

    def _process_record(
        self,
        raw: Any,
        index: int,
        platform: str,
        entity_type: EntityType,
        field_map: FieldMap,
        result: BatchResult,
    ) -> None:
        if not isinstance(raw, dict):
            raise ValueError(f"Expected an object, got {type(raw).__name__}")

        external_id = _external_id(raw, field_map)
        if external_id is None:
            message = f"Missing external id ({field_map.id_field})"
            logger.warning(f"Rejected {entity_type.value} record at index {index}: {message}")
            result.errors.append(ProcessingError(index=index, message=message))
            return

        properties = raw.get(field_map.properties_key) if field_map.properties_key else raw
        if not isinstance(properties, dict):
            properties = {}

        def get(canonical: str) -> Any:
            for name in field_map.remote_names(entity_type, canonical):
                if properties.get(name) is not None:
                    return properties[name]
                if raw.get(name) is not None:
                    return raw[name]
            return None

        warnings: List[str] = []
        if entity_type == EntityType.CONTACTS:
            values = self._contact_values(get, warnings)
        elif entity_type == EntityType.COMPANIES:
            values = self._company_values(get, warnings)
        else:
            values = self._deal_values(get, warnings)

        if all(values.get(name) is None for name in IDENTIFYING_FIELDS[entity_type]):
            logger.warning(
                f"Skipping {entity_type.value} record {external_id}: no identifying fields"
            )
            result.skipped.append(SkippedRecord(
                index=index,
                external_id=external_id,
                reason="no identifying fields",
            ))
            return

        now = self._clock()
        created_at = parse_timestamp(get("created_at"))
        modified_at = parse_timestamp(get("modified_at"))
        for name, parsed in (("created", created_at), ("modified", modified_at)):
            original = get(f"{name}_at")
            if original is not None and parsed is None:
                warnings.append(f"unparsable {name} date {original!r}")

        entity = self._build(
            entity_type,
            external_id=external_id,
            source_platform=platform,
            created_at=created_at or now,
            modified_at=modified_at or now,
            raw=raw,
            **values,
        )

        for warning in warnings:
            logger.warning(f"{entity_type.value} record {external_id}: {warning}")
        result.warnings.extend(f"{external_id}: {warning}" for warning in warnings)
        result.normalized.append(entity)

    # -------------------------------------------------------------------------
    # Per entity type
    # -------------------------------------------------------------------------

    @staticmethod
    def _contact_values(get: Callable[[str], Any], warnings: List[str]) -> Dict[str, Any]:
        email = clean_string(get("email"))
        if email is not None:
            email = email.lower()
            if not EMAIL_PATTERN.match(email):
                warnings.append(f"invalid email format {email!r}")
        return {
            "email": email,
            "first_name": clean_string(get("first_name")),
            "last_name": clean_string(get("last_name")),
            "phone": clean_phone(get("phone")),
            "company": clean_string(get("company")),
        }

    @staticmethod
    def _company_values(get: Callable[[str], Any], warnings: List[str]) -> Dict[str, Any]:
        domain = clean_string(get("domain"))
        if domain is not None:
            domain = domain.lower()
            if not DOMAIN_PATTERN.match(domain):
                warnings.append(f"invalid domain format {domain!r}")
        return {
            "name": clean_string(get("name")),
            "domain": domain,
            "industry": clean_string(get("industry")),
            "phone": clean_phone(get("phone")),
            "city": clean_string(get("city")),
            "state": clean_string(get("state")),
            "country": clean_string(get("country")),
        }

    @staticmethod
    def _deal_values(get: Callable[[str], Any], warnings: List[str]) -> Dict[str, Any]:
        raw_amount = get("amount")
        amount, ok = parse_amount(raw_amount)
        if not ok:
            warnings.append(f"unparsable amount {raw_amount!r}, using 0")

        raw_close = get("close_date")
        close_date = parse_timestamp(raw_close)
        if clean_string(raw_close) is not None and close_date is None:
            warnings.append(f"unparsable close date {raw_close!r}")

        return {
            "name": clean_string(get("name")),
            "amount": amount,
            "stage": clean_string(get("stage")),
            "pipeline": clean_string(get("pipeline")),
            "close_date": close_date,
        }

    @staticmethod
    def _build(entity_type: EntityType, **kwargs) -> RemoteEntity:
        if entity_type == EntityType.CONTACTS:
            return RemoteContact(**kwargs)
        if entity_type == EntityType.COMPANIES:
            return RemoteCompany(**kwargs)
        return RemoteDeal(**kwargs)


def _external_id(raw: Any, field_map: FieldMap) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    return clean_string(raw.get(field_map.id_field))
