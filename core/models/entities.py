"""Normalized remote CRM records.

These are platform-neutral: field names are canonical and the original
payload is kept in ``raw``. Platform field names are mapped in
sync/processor.py.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models.integration import EntityType


class RemoteEntity(BaseModel):
    """Base for every normalized remote record."""
    model_config = ConfigDict(populate_by_name=True)

    external_id: str
    entity_type: EntityType
    source_platform: str
    created_at: datetime
    modified_at: datetime
    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)


class RemoteContact(RemoteEntity):
    entity_type: EntityType = EntityType.CONTACTS
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class RemoteCompany(RemoteEntity):
    entity_type: EntityType = EntityType.COMPANIES
    name: Optional[str] = None
    domain: Optional[str] = None
    industry: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class RemoteDeal(RemoteEntity):
    entity_type: EntityType = EntityType.DEALS
    name: Optional[str] = None
    amount: Optional[Decimal] = None
    stage: Optional[str] = None
    pipeline: Optional[str] = None
    close_date: Optional[datetime] = None
