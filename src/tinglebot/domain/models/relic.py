"""
Relic domain model.

Lifecycle::

    discovered -> appraisal requested -> appraised -> archived -> placed on map
         \\______________________________________/
                  deteriorated (terminal)

Appraisal is done by a named appraiser: either an Artist or Researcher
character living in Inariko, or an NPC.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional

from tinglebot.domain.models.base import (
    AggregateRoot,
    DomainValidationError,
    ensure_aware,
    utc_now,
    validate_not_empty,
)
from tinglebot.modules.shared.exceptions import InvalidOperationError

RELIC_ID_PATTERN = re.compile(r"^R\d+$")
APPRAISAL_OUTCOMES = ("a blank", "an ancient scroll", "a mystical amulet", "a weathered coin")
APPRAISER_JOBS = ("Artist", "Researcher")
APPRAISAL_VILLAGE = "Inariko"
NPC_APPRAISER = "NPC"


def is_npc_appraiser(appraiser: Optional[str]) -> bool:
    return (appraiser or "").strip().lower() == NPC_APPRAISER.lower()


def appraisal_description(outcome: str) -> str:
    return f"Item appraised! It's {outcome}!"


class Relic(AggregateRoot):
    def __init__(
        self,
        relic_id: str,
        name: str,
        discovered_by: str,
        location_found: Optional[str] = None,
        *,
        discovered_at: Optional[datetime] = None,
        appraisal_requested: bool = False,
        requested_appraiser: Optional[str] = None,
        artist_fee: int = 0,
        appraised: bool = False,
        appraised_by: Optional[str] = None,
        appraisal_date: Optional[datetime] = None,
        appraisal_description: Optional[str] = None,
        archived: bool = False,
        archived_at: Optional[datetime] = None,
        image_url: Optional[str] = None,
        deteriorated: bool = False,
        map_x: Optional[float] = None,
        map_y: Optional[float] = None,
    ) -> None:
        if not RELIC_ID_PATTERN.match(relic_id or ""):
            raise DomainValidationError("relic_id", f"Relic id must look like 'R12345', got '{relic_id}'")
        validate_not_empty(name, "name")
        validate_not_empty(discovered_by, "discovered_by")
        super().__init__(relic_id)

        self.name = name
        self.discovered_by = discovered_by
        self.location_found = location_found
        self.discovered_at = ensure_aware(discovered_at) or utc_now()
        self.appraisal_requested = appraisal_requested
        self.requested_appraiser = requested_appraiser
        self.artist_fee = artist_fee
        self.appraised = appraised
        self.appraised_by = appraised_by
        self.appraisal_date = ensure_aware(appraisal_date)
        self.appraisal_description = appraisal_description
        self.archived = archived
        self.archived_at = ensure_aware(archived_at)
        self.image_url = image_url
        self.deteriorated = deteriorated
        self.map_x = map_x
        self.map_y = map_y

    @property
    def relic_id(self) -> str:
        return self.id

    @property
    def status(self) -> str:
        if self.deteriorated:
            return "deteriorated"
        if self.archived:
            return "archived"
        if self.appraised:
            return "appraised"
        if self.appraisal_requested:
            return "awaiting_appraisal"
        return "unappraised"

    def request_appraisal(self, appraiser: str, payment: int = 0) -> None:
        validate_not_empty(appraiser, "appraiser")
        if self.deteriorated:
            raise InvalidOperationError("request_appraisal", "This relic has deteriorated and cannot be appraised")
        if self.appraised:
            raise InvalidOperationError("request_appraisal", "This relic has already been appraised")
        if self.appraisal_requested:
            raise InvalidOperationError(
                "request_appraisal",
                f"An appraisal request is already pending with {self.requested_appraiser}",
            )
        if not is_npc_appraiser(appraiser) and appraiser.strip().lower() == self.discovered_by.lower():
            raise InvalidOperationError(
                "request_appraisal", "The character who found the relic cannot appraise it"
            )
        if payment < 0:
            raise DomainValidationError("payment", "Payment cannot be negative")

        self.appraisal_requested = True
        self.requested_appraiser = appraiser.strip()
        self.artist_fee = payment

    def appraise(self, appraiser: str, outcome: str, now: Optional[datetime] = None) -> str:
        """
        Appraise the relic and return the description.

        Raises
        ------
        InvalidOperationError
            If there is no pending request, the appraiser is not the one
            requested, or the relic was already appraised
        DomainValidationError
            If the outcome is not a known appraisal outcome
        """
        if self.appraised:
            raise InvalidOperationError("appraise", "This relic has already been appraised")
        if self.deteriorated:
            raise InvalidOperationError("appraise", "This relic has deteriorated and cannot be appraised")
        if not self.appraisal_requested or not self.requested_appraiser:
            raise InvalidOperationError("appraise", "No appraisal has been requested for this relic")
        if (appraiser or "").strip().lower() != self.requested_appraiser.lower():
            raise InvalidOperationError(
                "appraise",
                f"This request is assigned to {self.requested_appraiser}, not {appraiser}",
            )
        if outcome not in APPRAISAL_OUTCOMES:
            raise DomainValidationError(
                "outcome", f"Unknown appraisal outcome '{outcome}'"
            )

        now = now or utc_now()
        self.appraised = True
        self.appraised_by = self.requested_appraiser
        self.appraisal_date = now
        self.appraisal_description = appraisal_description(outcome)

        self.add_domain_event(
            "relic.appraised",
            {
                "relic_id": self.relic_id,
                "appraised_by": self.appraised_by,
                "outcome": outcome,
                "description": self.appraisal_description,
            },
        )
        return self.appraisal_description

    def archive(self, image_url: str, now: Optional[datetime] = None) -> None:
        validate_not_empty(image_url, "image_url")
        if not self.appraised:
            raise InvalidOperationError("archive", "Only appraised relics can be archived")
        if self.archived:
            raise InvalidOperationError("archive", "This relic has already been archived")
        if self.deteriorated:
            raise InvalidOperationError("archive", "Deteriorated relics cannot be archived")

        self.archived = True
        self.archived_at = now or utc_now()
        self.image_url = image_url
        self.add_domain_event(
            "relic.archived",
            {"relic_id": self.relic_id, "name": self.name, "image_url": image_url},
        )

    def mark_deteriorated(self) -> None:
        if self.archived:
            raise InvalidOperationError("deteriorate", "Archived relics are preserved")
        self.deteriorated = True

    def place(self, x: float, y: float) -> None:
        if not self.archived:
            raise InvalidOperationError("place_relic", "Only archived relics can be placed on the map")
        self.map_x = float(x)
        self.map_y = float(y)

    @classmethod
    def from_db(cls, row: Any) -> Relic:
        return cls(
            row.relic_id,
            row.name,
            row.discovered_by,
            row.location_found,
            discovered_at=row.discovered_at,
            appraisal_requested=row.appraisal_requested,
            requested_appraiser=row.requested_appraiser,
            artist_fee=row.artist_fee or 0,
            appraised=row.appraised,
            appraised_by=row.appraised_by,
            appraisal_date=row.appraisal_date,
            appraisal_description=row.appraisal_description,
            archived=row.archived,
            archived_at=row.archived_at,
            image_url=row.image_url,
            deteriorated=row.deteriorated,
            map_x=row.map_x,
            map_y=row.map_y,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "appraisal_requested": self.appraisal_requested,
            "requested_appraiser": self.requested_appraiser,
            "artist_fee": self.artist_fee,
            "appraised": self.appraised,
            "appraised_by": self.appraised_by,
            "appraisal_date": self.appraisal_date,
            "appraisal_description": self.appraisal_description,
            "archived": self.archived,
            "archived_at": self.archived_at,
            "image_url": self.image_url,
            "deteriorated": self.deteriorated,
            "map_x": self.map_x,
            "map_y": self.map_y,
        }
