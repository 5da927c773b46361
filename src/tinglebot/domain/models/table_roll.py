"""
Table roll domain model.

A table roll is a named list of weighted entries. Rolling picks one entry
with probability proportional to its weight. Tables can be capped to a number
of rolls per day, and are imported from CSV files with the header::

    Weight,Flavor,Item,ThumbnailImage,Category,Rarity
"""

from __future__ import annotations

import csv
import io
import math
import random
import re
from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tinglebot.domain.models.base import AggregateRoot, DomainValidationError

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 _-]{1,100}$")
MAX_ENTRIES = 1000
RARITIES = ("common", "uncommon", "rare", "epic", "legendary")
CSV_HEADER = ("Weight", "Flavor", "Item", "ThumbnailImage", "Category", "Rarity")


def validate_table_name(name: str) -> str:
    name = (name or "").strip()
    if not NAME_PATTERN.match(name):
        raise DomainValidationError(
            "name",
            "Table name must be 1-100 characters of letters, numbers, spaces, '_' or '-'",
        )
    return name


@dataclass(frozen=True)
class TableEntry:
    weight: float
    flavor: str = ""
    item: str = ""
    thumbnail_image: str = ""
    category: str = ""
    rarity: str = "common"

    def __post_init__(self) -> None:
        if not math.isfinite(self.weight) or self.weight <= 0:
            raise DomainValidationError(
                "weight", f"Entry weight must be a positive number, got {self.weight}"
            )
        rarity = (self.rarity or "common").strip().lower()
        if rarity not in RARITIES:
            raise DomainValidationError(
                "rarity", f"Unknown rarity '{self.rarity}'. Expected one of: {', '.join(RARITIES)}"
            )
        object.__setattr__(self, "rarity", rarity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight": self.weight,
            "flavor": self.flavor,
            "item": self.item,
            "thumbnail_image": self.thumbnail_image,
            "category": self.category,
            "rarity": self.rarity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TableEntry:
        return cls(
            weight=float(data["weight"]),
            flavor=data.get("flavor") or "",
            item=data.get("item") or "",
            thumbnail_image=data.get("thumbnail_image") or "",
            category=data.get("category") or "",
            rarity=data.get("rarity") or "common",
        )


def parse_csv(text: str) -> Tuple[List[TableEntry], List[str]]:
    """
    Parse CSV text into entries.

    Returns ``(entries, errors)``. Each error names the offending line so the
    uploader can fix the file. Blank rows are skipped.
    """
    reader = csv.reader(io.StringIO(text.lstrip("﻿")))
    entries: List[TableEntry] = []
    errors: List[str] = []

    header = next(reader, None)
    if header is None:
        return entries, ["CSV file is empty"]
    normalized = [h.strip().lower() for h in header]
    expected = [h.lower() for h in CSV_HEADER]
    if normalized[: len(expected)] != expected and normalized[:3] != expected[:3]:
        return entries, [f"Invalid header. Expected: {','.join(CSV_HEADER)}"]

    for line_number, row in enumerate(reader, start=2):
        if not any(cell.strip() for cell in row):
            continue
        padded = [cell.strip() for cell in row] + [""] * (len(CSV_HEADER) - len(row))
        weight_text, flavor, item, thumbnail, category, rarity = padded[: len(CSV_HEADER)]
        try:
            weight = float(weight_text)
        except ValueError:
            errors.append(f"Line {line_number}: invalid weight '{weight_text}'")
            continue
        try:
            entries.append(
                TableEntry(
                    weight=weight,
                    flavor=flavor,
                    item=item,
                    thumbnail_image=thumbnail,
                    category=category,
                    rarity=rarity or "common",
                )
            )
        except DomainValidationError as exc:
            errors.append(f"Line {line_number}: {exc.validation_message}")

    return entries, errors


class TableRoll(AggregateRoot):
    """Weighted random table with optional daily roll cap (0 = unlimited)."""

    def __init__(
        self,
        name: str,
        entries: Sequence[TableEntry],
        *,
        created_by: Optional[str] = None,
        is_active: bool = True,
        roll_count: int = 0,
        daily_roll_count: int = 0,
        max_rolls_per_day: int = 0,
        last_roll_date: Optional[date] = None,
        tags: Optional[List[str]] = None,
    ) -> None:
        super().__init__(validate_table_name(name))
        if not entries:
            raise DomainValidationError("entries", "A table needs at least one entry")
        if len(entries) > MAX_ENTRIES:
            raise DomainValidationError(
                "entries", f"A table can hold at most {MAX_ENTRIES} entries, got {len(entries)}"
            )
        if max_rolls_per_day < 0:
            raise DomainValidationError("max_rolls_per_day", "max_rolls_per_day cannot be negative")

        self.entries: List[TableEntry] = list(entries)
        self.created_by = created_by
        self.is_active = is_active
        self.roll_count = roll_count
        self.daily_roll_count = daily_roll_count
        self.max_rolls_per_day = max_rolls_per_day
        self.last_roll_date = last_roll_date
        self.tags: List[str] = list(tags or [])

    @property
    def name(self) -> str:
        return self.id

    @property
    def total_weight(self) -> float:
        return sum(entry.weight for entry in self.entries)

    def can_roll_today(self, today: date) -> bool:
        if self.max_rolls_per_day == 0:
            return True
        if self.last_roll_date != today:
            return True
        return self.daily_roll_count < self.max_rolls_per_day

    def roll(self, today: date, rng: Optional[random.Random] = None) -> Dict[str, Any]:
        """
        Pick a weighted entry and update the roll counters.

        Returns the entry as a dict plus its 1-based ``index``.

        Raises
        ------
        DomainValidationError
            If the table is inactive or the daily cap is reached
        """
        if not self.is_active:
            raise DomainValidationError("is_active", f"Table '{self.name}' is not active")
        if not self.can_roll_today(today):
            raise DomainValidationError(
                "max_rolls_per_day",
                f"Table '{self.name}' reached its daily limit of {self.max_rolls_per_day} rolls",
            )

        rng = rng or random.Random()
        target = rng.uniform(0, self.total_weight)
        cumulative = 0.0
        chosen_index = len(self.entries) - 1
        for index, entry in enumerate(self.entries):
            cumulative += entry.weight
            if target <= cumulative:
                chosen_index = index
                break

        if self.last_roll_date != today:
            self.daily_roll_count = 0
            self.last_roll_date = today
        self.daily_roll_count += 1
        self.roll_count += 1

        return {**self.entries[chosen_index].to_dict(), "index": chosen_index + 1}

    def statistics(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entry_count": len(self.entries),
            "total_weight": self.total_weight,
            "rarity_breakdown": dict(Counter(entry.rarity for entry in self.entries)),
            "category_breakdown": dict(
                Counter(entry.category or "uncategorized" for entry in self.entries)
            ),
            "roll_count": self.roll_count,
            "daily_roll_count": self.daily_roll_count,
            "max_rolls_per_day": self.max_rolls_per_day,
        }

    @classmethod
    def from_db(cls, row: Any) -> TableRoll:
        return cls(
            row.name,
            [TableEntry.from_dict(e) for e in (row.entries or [])],
            created_by=row.created_by,
            is_active=row.is_active,
            roll_count=row.roll_count or 0,
            daily_roll_count=row.daily_roll_count or 0,
            max_rolls_per_day=row.max_rolls_per_day or 0,
            last_roll_date=row.last_roll_date,
            tags=row.tags,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "is_active": self.is_active,
            "roll_count": self.roll_count,
            "daily_roll_count": self.daily_roll_count,
            "max_rolls_per_day": self.max_rolls_per_day,
            "last_roll_date": self.last_roll_date,
            "tags": list(self.tags),
        }
