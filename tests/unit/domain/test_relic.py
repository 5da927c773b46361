"""
Unit tests for the Relic lifecycle and steal protection windows.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tests.conftest import assert_domain_event_emitted
from tinglebot.domain.models.base import DomainValidationError
from tinglebot.domain.models.relic import Relic
from tinglebot.domain.models.steal_protection import is_protected, protection_expiry, time_left
from tinglebot.modules.shared.exceptions import InvalidOperationError

NOW = datetime(2026, 4, 21, 12, 0, tzinfo=timezone.utc)


def make_relic(discovered_by: str = "Link", **kwargs) -> Relic:
    return Relic("R12345", "Ancient Tablet", discovered_by, "Eldin Canyon", **kwargs)


@pytest.mark.domain
class TestRelicLifecycle:
    """Test discovery through archival."""

    def test_relic_id_format(self):
        with pytest.raises(DomainValidationError):
            Relic("12345", "Ancient Tablet", "Link")

    def test_full_lifecycle(self):
        # Arrange
        relic = make_relic()
        assert relic.status == "unappraised"

        # Act
        relic.request_appraisal("Zelda", payment=100)
        awaiting = relic.status
        description = relic.appraise("zelda", "an ancient scroll", NOW)
        relic.archive("https://img.example/tablet.png", NOW)
        relic.place(12.5, 40)

        # Assert
        assert awaiting == "awaiting_appraisal"
        assert description == "Item appraised! It's an ancient scroll!"
        assert relic.appraised_by == "Zelda"
        assert relic.status == "archived"
        assert (relic.map_x, relic.map_y) == (12.5, 40.0)
        assert_domain_event_emitted(relic, "relic.appraised")
        assert_domain_event_emitted(relic, "relic.archived")

    def test_finder_cannot_appraise_own_relic(self):
        relic = make_relic()

        with pytest.raises(InvalidOperationError):
            relic.request_appraisal("link")

    def test_npc_may_appraise(self):
        relic = make_relic(discovered_by="NPC")

        relic.request_appraisal("NPC")

        assert relic.requested_appraiser == "NPC"

    def test_duplicate_request_rejected(self):
        relic = make_relic()
        relic.request_appraisal("Zelda")

        with pytest.raises(InvalidOperationError):
            relic.request_appraisal("Impa")

    def test_negative_payment_rejected(self):
        with pytest.raises(DomainValidationError):
            make_relic().request_appraisal("Zelda", payment=-1)

    def test_only_requested_appraiser_may_appraise(self):
        relic = make_relic()
        relic.request_appraisal("Zelda")

        with pytest.raises(InvalidOperationError):
            relic.appraise("Impa", "a blank", NOW)

    def test_unknown_outcome_rejected(self):
        relic = make_relic()
        relic.request_appraisal("Zelda")

        with pytest.raises(DomainValidationError):
            relic.appraise("Zelda", "a golden crown", NOW)

    def test_appraise_without_request(self):
        with pytest.raises(InvalidOperationError):
            make_relic().appraise("Zelda", "a blank", NOW)

    def test_archive_requires_appraisal(self):
        with pytest.raises(InvalidOperationError):
            make_relic().archive("https://img")

    def test_place_requires_archive(self):
        with pytest.raises(InvalidOperationError):
            make_relic().place(1, 1)

    def test_deteriorated_relic_cannot_be_appraised(self):
        relic = make_relic()
        relic.mark_deteriorated()

        assert relic.status == "deteriorated"
        with pytest.raises(InvalidOperationError):
            relic.request_appraisal("Zelda")

    def test_archived_relic_does_not_deteriorate(self):
        relic = make_relic(appraised=True, archived=True)

        with pytest.raises(InvalidOperationError):
            relic.mark_deteriorated()


@pytest.mark.domain
class TestStealProtection:
    """Test protection window helpers."""

    def test_default_window_is_thirty_minutes(self):
        assert protection_expiry(NOW) == NOW + timedelta(minutes=30)

    def test_is_protected(self):
        expires = protection_expiry(NOW, seconds=60)

        assert is_protected(expires, NOW)
        assert not is_protected(expires, NOW + timedelta(seconds=60))
        assert not is_protected(None, NOW)

    def test_time_left(self):
        expires = protection_expiry(NOW, seconds=90)

        assert time_left(expires, NOW + timedelta(seconds=30)) == 60
        assert time_left(expires, NOW + timedelta(hours=1)) == 0
        assert time_left(None, NOW) == 0

    def test_naive_expiry_treated_as_utc(self):
        expires = (NOW + timedelta(minutes=5)).replace(tzinfo=None)

        assert is_protected(expires, NOW)
