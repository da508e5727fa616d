from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from moderation_worker.core.exceptions import DatabaseException
from moderation_worker.models.profile import Profile
from moderation_worker.models.sale import Item, Sale
from moderation_worker.models.user_flag import UserFlag
from moderation_worker.services.reference_repository import ReferenceRepository
from moderation_worker.services.strike_ledger import StrikeLedger

PENDING = "pending/sale_item/x.jpg"
URL = "https://firebasestorage.googleapis.com/v0/b/b/o/sale_item%2Fx.jpg?alt=media&token=t"


@pytest.fixture
def sale(db_session):
    sale = Sale(id="s1", user_id="u1", title="Yard sale", sale_cover_photo="pending/sale_cover/c.jpg")
    sale.items.append(Item(id="i1", name="Lamp", image_url=PENDING))
    sale.items.append(Item(id="i2", name="Chair", image_url="https://example.com/chair.jpg"))
    db_session.add(sale)
    db_session.add(Profile(user_id="u1", display_name="Pat", photo_url="pending/profile_photo/p.jpg"))
    db_session.commit()
    return sale


class TestReferenceRepository:
    def test_reject_item_image_clears_only_matching_item(self, db_session, sale):
        matched = ReferenceRepository(db_session).reject_item_image(PENDING)

        db_session.expire_all()
        assert matched == 1
        assert db_session.get(Item, "i1").image_url is None
        assert db_session.get(Item, "i2").image_url == "https://example.com/chair.jpg"

    def test_approve_item_image_sets_url(self, db_session, sale):
        ReferenceRepository(db_session).approve_item_image(PENDING, URL)

        db_session.expire_all()
        assert db_session.get(Item, "i1").image_url == URL

    def test_sale_cover_operations(self, db_session, sale):
        repo = ReferenceRepository(db_session)
        assert repo.approve_sale_cover("pending/sale_cover/c.jpg", URL) == 1
        db_session.expire_all()
        assert db_session.get(Sale, "s1").sale_cover_photo == URL

        # Reference no longer equals the pending path
        assert repo.reject_sale_cover("pending/sale_cover/c.jpg") == 0
        db_session.expire_all()
        assert db_session.get(Sale, "s1").sale_cover_photo == URL

    def test_profile_photo_operations_touch_updated_at(self, db_session, sale):
        stamp = datetime(2026, 1, 2, 3, 4, 5)
        repo = ReferenceRepository(db_session, clock=lambda: stamp)

        assert repo.reject_profile_photo("pending/profile_photo/p.jpg") == 1
        db_session.expire_all()
        profile = db_session.get(Profile, "u1")
        assert profile.photo_url is None
        assert profile.updated_at == stamp

    def test_no_matching_document_is_noop(self, db_session, sale):
        repo = ReferenceRepository(db_session)
        assert repo.reject_item_image("pending/sale_item/missing.jpg") == 0
        assert repo.approve_profile_photo("pending/profile_photo/missing.jpg", URL) == 0

    def test_blank_inputs_are_ignored(self, db_session, sale):
        repo = ReferenceRepository(db_session)
        assert repo.reject_item_image("  ") == 0
        assert repo.approve_item_image(PENDING, "") == 0
        db_session.expire_all()
        assert db_session.get(Item, "i1").image_url == PENDING

    def test_database_error_is_wrapped(self):
        db = Mock()
        db.query.return_value.filter.return_value.update.side_effect = OperationalError("UPDATE", {}, Exception("down"))

        with pytest.raises(DatabaseException) as exc_info:
            ReferenceRepository(db).reject_item_image(PENDING)

        assert exc_info.value.details["operation"] == "reject_item_image"
        db.rollback.assert_called_once()


class TestStrikeLedger:
    def test_first_strike_creates_flag(self, db_session):
        now = datetime(2026, 5, 1, 12, 0, 0)
        count = StrikeLedger(db_session).add_strike("u1", now=now)

        flag = db_session.get(UserFlag, "u1")
        assert count == 1
        assert flag.strikes == 1
        assert flag.last_strike_at == now
        assert flag.updated_at == now

    def test_consecutive_strikes_accumulate(self, db_session):
        start = datetime(2026, 5, 1, 12, 0, 0)
        ledger = StrikeLedger(db_session)
        counts = [ledger.add_strike("u1", now=start + timedelta(minutes=i)) for i in range(4)]

        db_session.expire_all()
        flag = db_session.get(UserFlag, "u1")
        assert counts == [1, 2, 3, 4]
        assert flag.strikes == 4
        assert flag.last_strike_at == start + timedelta(minutes=3)

    def test_strikes_are_per_user(self, db_session):
        ledger = StrikeLedger(db_session)
        ledger.add_strike("u1")
        ledger.add_strike("u1")
        assert ledger.add_strike("u2") == 1

    def test_uses_clock_when_no_timestamp(self, db_session):
        stamp = datetime(2026, 7, 4, 9, 30, 0)
        StrikeLedger(db_session, clock=lambda: stamp).add_strike("u1")
        assert db_session.get(UserFlag, "u1").last_strike_at == stamp

    def test_database_error_is_wrapped(self):
        db = Mock()
        db.query.return_value.filter.return_value.update.side_effect = OperationalError("UPDATE", {}, Exception("down"))

        with pytest.raises(DatabaseException) as exc_info:
            StrikeLedger(db).add_strike("u1")

        assert exc_info.value.details["operation"] == "add_strike"
        db.rollback.assert_called_once()
