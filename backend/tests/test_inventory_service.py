import pytest

from hwpos.errors import ConflictError, NegativeStockError, NotFoundError, ValidationError
from hwpos.extensions import db
from hwpos.models import Item, ItemLog, StockAdjustment
from hwpos.references import EntityKind, EntityRef, resolve_reference
from hwpos.services import inventory_service


class TestItems:
    def test_opening_stock_is_logged(self, make_item):
        item = make_item("Hammer", stock=12, price_cents=1999)

        log = db.session.query(ItemLog).filter_by(item_id=item.id).one()
        assert (log.type, log.quantity_change, log.old_stock, log.new_stock) == ("received", 12, 0, 12)
        assert log.description == "Initial stock"

    def test_no_stock_no_log(self, make_item):
        item = make_item("Hammer")
        assert db.session.query(ItemLog).filter_by(item_id=item.id).count() == 0

    def test_name_must_be_unique(self, make_item):
        make_item("Hammer")
        with pytest.raises(ConflictError):
            make_item("Hammer")

    def test_field_validation(self, make_item):
        with pytest.raises(ValidationError):
            make_item("Hammer", colour="red")
        with pytest.raises(ValidationError):
            make_item("Hammer", price_cents=-1)
        with pytest.raises(ValidationError):
            make_item("Hammer", stock=-1)
        with pytest.raises(ValidationError):
            make_item("  ")

    def test_stock_is_not_editable(self, admin, make_item):
        item = make_item("Hammer", stock=3)
        with pytest.raises(ValidationError):
            inventory_service.update_item(admin, item.id, stock=10)

        item = inventory_service.update_item(admin, item.id, name="Claw Hammer", price_cents=2499)
        assert item.name == "Claw Hammer"
        assert item.price_cents == 2499
        assert item.stock == 3

    def test_delete_only_without_history(self, admin, make_item):
        logged = make_item("Hammer", stock=1)
        blank = make_item("Mallet")
        blank_id = blank.id

        with pytest.raises(ConflictError):
            inventory_service.delete_item(admin, logged.id)
        inventory_service.delete_item(admin, blank_id)

        assert db.session.get(Item, blank_id) is None

    def test_search(self, make_item):
        make_item("Claw Hammer")
        make_item("Sledge Hammer")
        make_item("Saw")
        assert [i.name for i in inventory_service.list_items("hammer")] == ["Claw Hammer", "Sledge Hammer"]

    def test_categories(self, make_item):
        category = inventory_service.create_category("Hand Tools")
        item = make_item("Hammer", category_id=category.id)
        assert item.category.name == "Hand Tools"
        with pytest.raises(ConflictError):
            inventory_service.create_category("Hand Tools")
        with pytest.raises(NotFoundError):
            make_item("Saw", category_id=404)


class TestAdjustments:
    def test_signed_adjustment(self, admin, make_item):
        item = make_item("Paint", stock=10)

        adjustment = inventory_service.create_adjustment(admin, item.id, -2, "damage", notes="Dropped")

        assert (adjustment.old_stock, adjustment.new_stock) == (10, 8)
        assert adjustment.reason_label == "Damaged Goods"
        assert db.session.get(Item, item.id).stock == 8
        log = db.session.query(ItemLog).filter_by(item_id=item.id, type="adjustment").one()
        assert log.quantity_change == -2
        assert log.description == "Damaged Goods: Dropped"
        assert log.reference == EntityRef(EntityKind.STOCK_ADJUSTMENT, adjustment.id)

    def test_cannot_go_negative(self, admin, make_item):
        item = make_item("Paint", stock=1)
        with pytest.raises(NegativeStockError):
            inventory_service.create_adjustment(admin, item.id, -2, "internal_use")
        assert db.session.get(Item, item.id).stock == 1
        assert db.session.query(StockAdjustment).count() == 0

    def test_input_validation(self, admin, make_item):
        item = make_item("Paint", stock=1)
        with pytest.raises(ValidationError):
            inventory_service.create_adjustment(admin, item.id, 0, "adjustment")
        with pytest.raises(ValidationError):
            inventory_service.create_adjustment(admin, item.id, 1, "theft")
        with pytest.raises(NotFoundError):
            inventory_service.create_adjustment(admin, 404, 1, "adjustment")


class TestReverseAdjustment:
    def test_restores_old_stock(self, admin, make_item):
        item = make_item("Paint", stock=10)
        adjustment = inventory_service.create_adjustment(admin, item.id, -3, "warranty")
        adjustment_id = adjustment.id

        log = inventory_service.reverse_adjustment(admin, adjustment_id)

        assert db.session.get(Item, item.id).stock == 10
        assert (log.type, log.quantity_change, log.old_stock, log.new_stock) == ("reversed", 3, 7, 10)
        assert log.description == f"Reversed adjustment #{adjustment_id}"
        assert db.session.get(StockAdjustment, adjustment_id) is None
        # The log outlives the adjustment it points at
        assert log.reference == EntityRef(EntityKind.STOCK_ADJUSTMENT, adjustment_id)
        assert resolve_reference(log.reference) is None

    def test_restores_old_stock_after_later_movements(self, admin, make_item):
        item = make_item("Paint", stock=10)
        first = inventory_service.create_adjustment(admin, item.id, -3, "adjustment")
        inventory_service.create_adjustment(admin, item.id, 5, "adjustment")

        log = inventory_service.reverse_adjustment(admin, first.id)

        assert db.session.get(Item, item.id).stock == 10
        assert (log.old_stock, log.new_stock) == (12, 10)
        assert log.quantity_change == 3

    def test_unknown_adjustment(self, admin, app):
        with pytest.raises(NotFoundError):
            inventory_service.reverse_adjustment(admin, 404)

    def test_listing(self, admin, make_item):
        item = make_item("Paint", stock=10)
        inventory_service.create_adjustment(admin, item.id, -1, "adjustment")
        inventory_service.create_adjustment(admin, item.id, -1, "damage")
        assert [a.reason for a in inventory_service.list_adjustments(item.id)] == ["damage", "adjustment"]
