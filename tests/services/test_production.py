"""
Production planning and consumption.

A bread recipe yields 10 un from 2000 g flour and 50 g salt.  Flour sits in
A-01 (600 g) and B-01 (800 g), salt in C-01 (100 g); B-01 is picked first.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from inventory_kernel.domain.commands import ProductionCommand, ReceiveCommand
from inventory_kernel.domain.values import CostingMode, MovementKind, StockScope
from inventory_kernel.exceptions import InsufficientStockAtScopeError, RecipeNotFoundError, ValidationError
from inventory_kernel.models import Movement
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_services.production_service import ProductionService


@pytest.fixture
def bakery(ledger, site, locations, make_product, make_recipe, set_pick_priority, test_actor_id):
    flour = make_product(sku="FLOUR", stock_unit_code="g", costing_mode=CostingMode.MANUAL)
    salt = make_product(sku="SALT", stock_unit_code="g", costing_mode=CostingMode.MANUAL)
    bread = make_product(sku="BREAD", stock_unit_code="un", costing_mode=CostingMode.MANUAL)
    make_recipe(bread, "10", [(flour, "2000"), (salt, "50")])

    set_pick_priority(locations["B-01"], 1)
    set_pick_priority(locations["A-01"], 2)

    for product, code, qty in ((flour, "A-01", "600"), (flour, "B-01", "800"), (salt, "C-01", "100")):
        ledger.receive(
            ReceiveCommand(
                product_id=product.id,
                site_id=site.id,
                actor_id=test_actor_id,
                quantity=Decimal(qty),
                location_id=locations[code].id,
            )
        )
    return {"flour": flour, "salt": salt, "bread": bread}


def _produce(bakery, site, actor_id, qty, **kwargs):
    return ProductionCommand(
        product_id=bakery["bread"].id,
        site_id=site.id,
        actor_id=actor_id,
        produced_qty=Decimal(qty),
        **kwargs,
    )


class TestProductionPlan:
    def test_plan_scales_and_orders(self, session, site, locations, bakery, test_actor_id):
        plan = ProductionService(session).plan(_produce(bakery, site, test_actor_id, "5"))

        assert plan.location_order[:2] == (locations["B-01"].id, locations["A-01"].id)
        by_ingredient = {i.ingredient_id: i for i in plan.ingredients}

        flour = by_ingredient[bakery["flour"].id]
        assert flour.required_qty == Decimal("1000")
        assert [(d.location_id, d.quantity) for d in flour.plan.draws] == [
            (locations["B-01"].id, Decimal("800")),
            (locations["A-01"].id, Decimal("200")),
        ]

        salt = by_ingredient[bakery["salt"].id]
        assert salt.required_qty == Decimal("25")
        assert [d.location_id for d in salt.plan.draws] == [locations["C-01"].id]
        assert plan.is_fully_allocated

    def test_plan_reports_shortfall(self, session, site, bakery, test_actor_id):
        plan = ProductionService(session).plan(_produce(bakery, site, test_actor_id, "10"))
        (short,) = plan.shortfalls
        assert short.ingredient_id == bakery["flour"].id
        assert short.missing_qty == Decimal("600")

    def test_plan_is_read_only(self, session, site, bakery, test_actor_id):
        before = StockSelector(session).movement_count(bakery["flour"].id)
        ProductionService(session).plan(_produce(bakery, site, test_actor_id, "5"))
        assert StockSelector(session).movement_count(bakery["flour"].id) == before

    def test_no_recipe(self, session, site, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(RecipeNotFoundError):
            ProductionService(session).plan(
                ProductionCommand(
                    product_id=product.id,
                    site_id=site.id,
                    actor_id=test_actor_id,
                    produced_qty=Decimal("1"),
                )
            )


class TestConsumeForProduction:
    def test_consumes_by_priority_and_receives_output(
        self, session, ledger, site, locations, bakery, test_actor_id
    ):
        batch_id = uuid4()
        result = ledger.consume_for_production(
            _produce(bakery, site, test_actor_id, "5", batch_id=batch_id)
        )

        assert result.succeeded
        assert result.batch_id == batch_id
        assert len(result.movement_ids) == 4

        movements = [session.get(Movement, mid) for mid in result.movement_ids]
        assert all(m.related_batch_id == batch_id for m in movements)
        consumption = [m for m in movements if m.kind == MovementKind.CONSUMPTION.value]
        assert sorted(m.quantity for m in consumption) == [Decimal("-800"), Decimal("-200"), Decimal("-25")]
        output = [m for m in movements if m.kind == MovementKind.RECEIPT.value]
        assert len(output) == 1
        assert output[0].quantity == Decimal("5")
        assert output[0].note == "Production output"

        stock = StockSelector(session)
        assert stock.location_qty(bakery["flour"].id, locations["B-01"].id) == Decimal("0")
        assert stock.location_qty(bakery["flour"].id, locations["A-01"].id) == Decimal("400")
        assert stock.site_qty(bakery["flour"].id, site.id) == Decimal("400")
        assert stock.site_qty(bakery["salt"].id, site.id) == Decimal("75")
        assert result.snapshot_qty(StockScope.SITE, site.id, bakery["bread"].id) == Decimal("5")

    def test_output_location(self, session, ledger, site, locations, bakery, test_actor_id):
        loc = locations["C-01"]
        ledger.consume_for_production(
            _produce(bakery, site, test_actor_id, "2", output_location_id=loc.id)
        )
        assert StockSelector(session).location_qty(bakery["bread"].id, loc.id) == Decimal("2")

    def test_batch_id_generated(self, ledger, site, bakery, test_actor_id):
        result = ledger.consume_for_production(_produce(bakery, site, test_actor_id, "1"))
        assert result.batch_id is not None

    def test_shortfall_refused(self, session, ledger, site, bakery, test_actor_id):
        with pytest.raises(InsufficientStockAtScopeError) as exc:
            ledger.consume_for_production(_produce(bakery, site, test_actor_id, "10"))
        assert exc.value.product_id == str(bakery["flour"].id)

        bread_movements = session.execute(
            select(Movement).where(Movement.product_id == bakery["bread"].id)
        ).scalars().all()
        assert bread_movements == []
        assert StockSelector(session).site_qty(bakery["flour"].id, site.id) == Decimal("1400")

    def test_shortfall_accepted(self, session, ledger, site, bakery, test_actor_id, captured_logs):
        result = ledger.consume_for_production(
            _produce(bakery, site, test_actor_id, "10", allow_shortfall=True)
        )

        assert result.succeeded
        stock = StockSelector(session)
        assert stock.site_qty(bakery["flour"].id, site.id) == Decimal("0")
        assert stock.site_qty(bakery["bread"].id, site.id) == Decimal("10")
        warnings = [r for r in captured_logs() if r["message"] == "production_shortfall_accepted"]
        assert warnings[0]["missing_qty"] == "600.000000"

    def test_output_receipt_leaves_cost_alone(self, session, ledger, site, bakery, test_actor_id):
        result = ledger.consume_for_production(_produce(bakery, site, test_actor_id, "1"))
        assert result.cost_update is None

    def test_supplied_plan_used(self, session, ledger, site, bakery, test_actor_id):
        command = _produce(bakery, site, test_actor_id, "5")
        plan = ProductionService(session).plan(command)
        result = ledger.consume_for_production(command, plan=plan)
        assert result.succeeded
        assert StockSelector(session).site_qty(bakery["flour"].id, site.id) == Decimal("400")

    def test_supplied_plan_must_match_command(self, session, ledger, site, bakery, make_product, test_actor_id):
        plan = ProductionService(session).plan(_produce(bakery, site, test_actor_id, "2"))

        with pytest.raises(ValidationError) as exc:
            ledger.consume_for_production(_produce(bakery, site, test_actor_id, "5"), plan=plan)
        assert exc.value.field_errors == [
            {"field": "plan.produced_qty", "reason": "does not match the command"}
        ]

        other = make_product(sku="ROLLS", costing_mode=CostingMode.MANUAL)
        with pytest.raises(ValidationError) as exc:
            ledger.consume_for_production(
                ProductionCommand(
                    product_id=other.id,
                    site_id=site.id,
                    actor_id=test_actor_id,
                    produced_qty=Decimal("2"),
                ),
                plan=plan,
            )
        assert [e["field"] for e in exc.value.field_errors] == ["plan.product_id"]

        assert StockSelector(session).movement_count(bakery["bread"].id) == 0
        assert StockSelector(session).site_qty(bakery["flour"].id, site.id) == Decimal("1400")
