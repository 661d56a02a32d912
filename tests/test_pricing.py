import pytest

from pricing import calculate_totals, clamp_quantity, find_duplicate_lines, line_total, with_line_totals
from schemas import QuoteLineRequest


LINES = [
    {"name": "Banner", "quantity": 2, "unit_price": 1000.0},
    {"name": "Poster", "quantity": 3, "unit_price": 500.0},
    {"name": "Sticker", "quantity": 7, "unit_price": None},
]


class TestCalculateTotals:
    def test_subtotal_is_exact_sum(self):
        totals = calculate_totals(LINES)
        assert totals.subtotal == 3500.0
        assert totals.final_amount == 3500.0

    def test_discount_and_delivery_fee(self):
        totals = calculate_totals(LINES, discount=300, delivery_fee=200)
        assert totals.subtotal == 3500.0
        assert totals.final_amount == 3400.0

    @pytest.mark.parametrize("discount", [3500, 3501, 10 ** 9])
    def test_final_amount_never_negative(self, discount):
        assert calculate_totals(LINES, discount=discount).final_amount == 0.0

    def test_order_items_use_price_snapshot(self):
        items = [{"title": "Mug", "price": 1200.0, "quantity": 2}]
        assert calculate_totals(items).subtotal == 2400.0

    def test_empty(self):
        assert calculate_totals([], delivery_fee=150) == (0.0, 150.0)


def test_line_total():
    assert line_total(LINES[0]) == 2000.0
    assert line_total(LINES[2]) is None


def test_with_line_totals_does_not_mutate():
    lines = [dict(line) for line in LINES]
    out = with_line_totals(lines)
    assert [line["total_price"] for line in out] == [2000.0, 1500.0, None]
    assert "total_price" not in lines[0]


class TestClampQuantity:
    def test_within_stock(self):
        assert clamp_quantity(3, 10, "Mug") == (3, None)

    def test_untracked_product(self):
        assert clamp_quantity(300, None, "Mug") == (300, None)

    def test_clamped(self):
        quantity, warning = clamp_quantity(12, 5, "Mug")
        assert quantity == 5
        assert "Mug" in warning and "12" in warning

    def test_negative_stock_clamps_to_zero(self):
        assert clamp_quantity(2, -1, "Mug")[0] == 0


class TestFindDuplicateLines:
    def test_ids_and_custom_names(self):
        lines = [
            {"product_id": "A", "name": "Widget"},
            {"product_id": "A", "name": "Widget again"},
            {"product_id": None, "name": "Mug"},
            {"product_id": None, "name": "mug "},
        ]
        assert find_duplicate_lines(lines) == {1, 3}

    def test_custom_name_does_not_clash_with_catalog_line(self):
        lines = [{"product_id": "A", "name": "Mug"}, {"product_id": None, "name": "Mug"}]
        assert find_duplicate_lines(lines) == set()

    def test_accepts_request_models(self):
        lines = [
            QuoteLineRequest(name="Flyer", quantity=1),
            QuoteLineRequest(name="  FLYER", quantity=4),
        ]
        assert find_duplicate_lines(lines) == {1}
