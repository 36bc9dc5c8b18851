import pytest

from pricing import (
    calculate_coupon_discount,
    compute_totals,
    get_shipping_price,
    money,
    size_rank,
)


def test_pix_discount_applies_after_shipping():
    totals = compute_totals(100.0, "pac", "pix")
    assert totals.shipping_price == 15.9
    assert totals.payment_discount == pytest.approx(5.795)
    assert totals.total == pytest.approx(110.105)


def test_card_payment_has_no_payment_discount():
    totals = compute_totals(100.0, "sedex", "credit_card", 10.0)
    assert totals.payment_discount == 0
    assert totals.total == pytest.approx(119.9)


def test_card_order_with_pac_and_coupon():
    assert compute_totals(100.0, "pac", "credit_card", 10.0).total == pytest.approx(105.9)


def test_free_shipping_order_totals_subtotal():
    totals = compute_totals(200.0, "free", "credit_card", 0.0)
    assert totals.shipping_price == 0
    assert totals.total == pytest.approx(200.0)


def test_coupon_comes_off_before_pix_discount():
    totals = compute_totals(100.0, "pac", "pix", 10.0)
    assert totals.payment_discount == pytest.approx(105.9 * 0.05)
    assert totals.total == pytest.approx(105.9 * 0.95)


@pytest.mark.parametrize("subtotal,expected", [(150.0, 0.0), (200.0, 0.0), (149.99, 15.9)])
def test_free_shipping_threshold(subtotal, expected):
    assert get_shipping_price("free", subtotal) == expected


def test_unknown_shipping_method_falls_back_to_pac():
    assert get_shipping_price("carrier-pigeon", 10.0) == 15.9


def test_total_never_negative_and_no_negative_payment_discount():
    totals = compute_totals(10.0, "pac", "pix", 1000.0)
    assert totals.total == 0
    assert totals.payment_discount == 0


def test_same_inputs_give_same_totals():
    assert compute_totals(59.9, "pac", "pix", 8.99) == compute_totals(59.9, "pac", "pix", 8.99)


def test_fixed_coupon_capped_at_subtotal():
    assert calculate_coupon_discount("fixed", 100.0, 50.0) == 50.0
    assert calculate_coupon_discount("fixed", 20.0, 50.0) == 20.0


def test_percentage_coupon_rounds_half_up_to_cents():
    assert calculate_coupon_discount("percentage", 15, 59.90) == 8.99


def test_rounded_snapshot_matches_checkout_example():
    totals = compute_totals(59.90, "pac", "pix").rounded()
    assert totals.subtotal == 59.90
    assert totals.shipping_price == 15.90
    assert totals.payment_discount == 3.79
    assert totals.total_discount == 3.79
    assert totals.total == 72.01


def test_rounded_total_is_consistent_with_parts():
    totals = compute_totals(133.33, "sedex", "pix", 13.33).rounded()
    assert totals.total == money(totals.subtotal + totals.shipping_price - totals.total_discount)


def test_sizes_sort_in_store_order_with_unknown_last():
    assert sorted(["GG", "XL", "RN", "M", "P"], key=size_rank) == ["RN", "P", "M", "GG", "XL"]
