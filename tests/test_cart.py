import pytest

from cart import COUPON_DISCOUNT, Cart


def line(pid, price=100.0, quantity=1):
    return {"id": pid, "name": f"Item {pid}", "price": price, "image": "", "quantity": quantity}


def test_add_merges_by_product_id():
    cart = Cart()
    cart.add_to_cart(line("a", quantity=1))
    cart.add_to_cart(line("a", quantity=2))
    cart.add_to_cart(line("b"))
    assert len(cart.items) == 2
    assert cart.get_item_quantity("a") == 3
    assert cart.total_items == 4


def test_update_quantity_clamps_and_removes_at_zero():
    cart = Cart([line("a", quantity=2), line("b")])
    cart.update_quantity("a", -5)
    assert cart.get_item_quantity("a") == 0
    assert [i.id for i in cart.items] == ["b"]
    cart.update_quantity("b", 4)
    assert cart.get_item_quantity("b") == 4


def test_totals_stay_consistent_over_mixed_operations():
    cart = Cart()
    ops = [
        ("add", "a", 2), ("add", "b", 1), ("update", "a", 5), ("add", "c", 3),
        ("remove", "b", 0), ("update", "c", 0), ("add", "a", 1), ("update", "missing", 7),
    ]
    for op, pid, qty in ops:
        if op == "add":
            cart.add_to_cart(line(pid, quantity=qty))
        elif op == "update":
            cart.update_quantity(pid, qty)
        else:
            cart.remove_from_cart(pid)
        assert cart.total_items == sum(i.quantity for i in cart.items)
        assert all(i.quantity > 0 for i in cart.items)
    assert cart.get_item_quantity("a") == 6
    assert cart.total_price == 600.0


def test_clear_cart():
    cart = Cart([line("a"), line("b")])
    cart.clear_cart()
    assert cart.items == []
    assert cart.total_items == 0


def test_coupon_applies_once():
    cart = Cart([line("a", price=300.0)])
    assert cart.apply_coupon(" 1ncemore ") is True
    assert cart.apply_coupon("1NCEMORE") is False
    assert cart.coupon_discount == COUPON_DISCOUNT == 20.0
    assert cart.final_total == 280.0


def test_unknown_coupon_is_rejected():
    cart = Cart([line("a")])
    assert cart.apply_coupon("FREESTUFF") is False
    assert cart.is_coupon_applied is False
    assert cart.final_total == 100.0


def test_final_total_never_negative():
    cart = Cart([line("a", price=5.0)])
    cart.apply_coupon("1NCEMORE")
    assert cart.final_total == 0.0
    assert Cart().final_total == 0.0


def test_remove_coupon():
    cart = Cart([line("a")])
    cart.apply_coupon("1NCEMORE")
    cart.remove_coupon()
    assert cart.coupon_discount == 0
    assert cart.apply_coupon("1NCEMORE") is True


@pytest.mark.parametrize("subtotal, shipping", [(500.00, 60.0), (500.01, 0.0), (120.0, 60.0), (900.0, 0.0)])
def test_shipping_threshold(subtotal, shipping):
    cart = Cart([line("a", price=subtotal)])
    assert cart.shipping_cost == shipping
    assert cart.grand_total == round(cart.final_total + shipping, 2)


def test_coupon_can_bring_order_under_free_shipping():
    cart = Cart([line("a", price=510.0)])
    assert cart.shipping_cost == 0.0
    cart.apply_coupon("1NCEMORE")
    assert cart.final_total == 490.0
    assert cart.shipping_cost == 60.0
    assert cart.summary()["grand_total"] == 550.0
