"""Unit tests for the local persistent cart."""

import json
import random
from pathlib import Path

import pytest

from cart_store import LocalCartStore
from schemas import Product


class TestCartOperations:
    """Tests for cart mutations and totals."""

    def test_add_twice_increments_quantity(self, cart: LocalCartStore, product: Product) -> None:
        cart.add_to_cart(product)
        cart.add_to_cart(product)

        assert len(cart.entries) == 1
        assert cart.entries[0].quantity == 2
        assert cart.get_total_items() == 2
        assert cart.get_total_price() == pytest.approx(2 * product.price)

    def test_add_keeps_product_fields(self, cart: LocalCartStore, other_product: Product) -> None:
        cart.add_to_cart(other_product)

        entry = cart.entries[0]
        assert entry.name == "Trail Jacket"
        assert entry.old_price == 150.0
        assert entry.quantity == 1

    def test_unavailable_product_is_still_added(self, cart: LocalCartStore) -> None:
        cart.add_to_cart(Product(id=9, name="Sold out", price=5.0, available=False))

        assert cart.is_in_cart(9)

    def test_numeric_and_string_ids_match(self, cart: LocalCartStore, product: Product) -> None:
        cart.add_to_cart(product)

        assert cart.is_in_cart(1)
        assert cart.is_in_cart("1")

    def test_remove_missing_product_is_noop(self, cart: LocalCartStore, product: Product) -> None:
        cart.add_to_cart(product)

        cart.remove_from_cart("does-not-exist")

        assert [e.key for e in cart.entries] == ["1"]
        assert cart.get_total_items() == 1

    def test_remove_existing_product(self, cart: LocalCartStore, product: Product, other_product: Product) -> None:
        cart.add_to_cart(product)
        cart.add_to_cart(other_product)

        cart.remove_from_cart(product.id)

        assert not cart.is_in_cart(product.id)
        assert cart.is_in_cart(other_product.id)

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_is_ignored(self, cart: LocalCartStore, product: Product, quantity: int) -> None:
        cart.add_to_cart(product)
        cart.add_to_cart(product)

        cart.update_quantity(product.id, quantity)

        assert cart.entries[0].quantity == 2

    def test_update_quantity(self, cart: LocalCartStore, product: Product) -> None:
        cart.add_to_cart(product)

        cart.update_quantity(product.id, 5)

        assert cart.get_total_items() == 5

    def test_update_quantity_unknown_product_is_noop(self, cart: LocalCartStore, product: Product) -> None:
        cart.update_quantity(product.id, 3)

        assert cart.entries == []

    def test_clear_cart(self, cart: LocalCartStore, product: Product, other_product: Product) -> None:
        cart.add_to_cart(product)
        cart.add_to_cart(other_product)

        cart.clear_cart()

        assert cart.get_total_items() == 0
        assert cart.get_total_price() == 0

    def test_total_price_mixed_entries(self, cart: LocalCartStore, product: Product, other_product: Product) -> None:
        cart.add_to_cart(product)
        cart.add_to_cart(other_product)
        cart.update_quantity(product.id, 3)

        assert cart.get_total_price() == pytest.approx(3 * 49.99 + 120.0)

    def test_random_operations_keep_one_entry_per_product(self, cart: LocalCartStore) -> None:
        products = [Product(id=i, name=f"P{i}", price=float(i)) for i in range(5)]
        rng = random.Random(7)

        for _ in range(300):
            target = rng.choice(products)
            op = rng.choice(["add", "remove", "update"])
            if op == "add":
                cart.add_to_cart(target)
            elif op == "remove":
                cart.remove_from_cart(target.id)
            else:
                cart.update_quantity(target.id, rng.randint(-2, 4))

            keys = [entry.key for entry in cart.entries]
            assert len(keys) == len(set(keys))


class TestCartPersistence:
    """Tests for durable storage of the cart."""

    def test_reload_restores_entries(self, cart_path: Path, product: Product, other_product: Product) -> None:
        cart = LocalCartStore(cart_path)
        cart.add_to_cart(product)
        cart.add_to_cart(product)
        cart.add_to_cart(other_product)

        reloaded = LocalCartStore(cart_path)

        before = {e.key: e.quantity for e in cart.entries}
        after = {e.key: e.quantity for e in reloaded.entries}
        assert after == before == {"1": 2, "sku-2": 1}
        assert reloaded.get_total_price() == cart.get_total_price()

    def test_every_mutation_is_written(self, cart: LocalCartStore, cart_path: Path, product: Product) -> None:
        cart.add_to_cart(product)
        assert json.loads(cart_path.read_text())[0]["quantity"] == 1

        cart.update_quantity(product.id, 4)
        assert json.loads(cart_path.read_text())[0]["quantity"] == 4

        cart.clear_cart()
        assert json.loads(cart_path.read_text()) == []

    def test_missing_file_is_empty_cart(self, tmp_path: Path) -> None:
        cart = LocalCartStore(tmp_path / "nested" / "cart.json")

        assert cart.entries == []
        assert cart.get_total_items() == 0

    @pytest.mark.parametrize("content", ["{not json", '{"id": 1}', '[{"name": "no id"}]'])
    def test_corrupt_file_is_empty_cart(self, cart_path: Path, content: str) -> None:
        cart_path.write_text(content)

        cart = LocalCartStore(cart_path)

        assert cart.entries == []

    def test_duplicate_ids_on_disk_are_collapsed(self, cart_path: Path) -> None:
        cart_path.write_text(
            json.dumps(
                [
                    {"id": 1, "name": "A", "price": 1.0, "quantity": 2},
                    {"id": 1, "name": "A", "price": 1.0, "quantity": 5},
                ]
            )
        )

        cart = LocalCartStore(cart_path)

        assert len(cart.entries) == 1
        assert cart.entries[0].quantity == 2

    def test_write_failure_keeps_memory_state(self, tmp_path: Path, product: Product) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        cart = LocalCartStore(blocker / "cart.json")

        cart.add_to_cart(product)

        assert cart.get_total_items() == 1
