import pytest

from branch_pos.errors import NotFoundError, NotFoundKind
from branch_pos.models import Product
from branch_pos.services import inventory_service


@pytest.mark.parametrize("start,delta,expected,flagged", [
    (10, -3, 7, False),
    (1, -1, 0, False),
    (1, -2, -1, True),
    (-1, 1, 0, False),
    (-5, 2, -3, True),
])
def test_apply_delta_recomputes_flag(make_product, branch_session, fetch, start, delta, expected, flagged):
    product_id = make_product(stock=start)

    with branch_session() as session:
        assert inventory_service.apply_delta(session, product_id, delta) == expected

    product = fetch(Product, product_id)
    assert product.stock_level == expected
    assert product.has_inventory_discrepancy is flagged


def test_flag_clears_when_stock_recovers(make_product, branch_session, fetch):
    product_id = make_product(stock=0)

    with branch_session() as session:
        inventory_service.apply_delta(session, product_id, -2)
    assert fetch(Product, product_id).has_inventory_discrepancy is True

    with branch_session() as session:
        inventory_service.apply_delta(session, product_id, 2)
    assert fetch(Product, product_id).has_inventory_discrepancy is False


def test_apply_delta_unknown_product(branch_session):
    with pytest.raises(NotFoundError) as excinfo:
        with branch_session() as session:
            inventory_service.apply_delta(session, 999, -1)
    assert excinfo.value.kind == NotFoundKind.PRODUCT


def test_list_discrepant_products(branch, make_product, branch_session):
    ok_id = make_product(stock=5)
    low_id = make_product(stock=1)
    lower_id = make_product(stock=0)

    with branch_session() as session:
        inventory_service.apply_delta(session, low_id, -2)
        inventory_service.apply_delta(session, lower_id, -4)

    flagged = inventory_service.list_discrepant_products(branch.id)
    assert [p["id"] for p in flagged] == [lower_id, low_id]
    assert all(p["has_inventory_discrepancy"] for p in flagged)
    assert ok_id not in [p["id"] for p in flagged]


def test_get_stock_level(make_product, branch_session):
    product_id = make_product(stock=4)

    with branch_session() as session:
        assert inventory_service.get_stock_level(session, product_id) == 4
        with pytest.raises(NotFoundError):
            inventory_service.get_stock_level(session, 999)
