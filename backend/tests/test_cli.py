import json

import pytest

from branch_pos.extensions import branch_router
from branch_pos.services import sales_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_list_and_create(runner, branch):
    result = runner.invoke(args=["branches", "create", "--code", "B009", "--name", "Harbour", "--tax-rate-bps", "500"])
    assert result.exit_code == 0, result.output
    assert "Created branch" in result.output

    result = runner.invoke(args=["branches", "list"])
    assert result.exit_code == 0
    assert "B001" in result.output
    assert "Harbour" in result.output


def test_create_duplicate_code_fails(runner, branch):
    result = runner.invoke(args=["branches", "create", "--code", "B001", "--name", "Again"])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_ping_and_invalidate(runner, branch):
    result = runner.invoke(args=["branches", "ping", str(branch.id)])
    assert result.exit_code == 0, result.output
    assert "OK (sqlite)" in result.output
    assert branch.id in branch_router.cached_branch_ids()

    result = runner.invoke(args=["branches", "invalidate", str(branch.id)])
    assert "cached handle dropped" in result.output

    result = runner.invoke(args=["branches", "invalidate", str(branch.id)])
    assert "nothing cached" in result.output


def test_ping_unknown_branch(runner, app):
    result = runner.invoke(args=["branches", "ping", "404"])
    assert result.exit_code != 0
    assert "Branch not found" in result.output


def test_stats_prints_json(runner, branch, make_product):
    product_id = make_product(stock=10)
    sales_service.create_sale(
        branch.id,
        {
            "invoice_type": "standard",
            "payment_method": "cash",
            "line_items": [{"product_id": product_id, "quantity": 2, "unit_price_cents": 1000}],
        },
        1,
    )

    result = runner.invoke(args=["branches", "stats", str(branch.id), "--from", "2000-01-01", "--to", "2999-12-31"])
    assert result.exit_code == 0, result.output
    stats = json.loads(result.output)
    assert stats["total_transactions"] == 1
    assert stats["total_sales_cents"] == 2300


def test_stats_rejects_bad_range(runner, branch):
    result = runner.invoke(args=["branches", "stats", str(branch.id), "--from", "2026-02-01", "--to", "2026-01-01"])
    assert result.exit_code != 0
    assert "Invalid date range" in result.output


def test_discrepancies(runner, branch, make_product):
    result = runner.invoke(args=["branches", "discrepancies", str(branch.id)])
    assert "No inventory discrepancies." in result.output

    make_product(stock=-3, name="Oat Milk")
    result = runner.invoke(args=["branches", "discrepancies", str(branch.id)])
    assert "Oat Milk" in result.output
    assert "-3" in result.output
