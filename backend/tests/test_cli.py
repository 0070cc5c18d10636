from sareeflow.extensions import db
from sareeflow.models import Product


def test_seed_is_rerunnable(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["shop", "seed"])
    assert first.exit_code == 0, first.output
    count = db.session.query(Product).count()
    assert count > 0

    second = runner.invoke(args=["shop", "seed"])
    assert second.exit_code == 0
    assert "0 products" in second.output
    assert db.session.query(Product).count() == count


def test_inventory_commands(app, make_product):
    product = make_product(stock=2, min_stock_level=4)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["inventory", "adjust", str(product.id), "5", "--direction", "subtract"])
    assert result.exit_code == 0, result.output
    assert "clamped" in result.output

    result = runner.invoke(args=["inventory", "low-stock"])
    assert product.sku in result.output
    assert "critical" in result.output

    result = runner.invoke(args=["inventory", "reconcile"])
    assert result.exit_code == 0
    assert "Stock matches the ledger" in result.output

    result = runner.invoke(args=["inventory", "adjust", "9999", "1"])
    assert result.exit_code != 0
