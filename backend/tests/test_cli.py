from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Item, Location


def test_seed_demo_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "seed-demo"])
    assert result.exit_code == 0, result.output
    assert db.session.query(Location).count() == 2
    espresso = db.session.query(Item).filter_by(sku="DEMO-001").one()
    assert espresso.quantity == 70

    result = runner.invoke(args=["system", "seed-demo"])
    assert result.exit_code == 0
    assert db.session.query(Item).count() == 3


def test_ledger_reconcile_and_low_stock(app, db_session, store, make_item):
    item = make_item(stock={store.id: 2})
    row = db.session.get(Item, item.id)
    row.quantity = 9
    db.session.commit()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "reconcile", "--dry-run"])
    assert f"item {item.id}: would change 9 -> 2" in result.output
    assert db.session.get(Item, item.id).quantity == 9

    result = runner.invoke(args=["ledger", "reconcile", "--item-id", str(item.id)])
    assert "changed 9 -> 2" in result.output
    assert db.session.get(Item, item.id).quantity == 2

    result = runner.invoke(args=["ledger", "reconcile"])
    assert "No drift found" in result.output

    result = runner.invoke(args=["ledger", "low-stock"])
    assert f"item {item.id}" in result.output


def test_init_db_migrates_to_the_model_schema(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'migrated.sqlite3'}",
    })
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init-db"])
    assert result.exit_code == 0, result.output
    result = runner.invoke(args=["system", "init-db"])
    assert result.exit_code == 0, result.output

    with app.app_context():
        with db.engine.connect() as conn:
            context = MigrationContext.configure(conn)
            assert context.get_current_revision() == "0001_initial_ledger_schema"
            assert compare_metadata(context, db.metadata) == []
        db.engine.dispose()
