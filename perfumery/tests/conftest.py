"""Pytest configuration and fixtures for ledger tests."""

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from perfumery.models.base import Base
from perfumery.utils.config import reset_config


@pytest.fixture(autouse=True)
def fresh_config():
    """Rebuild the configuration singleton around every test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    import perfumery.models  # noqa: F401

    engine = create_engine("sqlite:///:memory:", echo=False)

    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import perfumery.services.database as db_module

    original_get_session_factory = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)

    db_module.get_session_factory = original_get_session_factory


def create_catalog():
    """Create the shared test catalog and return its product ids.

    - ethanol: stocked in ml, 0.02 per ml
    - oud: aroma oil stocked in g, density 0.9 g/ml, 2.50 per g
    - musk: fixative stocked in g, no declared density, 1.00 per g
    - bottle / cap: packaging stocked in pieces
    """
    from perfumery.services import product_catalog_service as catalog

    ethanol = catalog.create_product("ETH-96", "Ethanol 96%", "ml", unit_cost="0.02")
    oud = catalog.create_product("OIL-OUD", "Oud oil", "g", density="0.9", unit_cost="2.5")
    musk = catalog.create_product("FIX-MUSK", "Musk fixative", "g", unit_cost="1.0")
    bottle = catalog.create_product("BTL-50", "Bottle 50 ml", "pcs", unit_cost="1.2")
    cap = catalog.create_product("CAP-GLD", "Gold cap", "pcs", unit_cost="0.3")

    return SimpleNamespace(
        ethanol=ethanol["id"],
        oud=oud["id"],
        musk=musk["id"],
        bottle=bottle["id"],
        cap=cap["id"],
    )


@pytest.fixture(scope="function")
def products(test_db):
    """Provide a small catalog: two formula materials and two packaging items."""
    return create_catalog()


@pytest.fixture
def make_catalog():
    """Catalog builder for tests that set up more than one database."""
    return create_catalog


@pytest.fixture(scope="function")
def file_db(tmp_path, monkeypatch):
    """Provide a file-backed database for tests that use several threads.

    Unlike test_db, every session_scope() gets its own session and
    connection, so threads contend through SQLite the way separate
    callers do.
    """
    import perfumery.models  # noqa: F401
    import perfumery.services.database as db_module

    engine = db_module.create_database_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(db_module, "get_session_factory", lambda: session_factory)

    yield session_factory

    engine.dispose()


@pytest.fixture(scope="function")
def file_products(file_db):
    """The shared test catalog in the file-backed database."""
    return create_catalog()


@pytest.fixture(scope="function")
def kit(test_db, products):
    """A gift set billed as one item: 2 bottles and 1 cap per set."""
    from perfumery.services import product_catalog_service as catalog

    result = catalog.create_product(
        "KIT-GIFT",
        "Gift set",
        "pcs",
        unit_cost="5.0",
        components=[(products.bottle, 2), (products.cap, 1)],
    )
    return result["id"]
