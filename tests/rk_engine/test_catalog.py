"""Consistency tests for the built-in Butcher tableaus."""

from __future__ import annotations

import numpy as np
import pytest

from rk_engine import catalog
from rk_engine.errors import TableauError
from rk_engine.tableau import TableauClass

ALL_NAMES = catalog.available_tableaus()

EXPECTED_CLASSES = {
    "ExplicitEuler": TableauClass.ERK,
    "RK4": TableauClass.ERK,
    "Fehlberg45": TableauClass.ERK,
    "ImplicitEuler": TableauClass.IRK,
    "GaussLegendre6": TableauClass.IRK,
    "RadauIIA5": TableauClass.IRK,
    "LobattoIIIA2": TableauClass.DIRK,
    "SSPIRK33": TableauClass.DIRK,
}


def test_catalog_lists_every_method() -> None:
    assert len(ALL_NAMES) == 25
    assert len(set(ALL_NAMES)) == len(ALL_NAMES)


@pytest.mark.parametrize("name", ALL_NAMES)
def test_tableau_consistency(name: str) -> None:
    """Row sums equal c, the weights sum to one, and the orders check out."""
    tab = catalog.get_tableau(name)

    assert tab.name == name
    np.testing.assert_allclose(tab.A.sum(axis=1), tab.c, atol=1e-12)
    assert tab.b.sum() == pytest.approx(1.0, abs=1e-12)
    if tab.b_embedded is not None:
        assert tab.b_embedded.sum() == pytest.approx(1.0, abs=1e-12)
    assert tab.check(), f"{name}: declared order {tab.order} does not verify"


@pytest.mark.parametrize(("name", "scheme"), sorted(EXPECTED_CLASSES.items()))
def test_tableau_scheme_class(name: str, scheme: TableauClass) -> None:
    assert catalog.get_tableau(name).scheme is scheme


def test_embedded_pairs() -> None:
    embedded = {name for name in ALL_NAMES if catalog.get_tableau(name).is_embedded}
    assert embedded == {"Fehlberg45", "HeunEuler21"}

    fehlberg = catalog.fehlberg45()
    assert (fehlberg.order, fehlberg.embedded_order) == (4, 5)


@pytest.mark.parametrize("name", ["rk4", "RK4", "  Rk4 ", "radauiia5", "RADAUIIA5"])
def test_get_tableau_is_case_insensitive(name: str) -> None:
    assert catalog.get_tableau(name).name in {"RK4", "RadauIIA5"}


def test_get_tableau_returns_fresh_records() -> None:
    assert catalog.get_tableau("RK4") is not catalog.get_tableau("RK4")


def test_get_tableau_unknown_name() -> None:
    with pytest.raises(TableauError, match="Unknown Butcher tableau 'RK7'") as excinfo:
        catalog.get_tableau("RK7")
    assert "RadauIIA5" in str(excinfo.value)
