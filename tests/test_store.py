from __future__ import annotations

from datetime import date

import pytest

from conftest import add_application, demat_for, make_company, pan_for, seed_applications
from errors import ConstraintViolation, NotFoundError, ValidationError
from store import ACTIVE_COMPANY_KEY, Store


def test_create_company_round_trips_fields(store: Store) -> None:
    company = make_company(store, total_shares=500, price=42.5, name="Round Trip Ltd")

    loaded = store.get_company(company.id)
    assert loaded is not None
    assert loaded.to_dict() == {
        "id": company.id,
        "name": "Round Trip Ltd",
        "total_shares": 500,
        "price": 42.5,
        "start_date": "2026-01-05",
        "end_date": "2026-01-08",
    }


def test_require_company_raises_for_missing_id(store: Store) -> None:
    with pytest.raises(NotFoundError):
        store.require_company(99)


def test_active_company_follows_pointer_written_on_create(store: Store) -> None:
    assert store.get_active_company() is None
    first = make_company(store, name="First Ltd")
    second = make_company(store, name="Second Ltd")
    assert store.get_active_company().id == second.id

    store.set_active_company(first.id)
    assert store.get_active_company().id == first.id


def test_active_company_falls_back_to_newest_when_pointer_is_stale(store: Store) -> None:
    make_company(store, name="First Ltd")
    second = make_company(store, name="Second Ltd")
    with store.transaction() as session:
        store._put_setting(session, ACTIVE_COMPANY_KEY, 12345)

    assert store.get_active_company().id == second.id


def test_active_company_pointer_is_hidden_from_settings(store: Store) -> None:
    first = make_company(store, name="First Ltd")
    second = make_company(store, name="Second Ltd")

    settings = store.get_settings()
    assert all("activeCompanyId" not in fields for fields in settings.values())

    # a system.activeCompanyId field is an ordinary setting, not the pointer
    store.update_settings("system", {"activeCompanyId": first.id})
    assert store.get_active_company().id == second.id

    with pytest.raises(ValidationError):
        store.update_settings(ACTIVE_COMPANY_KEY, first.id)
    assert store.get_active_company().id == second.id


def test_set_active_company_rejects_unknown_company(store: Store) -> None:
    with pytest.raises(NotFoundError):
        store.set_active_company(7)


def test_duplicate_pan_violates_unique_constraint(store: Store) -> None:
    company = make_company(store)
    add_application(store, company, 10, 1)

    with pytest.raises(ConstraintViolation):
        with store.transaction() as session:
            store.add_applicant(session, "Copy", pan_for(1), "IN00000000000099X")

    assert store.get_applicant_by_demat("IN00000000000099X") is None


def test_duplicate_demat_violates_unique_constraint(store: Store) -> None:
    company = make_company(store)
    add_application(store, company, 10, 1)

    with pytest.raises(ConstraintViolation):
        with store.transaction() as session:
            store.add_applicant(session, "Copy", "QWERT1234Y", demat_for(1))


def test_application_requires_existing_company(store: Store) -> None:
    with pytest.raises(ConstraintViolation):
        with store.transaction() as session:
            applicant = store.add_applicant(session, "Orphan", pan_for(1), demat_for(1))
            store.add_application(session, applicant.id, 999, 5, 50.0)

    # the applicant insert was rolled back with the failed application
    assert store.get_applicant_by_pan(pan_for(1)) is None


def test_second_allotment_for_same_application_is_rejected(store: Store) -> None:
    company = make_company(store)
    (app,) = seed_applications(store, company, [10])
    with store.transaction() as session:
        store.add_allotment(session, app.id, 10)

    with pytest.raises(ConstraintViolation):
        with store.transaction() as session:
            store.add_allotment(session, app.id, 5)


def test_add_allotment_rejects_negative_shares(store: Store) -> None:
    company = make_company(store)
    (app,) = seed_applications(store, company, [10])
    with pytest.raises(ValidationError):
        with store.transaction() as session:
            store.add_allotment(session, app.id, -1)


def test_duplicate_refund_insert_raises_constraint_violation(store: Store) -> None:
    company = make_company(store, total_shares=5)
    (app,) = seed_applications(store, company, [10])
    with store.transaction() as session:
        allotment = store.add_allotment(session, app.id, 5)
    store.create_refund(allotment.id, 50.0)

    with pytest.raises(ConstraintViolation):
        store.create_refund(allotment.id, 50.0)

    assert len(store.get_refunds(company.id)) == 1


def test_clear_allotments_removes_dependent_refunds(store: Store) -> None:
    company = make_company(store, total_shares=5)
    apps = seed_applications(store, company, [10, 10])
    with store.transaction() as session:
        for app in apps:
            allotment = store.add_allotment(session, app.id, 2)
            store.add_refund(session, allotment.id, 80.0)

    with store.transaction() as session:
        removed = store.clear_allotments(session, company.id)

    assert removed == 2
    assert store.get_allotments(company.id) == []
    assert store.get_refunds(company.id) == []


def test_application_rows_join_optional_allotment_and_refund(store: Store) -> None:
    company = make_company(store, total_shares=5, price=10.0)
    first, second = seed_applications(store, company, [10, 4])
    with store.transaction() as session:
        allotment = store.add_allotment(session, first.id, 5)
        store.add_refund(session, allotment.id, 50.0)

    rows = store.application_rows(company.id)

    assert [r["id"] for r in rows] == [second.id, first.id]
    newest, oldest = rows
    assert newest["allotment_id"] is None and newest["refund_amount"] is None
    assert oldest["shares_alloted"] == 5
    assert oldest["refund_amount"] == 50.0
    assert oldest["pan"] == pan_for(1)
    assert oldest["company_name"] == company.name


def test_settings_merge_stored_values_over_defaults(store: Store) -> None:
    store.update_settings("company", {"companyName": "Desk Co", "defaultIpoPrice": 250})
    store.update_settings("system", {"defaultAllotmentMode": "lottery"})
    store.update_settings("unknown", {"whatever": 1})

    settings = store.get_settings()

    assert settings["company"]["companyName"] == "Desk Co"
    assert settings["company"]["defaultIpoPrice"] == 250
    assert settings["company"]["defaultIpoShares"] == 100000
    assert settings["system"]["defaultAllotmentMode"] == "lottery"
    assert settings["security"]["sessionTimeout"] == 60
    assert "unknown" not in settings


def test_reset_all_empties_every_table(store: Store) -> None:
    company = make_company(store, total_shares=5)
    (app,) = seed_applications(store, company, [10])
    with store.transaction() as session:
        allotment = store.add_allotment(session, app.id, 5)
        store.add_refund(session, allotment.id, 50.0)
    store.update_settings("company", {"companyName": "Desk Co"})

    store.reset_all()

    assert store.get_companies() == []
    assert store.get_applications() == []
    assert store.get_allotments() == []
    assert store.get_refunds() == []
    assert store.get_active_company() is None
    assert store.get_settings()["company"]["companyName"] == ""


def test_ids_are_not_reused_after_reset(store: Store) -> None:
    first = store.create_company("One", 10, 1.0, date(2026, 1, 1), date(2026, 1, 2))
    store.reset_all()
    second = store.create_company("Two", 10, 1.0, date(2026, 1, 1), date(2026, 1, 2))
    assert second.id > first.id
