from __future__ import annotations

import json

import pytest

import allocation
import reports
from conftest import add_application, make_company, seed_applications
from errors import NotFoundError
from store import Store


@pytest.mark.parametrize(
    "has_allotment,has_refund,expected",
    [
        (False, False, reports.STATUS_PENDING),
        (True, False, reports.STATUS_ALLOTTED),
        (True, True, reports.STATUS_PROCESSED),
    ],
)
def test_derive_status(has_allotment: bool, has_refund: bool, expected: str) -> None:
    assert reports.derive_status(has_allotment, has_refund) == expected


def test_dashboard_summary_is_none_without_company(store: Store) -> None:
    assert reports.dashboard_summary(store) is None


def test_dashboard_summary_unknown_company_raises(store: Store) -> None:
    with pytest.raises(NotFoundError):
        reports.dashboard_summary(store, 42)


def test_dashboard_summary_empty_company(store: Store) -> None:
    make_company(store, total_shares=1000)
    summary = reports.dashboard_summary(store)
    assert summary["total_applications"] == 0
    assert summary["total_shares_req"] == 0
    assert summary["total_amount"] == 0.0
    assert summary["total_refunds"] == 0.0
    assert summary["oversubscription_ratio"] == 0


def test_dashboard_summary_zero_share_pool_has_zero_ratio(store: Store) -> None:
    company = make_company(store, total_shares=0, price=10.0)
    seed_applications(store, company, [10, 20])

    summary = reports.dashboard_summary(store, company.id)

    assert summary["total_applications"] == 2
    assert summary["total_shares_req"] == 30
    assert summary["oversubscription_ratio"] == 0


def test_dashboard_summary_totals_after_refunds(store: Store) -> None:
    company = make_company(store, total_shares=100, price=10.0)
    seed_applications(store, company, [100, 100, 50])
    allocation.run_allotment(store, company.id)
    allocation.run_refunds(store, company.id)

    summary = reports.dashboard_summary(store, company.id)

    assert summary["company"]["id"] == company.id
    assert summary["total_applications"] == 3
    assert summary["total_shares_req"] == 250
    assert summary["total_amount"] == 2500.0
    # allotments 40/40/20 -> refunds 600 + 600 + 300
    assert summary["total_refunds"] == 1500.0
    assert summary["oversubscription_ratio"] == pytest.approx(2.5)


def test_dashboard_summary_ignores_other_companies(store: Store) -> None:
    old = make_company(store, total_shares=10, name="Old Ltd")
    seed_applications(store, old, [30])
    make_company(store, total_shares=10, name="New Ltd")

    summary = reports.dashboard_summary(store)

    assert summary["company"]["name"] == "New Ltd"
    assert summary["total_applications"] == 0


def test_allotment_results_status_moves_through_workflow(store: Store) -> None:
    company = make_company(store, total_shares=150, price=10.0)
    seed_applications(store, company, [100, 100])

    assert set(reports.allotment_results(store)["status"]) == {reports.STATUS_PENDING}

    allocation.run_allotment(store, company.id)
    assert set(reports.allotment_results(store)["status"]) == {reports.STATUS_ALLOTTED}

    allocation.run_refunds(store, company.id)
    assert set(reports.allotment_results(store)["status"]) == {reports.STATUS_PROCESSED}


def test_allotment_results_mixed_statuses(store: Store) -> None:
    company = make_company(store, total_shares=10, price=10.0)
    first = add_application(store, company, 10, 1)
    second = add_application(store, company, 10, 2)
    with store.transaction() as session:
        full = store.add_allotment(session, first.id, 10)
    allocation.run_refunds(store, company.id)
    third = add_application(store, company, 5, 3)

    df = reports.allotment_results(store, company.id).set_index("id")

    assert full.shares_alloted == 10
    assert df.loc[first.id, "status"] == reports.STATUS_ALLOTTED
    assert df.loc[second.id, "status"] == reports.STATUS_PENDING
    assert df.loc[third.id, "status"] == reports.STATUS_PENDING


def test_export_allotments_report_summary(store: Store) -> None:
    company = make_company(store, total_shares=100, price=10.0)
    seed_applications(store, company, [100, 100])
    allocation.run_allotment(store, company.id)
    allocation.run_refunds(store, company.id)

    report = reports.export_report(store, "allotments")

    assert report["reportType"] == "Allotment Report"
    assert report["summary"] == {"totalAllotted": 100, "totalRequested": 200, "totalRefunds": 1000.0}
    assert len(report["allotments"]) == 2
    assert {row["status"] for row in report["allotments"]} == {reports.STATUS_PROCESSED}
    json.dumps(report)


def test_export_refunds_report_lists_only_refunded_rows(store: Store) -> None:
    company = make_company(store, total_shares=10, price=10.0)
    first = add_application(store, company, 20, 1)
    second = add_application(store, company, 10, 2)
    with store.transaction() as session:
        store.add_allotment(session, first.id, 10)
        store.add_allotment(session, second.id, 10)
    allocation.run_refunds(store, company.id)

    report = reports.export_report(store, "refunds")

    assert [row["id"] for row in report["refunds"]] == [first.id]
    assert report["totalRefundAmount"] == 100.0


def test_export_overview_on_empty_store_is_serialisable(store: Store) -> None:
    report = reports.export_report(store, "something-else")

    assert report["reportType"] == "Overview Report"
    assert report["companies"] == []
    assert report["applications"] == []
    assert report["allotments"] == []
    json.dumps(report)


def test_export_applications_report_has_pending_rows_with_nulls(store: Store) -> None:
    company = make_company(store)
    add_application(store, company, 5, 1)

    report = reports.export_report(store, "applications")

    (row,) = report["applications"]
    assert row["shares_alloted"] is None
    assert row["refund_amount"] is None
    assert row["applicant_name"] == "Applicant 1"
    json.dumps(report)
