# reports.py
# Read-only views over the entity store: dashboard summary, joined listings, exports.
# Nothing here writes; every call recomputes from current rows.

from datetime import datetime, timezone

import pandas as pd

from errors import NotFoundError

STATUS_PENDING = "Pending"
STATUS_ALLOTTED = "Allotted"
STATUS_PROCESSED = "Processed"

DETAIL_COLUMNS = ['id', 'applicant_id', 'company_id', 'shares_req', 'amount', 'applicant_name', 'pan',
                  'demat_no', 'company_name', 'price', 'allotment_id', 'shares_alloted', 'refund_id',
                  'refund_amount']


def derive_status(has_allotment, has_refund):
    """Pending (no allotment) -> Allotted (allotment, no refund) -> Processed (allotment and refund)."""
    if not has_allotment:
        return STATUS_PENDING
    if not has_refund:
        return STATUS_ALLOTTED
    return STATUS_PROCESSED


def _resolve_company(store, company_id):
    if company_id is None:
        return store.get_active_company()
    company = store.get_company(company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found")
    return company


def dashboard_summary(store, company_id=None):
    """
    Totals for one company (the active one when company_id is None).
    Returns None when there is no company yet.
    """
    company = _resolve_company(store, company_id)
    if company is None:
        return None

    df = applications_with_details(store, company.id)
    total_shares_req = int(df['shares_req'].sum()) if not df.empty else 0
    total_amount = float(df['amount'].sum()) if not df.empty else 0.0
    total_refunds = float(df['refund_amount'].fillna(0).sum()) if not df.empty else 0.0
    ratio = (total_shares_req / company.total_shares) if company.total_shares > 0 else 0

    return {
        'company': company.to_dict(),
        'total_applications': int(len(df)),
        'total_shares_req': total_shares_req,
        'total_amount': round(total_amount, 2),
        'total_refunds': round(total_refunds, 2),
        'oversubscription_ratio': ratio,
    }


def applications_with_details(store, company_id=None):
    """Joined application listing, newest first. company_id=None lists every company."""
    rows = store.application_rows(company_id)
    return pd.DataFrame(rows, columns=DETAIL_COLUMNS)


def allotment_results(store, company_id=None):
    """applications_with_details plus the derived 'status' column."""
    df = applications_with_details(store, company_id)
    df['status'] = [derive_status(pd.notna(a), pd.notna(r))
                    for a, r in zip(df['allotment_id'], df['refund_id'])]
    return df


def _records(df):
    # NaN -> None so the output is JSON friendly
    return df.astype(object).where(pd.notna(df), None).to_dict('records')


def export_report(store, kind="overview"):
    """
    kind: 'allotments' | 'applications' | 'refunds' | anything else -> overview
    Returns a JSON-serialisable dict with exportDate and reportType.
    """
    export_date = datetime.now(timezone.utc).isoformat()

    if kind == "allotments":
        df = allotment_results(store)
        return {
            'allotments': _records(df),
            'summary': {
                'totalAllotted': int(df['shares_alloted'].fillna(0).sum()),
                'totalRequested': int(df['shares_req'].sum()),
                'totalRefunds': round(float(df['refund_amount'].fillna(0).sum()), 2),
            },
            'exportDate': export_date,
            'reportType': "Allotment Report",
        }

    if kind == "applications":
        return {
            'applications': _records(applications_with_details(store)),
            'exportDate': export_date,
            'reportType': "Applications Report",
        }

    if kind == "refunds":
        df = allotment_results(store)
        with_refund = df[df['refund_amount'].fillna(0) > 0]
        return {
            'refunds': _records(with_refund),
            'totalRefundAmount': round(float(df['refund_amount'].fillna(0).sum()), 2),
            'exportDate': export_date,
            'reportType': "Refunds Report",
        }

    return {
        'companies': [c.to_dict() for c in store.get_companies()],
        'applications': _records(applications_with_details(store)),
        'allotments': _records(allotment_results(store)),
        'exportDate': export_date,
        'reportType': "Overview Report",
    }
