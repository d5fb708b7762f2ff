# allocation.py
# Share pool -> allotment engine, then allotment -> refund engine
# Input: applications of one IPO (application_id, shares_req) and the IPO's share pool / price.
# Output: shares alloted per application, refund owed per under-alloted application.
#
# - Full allotment when total demand fits in the pool
# - Otherwise pro-rata: floor(shares_req * total_shares / total_demand), no remainder redistribution
# - run_allotment / run_refunds clear the previous run and persist the new one in a single transaction

import logging

import pandas as pd

logger = logging.getLogger(__name__)

MODE_FULL = "full"
MODE_PRO_RATA = "pro-rata"


def allot_shares(applications, total_shares):
    """
    applications: DataFrame (or list of dicts) with columns application_id, shares_req
    total_shares: int, size of the pool
    Returns:
      {
        'allots': [ {application_id, shares_req, shares_alloted} ],
        'mode': 'full' | 'pro-rata',
        'ratio': float (pool / demand, 1.0 when fully alloted),
        'total_demand': int,
        'total_alloted': int,
        'unalloted': int
      }
    """
    df = pd.DataFrame(applications, columns=['application_id', 'shares_req'])
    # python ints (object dtype): shares_req * total_shares can pass the int64 range on large issues
    df['shares_req'] = pd.Series([int(x) for x in df['shares_req']], index=df.index, dtype=object)
    total_shares = int(total_shares)
    total_demand = sum(df['shares_req'])

    if total_demand <= total_shares:
        mode = MODE_FULL
        ratio = 1.0
        df['shares_alloted'] = df['shares_req']
    else:
        mode = MODE_PRO_RATA
        ratio = total_shares / total_demand
        # exact integer floor, so float error never pushes a share across the boundary
        df['shares_alloted'] = [r * total_shares // total_demand for r in df['shares_req']]

    total_alloted = sum(int(x) for x in df['shares_alloted'])
    allots = [
        {'application_id': int(r.application_id), 'shares_req': int(r.shares_req),
         'shares_alloted': int(r.shares_alloted)}
        for r in df.itertuples(index=False)
    ]
    return {
        'allots': allots,
        'mode': mode,
        'ratio': float(ratio),
        'total_demand': total_demand,
        'total_alloted': total_alloted,
        'unalloted': max(total_shares - total_alloted, 0),
    }


def compute_refunds(rows, price):
    """
    rows: list of dicts with allotment_id, shares_req, shares_alloted
    price: issue price per share
    Returns list of {allotment_id, refund_shares, amount} for rows with refund_shares > 0 only.
    """
    refunds = []
    for r in rows:
        refund_shares = int(r['shares_req']) - int(r['shares_alloted'])
        if refund_shares <= 0:
            continue
        refunds.append({
            'allotment_id': r['allotment_id'],
            'refund_shares': refund_shares,
            'amount': round(refund_shares * float(price), 2),
        })
    return refunds


def run_allotment(store, company_id):
    """
    Recompute allotments for one company from scratch.
    Raises NotFoundError (before any write) if the company does not exist.
    Zero applications -> no allotments, not an error.
    """
    with store.transaction() as session:
        company = store.require_company(company_id, session=session)
        cleared = store.clear_allotments(session, company_id)
        applications = store.get_applications(company_id, session=session)
        logger.info("Running allotment for %s (id=%s): %d applications, %d shares, cleared %d old allotments",
                    company.name, company.id, len(applications), company.total_shares, cleared)

        result = allot_shares(
            [{'application_id': a.id, 'shares_req': a.shares_req} for a in applications],
            company.total_shares,
        )
        for a in result['allots']:
            store.add_allotment(session, a['application_id'], a['shares_alloted'])

    logger.info("Allotment done for company %s: mode=%s demand=%d alloted=%d unalloted=%d",
                company_id, result['mode'], result['total_demand'], result['total_alloted'], result['unalloted'])
    result['company_id'] = company_id
    return result


def run_refunds(store, company_id):
    """
    Recompute refunds for one company from its current allotments.
    Applications without an allotment are skipped. Previous refunds are cleared first,
    so repeated runs leave the same rows behind.
    """
    with store.transaction() as session:
        company = store.require_company(company_id, session=session)
        cleared = store.clear_refunds(session, company_id)
        rows = store.allotted_rows(company_id, session=session)
        refunds = compute_refunds(rows, company.price)
        for r in refunds:
            store.add_refund(session, r['allotment_id'], r['amount'])

    total_refund = round(sum(r['amount'] for r in refunds), 2)
    logger.info("Refunds done for company %s: %d allotments checked, %d refunds (%.2f), cleared %d old refunds",
                company_id, len(rows), len(refunds), total_refund, cleared)
    return {
        'company_id': company_id,
        'refunds': refunds,
        'refund_count': len(refunds),
        'total_refund': total_refund,
    }
