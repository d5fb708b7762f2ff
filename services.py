# services.py
# Operator actions behind the dashboard buttons and forms.
# Each action validates, applies the desk's policies (active IPO required, no empty allotment run,
# no duplicate PAN / demat) and then calls the store / calculators.

import logging

import allocation
import reports
from errors import EmptyInputError, NotFoundError, ValidationError
from validation import parse_application_form, parse_company_form

logger = logging.getLogger(__name__)


def create_ipo(store, name, total_shares, price, start_date, end_date):
    """Create a company/IPO and make it the active one."""
    form = parse_company_form({'name': name, 'total_shares': total_shares, 'price': price,
                               'start_date': start_date, 'end_date': end_date})
    return store.create_company(form.name, form.total_shares, form.price, form.start_date, form.end_date)


def require_active_company(store):
    company = store.get_active_company()
    if company is None:
        raise NotFoundError("No active IPO found")
    return company


def submit_application(store, name, pan, demat_no, shares_req):
    """
    Validate and record one applicant + application against the active IPO.
    amount = shares_req * issue price at submission time.
    Nothing is written when validation or a duplicate check fails.
    """
    try:
        form = parse_application_form({'name': name, 'pan': pan, 'demat_no': demat_no, 'shares_req': shares_req})
    except ValidationError as exc:
        logger.warning("Rejected application: %s", exc.details)
        raise

    with store.transaction() as session:
        if store.get_applicant_by_pan(form.pan, session=session) is not None:
            logger.warning("Rejected application: duplicate PAN %s", form.pan)
            raise ValidationError("PAN number already exists", [{'field': 'pan', 'message': "PAN number already exists"}])
        if store.get_applicant_by_demat(form.demat_no, session=session) is not None:
            logger.warning("Rejected application: duplicate demat number")
            raise ValidationError("Demat number already exists",
                                  [{'field': 'demat_no', 'message': "Demat number already exists"}])

        company = store.get_active_company(session=session)
        if company is None:
            raise NotFoundError("No active IPO found")

        applicant = store.add_applicant(session, form.name, form.pan, form.demat_no)
        application = store.add_application(session, applicant.id, company.id, form.shares_req,
                                            round(form.shares_req * company.price, 2))

    logger.info("Application %s submitted: %s requested %d shares of %s",
                application.id, form.name, form.shares_req, company.name)
    return application


def run_allotment_for_active(store):
    company = require_active_company(store)
    applications = store.get_applications(company.id)
    logger.info("Found %d applications for %s", len(applications), company.name)
    if not applications:
        raise EmptyInputError("No applications found for allotment")
    return allocation.run_allotment(store, company.id)


def run_refunds_for_active(store):
    company = require_active_company(store)
    return allocation.run_refunds(store, company.id)


def dashboard(store):
    """Summary for the active IPO plus raw company / application listings (None summary if no IPO)."""
    return {
        'summary': reports.dashboard_summary(store),
        'companies': [c.to_dict() for c in store.get_companies()],
        'applications': reports.applications_with_details(store),
    }


def get_settings(store):
    return store.get_settings()


def update_settings(store, updates):
    """updates: {section: {field: value}}; returns the merged settings after the write."""
    for key, value in updates.items():
        store.update_settings(key, value)
    return store.get_settings()


def export_report(store, kind="overview"):
    return reports.export_report(store, kind)


def reset_all(store):
    store.reset_all()
