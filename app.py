# app.py — IPO allotment desk (Dashboard + Apply + Allotment + Reports + Settings)
# Run with: streamlit run app.py

import io
import json
from datetime import date, datetime, timedelta

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
import streamlit as st

# Local modules
import config
import reports
import seed
import services
from errors import ConstraintViolation, EmptyInputError, NotFoundError, ValidationError
from logging_utils import configure_logging
from store import Store

# ----------------- Page config & style -----------------
st.set_page_config(page_title="IPO allotment desk", layout="wide", initial_sidebar_state="expanded")

st.markdown("""
<style>
:root{--bg:#f6f9fc;--card:#fff;--muted:#6b7280;--accent:#0ea5a2;--accent2:#2563eb;}
.stApp{background:var(--bg);}
.title { font-size:26px; font-weight:700; }
.subtitle { color:var(--muted); margin-top:3px; }
.small-muted { color:var(--muted); font-size:13px; }
</style>
""", unsafe_allow_html=True)

APP_CONFIG = config.load_config()
configure_logging(APP_CONFIG.log_level, APP_CONFIG.log_path)
CUR = APP_CONFIG.currency


@st.cache_resource
def get_store(db_url: str) -> Store:
    return Store(db_url)


store = get_store(APP_CONFIG.db_url)

# ----------------- Header & Navigation -----------------
left, right = st.columns([4,1])
with left:
    st.markdown("<div class='title'>IPO allotment desk</div>", unsafe_allow_html=True)
    st.markdown("<div class='subtitle'>Applications • Allotment • Refunds • Reports</div>", unsafe_allow_html=True)
with right:
    st.markdown(f"**{datetime.now().strftime('%Y-%m-%d')}**")

PAGES = ["Dashboard", "New IPO", "Apply", "Applications", "Allotment", "Reports", "Settings"]

with st.sidebar:
    st.header("Navigate")
    page = st.radio("Go to", PAGES, index=0)
    st.markdown("---")
    active = store.get_active_company()
    if active is not None:
        st.markdown(f"**Active IPO:** {active.name}")
        st.markdown(f"<div class='small-muted'>{active.total_shares:,} shares @ {CUR}{active.price:,.2f}</div>",
                    unsafe_allow_html=True)
    else:
        st.info("No active IPO. Create one under 'New IPO'.")

MONEY_FMT = "{:,.2f}"


def show_error(exc):
    """Map desk errors to streamlit messages."""
    if isinstance(exc, ValidationError):
        st.error(exc.message)
        for d in exc.details:
            st.markdown(f"- **{d['field']}**: {d['message']}")
    elif isinstance(exc, (NotFoundError, EmptyInputError)):
        st.warning(str(exc))
    elif isinstance(exc, ConstraintViolation):
        st.error(f"Storage constraint failed: {exc}")
    else:
        st.error(f"Unexpected error: {exc}")


def csv_bytes(df: pd.DataFrame) -> bytes:
    csv_buf = io.StringIO(); df.to_csv(csv_buf, index=False)
    return csv_buf.getvalue().encode('utf-8')


# ----------------- Dashboard Page -----------------
def page_dashboard():
    data = services.dashboard(store)
    summary = data['summary']
    if summary is None:
        st.info("No IPO yet. Create one under 'New IPO' or load demo data from 'Settings'.")
        return

    company = summary['company']
    st.markdown(f"### {company['name']}")
    st.markdown(f"<div class='small-muted'>{company['start_date']} → {company['end_date']} • "
                f"{company['total_shares']:,} shares @ {CUR}{company['price']:,.2f}</div>", unsafe_allow_html=True)

    c1,c2,c3,c4,c5 = st.columns(5)
    c1.metric("Applications", summary['total_applications'])
    c2.metric("Shares requested", f"{summary['total_shares_req']:,}")
    c3.metric(f"Amount ({CUR})", MONEY_FMT.format(summary['total_amount']))
    c4.metric(f"Refunds ({CUR})", MONEY_FMT.format(summary['total_refunds']))
    c5.metric("Oversubscription", f"{summary['oversubscription_ratio']:.2f}x")

    st.markdown("---")
    st.markdown("### Recent applications")
    df = data['applications']
    df = df[df['company_id'] == company['id']] if not df.empty else df
    if df.empty:
        st.info("No applications for this IPO yet.")
    else:
        st.dataframe(df[['id','applicant_name','pan','shares_req','amount','shares_alloted','refund_amount']].head(10),
                     height=320)

    with st.expander("All IPOs"):
        st.dataframe(pd.DataFrame(data['companies']), height=200)


# ----------------- New IPO Page -----------------
def page_new_ipo():
    st.markdown("## Create IPO")
    defaults = services.get_settings(store)['company']
    with st.form("new_ipo"):
        name = st.text_input("Company name", value=defaults.get('companyName') or "")
        colA, colB = st.columns(2)
        total_shares = colA.number_input("Total shares", min_value=1, value=int(defaults.get('defaultIpoShares') or 100000), step=100)
        price = colB.number_input(f"Issue price ({CUR})", min_value=0.01, value=float(defaults.get('defaultIpoPrice') or 100), step=1.0)
        colC, colD = st.columns(2)
        start_date = colC.date_input("Opens", value=date.today())
        end_date = colD.date_input("Closes", value=date.today() + timedelta(days=3))
        submitted = st.form_submit_button("Create IPO")
    if submitted:
        try:
            company = services.create_ipo(store, name, int(total_shares), float(price), start_date, end_date)
            st.success(f"IPO created successfully: {company.name} (id {company.id}) is now the active IPO.")
        except Exception as exc:
            show_error(exc)


# ----------------- Apply Page -----------------
def page_apply():
    st.markdown("## Apply for shares")
    company = store.get_active_company()
    if company is None:
        st.warning("No active IPO found")
        return
    st.markdown(f"Applying to **{company.name}** at {CUR}{company.price:,.2f} per share.")
    with st.form("apply", clear_on_submit=True):
        name = st.text_input("Applicant name")
        colA, colB = st.columns(2)
        pan = colA.text_input("PAN", placeholder="ABCDE1234F", max_chars=10)
        demat_no = colB.text_input("Demat number", placeholder="16+ characters")
        shares_req = st.number_input("Shares requested", min_value=1, value=10, step=1)
        st.caption(f"Amount payable: {CUR}{shares_req * company.price:,.2f}")
        submitted = st.form_submit_button("Submit application")
    if submitted:
        try:
            application = services.submit_application(store, name, pan, demat_no, int(shares_req))
            st.success(f"Application submitted successfully (id {application.id}, amount {CUR}{application.amount:,.2f}).")
        except Exception as exc:
            show_error(exc)


# ----------------- Applications Page -----------------
def page_applications():
    st.markdown("## Applications")
    df = reports.applications_with_details(store)
    if df.empty:
        st.info("No applications yet.")
        return
    query = st.text_input("Filter by name or PAN", value="")
    if query.strip():
        q = query.strip().lower()
        df = df[df['applicant_name'].str.lower().str.contains(q, regex=False) | df['pan'].str.lower().str.contains(q, regex=False)]
    st.dataframe(df.drop(columns=['allotment_id','refund_id']), height=420)
    st.download_button("Download applications CSV", csv_bytes(df), file_name="applications.csv")


# ----------------- Allotment Page -----------------
def page_allotment():
    st.markdown("## Allotment & refunds")
    company = store.get_active_company()
    if company is None:
        st.warning("No active IPO found")
        return

    summary = reports.dashboard_summary(store, company.id)
    c1,c2,c3 = st.columns(3)
    c1.metric("Applications", summary['total_applications'])
    c2.metric("Demand / pool", f"{summary['total_shares_req']:,} / {company.total_shares:,}")
    c3.metric("Oversubscription", f"{summary['oversubscription_ratio']:.2f}x")
    if summary['oversubscription_ratio'] > 1:
        st.info("Demand exceeds the pool: shares will be alloted pro-rata (rounded down).")

    colA, colB = st.columns(2)
    if colA.button("Run allotment"):
        with st.spinner("Allotting..."):
            try:
                res = services.run_allotment_for_active(store)
                st.success(f"Allotment process completed successfully ({res['mode']}, ratio {res['ratio']:.4f}) • "
                           f"Alloted {res['total_alloted']:,} • Unalloted {res['unalloted']:,}")
            except Exception as exc:
                show_error(exc)
    if colB.button("Calculate refunds"):
        with st.spinner("Calculating refunds..."):
            try:
                res = services.run_refunds_for_active(store)
                st.success(f"Refunds calculated successfully • {res['refund_count']} refunds • {CUR}{res['total_refund']:,.2f}")
            except Exception as exc:
                show_error(exc)

    st.markdown("---")
    st.markdown("### Results")
    df = reports.allotment_results(store, company.id)
    if df.empty:
        st.info("No applications for this IPO yet.")
        return
    show = df[['id','applicant_name','pan','shares_req','shares_alloted','amount','refund_amount','status']]
    st.dataframe(show.style.format({"amount": MONEY_FMT, "refund_amount": MONEY_FMT}, na_rep="—"), height=420)
    st.download_button("Download results CSV", csv_bytes(show), file_name=f"{company.name}_allotment.csv")


# ----------------- Reports Page -----------------
def page_reports():
    st.markdown("## Reports")
    df = reports.allotment_results(store)
    if df.empty:
        st.info("Nothing to report yet.")
        return

    counts = df['status'].value_counts().reindex([reports.STATUS_PENDING, reports.STATUS_ALLOTTED, reports.STATUS_PROCESSED], fill_value=0)
    colA, colB = st.columns(2)
    with colA:
        fig, ax = plt.subplots(figsize=(5,3)); sns.barplot(x=counts.index, y=counts.values, hue=counts.index, legend=False, ax=ax, palette="crest"); ax.set_title("Applications by status"); st.pyplot(fig)
    with colB:
        top = df.sort_values('shares_req', ascending=False).head(10)
        fig2, ax2 = plt.subplots(figsize=(5,3))
        ax2.barh(top['applicant_name'], top['shares_req'], label="Requested")
        ax2.barh(top['applicant_name'], top['shares_alloted'].fillna(0), label="Alloted")
        ax2.invert_yaxis(); ax2.legend(); ax2.set_title("Requested vs alloted (top 10)"); st.pyplot(fig2)

    st.markdown("---")
    kind = st.selectbox("Report", ["overview", "allotments", "applications", "refunds"])
    report = services.export_report(store, kind)
    st.json({k: v for k, v in report.items() if not isinstance(v, list)})
    st.download_button("Download report JSON", json.dumps(report, default=str, indent=2).encode('utf-8'),
                       file_name=f"ipo-{kind}-report.json")


# ----------------- Settings Page -----------------
def page_settings():
    st.markdown("## Settings")
    settings = services.get_settings(store)
    with st.form("settings"):
        st.markdown("**Company defaults**")
        comp = settings['company']
        company_name = st.text_input("Company name", value=comp['companyName'])
        contact_email = st.text_input("Contact email", value=comp['contactEmail'])
        contact_phone = st.text_input("Contact phone", value=comp['contactPhone'])
        address = st.text_area("Address", value=comp['address'])
        default_price = st.number_input("Default IPO price", min_value=0.01, value=float(comp['defaultIpoPrice']))
        default_shares = st.number_input("Default IPO shares", min_value=1, value=int(comp['defaultIpoShares']), step=100)

        st.markdown("**System**")
        sysset = settings['system']
        auto_allot = st.checkbox("Auto allotment", value=bool(sysset['autoAllotment']))
        auto_refunds = st.checkbox("Auto refunds", value=bool(sysset['autoRefunds']))
        notifications = st.checkbox("Enable notifications", value=bool(sysset['enableNotifications']))
        modes = ["pro-rata", "lottery"]
        mode = st.selectbox("Default allotment mode", modes, index=modes.index(sysset['defaultAllotmentMode']) if sysset['defaultAllotmentMode'] in modes else 0)
        st.caption("Only pro-rata allotment is implemented; the mode is stored for reference.")
        saved = st.form_submit_button("Save settings")
    if saved:
        services.update_settings(store, {
            'company': {'companyName': company_name, 'contactEmail': contact_email, 'contactPhone': contact_phone,
                        'address': address, 'defaultIpoPrice': float(default_price), 'defaultIpoShares': int(default_shares)},
            'system': {'autoAllotment': auto_allot, 'autoRefunds': auto_refunds,
                       'enableNotifications': notifications, 'defaultAllotmentMode': mode},
        })
        st.success("Settings updated successfully")

    st.markdown("---")
    st.markdown("### Data")
    colA, colB, colC = st.columns(3)
    if colA.button("Load demo data"):
        with st.spinner("Seeding..."):
            try:
                company = seed.seed_demo(store)
                st.success(f"Demo IPO '{company.name}' created.")
            except Exception as exc:
                show_error(exc)
    colB.download_button("Export all data (JSON)", json.dumps(services.export_report(store), default=str, indent=2).encode('utf-8'),
                         file_name="ipo-data-export.json")
    confirm = colC.checkbox("I understand this deletes everything")
    if colC.button("Reset all data", disabled=not confirm):
        services.reset_all(store)
        st.success("All data has been reset successfully")
        st.rerun()


# ----------------- Main router -----------------
ROUTES = {
    "Dashboard": page_dashboard,
    "New IPO": page_new_ipo,
    "Apply": page_apply,
    "Applications": page_applications,
    "Allotment": page_allotment,
    "Reports": page_reports,
    "Settings": page_settings,
}
ROUTES[page]()

# ----------------- Footer -----------------
st.markdown("---")
st.caption("Pro-rata allotment rounds every application down to whole shares; leftover shares are not redistributed.")
