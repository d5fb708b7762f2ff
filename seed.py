# seed.py
# Demo data for an empty desk: one IPO and a handful of oversubscribed applications.
# PAN / demat numbers are generated in valid formats so they pass the normal submission path.

import logging
import string
from datetime import date, timedelta

import numpy as np

import services

logger = logging.getLogger(__name__)

DEMO_NAMES = ["Aarav Shah", "Diya Mehta", "Kabir Rao", "Ananya Iyer", "Vihaan Gupta",
              "Isha Nair", "Arjun Menon", "Meera Joshi", "Rohan Das", "Sara Khan"]


def _pan(rng):
    letters = rng.choice(list(string.ascii_uppercase), size=6)
    digits = rng.integers(0, 10, size=4)
    return "".join(letters[:5]) + "".join(str(d) for d in digits) + letters[5]


def _demat(company_id, i):
    return f"IN{company_id:06d}{10000000 + i:08d}"


def seed_demo(store, n_applicants=8, total_shares=1000, price=120.0, seed=42):
    """
    Create a demo IPO and n_applicants applications (max len(DEMO_NAMES)).
    Requests are drawn between one and three even lots, so demand is usually about twice the pool.
    Returns the created company.
    """
    today = date.today()
    company = services.create_ipo(store, "Demo Infra Ltd", total_shares, price, today, today + timedelta(days=3))
    rng = np.random.default_rng(seed + company.id)

    n = min(n_applicants, len(DEMO_NAMES))
    lot = max(total_shares // max(n, 1), 1)
    requests = rng.integers(lot, 3 * lot, size=n, endpoint=True)
    used_pans = set()
    for i, (name, shares) in enumerate(zip(DEMO_NAMES[:n], requests)):
        pan = _pan(rng)
        while pan in used_pans or store.get_applicant_by_pan(pan) is not None:
            pan = _pan(rng)
        used_pans.add(pan)
        services.submit_application(store, name, pan, _demat(company.id, i), int(shares))

    logger.info("Seeded demo IPO %s with %d applications", company.name, n)
    return company
