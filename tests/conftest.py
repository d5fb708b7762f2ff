from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from store import Store


@pytest.fixture
def store(tmp_path: Path):
    s = Store(f"sqlite:///{tmp_path / 'ipo_desk.sqlite'}")
    yield s
    s.close()


def make_company(store: Store, total_shares: int = 1000, price: float = 10.0, name: str = "Acme Ltd"):
    return store.create_company(name, total_shares, price, date(2026, 1, 5), date(2026, 1, 8))


def pan_for(i: int) -> str:
    # ABCDE0001F, ABCDE0002F, ...
    return f"ABCDE{i:04d}F"


def demat_for(i: int) -> str:
    return f"IN30000000{i:06d}"


def add_application(store: Store, company, shares_req: int, i: int):
    with store.transaction() as session:
        applicant = store.add_applicant(session, f"Applicant {i}", pan_for(i), demat_for(i))
        return store.add_application(session, applicant.id, company.id, shares_req, shares_req * company.price)


def seed_applications(store: Store, company, requests: list[int]):
    return [add_application(store, company, shares, i) for i, shares in enumerate(requests, start=1)]
