# store.py
# Entity store for the IPO desk (SQLAlchemy).
# Tables: companies, applicants, applications, allotments, refunds, settings
#
# - Store.transaction() is the only place sessions are opened: commit on success,
#   rollback on any error, IntegrityError translated to ConstraintViolation
# - add_* helpers take an open session so callers can group writes in one transaction
# - read helpers accept session=None and open their own transaction when not given one
# - the active company is an explicit pointer (settings key desk.activeCompanyId),
#   falling back to the newest company when the pointer is missing or stale

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (Column, Date, DateTime, Float, ForeignKey, Integer, String, Text,
                        create_engine, delete, event, select)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

import config
from errors import ConstraintViolation, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Base = declarative_base()

# outside the DEFAULT_SETTINGS sections, so get_settings / update_settings never expose it
ACTIVE_COMPANY_KEY = "desk.activeCompanyId"


class Company(Base):
    __tablename__ = "companies"
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    total_shares = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'total_shares': self.total_shares,
            'price': self.price,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}', total_shares={self.total_shares})>"


class Applicant(Base):
    __tablename__ = "applicants"
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    pan = Column(String(10), nullable=False, unique=True)
    demat_no = Column(String(64), nullable=False, unique=True)


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    applicant_id = Column(Integer, ForeignKey("applicants.id"), nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    shares_req = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)

    applicant = relationship("Applicant", lazy="joined")

    def to_dict(self):
        return {
            'id': self.id,
            'applicant_id': self.applicant_id,
            'company_id': self.company_id,
            'shares_req': self.shares_req,
            'amount': self.amount,
        }


class Allotment(Base):
    __tablename__ = "allotments"
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, unique=True)
    shares_alloted = Column(Integer, nullable=False)


class Refund(Base):
    __tablename__ = "refunds"
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    allotment_id = Column(Integer, ForeignKey("allotments.id"), nullable=False, unique=True)
    amount = Column(Float, nullable=False)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False,
                        default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _company_allotment_ids(company_id):
    return (select(Allotment.id)
            .join(Application, Allotment.application_id == Application.id)
            .where(Application.company_id == company_id))


class Store:
    def __init__(self, db_url=None):
        self.db_url = db_url or config.load_config().db_url
        self.engine = create_engine(self.db_url)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def close(self):
        self.engine.dispose()

    @contextmanager
    def transaction(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.error("Constraint violation, transaction rolled back: %s", exc.orig)
            raise ConstraintViolation(str(exc.orig)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _use(self, session):
        if session is not None:
            yield session
        else:
            with self.transaction() as s:
                yield s

    # ----------------- Companies -----------------
    def create_company(self, name, total_shares, price, start_date, end_date):
        with self.transaction() as s:
            company = Company(name=name, total_shares=total_shares, price=price,
                              start_date=start_date, end_date=end_date)
            s.add(company)
            s.flush()
            self._put_setting(s, ACTIVE_COMPANY_KEY, company.id)
        logger.info("Created IPO %s (id=%s, shares=%s, price=%s)", name, company.id, total_shares, price)
        return company

    def get_company(self, company_id, session=None):
        with self._use(session) as s:
            return s.get(Company, company_id)

    def require_company(self, company_id, session=None):
        company = self.get_company(company_id, session=session)
        if company is None:
            raise NotFoundError(f"Company {company_id} not found")
        return company

    def get_companies(self):
        with self.transaction() as s:
            return list(s.scalars(select(Company).order_by(Company.id.desc())))

    def get_active_company(self, session=None):
        with self._use(session) as s:
            pointer = s.get(Setting, ACTIVE_COMPANY_KEY)
            if pointer is not None:
                try:
                    company = s.get(Company, int(json.loads(pointer.value)))
                except (TypeError, ValueError):
                    company = None
                if company is not None:
                    return company
            return s.scalars(select(Company).order_by(Company.id.desc()).limit(1)).first()

    def set_active_company(self, company_id):
        with self.transaction() as s:
            self.require_company(company_id, session=s)
            self._put_setting(s, ACTIVE_COMPANY_KEY, company_id)

    # ----------------- Applicants & applications -----------------
    def get_applicant_by_pan(self, pan, session=None):
        with self._use(session) as s:
            return s.scalars(select(Applicant).where(Applicant.pan == pan)).first()

    def get_applicant_by_demat(self, demat_no, session=None):
        with self._use(session) as s:
            return s.scalars(select(Applicant).where(Applicant.demat_no == demat_no)).first()

    def add_applicant(self, session, name, pan, demat_no):
        applicant = Applicant(name=name, pan=pan, demat_no=demat_no)
        session.add(applicant)
        session.flush()
        return applicant

    def add_application(self, session, applicant_id, company_id, shares_req, amount):
        application = Application(applicant_id=applicant_id, company_id=company_id,
                                  shares_req=shares_req, amount=amount)
        session.add(application)
        session.flush()
        return application

    def get_applications(self, company_id=None, session=None):
        with self._use(session) as s:
            stmt = select(Application).order_by(Application.id)
            if company_id is not None:
                stmt = stmt.where(Application.company_id == company_id)
            return list(s.scalars(stmt).unique())

    # ----------------- Allotments & refunds -----------------
    def add_allotment(self, session, application_id, shares_alloted):
        if not application_id or shares_alloted is None or shares_alloted < 0:
            raise ValueError(f"Invalid allotment data: application_id={application_id}, "
                             f"shares_alloted={shares_alloted}")
        allotment = Allotment(application_id=application_id, shares_alloted=int(shares_alloted))
        session.add(allotment)
        session.flush()
        return allotment

    def add_refund(self, session, allotment_id, amount):
        refund = Refund(allotment_id=allotment_id, amount=float(amount))
        session.add(refund)
        session.flush()
        return refund

    def create_refund(self, allotment_id, amount):
        with self.transaction() as s:
            return self.add_refund(s, allotment_id, amount)

    def clear_refunds(self, session, company_id):
        result = session.execute(
            delete(Refund)
            .where(Refund.allotment_id.in_(_company_allotment_ids(company_id)))
            .execution_options(synchronize_session=False))
        return result.rowcount

    def clear_allotments(self, session, company_id):
        """Delete the company's allotments together with the refunds that hang off them."""
        self.clear_refunds(session, company_id)
        app_ids = select(Application.id).where(Application.company_id == company_id)
        result = session.execute(
            delete(Allotment)
            .where(Allotment.application_id.in_(app_ids))
            .execution_options(synchronize_session=False))
        return result.rowcount

    def get_allotment_by_application(self, application_id, session=None):
        with self._use(session) as s:
            return s.scalars(select(Allotment).where(Allotment.application_id == application_id)).first()

    def get_refund_by_allotment(self, allotment_id, session=None):
        with self._use(session) as s:
            return s.scalars(select(Refund).where(Refund.allotment_id == allotment_id)).first()

    def get_allotments(self, company_id=None, session=None):
        with self._use(session) as s:
            stmt = select(Allotment).order_by(Allotment.id)
            if company_id is not None:
                stmt = stmt.where(Allotment.id.in_(_company_allotment_ids(company_id)))
            return list(s.scalars(stmt))

    def get_refunds(self, company_id=None, session=None):
        with self._use(session) as s:
            stmt = select(Refund).order_by(Refund.id)
            if company_id is not None:
                stmt = stmt.where(Refund.allotment_id.in_(_company_allotment_ids(company_id)))
            return list(s.scalars(stmt))

    def allotted_rows(self, company_id, session=None):
        """
        Applications of the company that have an allotment.
        Returns list of dicts: application_id, allotment_id, shares_req, shares_alloted
        """
        with self._use(session) as s:
            stmt = (select(Application.id.label('application_id'),
                           Allotment.id.label('allotment_id'),
                           Application.shares_req,
                           Allotment.shares_alloted)
                    .join(Allotment, Allotment.application_id == Application.id)
                    .where(Application.company_id == company_id)
                    .order_by(Application.id))
            return [dict(r._mapping) for r in s.execute(stmt)]

    def application_rows(self, company_id=None, session=None):
        """
        Joined listing: application + applicant + company + (optional) allotment + (optional) refund.
        Newest application first. Missing allotment/refund columns are None.
        """
        with self._use(session) as s:
            stmt = (select(Application.id,
                           Application.applicant_id,
                           Application.company_id,
                           Application.shares_req,
                           Application.amount,
                           Applicant.name.label('applicant_name'),
                           Applicant.pan,
                           Applicant.demat_no,
                           Company.name.label('company_name'),
                           Company.price,
                           Allotment.id.label('allotment_id'),
                           Allotment.shares_alloted,
                           Refund.id.label('refund_id'),
                           Refund.amount.label('refund_amount'))
                    .join(Applicant, Application.applicant_id == Applicant.id)
                    .join(Company, Application.company_id == Company.id)
                    .outerjoin(Allotment, Allotment.application_id == Application.id)
                    .outerjoin(Refund, Refund.allotment_id == Allotment.id)
                    .order_by(Application.id.desc()))
            if company_id is not None:
                stmt = stmt.where(Application.company_id == company_id)
            return [dict(r._mapping) for r in s.execute(stmt)]

    # ----------------- Settings -----------------
    def _put_setting(self, session, key, value):
        session.merge(Setting(key=key, value=json.dumps(value), updated_at=datetime.now(timezone.utc)))

    def get_settings(self):
        """Defaults from config.DEFAULT_SETTINGS overlaid with stored 'section.field' rows."""
        settings = config.default_settings()
        with self.transaction() as s:
            rows = list(s.scalars(select(Setting)))
        for row in rows:
            section, _, field = row.key.partition('.')
            if section not in settings or not field:
                continue
            try:
                settings[section][field] = json.loads(row.value)
            except json.JSONDecodeError:
                logger.warning("Failed to parse setting %s, using default", row.key)
        return settings

    def update_settings(self, key, value):
        """A dict value is stored field by field under 'key.field'; anything else under key itself."""
        with self.transaction() as s:
            if isinstance(value, dict):
                for sub_key, sub_value in value.items():
                    self._put_plain_setting(s, f"{key}.{sub_key}", sub_value)
            else:
                self._put_plain_setting(s, key, value)

    def _put_plain_setting(self, session, key, value):
        if key == ACTIVE_COMPANY_KEY:
            raise ValidationError("the active company is changed with set_active_company",
                                  [{"field": key, "message": "read-only setting"}])
        self._put_setting(session, key, value)

    # ----------------- Reset -----------------
    def reset_all(self):
        with self.transaction() as s:
            for model in (Refund, Allotment, Application, Applicant, Company, Setting):
                s.execute(delete(model))
        logger.warning("All IPO data has been reset")
