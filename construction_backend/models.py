import enum
import secrets
from datetime import datetime, timedelta

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Enum, ForeignKey, Text, Numeric
)
from sqlalchemy.orm import relationship
from werkzeug.security import generate_password_hash, check_password_hash
import jwt

from .db import Base

# ----------------------------------
# Helpers / Enums
# ----------------------------------


class QuoteStatus(str, enum.Enum):
    DRAFT = 'draft'
    ISSUED = 'issued'
    CONVERTED = 'converted'
    CANCELLED = 'cancelled'

    @classmethod
    def coerce(cls, value):
        """Map a caller-supplied token onto the vocabulary; unknown tokens become draft."""
        token = (value or '').strip().lower() if isinstance(value, str) else ''
        try:
            return cls(token)
        except ValueError:
            return cls.DRAFT


# current status -> statuses the quote editor may save it as.
# None is a quote that does not exist yet.
QUOTE_EDITOR_TRANSITIONS = {
    None: {QuoteStatus.DRAFT, QuoteStatus.ISSUED},
    QuoteStatus.DRAFT: {QuoteStatus.DRAFT, QuoteStatus.ISSUED, QuoteStatus.CANCELLED},
    QuoteStatus.ISSUED: {QuoteStatus.DRAFT, QuoteStatus.ISSUED, QuoteStatus.CANCELLED},
    QuoteStatus.CONVERTED: set(),
    QuoteStatus.CANCELLED: set(),
}

# Statuses that the invoice conversion may start from.
CONVERTIBLE_STATUSES = {QuoteStatus.DRAFT, QuoteStatus.ISSUED}


def can_transition(current, target):
    """True when the quote editor may move a quote from `current` to `target`."""
    if current is not None:
        current = QuoteStatus(current)
    return QuoteStatus(target) in QUOTE_EDITOR_TRANSITIONS[current]


QUOTE_STATUS_ENUM = Enum(
    QuoteStatus,
    values_callable=lambda statuses: [s.value for s in statuses],
    name='quote_status_enum',
    native_enum=False,
    validate_strings=True,
)

INVOICE_STATUS_ENUM = Enum('issued', 'paid', 'void', name='invoice_status_enum', native_enum=False)


def _money(value):
    return float(value) if value is not None else 0.0


def _iso(value):
    return value.isoformat() if value else None

# ----------------------------------
# Auth & Security
# ----------------------------------


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(String(120), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)

    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(String(20), default='Staff')

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = Column(DateTime)

    def __repr__(self):
        return f'<User {self.email}>'

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def generate_jwt_token(self, secret_key: str, ttl_days: int = 7) -> str:
        payload = {
            'user_id': self.id,
            'email': self.email,
            'role': self.role,
            'exp': datetime.utcnow() + timedelta(days=ttl_days),
            'iat': datetime.utcnow(),
            # keeps two tokens issued in the same second distinct
            'jti': secrets.token_hex(8),
        }
        return jwt.encode(payload, secret_key, algorithm='HS256')

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'last_login': _iso(self.last_login),
        }


class LoginAttempt(Base):
    __tablename__ = 'login_attempts'

    id = Column(Integer, primary_key=True)
    email = Column(String(120), nullable=False, index=True)
    ip_address = Column(String(45))
    success = Column(Boolean, default=False)
    attempted_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<LoginAttempt {self.email} - {"Success" if self.success else "Failed"}>'


class Session(Base):
    __tablename__ = 'user_sessions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    session_token = Column(String(512), unique=True, nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship('User', backref='sessions')

    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at


# ----------------------------------
# Directory & Catalog
# ----------------------------------

class Client(Base):
    __tablename__ = 'clients'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200))
    phone = Column(String(50))
    address_line1 = Column(String(255))
    address_line2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(50))
    zip = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Client {self.name}>'

    @property
    def full_address(self):
        parts = [self.address_line1, self.address_line2, self.city, self.state, self.zip]
        return ', '.join(p for p in parts if p)

    def to_search_dict(self):
        return {
            'id': int(self.id),
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'city': self.city,
            'state': self.state,
        }

    def to_dict(self):
        data = self.to_search_dict()
        data.update({
            'address_line1': self.address_line1,
            'address_line2': self.address_line2,
            'zip': self.zip,
            'full_address': self.full_address,
            'created_at': _iso(self.created_at),
        })
        return data


class Item(Base):
    """Billable template: a line item may copy its description and rate."""
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    default_rate = Column(Numeric(10, 2), default=0)

    def __repr__(self):
        return f'<Item {self.name}>'

    def to_dict(self):
        return {
            'id': int(self.id),
            'name': self.name,
            'description': self.description,
            'default_rate': _money(self.default_rate),
        }


# ----------------------------------
# Quotes
# ----------------------------------

class Quote(Base):
    __tablename__ = 'quotes'

    id = Column(Integer, primary_key=True)
    # not a ForeignKey: clients are owned elsewhere and may be missing
    client_id = Column(Integer, nullable=False, index=True)
    status = Column(QUOTE_STATUS_ENUM, nullable=False, default=QuoteStatus.DRAFT)
    title = Column(String(255), default='')
    notes = Column(Text, default='')
    invoice_id = Column(Integer, ForeignKey('invoices.id'))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = relationship(
        'QuoteLine', back_populates='quote', lazy=True,
        cascade='all, delete-orphan', order_by='QuoteLine.id',
    )

    def __repr__(self):
        return f'<Quote {self.id} ({self.status})>'

    def to_dict(self, client_name=None):
        return {
            'id': self.id,
            'client_id': self.client_id,
            'client_name': client_name or f'Client #{self.client_id}',
            'status': QuoteStatus(self.status).value,
            'title': self.title,
            'notes': self.notes,
            'invoice_id': self.invoice_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class QuoteLine(Base):
    """Snapshot of one billable row; never follows later edits to its Item."""
    __tablename__ = 'quote_items'

    id = Column(Integer, primary_key=True)
    quote_id = Column(Integer, ForeignKey('quotes.id'), nullable=False, index=True)
    item_id = Column(Integer)
    description = Column(Text, default='')
    quantity = Column(Numeric(10, 2), nullable=False, default=0)
    rate = Column(Numeric(10, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    quote = relationship('Quote', back_populates='lines')

    def __repr__(self):
        return f'<QuoteLine {self.description!r} x{self.quantity} (Quote {self.quote_id})>'

    def to_dict(self):
        return {
            'id': self.id,
            'item_id': self.item_id,
            'description': self.description,
            'quantity': _money(self.quantity),
            'rate': _money(self.rate),
            'line_total': _money(self.line_total),
        }


class QuoteRequest(Base):
    """Inbound lead from the public quote form. Never updated after insert."""
    __tablename__ = 'quote_requests'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=False)
    phone = Column(String(50), default='')
    service = Column(String(200), default='')
    details = Column(Text, default='')
    submitted_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
            'service': self.service,
            'details': self.details,
            'submitted_at': _iso(self.submitted_at),
        }


# ----------------------------------
# Invoicing
# ----------------------------------

class Invoice(Base):
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    quote_id = Column(Integer, index=True)
    client_id = Column(Integer, nullable=False, index=True)
    status = Column(INVOICE_STATUS_ENUM, default='issued')
    issued_date = Column(Date)
    due_date = Column(Date)
    paid_date = Column(Date)
    notes = Column(Text, default='')
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lines = relationship(
        'InvoiceLine', back_populates='invoice', lazy=True,
        cascade='all, delete-orphan', order_by='InvoiceLine.id',
    )

    def __repr__(self):
        return f'<Invoice {self.id} ({self.status})>'

    def to_dict(self, client_name=None):
        return {
            'id': self.id,
            'quote_id': self.quote_id,
            'client_id': self.client_id,
            'client_name': client_name or f'Client #{self.client_id}',
            'status': self.status,
            'issued_date': _iso(self.issued_date),
            'due_date': _iso(self.due_date),
            'paid_date': _iso(self.paid_date),
            'notes': self.notes,
            'created_at': _iso(self.created_at),
        }


class InvoiceLine(Base):
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id'), nullable=False, index=True)
    item_id = Column(Integer)
    description = Column(Text, default='')
    quantity = Column(Numeric(10, 2), nullable=False, default=0)
    rate = Column(Numeric(10, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    invoice = relationship('Invoice', back_populates='lines')

    @classmethod
    def from_quote_line(cls, line):
        return cls(
            item_id=line.item_id,
            description=line.description,
            quantity=line.quantity,
            rate=line.rate,
            line_total=line.line_total,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'item_id': self.item_id,
            'description': self.description,
            'quantity': _money(self.quantity),
            'rate': _money(self.rate),
            'line_total': _money(self.line_total),
        }


# ----------------------------------
# Crew & Job Assignment
# ----------------------------------

class Employee(Base):
    __tablename__ = 'employees'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    role = Column(String(100))
    email = Column(String(200))
    active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'role': self.role,
            'email': self.email,
        }


class Job(Base):
    __tablename__ = 'jobs'

    id = Column(String(36), primary_key=True)  # e.g. J-101
    project = Column(String(200), nullable=False)
    location = Column(String(200))
    scope = Column(Text)
    shift = Column(String(50))
    start_date = Column(Date)
    foreman = Column(String(200))
    priority = Column(String(20), default='Medium')

    def to_dict(self):
        return {
            'id': self.id,
            'project': self.project,
            'location': self.location,
            'scope': self.scope,
            'shift': self.shift,
            'start_date': _iso(self.start_date),
            'foreman': self.foreman,
            'priority': self.priority,
        }


class Assignment(Base):
    __tablename__ = 'assignments'

    id = Column(Integer, primary_key=True)
    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=False)
    job_id = Column(String(36), ForeignKey('jobs.id'), nullable=False)

    # Denormalized for quick display
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=False)
    project = Column(String(200))

    shift = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=False)
    notes = Column(Text, default='')
    submitted_at = Column(DateTime, default=datetime.utcnow)

    employee = relationship('Employee', backref='assignments')
    job = relationship('Job', backref='assignments')

    def __repr__(self):
        return f'<Assignment {self.id}: {self.name} on {self.job_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'job_id': self.job_id,
            'name': self.name,
            'email': self.email,
            'project': self.project,
            'shift': self.shift,
            'start_date': _iso(self.start_date),
            'notes': self.notes,
            'submitted_at': _iso(self.submitted_at),
        }
