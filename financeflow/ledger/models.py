# financeflow/ledger/models.py
from datetime import datetime
from financeflow.init_db import db

ENTRY_TYPES = ('income', 'expense')
ENTRY_STATUSES = ('pending', 'received')
PAYMENT_MODES = ('cash', 'upi', 'bank_transfer', 'card', 'cheque')
PAYMENT_STATUSES = ('pending', 'paid')


def _in_clause(column, values):
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class Client(db.Model):
    __tablename__ = 'clients'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(30), nullable=False)
    address = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

class FinanceEntry(db.Model):
    __tablename__ = 'finance_entries'
    __table_args__ = (
        db.CheckConstraint(_in_clause('type', ENTRY_TYPES), name='ck_entry_type'),
        db.CheckConstraint(_in_clause('status', ENTRY_STATUSES), name='ck_entry_status'),
        db.CheckConstraint(_in_clause('payment_mode', PAYMENT_MODES), name='ck_entry_payment_mode'),
    )
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    # Free text on purpose; entries outlive the clients they mention
    client_name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.String(20), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, index=True)
    payment_mode = db.Column(db.String(20), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

class Invoice(db.Model):
    __tablename__ = 'invoices'
    __table_args__ = (
        db.CheckConstraint(_in_clause('payment_status', PAYMENT_STATUSES), name='ck_invoice_payment_status'),
    )
    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    agency_name = db.Column(db.String(255), nullable=True)
    agency_contact = db.Column(db.String(255), nullable=True)
    agency_address = db.Column(db.Text, nullable=True)
    agency_logo = db.Column(db.Text, nullable=True)
    client_name = db.Column(db.String(255), nullable=False, index=True)
    client_phone = db.Column(db.String(30), nullable=True)
    client_address = db.Column(db.Text, nullable=True)
    invoice_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=False)
    subtotal = db.Column(db.Float, nullable=False, default=0)
    tax_percent = db.Column(db.Float, default=0)
    tax_amount = db.Column(db.Float, default=0)
    discount_percent = db.Column(db.Float, default=0)
    discount_amount = db.Column(db.Float, default=0)
    grand_total = db.Column(db.Float, nullable=False, default=0)
    payment_status = db.Column(db.String(20), nullable=False, default='pending')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    services = db.relationship('InvoiceService', backref='invoice', lazy=True,
                               cascade='all, delete-orphan', passive_deletes=True,
                               order_by='InvoiceService.id')

class InvoiceService(db.Model):
    __tablename__ = 'invoice_services'
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    rate = db.Column(db.Float, nullable=False, default=0)
    amount = db.Column(db.Float, nullable=False, default=0)

class Setting(db.Model):
    __tablename__ = 'settings'
    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
