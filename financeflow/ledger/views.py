# financeflow/ledger/views.py
import re
import json
from collections import namedtuple
from datetime import datetime, date
from io import BytesIO
import pytz
from flask import send_file
from openpyxl import Workbook
from sqlalchemy import extract, or_
from financeflow.init_db import db
from financeflow.errors import ValidationError, NotFoundError
from financeflow.logging_config import setup_logging
from financeflow.ledger.models import (
    Client, FinanceEntry, Invoice, InvoiceService, Setting,
    ENTRY_TYPES, ENTRY_STATUSES, PAYMENT_MODES, PAYMENT_STATUSES
)

logger = setup_logging()

INVOICE_NUMBER_PATTERN = re.compile(r'INV-(\d+)')

# is_json is False when the stored text was not valid JSON and is returned as-is
DecodedSetting = namedtuple('DecodedSetting', ['value', 'is_json'])


def _isoformat(value):
    return value.isoformat() if value else None

def parse_date(value, field):
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {field}: expected YYYY-MM-DD')

def parse_timestamp(value, field='timestamp'):
    """ISO-8601 (optionally ending in Z) or 'YYYY-MM-DD HH:MM:SS', stored as naive UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'Invalid {field}: {value}')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.utc).replace(tzinfo=None)
    return parsed

def get_or_404(model, record_id, label):
    record = db.session.get(model, record_id)
    if record is None:
        raise NotFoundError(f'{label} not found')
    return record


def client_to_dict(client):
    return {
        'id': client.id,
        'name': client.name,
        'phone': client.phone,
        'address': client.address,
        'createdAt': _isoformat(client.created_at),
        'updatedAt': _isoformat(client.updated_at)
    }

def entry_to_dict(entry):
    return {
        'id': entry.id,
        'date': _isoformat(entry.date),
        'clientName': entry.client_name,
        'description': entry.description,
        'amount': entry.amount,
        'type': entry.type,
        'status': entry.status,
        'paymentMode': entry.payment_mode,
        'createdAt': _isoformat(entry.created_at),
        'updatedAt': _isoformat(entry.updated_at)
    }

def service_to_dict(service, include_id=True):
    data = {
        'name': service.name,
        'quantity': service.quantity,
        'rate': service.rate,
        'amount': service.amount
    }
    if include_id:
        data = {'id': service.id, **data}
    return data

def invoice_to_dict(invoice, include_service_ids=True):
    return {
        'id': invoice.id,
        'invoiceNumber': invoice.invoice_number,
        'agencyName': invoice.agency_name,
        'agencyContact': invoice.agency_contact,
        'agencyAddress': invoice.agency_address,
        'agencyLogo': invoice.agency_logo,
        'clientName': invoice.client_name,
        'clientPhone': invoice.client_phone,
        'clientAddress': invoice.client_address,
        'invoiceDate': _isoformat(invoice.invoice_date),
        'dueDate': _isoformat(invoice.due_date),
        'subtotal': invoice.subtotal,
        'taxPercent': invoice.tax_percent,
        'taxAmount': invoice.tax_amount,
        'discountPercent': invoice.discount_percent,
        'discountAmount': invoice.discount_amount,
        'grandTotal': invoice.grand_total,
        'paymentStatus': invoice.payment_status,
        'services': [service_to_dict(s, include_service_ids) for s in invoice.services],
        'createdAt': _isoformat(invoice.created_at),
        'updatedAt': _isoformat(invoice.updated_at)
    }


# Settings

def encode_setting_value(value):
    if value is None or isinstance(value, (dict, list, bool)):
        return json.dumps(value)
    return str(value)

def decode_setting_value(raw):
    try:
        return DecodedSetting(json.loads(raw), True)
    except (TypeError, ValueError):
        return DecodedSetting(raw, False)

def upsert_setting(key, value):
    """Stages the write; the caller commits."""
    setting = db.session.get(Setting, key)
    if setting is None:
        setting = Setting(key=key)
        db.session.add(setting)
    setting.value = encode_setting_value(value)
    setting.updated_at = datetime.utcnow()
    return setting

def settings_as_dict():
    return {s.key: decode_setting_value(s.value).value for s in Setting.query.all()}


# Clients

def create_client(data):
    if not data.get('name') or not data.get('phone'):
        raise ValidationError('Name and phone are required')
    client = Client(name=data['name'], phone=data['phone'], address=data.get('address') or None)
    db.session.add(client)
    db.session.commit()
    return client

def update_client(client_id, data):
    client = get_or_404(Client, client_id, 'Client')
    for field in ('name', 'phone', 'address'):
        if data.get(field) is not None:
            setattr(client, field, data[field])
    client.updated_at = datetime.utcnow()
    db.session.commit()
    return client


# Finance entries

def _check_choice(data, key, choices):
    value = data.get(key)
    if value is not None and value not in choices:
        raise ValidationError(f"Invalid {key}: must be one of {', '.join(choices)}")

def validate_entry_fields(data):
    _check_choice(data, 'type', ENTRY_TYPES)
    _check_choice(data, 'status', ENTRY_STATUSES)
    _check_choice(data, 'paymentMode', PAYMENT_MODES)
    amount = data.get('amount')
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise ValidationError('Invalid amount: must be a number')

def build_entry(data, created_at=None, updated_at=None):
    return FinanceEntry(
        date=parse_date(data.get('date'), 'date'),
        client_name=data.get('clientName'),
        description=data.get('description') or None,
        amount=data.get('amount'),
        type=data.get('type'),
        status=data.get('status'),
        payment_mode=data.get('paymentMode'),
        created_at=created_at or datetime.utcnow(),
        updated_at=updated_at or datetime.utcnow()
    )

def create_entry(data):
    required = ('date', 'clientName', 'type', 'status', 'paymentMode')
    if any(not data.get(key) for key in required) or data.get('amount') is None:
        raise ValidationError('Missing required fields')
    validate_entry_fields(data)

    entry = build_entry(data)
    db.session.add(entry)
    db.session.commit()
    return entry

def update_entry(entry_id, data):
    entry = get_or_404(FinanceEntry, entry_id, 'Entry')
    validate_entry_fields(data)

    if data.get('date') is not None:
        entry.date = parse_date(data['date'], 'date')
    fields = {
        'clientName': 'client_name',
        'description': 'description',
        'amount': 'amount',
        'type': 'type',
        'status': 'status',
        'paymentMode': 'payment_mode',
    }
    for key, column in fields.items():
        if data.get(key) is not None:
            setattr(entry, column, data[key])
    entry.updated_at = datetime.utcnow()
    db.session.commit()
    return entry

def filter_entries(args, with_search=True):
    query = FinanceEntry.query

    if args.get('startDate'):
        query = query.filter(FinanceEntry.date >= parse_date(args['startDate'], 'startDate'))
    if args.get('endDate'):
        query = query.filter(FinanceEntry.date <= parse_date(args['endDate'], 'endDate'))
    try:
        # month arrives zero-based from the browser client
        if args.get('month') not in (None, ''):
            query = query.filter(extract('month', FinanceEntry.date) == int(args['month']) + 1)
        if args.get('year'):
            query = query.filter(extract('year', FinanceEntry.date) == int(args['year']))
    except ValueError:
        raise ValidationError('month and year must be numbers')
    if args.get('type'):
        query = query.filter(FinanceEntry.type == args['type'])
    if args.get('status'):
        query = query.filter(FinanceEntry.status == args['status'])
    if args.get('paymentMode'):
        query = query.filter(FinanceEntry.payment_mode == args['paymentMode'])
    if with_search and args.get('search'):
        pattern = f"%{args['search']}%"
        query = query.filter(or_(FinanceEntry.client_name.like(pattern),
                                 FinanceEntry.description.like(pattern)))

    return query.order_by(FinanceEntry.date.desc(), FinanceEntry.created_at.desc())


# Invoices

def build_services(services, default_name=None):
    built = []
    if not isinstance(services, list):
        return built
    for service in services:
        if not isinstance(service, dict):
            raise ValidationError('Invalid service row')
        built.append(InvoiceService(
            name=service.get('name') or default_name,
            quantity=service.get('quantity') or 1,
            rate=service.get('rate') or 0,
            amount=service.get('amount') or 0
        ))
    return built

def build_invoice(data, default_dates=False, include_logo=True, default_service_name=None):
    """An unsaved invoice aggregate: header plus its service rows."""
    today = date.today()
    invoice_date = data.get('invoiceDate') or (today if default_dates else None)
    due_date = data.get('dueDate') or (today if default_dates else None)

    return Invoice(
        invoice_number=data.get('invoiceNumber'),
        agency_name=data.get('agencyName') or None,
        agency_contact=data.get('agencyContact') or None,
        agency_address=data.get('agencyAddress') or None,
        agency_logo=(data.get('agencyLogo') or None) if include_logo else None,
        client_name=data.get('clientName'),
        client_phone=data.get('clientPhone') or None,
        client_address=data.get('clientAddress') or None,
        invoice_date=parse_date(invoice_date, 'invoiceDate'),
        due_date=parse_date(due_date, 'dueDate'),
        subtotal=data.get('subtotal') or 0,
        tax_percent=data.get('taxPercent') or 0,
        tax_amount=data.get('taxAmount') or 0,
        discount_percent=data.get('discountPercent') or 0,
        discount_amount=data.get('discountAmount') or 0,
        grand_total=data.get('grandTotal') or 0,
        payment_status=data.get('paymentStatus') or 'pending',
        created_at=parse_timestamp(data.get('createdAt'), 'createdAt') or datetime.utcnow(),
        updated_at=parse_timestamp(data.get('updatedAt'), 'updatedAt') or datetime.utcnow(),
        services=build_services(data.get('services'), default_service_name)
    )

def create_invoice(data):
    if not all(data.get(key) for key in ('invoiceNumber', 'clientName', 'invoiceDate', 'dueDate')):
        raise ValidationError('Missing required fields')
    _check_choice(data, 'paymentStatus', PAYMENT_STATUSES)

    try:
        invoice = build_invoice(data)
        db.session.add(invoice)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"Invoice {invoice.invoice_number} created with {len(invoice.services)} services.")
    return invoice

INVOICE_HEADER_FIELDS = {
    'agencyName': 'agency_name',
    'agencyContact': 'agency_contact',
    'agencyAddress': 'agency_address',
    'agencyLogo': 'agency_logo',
    'clientName': 'client_name',
    'clientPhone': 'client_phone',
    'clientAddress': 'client_address',
    'subtotal': 'subtotal',
    'taxPercent': 'tax_percent',
    'taxAmount': 'tax_amount',
    'discountPercent': 'discount_percent',
    'discountAmount': 'discount_amount',
    'grandTotal': 'grand_total',
    'paymentStatus': 'payment_status',
}

def update_invoice(invoice_id, data):
    invoice = get_or_404(Invoice, invoice_id, 'Invoice')
    _check_choice(data, 'paymentStatus', PAYMENT_STATUSES)

    try:
        for key, column in INVOICE_HEADER_FIELDS.items():
            if data.get(key) is not None:
                setattr(invoice, column, data[key])
        if data.get('invoiceDate') is not None:
            invoice.invoice_date = parse_date(data['invoiceDate'], 'invoiceDate')
        if data.get('dueDate') is not None:
            invoice.due_date = parse_date(data['dueDate'], 'dueDate')
        if data.get('services') is not None:
            # delete-orphan cascade drops the rows being replaced
            invoice.services = build_services(data['services'])
        invoice.updated_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return invoice

def delete_invoice(invoice_id):
    invoice = get_or_404(Invoice, invoice_id, 'Invoice')
    db.session.delete(invoice)
    db.session.commit()

def next_invoice_number():
    last = Invoice.query.order_by(Invoice.id.desc()).first()
    if last:
        match = INVOICE_NUMBER_PATTERN.search(last.invoice_number)
        if match:
            return f"INV-{int(match.group(1)) + 1:04d}"
    return 'INV-0001'


# Analytics

def financial_summary(entries):
    summary = {
        'totalIncome': 0,
        'totalExpense': 0,
        'pendingAmount': 0,
        'receivedAmount': 0,
        'netBalance': 0
    }
    for entry in entries:
        amount = entry.amount or 0
        if entry.type == 'income':
            summary['totalIncome'] += amount
            if entry.status == 'pending':
                summary['pendingAmount'] += amount
            else:
                summary['receivedAmount'] += amount
        else:
            summary['totalExpense'] += amount
    summary['netBalance'] = summary['totalIncome'] - summary['totalExpense']
    return summary

def monthly_totals(entries):
    months = [{'income': 0, 'expense': 0} for _ in range(12)]
    for entry in entries:
        bucket = 'income' if entry.type == 'income' else 'expense'
        months[entry.date.month - 1][bucket] += entry.amount or 0
    return months

def payment_mode_distribution(entries):
    distribution = {}
    for entry in entries:
        mode = entry.payment_mode or 'other'
        distribution[mode] = distribution.get(mode, 0) + (entry.amount or 0)
    return distribution

def status_distribution(entries):
    distribution = {'pending': 0, 'received': 0}
    for entry in entries:
        key = 'pending' if entry.status == 'pending' else 'received'
        distribution[key] += entry.amount or 0
    return distribution

def yearly_revenue(entries):
    years = {}
    for entry in entries:
        totals = years.setdefault(str(entry.date.year), {'income': 0, 'expense': 0})
        totals['income' if entry.type == 'income' else 'expense'] += entry.amount or 0
    return years


def export_to_xlsx(document, filename):
    wb = Workbook()

    ws = wb.active
    ws.title = "Entries"
    ws.append(["Date", "Client", "Description", "Amount", "Type", "Status", "Payment Mode"])
    for entry in document['entries']:
        ws.append([entry['date'], entry['clientName'], entry['description'], entry['amount'],
                   entry['type'], entry['status'], entry['paymentMode']])

    # Calculate balance
    total_income = sum(e['amount'] or 0 for e in document['entries'] if e['type'] == 'income')
    total_expenses = sum(e['amount'] or 0 for e in document['entries'] if e['type'] == 'expense')
    ws.append([])
    ws.append(["Total Income", total_income])
    ws.append(["Total Expenses", total_expenses])
    ws.append(["Balance", total_income - total_expenses])

    ws = wb.create_sheet("Invoices")
    ws.append(["Invoice #", "Client", "Invoice Date", "Due Date", "Subtotal", "Tax", "Discount",
               "Grand Total", "Payment Status"])
    for inv in document['invoices']:
        ws.append([inv['invoiceNumber'], inv['clientName'], inv['invoiceDate'], inv['dueDate'],
                   inv['subtotal'], inv['taxAmount'], inv['discountAmount'], inv['grandTotal'],
                   inv['paymentStatus']])

    ws = wb.create_sheet("Services")
    ws.append(["Invoice #", "Service", "Quantity", "Rate", "Amount"])
    for inv in document['invoices']:
        for service in inv['services']:
            ws.append([inv['invoiceNumber'], service['name'], service['quantity'],
                       service['rate'], service['amount']])

    ws = wb.create_sheet("Clients")
    ws.append(["Name", "Phone", "Address"])
    for client in document['clients']:
        ws.append([client['name'], client['phone'], client['address']])

    ws = wb.create_sheet("Settings")
    ws.append(["Key", "Value", "Format"])
    for setting in Setting.query.order_by(Setting.key.asc()).all():
        decoded = decode_setting_value(setting.value)
        ws.append([setting.key, setting.value, "JSON" if decoded.is_json else "Text"])

    # Save to a BytesIO object
    output = BytesIO()
    wb.save(output)
    output.seek(0)

    return send_file(output, download_name=filename, as_attachment=True)
