# financeflow/ledger/transfer.py
"""
Moves the whole ledger between the database and a portable JSON document.

`import_all` and `clear_all` run in a single transaction and either fully
apply or leave the previous data untouched. `bulk_import_invoices` is the
opposite: every invoice is committed on its own and failures are collected
per record.
"""
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from financeflow.init_db import db
from financeflow.errors import ApiError, ValidationError, ConflictError
from financeflow.logging_config import setup_logging
from financeflow.ledger.models import Client, FinanceEntry, Invoice, InvoiceService
from financeflow.ledger.views import (
    build_entry, build_invoice, validate_entry_fields, parse_timestamp, upsert_setting,
    settings_as_dict, client_to_dict, entry_to_dict, invoice_to_dict
)

logger = setup_logging()

EXPORT_VERSION = 2


def export_all():
    entries = FinanceEntry.query.order_by(FinanceEntry.date.desc()).all()
    invoices = (
        Invoice.query.options(selectinload(Invoice.services))
        .order_by(Invoice.invoice_date.desc())
        .all()
    )
    clients = Client.query.order_by(Client.name.asc()).all()

    return {
        'version': EXPORT_VERSION,
        'exportDate': datetime.utcnow().isoformat() + 'Z',
        'entries': [entry_to_dict(e) for e in entries],
        'invoices': [invoice_to_dict(i, include_service_ids=False) for i in invoices],
        'clients': [client_to_dict(c) for c in clients],
        'settings': settings_as_dict()
    }


def _wipe_ledger():
    # Settings are never part of a wipe
    InvoiceService.query.delete()
    Invoice.query.delete()
    FinanceEntry.query.delete()
    Client.query.delete()


def _is_list_of_objects(value):
    return isinstance(value, list) and all(isinstance(item, dict) for item in value)


def import_all(document):
    if (not isinstance(document, dict)
            or not _is_list_of_objects(document.get('entries'))
            or not _is_list_of_objects(document.get('invoices'))
            or not _is_list_of_objects(document.get('clients') or [])):
        raise ValidationError('Invalid data format')

    settings = document.get('settings') or {}
    if not isinstance(settings, dict):
        raise ValidationError('Invalid data format: settings must be an object')

    try:
        _wipe_ledger()

        for client in document.get('clients') or []:
            db.session.add(Client(
                name=client.get('name'),
                phone=client.get('phone'),
                address=client.get('address') or None,
                created_at=parse_timestamp(client.get('createdAt'), 'createdAt') or datetime.utcnow(),
                updated_at=parse_timestamp(client.get('updatedAt'), 'updatedAt') or datetime.utcnow()
            ))
        db.session.flush()

        for entry in document['entries']:
            validate_entry_fields(entry)
            db.session.add(build_entry(
                entry,
                created_at=parse_timestamp(entry.get('createdAt'), 'createdAt'),
                updated_at=parse_timestamp(entry.get('updatedAt'), 'updatedAt')
            ))
        db.session.flush()

        for invoice in document['invoices']:
            db.session.add(build_invoice(invoice))
            # Assigns the new invoice id that its services are linked to
            db.session.flush()

        for key, value in settings.items():
            upsert_setting(key, value)

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.error("Import failed; previous data left in place.")
        raise

    logger.info(
        f"Imported {len(document.get('clients') or [])} clients, {len(document['entries'])} entries, "
        f"{len(document['invoices'])} invoices and {len(settings)} settings."
    )


def clear_all():
    try:
        _wipe_ledger()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("All clients, entries and invoices cleared.")


def bulk_import_invoices(invoices):
    summary = {
        'total': len(invoices),
        'success': 0,
        'failed': 0,
        'errors': []
    }

    for candidate in invoices:
        number = candidate.get('invoiceNumber') if isinstance(candidate, dict) else None
        try:
            if not isinstance(candidate, dict) or not candidate.get('clientName') or not number:
                raise ValidationError('Missing clientName or invoiceNumber')

            if Invoice.query.filter_by(invoice_number=number).first():
                raise ConflictError(f'Invoice {number} already exists')

            db.session.add(build_invoice(
                candidate, default_dates=True, include_logo=False, default_service_name='Service'
            ))
            db.session.commit()
            summary['success'] += 1
        except Exception as e:
            db.session.rollback()
            if isinstance(e, ApiError):
                message = e.message
            elif isinstance(e, SQLAlchemyError):
                message = str(getattr(e, 'orig', e))
            else:
                logger.exception(f"Unexpected error importing invoice {number}")
                message = str(e)
            summary['failed'] += 1
            summary['errors'].append({'invoice': number, 'error': message})

    logger.info(f"Bulk invoice import: {summary['success']} imported, {summary['failed']} failed.")
    return summary
