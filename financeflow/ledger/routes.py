# financeflow/ledger/routes.py
from datetime import datetime
from flask import Blueprint, jsonify, request
from financeflow.init_db import db
from financeflow.decorators import token_required
from financeflow.errors import ValidationError
from financeflow.logging_config import setup_logging
from financeflow.responses import success_response
from financeflow.ledger import views, transfer
from financeflow.ledger.models import Client, FinanceEntry, Invoice, Setting


ledger_bp = Blueprint('ledger', __name__)

logger = setup_logging()


@ledger_bp.before_request
@token_required
def require_session():
    """Every ledger endpoint needs a valid bearer token."""


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# Clients

@ledger_bp.route('/clients', methods=['GET'])
def list_clients():
    clients = Client.query.order_by(Client.name.asc()).all()
    return success_response(data=[views.client_to_dict(c) for c in clients])

@ledger_bp.route('/clients/<int:client_id>', methods=['GET'])
def get_client(client_id):
    return success_response(data=views.client_to_dict(views.get_or_404(Client, client_id, 'Client')))

@ledger_bp.route('/clients', methods=['POST'])
def create_client():
    client = views.create_client(_json_body())
    return success_response(data=views.client_to_dict(client), message='Client created successfully', status=201)

@ledger_bp.route('/clients/<int:client_id>', methods=['PUT'])
def update_client(client_id):
    client = views.update_client(client_id, _json_body())
    return success_response(data=views.client_to_dict(client), message='Client updated successfully')

@ledger_bp.route('/clients/<int:client_id>', methods=['DELETE'])
def delete_client(client_id):
    client = views.get_or_404(Client, client_id, 'Client')
    db.session.delete(client)
    db.session.commit()
    return success_response(message='Client deleted successfully')


# Finance entries

@ledger_bp.route('/entries', methods=['GET'])
def list_entries():
    entries = views.filter_entries(request.args).all()
    return success_response(data=[views.entry_to_dict(e) for e in entries])

@ledger_bp.route('/entries/<int:entry_id>', methods=['GET'])
def get_entry(entry_id):
    return success_response(data=views.entry_to_dict(views.get_or_404(FinanceEntry, entry_id, 'Entry')))

@ledger_bp.route('/entries', methods=['POST'])
def create_entry():
    entry = views.create_entry(_json_body())
    return success_response(data=views.entry_to_dict(entry), message='Entry created successfully', status=201)

@ledger_bp.route('/entries/<int:entry_id>', methods=['PUT'])
def update_entry(entry_id):
    entry = views.update_entry(entry_id, _json_body())
    return success_response(data=views.entry_to_dict(entry), message='Entry updated successfully')

@ledger_bp.route('/entries/<int:entry_id>', methods=['DELETE'])
def delete_entry(entry_id):
    entry = views.get_or_404(FinanceEntry, entry_id, 'Entry')
    db.session.delete(entry)
    db.session.commit()
    return success_response(message='Entry deleted successfully')


# Invoices

@ledger_bp.route('/invoices/next-number', methods=['GET'])
def next_invoice_number():
    return success_response(data={'invoiceNumber': views.next_invoice_number()})

@ledger_bp.route('/invoices', methods=['GET'])
def list_invoices():
    invoices = Invoice.query.order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc()).all()
    return success_response(data=[views.invoice_to_dict(i) for i in invoices])

@ledger_bp.route('/invoices/<int:invoice_id>', methods=['GET'])
def get_invoice(invoice_id):
    return success_response(data=views.invoice_to_dict(views.get_or_404(Invoice, invoice_id, 'Invoice')))

@ledger_bp.route('/invoices/import', methods=['POST'])
def import_invoices():
    invoices = _json_body().get('invoices')
    if not isinstance(invoices, list) or not invoices:
        raise ValidationError('Invalid data format. Expected array of invoices.')

    summary = transfer.bulk_import_invoices(invoices)
    return success_response(
        data=summary,
        message=f"Imported {summary['success']} invoices. Failed: {summary['failed']}"
    )

@ledger_bp.route('/invoices', methods=['POST'])
def create_invoice():
    invoice = views.create_invoice(_json_body())
    return success_response(data=views.invoice_to_dict(invoice), message='Invoice created successfully', status=201)

@ledger_bp.route('/invoices/<int:invoice_id>', methods=['PUT'])
def update_invoice(invoice_id):
    invoice = views.update_invoice(invoice_id, _json_body())
    return success_response(data=views.invoice_to_dict(invoice), message='Invoice updated successfully')

@ledger_bp.route('/invoices/<int:invoice_id>', methods=['DELETE'])
def delete_invoice(invoice_id):
    views.delete_invoice(invoice_id)
    return success_response(message='Invoice deleted successfully')


# Settings

@ledger_bp.route('/settings', methods=['GET'])
def get_settings():
    return success_response(data=views.settings_as_dict())

@ledger_bp.route('/settings/<key>', methods=['GET'])
def get_setting(key):
    setting = db.session.get(Setting, key)
    if setting is None:
        return jsonify({'success': True, 'data': None})
    return success_response(data={'key': setting.key, 'value': views.decode_setting_value(setting.value).value})

@ledger_bp.route('/settings/<key>', methods=['PUT'])
def update_setting(key):
    data = _json_body()
    if 'value' not in data:
        raise ValidationError('Value is required')

    views.upsert_setting(key, data['value'])
    db.session.commit()
    return success_response(data={'key': key, 'value': data['value']}, message='Setting updated successfully')

@ledger_bp.route('/settings/<key>', methods=['DELETE'])
def delete_setting(key):
    Setting.query.filter_by(key=key).delete()
    db.session.commit()
    return success_response(message='Setting deleted successfully')


# Analytics

@ledger_bp.route('/analytics/financial-summary', methods=['GET'])
def financial_summary():
    entries = views.filter_entries(request.args, with_search=False).all()
    return success_response(data=views.financial_summary(entries))

@ledger_bp.route('/analytics/monthly/<int:year>', methods=['GET'])
def monthly_data(year):
    entries = views.filter_entries({'year': year}, with_search=False).all()
    return success_response(data=views.monthly_totals(entries))

@ledger_bp.route('/analytics/payment-modes', methods=['GET'])
def payment_modes():
    return success_response(data=views.payment_mode_distribution(FinanceEntry.query.all()))

@ledger_bp.route('/analytics/status-distribution', methods=['GET'])
def status_distribution():
    return success_response(data=views.status_distribution(FinanceEntry.query.all()))

@ledger_bp.route('/analytics/yearly-revenue', methods=['GET'])
def yearly_revenue():
    return success_response(data=views.yearly_revenue(FinanceEntry.query.all()))


# Export / import / clear

@ledger_bp.route('/export', methods=['GET'])
def export_all():
    return success_response(data=transfer.export_all())

@ledger_bp.route('/export/xlsx', methods=['GET'])
def export_xlsx():
    filename = f"financeflow_export_{datetime.utcnow().strftime('%Y%m%d')}.xlsx"
    return views.export_to_xlsx(transfer.export_all(), filename)

@ledger_bp.route('/import', methods=['POST'])
def import_all():
    transfer.import_all(request.get_json(silent=True))
    return success_response(message='Data imported successfully')

@ledger_bp.route('/clear', methods=['DELETE'])
def clear_all():
    transfer.clear_all()
    return success_response(message='All data cleared successfully')
