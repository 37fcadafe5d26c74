from datetime import date, timedelta

from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import String, cast, func, or_

from ..db import SessionLocal
from ..models import (
    Client, Item, Quote, QuoteLine, QuoteStatus, Invoice, InvoiceLine,
    CONVERTIBLE_STATUSES, can_transition
)
from ..utils.quote_utils import (
    ValidationError, parse_quote_payload, parse_status_filter, to_id, like_pattern
)
from .auth_helpers import token_required

billing_bp = Blueprint('billing', __name__, url_prefix='/billing')


def client_name_column():
    """Client name, or 'Client #<id>' when the client row is missing"""
    return func.coalesce(Client.name, 'Client #' + cast(Quote.client_id, String))


def error_response(message, status):
    return jsonify({'success': False, 'error': message}), status


def _search_query(raw):
    return (raw or '').strip()


# ------------------ CLIENTS ------------------

@billing_bp.route('/clients', methods=['GET'])
@token_required
def search_clients():
    q = _search_query(request.args.get('q'))
    session = SessionLocal()
    try:
        query = session.query(Client)
        if q:
            pattern = like_pattern(q)
            query = query.filter(or_(
                func.lower(Client.name).like(pattern, escape='\\'),
                func.lower(Client.email).like(pattern, escape='\\'),
            ))
        clients = query.order_by(Client.name.asc(), Client.id.asc()).all()
        return jsonify({'results': [c.to_search_dict() for c in clients]})
    except Exception as e:
        current_app.logger.error(f"Error searching clients: {e}")
        return jsonify({'error': 'Failed to load clients.'}), 500
    finally:
        session.close()


@billing_bp.route('/clients/directory', methods=['GET'])
@token_required
def client_directory():
    """Every client, newest first, with the joined address line"""
    session = SessionLocal()
    try:
        clients = session.query(Client).order_by(Client.created_at.desc(), Client.id.desc()).all()
        return jsonify({'results': [c.to_dict() for c in clients]})
    except Exception as e:
        current_app.logger.error(f"Error loading client directory: {e}")
        return jsonify({'error': 'Failed to load clients.'}), 500
    finally:
        session.close()


# ------------------ CATALOG ------------------

@billing_bp.route('/items', methods=['GET'])
@token_required
def search_items():
    q = _search_query(request.args.get('q'))
    session = SessionLocal()
    try:
        query = session.query(Item)
        if q:
            pattern = like_pattern(q)
            query = query.filter(or_(
                func.lower(Item.name).like(pattern, escape='\\'),
                func.lower(Item.description).like(pattern, escape='\\'),
            ))
        items = query.order_by(Item.name.asc(), Item.id.asc()).all()
        return jsonify({'results': [i.to_dict() for i in items]})
    except Exception as e:
        current_app.logger.error(f"Error searching items: {e}")
        return jsonify({'error': 'Failed to load items.'}), 500
    finally:
        session.close()


# ------------------ QUOTES ------------------

@billing_bp.route('/quotes', methods=['GET', 'POST'])
@token_required
def handle_quotes():
    if request.method == 'POST':
        return save_quote()
    return list_quotes()


def list_quotes():
    statuses = parse_status_filter(request.args.get('status'))
    limit = current_app.config['QUOTE_LIST_LIMIT']

    session = SessionLocal()
    try:
        total = func.coalesce(func.sum(QuoteLine.line_total), 0).label('total')
        client_name = client_name_column().label('client_name')

        query = (
            session.query(Quote, client_name, total)
            .outerjoin(Client, Client.id == Quote.client_id)
            .outerjoin(QuoteLine, QuoteLine.quote_id == Quote.id)
        )
        if statuses:
            query = query.filter(Quote.status.in_(statuses))
        else:
            query = query.filter(Quote.status != QuoteStatus.CONVERTED)

        rows = (
            query.group_by(Quote.id, Client.name)
            .order_by(Quote.created_at.desc(), Quote.id.desc())
            .limit(limit)
            .all()
        )

        results = []
        for quote, name, quote_total in rows:
            results.append({
                'id': quote.id,
                'client_id': quote.client_id,
                'client_name': name,
                'status': QuoteStatus(quote.status).value,
                'title': quote.title,
                'created_at': quote.created_at.isoformat() if quote.created_at else None,
                'total': float(quote_total or 0),
            })
        return jsonify({'results': results})
    except Exception as e:
        current_app.logger.error(f"Error listing quotes: {e}")
        return jsonify({'error': 'Failed to list quotes'}), 500
    finally:
        session.close()


def save_quote():
    """Create or update a quote header and replace its whole line set"""
    data = request.get_json(silent=True)
    try:
        draft = parse_quote_payload(data)
    except ValidationError as e:
        return error_response(str(e), 400)

    session = SessionLocal()
    try:
        if draft.quote_id > 0:
            quote = session.get(Quote, draft.quote_id)
            if not quote:
                return error_response('Quote not found', 404)

            if not can_transition(quote.status, draft.status):
                current_app.logger.warning(
                    f"Refused quote {quote.id} status change {QuoteStatus(quote.status).value} -> {draft.status.value}"
                )
                return error_response(
                    f"Cannot change a {QuoteStatus(quote.status).value} quote to {draft.status.value}", 409
                )

            quote.client_id = draft.client_id
            quote.status = draft.status
            quote.title = draft.title
            quote.notes = draft.notes

            # Remove old items snapshot
            session.query(QuoteLine).filter(QuoteLine.quote_id == quote.id).delete(synchronize_session=False)
        else:
            if not can_transition(None, draft.status):
                return error_response(f"A new quote cannot start as {draft.status.value}", 409)

            quote = Quote(
                client_id=draft.client_id,
                status=draft.status,
                title=draft.title,
                notes=draft.notes,
            )
            session.add(quote)
            session.flush()

        session.add_all([
            QuoteLine(
                quote_id=quote.id,
                item_id=line.item_id,
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                line_total=line.line_total,
            )
            for line in draft.lines
        ])
        session.commit()

        current_app.logger.info(f"Quote {quote.id} saved with {len(draft.lines)} line(s) as {draft.status.value}")
        return jsonify({'success': True, 'id': quote.id}), 200

    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error saving quote: {e}")
        return error_response('Database error saving quote', 500)
    finally:
        session.close()


@billing_bp.route('/quote', methods=['GET'])
@token_required
def get_quote():
    quote_id = to_id(request.args.get('id'))
    if quote_id <= 0:
        return jsonify({'error': 'Missing or invalid quote id'}), 400

    session = SessionLocal()
    try:
        row = (
            session.query(Quote, client_name_column())
            .outerjoin(Client, Client.id == Quote.client_id)
            .filter(Quote.id == quote_id)
            .first()
        )
        if not row:
            return jsonify({'error': 'Quote not found'}), 404

        quote, name = row
        lines = (
            session.query(QuoteLine)
            .filter(QuoteLine.quote_id == quote.id)
            .order_by(QuoteLine.id.asc())
            .all()
        )
        return jsonify({
            'quote': quote.to_dict(client_name=name),
            'items': [line.to_dict() for line in lines],
        })
    except Exception as e:
        current_app.logger.error(f"Error loading quote {quote_id}: {e}")
        return jsonify({'error': 'Failed to load quote'}), 500
    finally:
        session.close()


@billing_bp.route('/quotes/convert', methods=['POST'])
@token_required
def convert_quote():
    """Promote a quote to an invoice; the quote becomes converted in the same transaction"""
    data = request.get_json(silent=True) or {}
    quote_id = to_id(data.get('quote_id'))
    if quote_id <= 0:
        return error_response('Missing quote_id', 400)

    session = SessionLocal()
    try:
        quote = session.get(Quote, quote_id)
        if not quote:
            return error_response('Quote not found', 404)

        current_status = QuoteStatus(quote.status)
        if current_status not in CONVERTIBLE_STATUSES:
            current_app.logger.warning(f"Refused conversion of {current_status.value} quote {quote.id}")
            return error_response(f"Cannot convert a {current_status.value} quote", 409)

        if not quote.lines:
            return error_response('Quote has no line items', 400)

        today = date.today()
        invoice = Invoice(
            quote_id=quote.id,
            client_id=quote.client_id,
            status='issued',
            issued_date=today,
            due_date=today + timedelta(days=current_app.config['INVOICE_DUE_DAYS']),
            notes=quote.notes,
        )
        invoice.lines = [InvoiceLine.from_quote_line(line) for line in quote.lines]
        session.add(invoice)
        session.flush()

        quote.status = QuoteStatus.CONVERTED
        quote.invoice_id = invoice.id
        session.commit()

        current_app.logger.info(f"Quote {quote.id} converted to invoice {invoice.id}")
        return jsonify({'success': True, 'invoice_id': invoice.id}), 200

    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error converting quote {quote_id}: {e}")
        return error_response('Database error converting quote', 500)
    finally:
        session.close()


# ------------------ INVOICES ------------------

def invoice_client_name_column():
    return func.coalesce(Client.name, 'Client #' + cast(Invoice.client_id, String))


@billing_bp.route('/invoices', methods=['GET'])
@token_required
def list_invoices():
    session = SessionLocal()
    try:
        total = func.coalesce(func.sum(InvoiceLine.line_total), 0).label('total')
        rows = (
            session.query(Invoice, invoice_client_name_column().label('client_name'), total)
            .outerjoin(Client, Client.id == Invoice.client_id)
            .outerjoin(InvoiceLine, InvoiceLine.invoice_id == Invoice.id)
            .group_by(Invoice.id, Client.name)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .limit(current_app.config['QUOTE_LIST_LIMIT'])
            .all()
        )

        results = []
        for invoice, name, invoice_total in rows:
            results.append({
                'id': invoice.id,
                'quote_id': invoice.quote_id,
                'client_id': invoice.client_id,
                'client_name': name,
                'status': invoice.status,
                'issued_date': invoice.issued_date.isoformat() if invoice.issued_date else None,
                'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
                'created_at': invoice.created_at.isoformat() if invoice.created_at else None,
                'total': float(invoice_total or 0),
            })
        return jsonify({'results': results})
    except Exception as e:
        current_app.logger.error(f"Error listing invoices: {e}")
        return jsonify({'error': 'Failed to list invoices'}), 500
    finally:
        session.close()


@billing_bp.route('/invoice', methods=['GET'])
@token_required
def get_invoice():
    invoice_id = to_id(request.args.get('id'))
    if invoice_id <= 0:
        return jsonify({'error': 'Missing or invalid invoice id'}), 400

    session = SessionLocal()
    try:
        row = (
            session.query(Invoice, invoice_client_name_column())
            .outerjoin(Client, Client.id == Invoice.client_id)
            .filter(Invoice.id == invoice_id)
            .first()
        )
        if not row:
            return jsonify({'error': 'Invoice not found'}), 404

        invoice, name = row
        lines = (
            session.query(InvoiceLine)
            .filter(InvoiceLine.invoice_id == invoice.id)
            .order_by(InvoiceLine.id.asc())
            .all()
        )
        return jsonify({
            'invoice': invoice.to_dict(client_name=name),
            'items': [line.to_dict() for line in lines],
        })
    except Exception as e:
        current_app.logger.error(f"Error loading invoice {invoice_id}: {e}")
        return jsonify({'error': 'Failed to load invoice'}), 500
    finally:
        session.close()
