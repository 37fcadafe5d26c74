from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import func, or_

from ..db import SessionLocal
from ..models import QuoteRequest
from ..utils.quote_utils import MAX_ID, clean_text, to_int, page_count, like_pattern
from .auth_helpers import token_required

quote_request_bp = Blueprint('quote_requests', __name__)

SEARCH_COLUMNS = (
    QuoteRequest.name,
    QuoteRequest.email,
    QuoteRequest.phone,
    QuoteRequest.service,
    QuoteRequest.details,
)


def plain_text(message, status=200):
    return message, status, {'Content-Type': 'text/plain; charset=utf-8'}


@quote_request_bp.route('/quote-requests', methods=['POST'])
def submit_quote_request():
    """Public lead form (form-encoded); answers in plain text"""
    form = request.form
    fields = {
        'name': clean_text(form.get('name')),
        'email': clean_text(form.get('email')),
        'phone': clean_text(form.get('phone')),
        'service': clean_text(form.get('service')),
        'details': clean_text(form.get('details')),
    }
    if not fields['name'] or not fields['email']:
        return plain_text('Please provide your name and email.', 400)

    session = SessionLocal()
    try:
        quote_request = QuoteRequest(**fields)
        session.add(quote_request)
        session.commit()
        current_app.logger.info(f"Quote request {quote_request.id} received from {fields['email']}")
        return plain_text('Thank you! Your request has been submitted.')
    except Exception as e:
        session.rollback()
        current_app.logger.exception(f"Error storing quote request: {e}")
        return plain_text('Sorry, your request could not be submitted. Please try again later.', 500)
    finally:
        session.close()


@quote_request_bp.route('/quote-requests', methods=['GET'])
@token_required
def list_quote_requests():
    page = min(max(1, to_int(request.args.get('page'), 1)), MAX_ID)
    page_size = min(
        max(1, to_int(request.args.get('pageSize'), current_app.config['QUOTE_REQUEST_PAGE_SIZE'])), MAX_ID
    )
    search = (request.args.get('q') or '').strip()

    session = SessionLocal()
    try:
        query = session.query(QuoteRequest)
        if search:
            pattern = like_pattern(search)
            query = query.filter(or_(*[
                func.lower(column).like(pattern, escape='\\') for column in SEARCH_COLUMNS
            ]))

        total = query.count()
        rows = (
            query.order_by(QuoteRequest.submitted_at.desc(), QuoteRequest.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
            .all()
        )

        return jsonify({
            'page': page,
            'pageSize': page_size,
            'totalCount': total,
            'totalPages': page_count(total, page_size),
            'requests': [r.to_dict() for r in rows],
        })
    except Exception as e:
        current_app.logger.error(f"Error listing quote requests: {e}")
        return jsonify({'error': 'Failed to list quote requests'}), 500
    finally:
        session.close()
