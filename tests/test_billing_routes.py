from decimal import Decimal

from sqlalchemy import text

from construction_backend import db
from construction_backend.models import Quote, QuoteLine, QuoteStatus


def line(description, quantity=1, rate=10, **extra):
    return dict(description=description, quantity=quantity, rate=rate, **extra)


def stored_lines(session, quote_id):
    session.expire_all()
    return session.query(QuoteLine).filter_by(quote_id=quote_id).order_by(QuoteLine.id).all()


# ------------------ AUTH / TRANSPORT ------------------

def test_billing_endpoints_require_a_token(client):
    assert client.get('/billing/quotes').status_code == 401
    assert client.get('/billing/items', headers={'Authorization': 'Bearer not-a-jwt'}).status_code == 401
    assert client.post('/billing/quotes', json={}).status_code == 401


def test_wrong_verb_is_405_json(client, auth_headers):
    resp = client.put('/billing/quotes', json={}, headers=auth_headers)
    assert resp.status_code == 405
    assert resp.get_json() == {'success': False, 'error': 'Method not allowed'}

    resp = client.delete('/billing/items', headers=auth_headers)
    assert resp.status_code == 405


def test_cors_is_open(client, auth_headers):
    resp = client.get('/billing/items', headers=auth_headers)
    assert resp.headers['Access-Control-Allow-Origin'] == '*'

    preflight = client.open('/billing/quotes', method='OPTIONS')
    assert preflight.status_code == 200
    assert preflight.headers['Access-Control-Allow-Origin'] == '*'


def test_preflight_is_answered_by_the_app_without_a_token(client):
    for path in ('/billing/quote', '/assignments', '/quote-requests', '/auth/me'):
        resp = client.open(path, method='OPTIONS')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'ok'}


# ------------------ CATALOG / CLIENT SEARCH ------------------

def test_catalog_search_is_case_insensitive(client, auth_headers, make_item):
    make_item('PVC pipe run', 'Schedule 40 supply line', '9.75')
    make_item('Copper fittings', 'Elbows for PIPE joints', '3.10')
    make_item('Drywall hang', 'Per sheet', '38.50')

    upper = client.get('/billing/items?q=PIPE', headers=auth_headers).get_json()['results']
    lower = client.get('/billing/items?q=pipe', headers=auth_headers).get_json()['results']

    assert upper == lower
    assert [r['name'] for r in upper] == ['Copper fittings', 'PVC pipe run']


def test_catalog_results_are_typed(client, auth_headers, make_item):
    make_item('Site cleanup', 'Haul-off', '250')

    result = client.get('/billing/items', headers=auth_headers).get_json()['results'][0]
    assert isinstance(result['id'], int)
    assert result['default_rate'] == 250.0
    assert isinstance(result['default_rate'], float)


def test_catalog_without_query_lists_everything_by_name(client, auth_headers, make_item):
    for name in ('Zinc flashing', 'Anchor bolts', 'Mortar'):
        make_item(name)

    results = client.get('/billing/items?q=', headers=auth_headers).get_json()['results']
    assert [r['name'] for r in results] == ['Anchor bolts', 'Mortar', 'Zinc flashing']


def test_client_search_matches_name_or_email(client, auth_headers, make_client):
    make_client('Harper Homes', 'office@harper.test', city='Boise', state='ID')
    make_client('Blue Ridge LLC', 'HARPER.J@blueridge.test')
    make_client('Cedar Builders', 'info@cedar.test')

    results = client.get('/billing/clients?q=harper', headers=auth_headers).get_json()['results']
    assert [r['name'] for r in results] == ['Blue Ridge LLC', 'Harper Homes']
    assert set(results[1]) == {'id', 'name', 'email', 'phone', 'city', 'state'}
    assert results[1]['city'] == 'Boise'


def test_client_directory_joins_address_parts(client, auth_headers, make_client):
    make_client('Harper Homes', address_line1='12 Oak St', address_line2='', city='Boise', state='ID', zip='83702')

    result = client.get('/billing/clients/directory', headers=auth_headers).get_json()['results'][0]
    assert result['full_address'] == '12 Oak St, Boise, ID, 83702'


# ------------------ QUOTE EDITOR ------------------

def test_create_quote_drops_empty_rows(save_quote, session):
    payload = {
        'client_id': 4,
        'title': 'Basement finish',
        'items': [
            line('Framing labor', 2, 72),
            line('', 0, 0),
            {'item_id': 9, 'quantity': 1, 'rate': 38.5},
            {'description': '   ', 'quantity': 3, 'rate': 1},
        ],
    }
    resp = save_quote(payload)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['success'] is True

    quote = session.get(Quote, body['id'])
    assert quote.status == QuoteStatus.DRAFT
    assert quote.title == 'Basement finish'
    assert len(stored_lines(session, quote.id)) == 2

    # Saving the same lines again keeps the same count
    payload['id'] = body['id']
    assert save_quote(payload).get_json()['id'] == body['id']
    assert len(stored_lines(session, quote.id)) == 2


def test_line_totals_are_computed_when_missing(save_quote, session):
    quote_id = save_quote({
        'client_id': 1,
        'items': [line('Concrete pour', '1.5', '165'), line('Cleanup', 1, 250, line_total=199.99)],
    }).get_json()['id']

    lines = stored_lines(session, quote_id)
    assert [l.line_total for l in lines] == [Decimal('247.50'), Decimal('199.99')]
    assert lines[0].quantity == Decimal('1.50')


def test_bogus_status_is_stored_as_draft(save_quote, session):
    quote_id = save_quote({'client_id': 2, 'status': 'bogus', 'items': [line('Tile')]}).get_json()['id']
    session.expire_all()
    assert session.get(Quote, quote_id).status == QuoteStatus.DRAFT


def test_missing_client_writes_nothing(save_quote, session):
    for client_id in (0, None):
        resp = save_quote({'client_id': client_id, 'items': [line('Tile')]})
        assert resp.status_code == 400
        assert resp.get_json() == {'success': False, 'error': 'Missing client_id'}

    resp = save_quote({'items': [line('Tile')]})
    assert resp.status_code == 400
    assert session.query(Quote).count() == 0


def test_empty_items_write_nothing(save_quote, session):
    resp = save_quote({'client_id': 3, 'items': []})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'At least one line item is required'

    resp = save_quote({'client_id': 3, 'items': [line('', 1, 1)]})
    assert resp.status_code == 400
    assert session.query(Quote).count() == 0
    assert session.query(QuoteLine).count() == 0


def test_oversized_numbers_are_rejected_without_writing(save_quote, session):
    resp = save_quote({'client_id': 1, 'items': [line('Gravel', '1e30', '1e30')]})
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False

    assert save_quote({'client_id': 1, 'items': [line('Gravel', '1e400')]}).status_code == 400
    assert save_quote({'client_id': 1, 'items': [line('Gravel', 1, 100000000)]}).status_code == 400

    resp = save_quote({'client_id': 10 ** 30, 'items': [line('Gravel')]})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid client_id'

    assert save_quote({'id': 10 ** 30, 'client_id': 1, 'items': [line('Gravel')]}).status_code == 400
    assert session.query(Quote).count() == 0
    assert session.query(QuoteLine).count() == 0


def test_invalid_json_is_rejected(client, auth_headers):
    resp = client.post('/billing/quotes', data='{not json', headers=auth_headers, content_type='application/json')
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False


def test_update_replaces_every_line(save_quote, session):
    quote_id = save_quote({
        'client_id': 5, 'items': [line('old one'), line('old two'), line('old three')],
    }).get_json()['id']

    resp = save_quote({
        'id': quote_id, 'client_id': 6, 'status': 'issued', 'title': 'Revised',
        'items': [line('new one', 3, 2)],
    })
    assert resp.status_code == 200

    lines = stored_lines(session, quote_id)
    assert [l.description for l in lines] == ['new one']

    quote = session.get(Quote, quote_id)
    assert quote.client_id == 6
    assert quote.status == QuoteStatus.ISSUED
    assert quote.title == 'Revised'


def test_failed_line_insert_keeps_previous_lines(save_quote, session):
    quote_id = save_quote({
        'client_id': 5, 'title': 'Original', 'items': [line('keep me'), line('and me')],
    }).get_json()['id']

    with db.get_engine().begin() as conn:
        conn.execute(text(
            "CREATE TRIGGER reject_line BEFORE INSERT ON quote_items "
            "WHEN NEW.description = 'boom' BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        ))

    resp = save_quote({
        'id': quote_id, 'client_id': 5, 'title': 'Changed',
        'items': [line('replacement'), line('boom')],
    })
    assert resp.status_code == 500
    assert resp.get_json() == {'success': False, 'error': 'Database error saving quote'}

    assert [l.description for l in stored_lines(session, quote_id)] == ['keep me', 'and me']
    assert session.get(Quote, quote_id).title == 'Original'


def test_updating_unknown_quote_is_404(save_quote, session):
    resp = save_quote({'id': 999, 'client_id': 1, 'items': [line('x')]})
    assert resp.status_code == 404
    assert session.query(QuoteLine).count() == 0


def test_terminal_quotes_cannot_be_edited(save_quote, make_quote, session):
    quote = make_quote(1, status=QuoteStatus.CANCELLED, lines=[(1, 5)])

    resp = save_quote({'id': quote.id, 'client_id': 1, 'status': 'draft', 'items': [line('again')]})
    assert resp.status_code == 409
    assert len(stored_lines(session, quote.id)) == 1


def test_editor_cannot_mark_a_quote_converted(save_quote, session):
    resp = save_quote({'client_id': 1, 'status': 'converted', 'items': [line('x')]})
    assert resp.status_code == 409
    assert session.query(Quote).count() == 0


# ------------------ READERS ------------------

def test_get_quote_returns_header_and_ordered_lines(client, auth_headers, save_quote, make_client):
    harper = make_client('Harper Homes')
    quote_id = save_quote({
        'client_id': harper.id, 'title': 'Deck', 'notes': 'Cedar boards',
        'items': [line('first', 2, 10), line('second', 1, 5.5)],
    }).get_json()['id']

    body = client.get(f'/billing/quote?id={quote_id}', headers=auth_headers).get_json()
    assert body['quote']['client_name'] == 'Harper Homes'
    assert body['quote']['notes'] == 'Cedar boards'
    assert body['quote']['status'] == 'draft'
    assert [i['description'] for i in body['items']] == ['first', 'second']
    assert body['items'][0] == {
        'id': body['items'][0]['id'], 'item_id': None, 'description': 'first',
        'quantity': 2.0, 'rate': 10.0, 'line_total': 20.0,
    }


def test_get_quote_falls_back_to_client_number(client, auth_headers, make_quote):
    quote = make_quote(77, lines=[(1, 1)])
    body = client.get(f'/billing/quote?id={quote.id}', headers=auth_headers).get_json()
    assert body['quote']['client_name'] == 'Client #77'


def test_get_quote_rejects_bad_ids(client, auth_headers):
    assert client.get('/billing/quote', headers=auth_headers).status_code == 400
    assert client.get('/billing/quote?id=-3', headers=auth_headers).status_code == 400
    assert client.get('/billing/quote?id=1e30', headers=auth_headers).status_code == 400
    resp = client.get('/billing/quote?id=4040', headers=auth_headers)
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Quote not found'}


# ------------------ LISTER ------------------

def test_list_totals_sum_line_totals(client, auth_headers, make_quote, make_client):
    make_client('Harper Homes')
    with_lines = make_quote(1, title='Two lines', lines=[(2, Decimal('10.00')), (1, Decimal('5.50'))])
    empty = make_quote(2, title='No lines')

    results = client.get('/billing/quotes', headers=auth_headers).get_json()['results']
    totals = {r['id']: r['total'] for r in results}
    assert totals[with_lines.id] == 25.50
    assert totals[empty.id] == 0

    by_id = {r['id']: r for r in results}
    assert by_id[with_lines.id]['client_name'] == 'Harper Homes'
    assert by_id[empty.id]['client_name'] == 'Client #2'


def test_list_hides_converted_quotes_and_is_newest_first(client, auth_headers, make_quote):
    first = make_quote(1, title='first')
    make_quote(1, status=QuoteStatus.CONVERTED, title='done')
    last = make_quote(1, status=QuoteStatus.ISSUED, title='last')

    results = client.get('/billing/quotes', headers=auth_headers).get_json()['results']
    assert [r['id'] for r in results] == [last.id, first.id]


def test_list_status_allow_list(client, auth_headers, make_quote):
    make_quote(1, status=QuoteStatus.DRAFT)
    converted = make_quote(1, status=QuoteStatus.CONVERTED)
    cancelled = make_quote(1, status=QuoteStatus.CANCELLED)

    results = client.get('/billing/quotes?status=converted,cancelled', headers=auth_headers).get_json()['results']
    assert {r['id'] for r in results} == {converted.id, cancelled.id}


def test_list_is_capped(app, client, auth_headers, make_quote):
    app.config['QUOTE_LIST_LIMIT'] = 3
    for _ in range(5):
        make_quote(1)
    assert len(client.get('/billing/quotes', headers=auth_headers).get_json()['results']) == 3
