import pytest

from construction_backend import db
from construction_backend.app import create_app
from construction_backend.models import User, Client, Item, Quote, QuoteLine, QuoteStatus

TEST_PASSWORD = 'Sup3rSecret!'


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'DATABASE_URL': f"sqlite:///{tmp_path / 'test.db'}",
    })
    db.Base.metadata.create_all(bind=db.get_engine())
    yield app
    db.get_engine().dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    session = db.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def staff_user(session):
    user = User(email='office@example.com', first_name='Office', last_name='Staff', role='Manager')
    user.set_password(TEST_PASSWORD)
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def auth_headers(client, staff_user):
    resp = client.post('/auth/login', json={'email': staff_user.email, 'password': TEST_PASSWORD})
    assert resp.status_code == 200
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def make_client(session):
    def _make(name, email=None, **fields):
        row = Client(name=name, email=email, **fields)
        session.add(row)
        session.commit()
        return row
    return _make


@pytest.fixture
def make_item(session):
    def _make(name, description='', default_rate=0):
        row = Item(name=name, description=description, default_rate=default_rate)
        session.add(row)
        session.commit()
        return row
    return _make


@pytest.fixture
def make_quote(session):
    """Insert a quote directly, bypassing the editor's validation."""
    def _make(client_id, status=QuoteStatus.DRAFT, title='', lines=()):
        quote = Quote(client_id=client_id, status=status, title=title)
        session.add(quote)
        session.flush()
        for quantity, rate in lines:
            session.add(QuoteLine(
                quote_id=quote.id,
                description=f'{quantity} @ {rate}',
                quantity=quantity,
                rate=rate,
                line_total=quantity * rate,
            ))
        session.commit()
        return quote
    return _make


@pytest.fixture
def save_quote(client, auth_headers):
    def _save(payload):
        return client.post('/billing/quotes', json=payload, headers=auth_headers)
    return _save
