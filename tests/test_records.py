import csv
import io
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import BigInteger

from models import Expense


def add(client, headers, collection='expenses', **fields):
    payload = {'title': 'Groceries', 'amount': 42.5, 'category': 'Food', 'date': date.today().isoformat()}
    payload.update(fields)
    resp = client.post(f'/api/{collection}', json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()[collection[:-1]]


@pytest.mark.parametrize('collection', ['expenses', 'incomes'])
def test_create_and_fetch(client, auth, collection):
    created = add(client, auth, collection, title='Paycheck', amount='1000', description='October')
    assert created['amount'] == '1000.00'
    assert created['type'] == collection[:-1]
    assert created['description'] == 'October'

    resp = client.get(f"/api/{collection}/{created['id']}", headers=auth)
    assert resp.status_code == 200
    assert resp.get_json()[collection[:-1]]['title'] == 'Paycheck'


def test_description_is_optional(client, auth):
    created = add(client, auth)
    assert created['description'] == ''
    assert created['amount'] == '42.50'


@pytest.mark.parametrize('amount', [0, -5, '12.345', 'abc', 100000000])
def test_amount_must_be_positive_cents(client, auth, amount):
    resp = client.post('/api/expenses', headers=auth, json={
        'title': 'Bad', 'amount': amount, 'category': 'Food', 'date': '2026-10-01'})
    assert resp.status_code == 400
    assert resp.get_json()['error'].startswith('amount')


def test_missing_fields_are_reported(client, auth):
    resp = client.post('/api/incomes', headers=auth, json={'title': '  '})
    assert resp.status_code == 400
    error = resp.get_json()['error']
    for field in ('title', 'amount', 'category', 'date'):
        assert field in error


def test_list_is_newest_first(client, auth):
    today = date.today()
    add(client, auth, title='old', date=(today - timedelta(days=3)).isoformat())
    add(client, auth, title='new', date=today.isoformat())
    add(client, auth, title='newer id', date=today.isoformat())

    titles = [e['title'] for e in client.get('/api/expenses', headers=auth).get_json()['expenses']]
    assert titles == ['newer id', 'new', 'old']


def test_partial_update_keeps_omitted_fields(client, auth):
    created = add(client, auth, description='weekly shop')
    resp = client.patch(f"/api/expenses/{created['id']}", headers=auth, json={'amount': '19.99', 'title': None})
    assert resp.status_code == 200
    updated = resp.get_json()['expense']
    assert updated['amount'] == '19.99'
    assert updated['title'] == 'Groceries'
    assert updated['category'] == 'Food'
    assert updated['description'] == 'weekly shop'
    assert updated['date'] == created['date']

    resp = client.patch(f"/api/expenses/{created['id']}", headers=auth, json={'amount': 0})
    assert resp.status_code == 400


def test_update_refreshes_updated_at(client, auth):
    created = add(client, auth)
    before = datetime.fromisoformat(created['updated_at'])

    resp = client.patch(f"/api/expenses/{created['id']}", headers=auth, json={})
    assert resp.status_code == 200
    after = datetime.fromisoformat(resp.get_json()['expense']['updated_at'])
    assert after > before
    assert resp.get_json()['expense']['created_at'] == created['created_at']


def test_largest_amount_is_stored_exactly(client, auth):
    assert isinstance(Expense.__table__.c.amount_cents.type, BigInteger)

    created = add(client, auth, amount='99999999.99')
    assert created['amount'] == '99999999.99'
    fetched = client.get(f"/api/expenses/{created['id']}", headers=auth).get_json()['expense']
    assert fetched['amount'] == '99999999.99'
    balance = client.get('/api/transactions/balance', headers=auth).get_json()
    assert balance['total_expense'] == '99999999.99'


def test_delete(client, auth):
    created = add(client, auth, 'incomes')
    resp = client.delete(f"/api/incomes/{created['id']}", headers=auth)
    assert resp.get_json() == {'message': 'Income deleted successfully'}
    assert client.get(f"/api/incomes/{created['id']}", headers=auth).status_code == 404


def test_records_are_private_to_their_owner(client, auth, other_auth):
    created = add(client, auth)
    path = f"/api/expenses/{created['id']}"

    for method in ('get', 'patch', 'delete'):
        resp = getattr(client, method)(path, headers=other_auth, json={})
        assert resp.status_code == 404
        assert resp.get_json() == {'message': 'Expense not found'}

    assert client.get('/api/expenses', headers=other_auth).get_json() == {'expenses': []}
    assert client.get(path, headers=auth).status_code == 200


def test_missing_record_is_not_found(client, auth):
    resp = client.get('/api/incomes/12345', headers=auth)
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'Income not found'


def test_history_window(client, auth):
    today = date.today()
    add(client, auth, 'incomes', amount='10.00', date=(today - timedelta(days=7)).isoformat())
    add(client, auth, 'incomes', amount='5.00', date=(today - timedelta(days=8)).isoformat())

    resp = client.get('/api/incomes/history/7', headers=auth)
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['period'] == 'Last 7 days'
    assert data['total'] == '10.00'
    assert len(data['incomes']) == 1


@pytest.mark.parametrize('days', ['45', 'week', '0'])
def test_history_rejects_unlisted_windows(client, auth, days):
    resp = client.get(f'/api/expenses/history/{days}', headers=auth)
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Days parameter must be one of 7, 30, 90, 180, 365'


def test_csv_download(client, auth):
    assert client.get('/api/expenses/download/csv', headers=auth).status_code == 404

    add(client, auth, title='Coffee', amount='4.10', category='Food', date='2026-10-02', description='flat white')
    resp = client.get('/api/expenses/download/csv', headers=auth)
    assert resp.status_code == 200
    assert resp.headers['Content-Type'].startswith('text/csv')
    assert 'attachment; filename=expenses_export_' in resp.headers['Content-Disposition']

    rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
    assert rows[0] == ['ID', 'Title', 'Amount', 'Category', 'Date', 'Description', 'Created At']
    assert rows[1][1:6] == ['Coffee', '4.10', 'Food', '2026-10-02', 'flat white']
