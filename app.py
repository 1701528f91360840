import csv
import io
import logging
import time
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from functools import wraps

import jwt
from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask.json.provider import DefaultJSONProvider
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from errors import ApiError, Conflict, NotFound, Unauthorized
from finance.aggregation import (
    InvalidWindow,
    Kind,
    Transaction,
    compute_balance,
    compute_monthly_stats,
    compute_recent_window,
    filter_since,
    merge_all_transactions,
    rank_categories,
    sum_amounts,
    validate_window,
    window_start,
)
from finance.analytics import build_analytics
from models import RECORD_MODELS, Expense, Income, User, db
from schemas import LoginIn, RecordIn, RecordUpdate, RegisterIn, format_validation_error

api = Blueprint('api', __name__, url_prefix='/api')

COLLECTIONS = {'expenses': Kind.EXPENSE, 'incomes': Kind.INCOME}
RECORDS = 'any(expenses, incomes):collection'

CSV_HEADER = ['ID', 'Title', 'Amount', 'Category', 'Date', 'Description', 'Created At']


class FinanceJSONProvider(DefaultJSONProvider):
    """Amounts go out as "12.50" strings, dates as ISO 8601."""

    @staticmethod
    def default(o):
        if isinstance(o, Decimal):
            return str(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


def create_app(config_class=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config.update(overrides)
    app.json = FinanceJSONProvider(app)

    logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    app.logger.setLevel(app.config['LOG_LEVEL'])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.register_blueprint(api)
    _register_error_handlers(app)

    @app.route('/')
    def index():
        return jsonify({'status': 'ok', 'message': 'API is running'})

    return app


# ---------------------- Auth Helpers ----------------------
def issue_token(user):
    now = datetime.now(timezone.utc)
    payload = {
        'sub': str(user.id),
        'username': user.username,
        'email': user.email,
        'iat': now,
        'exp': now + timedelta(days=current_app.config['JWT_EXPIRES_DAYS']),
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])


def current_user():
    return g.get('user')


def login_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        token = header[len('Bearer '):].strip() if header.startswith('Bearer ') else ''
        if not token:
            raise Unauthorized()
        try:
            payload = jwt.decode(
                token,
                current_app.config['JWT_SECRET'],
                algorithms=[current_app.config['JWT_ALGORITHM']],
            )
            user_id = int(payload['sub'])
        except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
            current_app.logger.warning('Rejected token on %s: %s', request.path, exc)
            raise Unauthorized('Invalid authentication token') from exc
        user = db.session.get(User, user_id)
        if user is None:
            raise Unauthorized('Invalid authentication token')
        g.user = user
        return view_func(*args, **kwargs)
    return wrapped


def _parse(schema):
    return schema.model_validate(request.get_json(silent=True) or {})


def _auth_response(message, user, status=200):
    return jsonify({'message': message, 'token': issue_token(user), 'user': user.to_dict()}), status


# ---------------------- Routes: Auth ----------------------
@api.route('/health')
def health():
    return jsonify({'status': 'ok', 'message': 'API is running'})


@api.route('/auth/register', methods=['POST'])
def register():
    payload = _parse(RegisterIn)
    if User.query.filter_by(email=payload.email).first():
        raise Conflict('User already exists with this email')
    if User.query.filter_by(username=payload.username).first():
        raise Conflict('Username already taken')
    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=generate_password_hash(payload.password),
        full_name=payload.full_name,
    )
    db.session.add(user)
    db.session.commit()
    current_app.logger.info('Registered user %s', user.id)
    return _auth_response('User registered successfully', user, 201)


@api.route('/auth/login', methods=['POST'])
def login():
    payload = _parse(LoginIn)
    user = User.query.filter_by(email=payload.email).first()
    if not user or not check_password_hash(user.password_hash, payload.password):
        raise Unauthorized('Invalid credentials')
    current_app.logger.info('User %s logged in', user.id)
    return _auth_response('Login successful', user)


@api.route('/auth/profile')
@login_required
def profile():
    return jsonify({'user': current_user().to_dict()})


# ---------------------- Serialization ----------------------
def serialize_transaction(tx):
    return {
        'id': tx.id,
        'type': tx.kind.value,
        'title': tx.title,
        'amount': tx.amount,
        'category': tx.category,
        'date': tx.occurred_on,
        'description': tx.description,
        'created_at': tx.created_at,
        'updated_at': tx.updated_at,
    }


def _record_json(record):
    return serialize_transaction(Transaction.from_record(record, record.kind))


def _csv_response(transactions, prefix, with_type=False):
    si = io.StringIO()
    writer = csv.writer(si)
    writer.writerow(['Type'] + CSV_HEADER if with_type else CSV_HEADER)
    for tx in transactions:
        row = [
            tx.id,
            tx.title,
            str(tx.amount),
            tx.category,
            tx.occurred_on.isoformat(),
            tx.description,
            tx.created_at.isoformat() if tx.created_at else '',
        ]
        writer.writerow([tx.kind.value] + row if with_type else row)
    output = si.getvalue().encode('utf-8')
    filename = f'{prefix}_export_{int(time.time() * 1000)}.csv'
    current_app.logger.info('Exported %d rows to %s for user %s', len(transactions), filename, current_user().id)
    return (output, 200, {
        'Content-Type': 'text/csv; charset=utf-8',
        'Content-Disposition': f'attachment; filename={filename}',
    })


# ---------------------- Record Helpers ----------------------
def _user_records(kind):
    model = RECORD_MODELS[kind]
    return (model.query.filter_by(user_id=current_user().id)
            .order_by(model.occurred_on.desc(), model.id.desc())
            .all())


def _owned_record(kind, record_id):
    # another user's id answers exactly like a missing one
    model = RECORD_MODELS[kind]
    record = model.query.filter_by(id=record_id, user_id=current_user().id).first()
    if record is None:
        raise NotFound(f'{kind.value.capitalize()} not found')
    return record


def _user_record_sets():
    user = current_user()
    return (Expense.query.filter_by(user_id=user.id).all(),
            Income.query.filter_by(user_id=user.id).all())


# ---------------------- Routes: Expenses & Incomes ----------------------
@api.route(f'/<{RECORDS}>', methods=['GET'])
@login_required
def list_records(collection):
    records = _user_records(COLLECTIONS[collection])
    return jsonify({collection: [_record_json(r) for r in records]})


@api.route(f'/<{RECORDS}>', methods=['POST'])
@login_required
def create_record(collection):
    kind = COLLECTIONS[collection]
    payload = _parse(RecordIn)
    record = RECORD_MODELS[kind](
        user_id=current_user().id,
        title=payload.title,
        amount=payload.amount,
        category=payload.category,
        occurred_on=payload.date,
        description=payload.description,
    )
    db.session.add(record)
    db.session.commit()
    current_app.logger.info('Created %s %s for user %s', kind.value, record.id, current_user().id)
    return jsonify({
        'message': f'{kind.value.capitalize()} added successfully',
        kind.value: _record_json(record),
    }), 201


@api.route(f'/<{RECORDS}>/<int:record_id>', methods=['GET'])
@login_required
def get_record(collection, record_id):
    kind = COLLECTIONS[collection]
    return jsonify({kind.value: _record_json(_owned_record(kind, record_id))})


@api.route(f'/<{RECORDS}>/<int:record_id>', methods=['PATCH'])
@login_required
def update_record(collection, record_id):
    kind = COLLECTIONS[collection]
    record = _owned_record(kind, record_id)
    changes = _parse(RecordUpdate).model_dump(exclude_none=True)
    if 'date' in changes:
        changes['occurred_on'] = changes.pop('date')
    for field, value in changes.items():
        setattr(record, field, value)
    record.updated_at = datetime.now(timezone.utc)
    db.session.commit()
    current_app.logger.info('Updated %s %s (%s)', kind.value, record.id, ', '.join(sorted(changes)) or 'no fields')
    return jsonify({
        'message': f'{kind.value.capitalize()} updated successfully',
        kind.value: _record_json(record),
    })


@api.route(f'/<{RECORDS}>/<int:record_id>', methods=['DELETE'])
@login_required
def delete_record(collection, record_id):
    kind = COLLECTIONS[collection]
    record = _owned_record(kind, record_id)
    db.session.delete(record)
    db.session.commit()
    current_app.logger.info('Deleted %s %s', kind.value, record_id)
    return jsonify({'message': f'{kind.value.capitalize()} deleted successfully'})


@api.route(f'/<{RECORDS}>/history/<days>')
@login_required
def record_history(collection, days):
    days = validate_window(days)
    records = filter_since(_user_records(COLLECTIONS[collection]), window_start(days))
    return jsonify({
        collection: [_record_json(r) for r in records],
        'period': f'Last {days} days',
        'total': sum_amounts(records),
    })


@api.route(f'/<{RECORDS}>/download/csv')
@login_required
def download_records_csv(collection):
    kind = COLLECTIONS[collection]
    records = _user_records(kind)
    if not records:
        raise NotFound(f'No {collection} found')
    return _csv_response([Transaction.from_record(r, kind) for r in records], collection)


# ---------------------- Routes: Transactions ----------------------
@api.route('/transactions')
@login_required
def list_transactions():
    expenses, incomes = _user_record_sets()
    transactions = merge_all_transactions(expenses, incomes)
    return jsonify({'transactions': [serialize_transaction(tx) for tx in transactions]})


@api.route('/transactions/balance')
@login_required
def balance():
    expenses, incomes = _user_record_sets()
    return jsonify(compute_balance(expenses, incomes))


@api.route('/transactions/monthly-stats')
@login_required
def monthly_stats():
    expenses, incomes = _user_record_sets()
    stats = compute_monthly_stats(expenses, incomes)
    stats['expense_categories'] = rank_categories(stats['expense_by_category'])
    stats['income_categories'] = rank_categories(stats['income_by_category'])
    return jsonify(stats)


@api.route('/transactions/history/<days>')
@login_required
def transaction_history(days):
    days = validate_window(days)
    expenses, incomes = _user_record_sets()
    result = compute_recent_window(expenses, incomes, days)
    return jsonify({
        'transactions': [serialize_transaction(tx) for tx in result['transactions']],
        'summary': result['summary'],
    })


@api.route('/transactions/analytics/<days>')
@login_required
def transaction_analytics(days):
    days = validate_window(days)
    expenses, incomes = _user_record_sets()
    result = build_analytics(expenses, incomes, days)
    result['top_expenses'] = [serialize_transaction(tx) for tx in result['top_expenses']]
    return jsonify(result)


@api.route('/transactions/download/csv')
@login_required
def download_transactions_csv():
    expenses, incomes = _user_record_sets()
    transactions = merge_all_transactions(expenses, incomes)
    if not transactions:
        raise NotFound('No transactions found')
    return _csv_response(transactions, 'transactions', with_type=True)


# ---------------------- Error Handlers ----------------------
def _register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(InvalidWindow)
    def handle_invalid_window(exc):
        return jsonify({'message': str(exc)}), 400

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        return jsonify({'message': 'Validation failed', 'error': format_validation_error(exc)}), 400

    @app.errorhandler(404)
    def handle_unknown_route(exc):
        return jsonify({'message': f'Route {request.method} {request.path} not found'}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'message': exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        app.logger.exception('Unhandled error on %s %s', request.method, request.path)
        db.session.rollback()
        error = 'Internal server error' if app.config['APP_ENV'] == 'production' else str(exc)
        return jsonify({'message': 'Something went wrong!', 'error': error}), 500


# ---------------------- Run App ----------------------
if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=app.config['PORT'], debug=app.config['APP_ENV'] != 'production')
