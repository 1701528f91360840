from datetime import datetime, timezone
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import declared_attr

from finance.aggregation import Kind

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(30), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    expenses = db.relationship('Expense', backref='user', lazy=True, cascade="all, delete-orphan")
    incomes = db.relationship('Income', backref='user', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {'id': self.id, 'username': self.username, 'email': self.email, 'full_name': self.full_name}


class MoneyRecord:
    """Columns shared by the expense and income tables."""

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)  # always positive
    category = db.Column(db.String(100), nullable=False)
    occurred_on = db.Column('date', db.Date, nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default='')
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    @declared_attr
    def user_id(cls):
        return db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True)

    @property
    def amount(self):
        return (Decimal(self.amount_cents) / 100).quantize(Decimal('0.01'))

    @amount.setter
    def amount(self, value):
        self.amount_cents = int((Decimal(value) * 100).to_integral_value())


class Expense(MoneyRecord, db.Model):
    __tablename__ = 'expense'
    kind = Kind.EXPENSE


class Income(MoneyRecord, db.Model):
    __tablename__ = 'income'
    kind = Kind.INCOME


RECORD_MODELS = {Kind.EXPENSE: Expense, Kind.INCOME: Income}
