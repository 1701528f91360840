"""
Request schemas for the finance tracker API.

Payloads are validated here before they reach the handlers; a failed
validation is answered with 400 and never coerced.
"""
import datetime as dt
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# Positive magnitude with cent precision; fits the 10,2 range of the ledger
Amount = Annotated[Decimal, Field(gt=0, max_digits=10, decimal_places=2)]
Title = Annotated[str, Field(min_length=1, max_length=255, description="Short label for the record")]
Category = Annotated[str, Field(min_length=1, max_length=100, description="Free-text category label")]


def _normalize_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


class RegisterIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = Field(None, max_length=255)

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, value):
        return _normalize_email(value)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, value):
        return _normalize_email(value)


class RecordIn(BaseModel):
    """An expense or income as entered by the user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Title
    amount: Amount
    category: Category
    date: dt.date = Field(..., description="Calendar date the money moved")
    description: str = Field('', description="Optional notes")

    @field_validator('description', mode='before')
    @classmethod
    def description_default(cls, value):
        return '' if value is None else value


class RecordUpdate(BaseModel):
    """Partial update; every omitted or null field keeps its stored value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[Title] = None
    amount: Optional[Amount] = None
    category: Optional[Category] = None
    date: Optional[dt.date] = None
    description: Optional[str] = None


def format_validation_error(exc):
    return ', '.join(
        '{}: {}'.format('.'.join(str(part) for part in err['loc']) or 'body', err['msg'])
        for err in exc.errors()
    )
