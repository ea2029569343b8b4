"""Time and id sources. Injected into the tracker so tests can pin them."""

import uuid
from datetime import datetime

import pytz


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def new_id() -> str:
    return uuid.uuid4().hex
