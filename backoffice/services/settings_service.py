from __future__ import annotations

import copy

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice.models import SystemSetting

DEFAULT_SETTINGS: dict[str, dict] = {
    'general': {
        'company_name': 'Flexi Furnish Hub',
        'currency': 'THB',
        'timezone': 'Asia/Bangkok',
        'language': 'th',
        'date_format': 'DD/MM/YYYY',
    },
    'security': {
        'session_timeout_minutes': 60,
        'password_min_length': 8,
        'max_login_attempts': 5,
    },
    'audit': {
        'enabled': True,
        'retention_days': 90,
    },
    'notifications': {
        'low_stock_alerts': True,
        'overdue_payment_alerts': True,
        'claim_alerts': True,
    },
    'backup': {
        'enabled': False,
        'frequency': 'daily',
        'retention_days': 30,
    },
    'integrations': {
        'accounting_sync': False,
        'pos_sync': False,
    },
}


def _stored(db: Session, key: str) -> SystemSetting | None:
    return db.execute(select(SystemSetting).where(SystemSetting.key == key)).scalar_one_or_none()


def get_setting(db: Session, *, key: str) -> dict:
    if key not in DEFAULT_SETTINGS:
        raise ValueError('Unknown settings section')
    merged = copy.deepcopy(DEFAULT_SETTINGS[key])
    row = _stored(db, key)
    if row:
        merged.update(row.value or {})
    return merged


def get_all_settings(db: Session) -> dict[str, dict]:
    return {key: get_setting(db, key=key) for key in DEFAULT_SETTINGS}


def update_setting(db: Session, *, key: str, values: dict, updated_by_user_id: int | None) -> dict:
    if key not in DEFAULT_SETTINGS:
        raise ValueError('Unknown settings section')
    defaults = DEFAULT_SETTINGS[key]
    unknown = sorted(set(values) - set(defaults))
    if unknown:
        raise ValueError(f'Unknown settings: {", ".join(unknown)}')
    for name, value in values.items():
        expected = type(defaults[name])
        # bool is an int subclass; keep flags and counts apart.
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise ValueError(f'Setting {name} must be {expected.__name__}')

    row = _stored(db, key)
    if not row:
        row = SystemSetting(key=key, value={})
        db.add(row)
    row.value = {**(row.value or {}), **values}
    row.updated_by_user_id = updated_by_user_id
    db.flush()
    return get_setting(db, key=key)
