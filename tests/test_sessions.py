from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from db_fixtures import memory_session_factory, seed_branch
from sqlalchemy import func, select

from backoffice.auth import Role
from backoffice.models import User, UserRole, WebSession
from backoffice.security.sessions import (
    create_web_session,
    load_principal_from_token,
    purge_expired_sessions,
    revoke_web_session,
)


class WebSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = memory_session_factory()
        self.db = self.session_factory()
        self.addCleanup(self.db.close)
        branch, _, _ = seed_branch(self.db)
        self.user = User(username='cashier', password_hash='x', role=UserRole.CASHIER, branch_id=branch.id)
        self.db.add(self.user)
        self.db.flush()

    def test_token_resolves_to_principal(self) -> None:
        token = create_web_session(self.db, self.user.id, ip='10.0.0.1', user_agent='pytest')
        principal = load_principal_from_token(self.db, token)
        self.assertIsNotNone(principal)
        self.assertEqual(principal.username, 'cashier')
        self.assertEqual(principal.role, Role.CASHIER)
        self.assertEqual(principal.branch_id, self.user.branch_id)

    def test_unknown_and_missing_tokens(self) -> None:
        self.assertIsNone(load_principal_from_token(self.db, None))
        self.assertIsNone(load_principal_from_token(self.db, 'nope'))

    def test_revoked_session_stops_resolving(self) -> None:
        token = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        self.assertTrue(revoke_web_session(self.db, token))
        self.assertFalse(revoke_web_session(self.db, token))
        self.assertIsNone(load_principal_from_token(self.db, token))

    def test_deactivated_user_loses_session(self) -> None:
        token = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        self.user.active = False
        self.db.flush()
        self.assertIsNone(load_principal_from_token(self.db, token))
        row = self.db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one()
        self.assertIsNotNone(row.revoked_at)

    def test_purge_removes_expired_and_revoked(self) -> None:
        live = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        revoked = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        expired = create_web_session(self.db, self.user.id, ip=None, user_agent=None)
        revoke_web_session(self.db, revoked)
        row = self.db.execute(select(WebSession).where(WebSession.session_token == expired)).scalar_one()
        row.expires_at = datetime.now(tz=timezone.utc) - timedelta(minutes=5)
        self.db.flush()

        self.assertEqual(purge_expired_sessions(self.db), 2)
        remaining = self.db.execute(select(WebSession.session_token)).scalars().all()
        self.assertEqual(remaining, [live])
        self.assertEqual(self.db.execute(select(func.count(WebSession.id))).scalar_one(), 1)


if __name__ == '__main__':
    unittest.main()
