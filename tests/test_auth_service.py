"""
Tests for the login lockout rules in services.auth.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from services.auth import (
    AccountDisabled,
    AccountLocked,
    AuthenticationService,
    InternalError,
    InvalidCredentials,
    ValidationError,
)

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeAccounts:
    """In-memory stand-in for AccountRepository that records every write."""

    def __init__(self, *accounts):
        self.rows = {a["id"]: dict(a) for a in accounts}
        self.updates = []
        self.lookups = 0

    def find_by(self, field, value):
        self.lookups += 1
        return [dict(row) for row in self.rows.values() if row.get(field) == value]

    def update(self, account_id, changes):
        self.updates.append((account_id, dict(changes)))
        self.rows[account_id].update(changes)


def make_account(**overrides):
    account = {
        "id": 7,
        "username": "jdoe",
        "email": "jdoe@example.com",
        "password_hash": "hash:correct",
        "nombre_completo": "John Doe",
        "activo": 1,
        "verificado": 0,
        "failed_attempts": 0,
        "locked_until": None,
        "last_access": None,
        "cliente_id": None,
        "empleado_id": None,
        "rol": {"id": 1, "nombre": "administrador", "permisos": {"all": True}},
    }
    account.update(overrides)
    return account


@pytest.fixture
def hasher():
    hasher = Mock(spec=["hash", "verify"])
    hasher.verify.side_effect = lambda plain, hashed: hashed == f"hash:{plain}"
    return hasher


@pytest.fixture
def clock():
    return Clock(NOW)


def build(accounts, hasher, clock):
    return AuthenticationService(accounts=accounts, hasher=hasher, clock=clock)


class TestInputValidation:
    def test_missing_identifier_fails_before_lookup(self, hasher, clock):
        accounts = FakeAccounts(make_account())
        service = build(accounts, hasher, clock)

        with pytest.raises(ValidationError) as exc:
            service.authenticate(None, "correct")

        assert exc.value.status == 400
        assert accounts.lookups == 0

    def test_missing_password_fails_before_lookup(self, hasher, clock):
        accounts = FakeAccounts(make_account())
        service = build(accounts, hasher, clock)

        with pytest.raises(ValidationError):
            service.authenticate("jdoe", "")

        assert accounts.lookups == 0

    @pytest.mark.parametrize("identifier, password", [("jdoe", 12345), (["jdoe"], "correct"), ("jdoe", {"p": 1})])
    def test_non_text_input_is_rejected_before_lookup(self, hasher, clock, identifier, password):
        accounts = FakeAccounts(make_account())
        service = build(accounts, hasher, clock)

        with pytest.raises(ValidationError) as exc:
            service.authenticate(identifier, password)

        assert exc.value.status == 400
        assert accounts.lookups == 0
        hasher.verify.assert_not_called()


class TestLookup:
    def test_unknown_user_and_wrong_password_look_the_same(self, hasher, clock):
        service = build(FakeAccounts(make_account()), hasher, clock)

        with pytest.raises(InvalidCredentials) as unknown:
            service.authenticate("nobody", "correct")
        with pytest.raises(InvalidCredentials) as wrong:
            service.authenticate("jdoe", "wrong")

        assert unknown.value.status == wrong.value.status == 401
        assert unknown.value.message == wrong.value.message

    def test_ambiguous_match_is_rejected(self, hasher, clock):
        accounts = FakeAccounts(make_account(id=1), make_account(id=2))
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials):
            service.authenticate("jdoe", "correct")
        hasher.verify.assert_not_called()

    def test_lookup_error_is_reported_as_invalid_credentials(self, hasher, clock):
        accounts = Mock()
        accounts.find_by.side_effect = RuntimeError("store offline")
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials):
            service.authenticate("jdoe", "correct")

    def test_email_lookup(self, hasher, clock):
        service = build(FakeAccounts(make_account()), hasher, clock)

        result = service.authenticate("jdoe@example.com", "correct", by="email")

        assert result.username == "jdoe"


class TestFailedAttempts:
    @pytest.mark.parametrize("previous", [0, 1, 2, 3])
    def test_wrong_password_increments_without_lock(self, hasher, clock, previous):
        accounts = FakeAccounts(make_account(failed_attempts=previous))
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials):
            service.authenticate("jdoe", "wrong")

        row = accounts.rows[7]
        assert row["failed_attempts"] == previous + 1
        assert row["locked_until"] is None
        assert len(accounts.updates) == 1

    def test_null_counter_counts_from_zero(self, hasher, clock):
        accounts = FakeAccounts(make_account(failed_attempts=None))
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials):
            service.authenticate("jdoe", "wrong")

        assert accounts.rows[7]["failed_attempts"] == 1

    def test_fifth_failure_locks_for_fifteen_minutes(self, hasher, clock):
        accounts = FakeAccounts(make_account(failed_attempts=4))
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials) as exc:
            service.authenticate("jdoe", "wrong")

        assert exc.value.status == 401
        row = accounts.rows[7]
        assert row["failed_attempts"] == 5
        assert row["locked_until"] == (NOW + timedelta(minutes=15)).isoformat()
        # counter and lock land in a single write
        assert len(accounts.updates) == 1

    def test_scenario_three_then_two_wrong_attempts(self, hasher, clock):
        accounts = FakeAccounts(make_account(failed_attempts=3))
        service = build(accounts, hasher, clock)

        with pytest.raises(InvalidCredentials) as first:
            service.authenticate("jdoe", "wrong")
        assert first.value.status == 401
        assert accounts.rows[7]["failed_attempts"] == 4

        clock.now = NOW + timedelta(seconds=20)
        with pytest.raises(InvalidCredentials) as second:
            service.authenticate("jdoe", "wrong")
        assert second.value.status == 401
        assert accounts.rows[7]["failed_attempts"] == 5
        locked_until = datetime.fromisoformat(accounts.rows[7]["locked_until"])
        assert locked_until == clock.now + timedelta(minutes=15)

        clock.now = NOW + timedelta(seconds=40)
        with pytest.raises(AccountLocked) as third:
            service.authenticate("jdoe", "correct")
        assert third.value.status == 403
        assert accounts.rows[7]["failed_attempts"] == 5


class TestLockout:
    def test_locked_account_skips_password_check(self, hasher, clock):
        locked_until = (NOW + timedelta(minutes=3)).isoformat()
        accounts = FakeAccounts(make_account(failed_attempts=5, locked_until=locked_until))
        service = build(accounts, hasher, clock)

        with pytest.raises(AccountLocked):
            service.authenticate("jdoe", "correct")

        assert hasher.verify.call_count == 0
        assert accounts.updates == []

    def test_lock_expires_by_wall_clock(self, hasher, clock):
        locked_until = NOW + timedelta(minutes=15)
        accounts = FakeAccounts(make_account(failed_attempts=5, locked_until=locked_until.isoformat()))
        service = build(accounts, hasher, clock)

        clock.now = locked_until + timedelta(seconds=1)
        result = service.authenticate("jdoe", "correct")

        assert result.id == 7
        row = accounts.rows[7]
        assert row["failed_attempts"] == 0
        assert row["locked_until"] is None
        assert row["last_access"] == clock.now.isoformat()

    def test_lock_boundary_is_still_locked_until_strictly_after(self, hasher, clock):
        accounts = FakeAccounts(make_account(locked_until=(NOW + timedelta(microseconds=1)).isoformat()))
        service = build(accounts, hasher, clock)

        with pytest.raises(AccountLocked):
            service.authenticate("jdoe", "correct")

    def test_naive_lock_timestamp_is_read_as_utc(self, hasher, clock):
        naive = (NOW + timedelta(minutes=5)).replace(tzinfo=None).isoformat()
        service = build(FakeAccounts(make_account(locked_until=naive)), hasher, clock)

        with pytest.raises(AccountLocked):
            service.authenticate("jdoe", "correct")


class TestDisabledAccount:
    def test_inactive_account_is_refused_without_verification(self, hasher, clock):
        accounts = FakeAccounts(make_account(activo=0))
        service = build(accounts, hasher, clock)

        with pytest.raises(AccountDisabled) as exc:
            service.authenticate("jdoe", "correct")

        assert exc.value.status == 403
        hasher.verify.assert_not_called()

    def test_inactive_with_expired_lock_is_still_refused(self, hasher, clock):
        expired = (NOW - timedelta(minutes=1)).isoformat()
        service = build(FakeAccounts(make_account(activo=0, locked_until=expired)), hasher, clock)

        with pytest.raises(AccountDisabled):
            service.authenticate("jdoe", "correct")

    def test_locked_and_disabled_messages_differ(self):
        assert AccountLocked().message != AccountDisabled().message


class TestSuccess:
    def test_success_resets_state_and_strips_hash(self, hasher, clock):
        accounts = FakeAccounts(make_account(failed_attempts=3))
        service = build(accounts, hasher, clock)

        result = service.authenticate("jdoe", "correct")

        payload = result.to_dict()
        assert "password_hash" not in payload
        assert payload["rol"] == {"id": 1, "nombre": "administrador", "permisos": {"all": True}}
        assert payload["verificado"] is False
        assert accounts.updates == [
            (7, {
                "failed_attempts": 0,
                "locked_until": None,
                "last_access": NOW.isoformat(),
                "updated_at": NOW.isoformat(),
            })
        ]


class TestInternalErrors:
    def test_hasher_failure_is_internal_not_credentials(self, hasher, clock):
        hasher.verify.side_effect = RuntimeError("rpc down")
        accounts = FakeAccounts(make_account(failed_attempts=2))
        service = build(accounts, hasher, clock)

        with pytest.raises(InternalError) as exc:
            service.authenticate("jdoe", "correct")

        assert exc.value.status == 500
        assert accounts.rows[7]["failed_attempts"] == 2
        assert accounts.updates == []

    def test_bookkeeping_write_failure_is_internal(self, hasher, clock):
        accounts = FakeAccounts(make_account())
        accounts.update = Mock(side_effect=RuntimeError("read-only"))
        service = build(accounts, hasher, clock)

        with pytest.raises(InternalError):
            service.authenticate("jdoe", "correct")
