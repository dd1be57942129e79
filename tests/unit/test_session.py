"""
Test login/logout and account lifecycle in the session manager.
"""

import asyncio

import pytest

from keyshell.accounts import identity as identity_module
from keyshell.accounts.identity import load_key_set, select_network_key
from keyshell.accounts.session import SessionState
from keyshell.errors import (
    AccountConflictError,
    AlreadyExistsError,
    AuthenticationError,
    IdentityGenerationError,
    NoMatchingKeyError,
    NotFoundError,
    NotLoggedInError,
    TeardownError,
)


@pytest.mark.asyncio
class TestSessionManager:
    """Test SessionManager."""

    async def test_initial_state(self, sessions):
        assert sessions.state is SessionState.LOGGED_OUT
        assert sessions.active_handle is None
        assert sessions.node is None

    async def test_create_account_stores_decryptable_keys(self, sessions, store, encryption_params):
        identity = await sessions.create_account("Carol", "pw1")

        assert store.handles == ["carol"]
        blob = store.keys_path("carol").read_bytes()
        raw = sessions.cipher.decrypt(blob, encryption_params.with_password("pw1"))
        keys = load_key_set(raw)

        assert len(keys) == 2
        network_key = select_network_key(keys, "ethereum", "testnet")
        assert network_key is not None
        assert [k.fingerprint for k in keys] == [k.fingerprint for k in identity.pubkeys]
        assert b"priv" not in store.identity_path("carol").read_bytes()

    async def test_create_duplicate_any_case(self, sessions):
        await sessions.create_account("alice", "pw1")

        with pytest.raises(AlreadyExistsError):
            await sessions.create_account("ALICE", "pw2")

    async def test_create_requires_password(self, sessions):
        with pytest.raises(ValueError):
            await sessions.create_account("alice", "")

    async def test_identity_generation_failure(self, sessions, store, monkeypatch):
        def broken_create():
            raise RuntimeError("no entropy")

        monkeypatch.setattr(identity_module.Account, "create", broken_create)

        with pytest.raises(IdentityGenerationError):
            await sessions.create_account("alice", "pw1")

        assert store.handles == []
        assert not store.account_path("alice").exists()

    async def test_conflicting_directory_fails_before_key_generation(self, sessions, store, monkeypatch):
        """An occupied handle is reported before any key is generated or derived."""
        leftover = store.account_path("alice")
        leftover.mkdir(parents=True)
        (leftover / "identity.json").write_text("{not json")

        def unexpected_create():
            raise AssertionError("keys generated for an unavailable handle")

        monkeypatch.setattr(identity_module.Account, "create", unexpected_create)

        with pytest.raises(AccountConflictError):
            await sessions.create_account("alice", "pw1")

    async def test_create_after_interrupted_create(self, sessions, store):
        leftover = store.account_path("alice")
        leftover.mkdir(parents=True)
        (leftover / "keys").write_bytes(b"partial")

        await sessions.create_account("alice", "pw1")

        assert store.handles == ["alice"]
        await sessions.check_password("alice", "pw1")

    async def test_login_and_logout(self, sessions, node_factory):
        await sessions.create_account("alice", "pw1")

        node = await sessions.login("Alice", "pw1")

        assert sessions.state is SessionState.LOGGED_IN
        assert sessions.active_handle == "alice"
        assert sessions.node is node
        assert node.started
        assert node.kwargs["sync_interval"] == 60.0
        assert node.kwargs["confirmed_after"] == 10
        assert node.kwargs["dir"].is_dir()
        assert len(node.kwargs["keys"]) == 2

        keeper = sessions.session.keeper
        await sessions.logout()

        assert sessions.state is SessionState.LOGGED_OUT
        assert node.destroy_calls == 1
        assert keeper.closed

    async def test_login_uses_network_key(self, sessions, store):
        identity = await sessions.create_account("alice", "pw1")
        node = await sessions.login("alice", "pw1")

        network_key = next(k for k in identity.pubkeys if k.type == "ethereum")
        assert node.address == network_key.fingerprint

    async def test_login_unknown_account(self, sessions):
        with pytest.raises(NotFoundError):
            await sessions.login("ghost", "pw1")

    async def test_login_wrong_password(self, sessions, node_factory):
        await sessions.create_account("alice", "pw1")

        with pytest.raises(AuthenticationError) as exc_info:
            await sessions.login("alice", "wrong")

        assert exc_info.value.handle == "alice"
        assert sessions.state is SessionState.LOGGED_OUT
        assert node_factory.nodes == []

    async def test_login_without_network_key(self, sessions):
        await sessions.create_account("alice", "pw1")
        sessions.network_name = "mainnet"

        with pytest.raises(NoMatchingKeyError) as exc_info:
            await sessions.login("alice", "pw1")

        assert exc_info.value.network_name == "mainnet"
        assert sessions.state is SessionState.LOGGED_OUT

    async def test_second_login_replaces_first(self, sessions, node_factory):
        """The first node is destroyed before the second is constructed."""
        await sessions.create_account("alice", "pw1")
        await sessions.create_account("bob", "pw2")

        first = await sessions.login("alice", "pw1")
        second = await sessions.login("bob", "pw2")

        assert node_factory.events == [
            ("construct", "alice"),
            ("destroy", "alice"),
            ("construct", "bob"),
        ]
        assert first.destroy_calls == 1
        assert second.destroy_calls == 0
        assert sessions.active_handle == "bob"

    async def test_concurrent_logins_leave_one_session(self, sessions, node_factory):
        await sessions.create_account("alice", "pw1")
        await sessions.create_account("bob", "pw2")

        await asyncio.gather(
            sessions.login("alice", "pw1"),
            sessions.login("bob", "pw2"),
        )

        live = [node for node in node_factory.nodes if node.destroy_calls == 0]
        assert len(node_factory.nodes) == 2
        assert len(live) == 1
        assert sessions.node is live[0]

    async def test_failed_login_still_ends_previous_session(self, sessions):
        await sessions.create_account("alice", "pw1")
        await sessions.create_account("bob", "pw2")
        first = await sessions.login("alice", "pw1")

        with pytest.raises(AuthenticationError):
            await sessions.login("bob", "wrong")

        assert first.destroy_calls == 1
        assert sessions.state is SessionState.LOGGED_OUT

    async def test_logout_when_logged_out(self, sessions):
        with pytest.raises(NotLoggedInError):
            await sessions.logout()
        assert sessions.state is SessionState.LOGGED_OUT

    async def test_teardown_failure_still_logs_out(self, sessions, node_factory):
        await sessions.create_account("alice", "pw1")
        node_factory.fail_destroy = True
        await sessions.login("alice", "pw1")
        keeper = sessions.session.keeper

        with pytest.raises(TeardownError) as exc_info:
            await sessions.logout()

        assert exc_info.value.handle == "alice"
        assert sessions.state is SessionState.LOGGED_OUT
        assert keeper.closed

    async def test_login_after_failed_teardown(self, sessions, node_factory):
        await sessions.create_account("alice", "pw1")
        await sessions.create_account("bob", "pw2")
        node_factory.fail_destroy = True
        await sessions.login("alice", "pw1")

        await sessions.login("bob", "pw2")

        assert sessions.active_handle == "bob"

    async def test_check_password(self, sessions):
        await sessions.create_account("alice", "pw1")

        await sessions.check_password("ALICE", "pw1")
        with pytest.raises(AuthenticationError):
            await sessions.check_password("alice", "pw2")

    async def test_delete_with_wrong_password(self, sessions, store):
        await sessions.create_account("alice", "pw1")

        with pytest.raises(AuthenticationError):
            await sessions.delete_account("alice", "wrong")

        assert store.handles == ["alice"]
        assert store.keys_path("alice").exists()

    async def test_delete_account(self, sessions, store):
        await sessions.create_account("alice", "pw1")

        await sessions.delete_account("alice", "pw1")

        assert store.handles == []
        assert not store.account_path("alice").exists()

    async def test_delete_active_account_logs_out(self, sessions, store):
        await sessions.create_account("alice", "pw1")
        node = await sessions.login("alice", "pw1")

        await sessions.delete_account("alice", "pw1")

        assert node.destroy_calls == 1
        assert sessions.state is SessionState.LOGGED_OUT
        assert store.handles == []

    async def test_delete_unknown(self, sessions):
        with pytest.raises(NotFoundError):
            await sessions.delete_account("ghost", "pw1")
