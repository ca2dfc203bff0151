"""Tests for TokenStore persistence."""
from datetime import datetime, timedelta

from ledgersync.xero.token_store import TokenStore

EXPIRY = datetime(2025, 1, 15, 12, 0)


def _store_tenant(store, tenant_id, **kwargs):
    return store.store(
        tenant_id=tenant_id,
        access_token=kwargs.pop("access_token", f"at-{tenant_id}"),
        refresh_token=kwargs.pop("refresh_token", f"rt-{tenant_id}"),
        expires_at=kwargs.pop("expires_at", EXPIRY),
        **kwargs,
    )


class TestTokenStore:
    def test_no_active_connection(self, engine):
        assert TokenStore(engine).get_active() is None

    def test_store_and_read_back(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1", tenant_name="Acme", scopes="offline_access")

        active = store.get_active()
        assert active.tenant_id == "t-1"
        assert active.tenant_name == "Acme"
        assert active.scopes == "offline_access"
        assert active.is_active

    def test_store_upserts_per_tenant(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1", tenant_name="Acme")
        _store_tenant(store, "t-1", access_token="at-new", expires_at=EXPIRY + timedelta(hours=1))

        rows = store.list_active()
        assert len(rows) == 1
        assert rows[0].access_token == "at-new"
        # A refresh without a name keeps the stored one
        assert rows[0].tenant_name == "Acme"

    def test_most_recent_connection_is_active(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1", reconnect=True)
        _store_tenant(store, "t-2", reconnect=True)
        assert store.get_active().tenant_id == "t-2"

        _store_tenant(store, "t-1", reconnect=True)
        assert store.get_active().tenant_id == "t-1"

    def test_deactivate(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1")
        store.deactivate("t-1")
        store.deactivate("unknown")

        assert store.get_active() is None
        assert store.get_by_tenant("t-1").is_active is False

    def test_store_reactivates(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1")
        store.deactivate("t-1")
        _store_tenant(store, "t-1", reconnect=True)
        assert store.get_active().tenant_id == "t-1"

    def test_deactivate_all(self, engine):
        store = TokenStore(engine)
        _store_tenant(store, "t-1")
        _store_tenant(store, "t-2")
        assert store.deactivate_all() == 2
        assert store.list_active() == []
        assert store.deactivate_all() == 0
