from unittest.mock import MagicMock

import pytest

from maroon_backend.infra import supabase_client


def test_client_is_created_once_per_role(monkeypatch):
    create = MagicMock(side_effect=lambda url, key: MagicMock(name=key))
    monkeypatch.setattr(supabase_client, "create_client", create)
    monkeypatch.setattr(supabase_client, "_clients", {})
    monkeypatch.setattr("maroon_backend.infra.supabase_client.config.SUPABASE_URL", "https://x.supabase.co")

    first = supabase_client._client("service", "service-key")
    second = supabase_client._client("service", "service-key")
    anon = supabase_client._client("anon", "anon-key")

    assert first is second
    assert anon is not first
    assert create.call_count == 2
    create.assert_any_call("https://x.supabase.co", "service-key")


def test_missing_key_raises(monkeypatch):
    monkeypatch.setattr(supabase_client, "_clients", {})
    monkeypatch.setattr("maroon_backend.infra.supabase_client.config.SUPABASE_URL", "https://x.supabase.co")
    with pytest.raises(RuntimeError):
        supabase_client._client("service", "")
