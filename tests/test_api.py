"""
Pytest tests for the index API (FastAPI TestClient, temporary SQLite, in-memory ledger).
"""

from __future__ import annotations

from backend_zombie.core.exceptions import LedgerTimeout, NotFound, StoreUnavailable
from backend_zombie.core.expiry import InactivityUnit

from tests.conftest import BENE, BENE_2, DAY_MS, HOUR_MS, OWNER


def _add_body(wallet, bene=BENE, **overrides):
    body = {
        "ownerAddress": OWNER,
        "beneAddress": bene,
        "walletAddress": wallet,
        "allocation": 5,
        "inactivityDuration": 1,
        "inactivityUnit": "days",
    }
    body.update(overrides)
    return body


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_add_then_list_by_owner(client, wallet, clock):
    r = client.post("/beneficiaries", json=_add_body(wallet))
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["record"]["beneAddress"] == BENE
    assert data["record"]["lastCheckin"] == clock()

    clock.advance(12 * HOUR_MS)
    r = client.get("/beneficiaries", params={"ownerAddress": OWNER})
    assert r.status_code == 200
    (row,) = r.json()
    assert row["id"] == data["id"]
    assert row["remainingMs"] == 12 * HOUR_MS
    assert row["isClaimable"] is False


def test_add_validation_errors_are_400_and_touch_nothing(client, wallet, ledger):
    for override in ({"inactivityUnit": "fortnights"}, {"allocation": 0}, {"inactivityDuration": -1}, {"ownerAddress": ""}):
        r = client.post("/beneficiaries", json=_add_body(wallet, **override))
        assert r.status_code == 400, override
        body = r.json()
        assert body["success"] is False
        assert body["kind"] == "validation_error"
        assert "traceback" not in body
    assert ledger.transactions() == []


def test_missing_fields_are_400(client):
    r = client.post("/beneficiaries", json={"ownerAddress": OWNER})
    assert r.status_code == 400
    assert r.json()["kind"] == "validation_error"


def test_duplicate_add_is_409(client, wallet):
    assert client.post("/beneficiaries", json=_add_body(wallet)).status_code == 200
    r = client.post("/beneficiaries", json=_add_body(wallet, allocation=9))
    assert r.status_code == 409
    assert r.json()["kind"] == "duplicate_record"


def test_list_requires_owner_address(client):
    r = client.get("/beneficiaries")
    assert r.status_code == 400
    assert r.json()["error"] == "Missing owner address"


def test_check_in(client, wallet, clock):
    client.post("/beneficiaries", json=_add_body(wallet))
    clock.advance(20 * HOUR_MS)
    r = client.put("/beneficiaries", json={"ownerAddress": OWNER, "beneAddress": BENE})
    assert r.status_code == 200
    assert r.json() == {"success": True, "lastCheckin": clock()}


def test_check_in_unknown_is_404(client):
    r = client.put("/beneficiaries", json={"ownerAddress": OWNER, "beneAddress": BENE})
    assert r.status_code == 404
    assert r.json()["kind"] == "not_found"


def test_claimlist_splits_actionable_and_pending(client, wallet, clock):
    client.post("/beneficiaries", json=_add_body(wallet))
    clock.advance(DAY_MS)
    r = client.get("/claimlist", params={"beneficiaryAddress": BENE})
    assert r.status_code == 200
    data = r.json()
    assert len(data["actionable"]) == 1
    assert data["pending"] == []
    # Legacy parameter name
    assert client.get("/claimlist", params={"beneAddress": BENE}).json() == data
    assert client.get("/claimlist").status_code == 400


def test_claim_via_delete_claimlist(client, wallet, clock):
    client.post("/beneficiaries", json=_add_body(wallet))
    r = client.request("DELETE", "/claimlist", json={"walletAddress": wallet, "beneAddress": BENE})
    assert r.status_code == 502
    assert r.json()["kind"] == "ledger_error"

    clock.advance(DAY_MS)
    r = client.request("DELETE", "/claimlist", json={"walletAddress": wallet, "beneAddress": BENE})
    assert r.status_code == 200
    assert r.json()["deletedCount"] == 1
    assert client.get("/beneficiaries", params={"ownerAddress": OWNER}).json() == []


def test_delete_single_beneficiary_and_whole_wallet(client, wallet):
    client.post("/beneficiaries", json=_add_body(wallet))
    client.post("/beneficiaries", json=_add_body(wallet, bene=BENE_2))

    r = client.request("DELETE", "/beneficiaries", json={"ownerAddress": OWNER, "beneAddress": BENE})
    assert r.json() == {"success": True, "deletedCount": 1}

    r = client.request("DELETE", "/beneficiaries", json={"ownerAddress": OWNER, "walletAddress": wallet})
    assert r.json() == {"success": True, "deletedCount": 1}

    r = client.request("DELETE", "/beneficiaries", json={"ownerAddress": OWNER, "walletAddress": wallet})
    assert r.status_code == 404
    r = client.request("DELETE", "/beneficiaries", json={"ownerAddress": OWNER})
    assert r.status_code == 400


def test_ledger_timeout_is_504_and_index_untouched(client, wallet, ledger):
    ledger.fail_next(LedgerTimeout("not confirmed within 30s", digest="DgX"))
    r = client.post("/beneficiaries", json=_add_body(wallet))
    assert r.status_code == 504
    body = r.json()
    assert body["kind"] == "ledger_indeterminate"
    assert body["digest"] == "DgX"
    assert client.get("/beneficiaries", params={"ownerAddress": OWNER}).json() == []


def test_store_outage_after_confirmation_is_503(client, wallet, store, monkeypatch):
    def down(*args, **kwargs):
        raise StoreUnavailable("connection refused")

    monkeypatch.setattr(store, "create", down)
    r = client.post("/beneficiaries", json=_add_body(wallet))
    assert r.status_code == 503
    assert r.json()["retryable"] is True


def test_ingest_client_submitted_transaction(client, wallet, ledger):
    conf = ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    r = client.post("/ledger/events", json={"digest": conf.digest})
    assert r.status_code == 200
    data = r.json()
    assert [res["outcome"] for res in data["results"]] == ["applied"]
    r = client.post("/ledger/events", json={"digest": conf.digest})
    assert [res["outcome"] for res in r.json()["results"]] == ["duplicate"]
    assert len(client.get("/beneficiaries", params={"ownerAddress": OWNER}).json()) == 1


def test_resync_and_withdraw(client, wallet, ledger):
    ledger.add_beneficiary(wallet, BENE, 5, 1, InactivityUnit.DAYS)
    r = client.post(f"/wallets/{wallet}/resync")
    assert r.status_code == 200
    assert r.json()["created"] == 1

    r = client.post(f"/wallets/{wallet}/withdraw", json={"ownerAddress": OWNER, "amount": 100})
    assert r.status_code == 200
    assert r.json()["success"] is True
    r = client.post(f"/wallets/{wallet}/withdraw", json={"ownerAddress": OWNER, "amount": 0})
    assert r.status_code == 400


def test_debug_adds_traceback(client):
    client.app.state.settings.debug = True
    r = client.put("/beneficiaries", json={"ownerAddress": OWNER, "beneAddress": BENE})
    assert r.status_code == 404
    assert "traceback" in r.json()


def test_add_with_allocation_in_sui(client, wallet, ledger):
    body = _add_body(wallet, allocationSui="2.5")
    del body["allocation"]
    r = client.post("/beneficiaries", json=body)
    assert r.status_code == 200
    assert r.json()["record"]["allocation"] == 2_500_000_000
    assert ledger.get_wallet(wallet).beneficiary(BENE).allocation == 2_500_000_000

    r = client.post("/beneficiaries", json=_add_body(wallet, bene=BENE_2, allocation=None))
    assert r.status_code == 400
    assert r.json()["kind"] == "validation_error"


def test_revoke_reports_what_the_mirror_removed(client, wallet, store, monkeypatch):
    client.post("/beneficiaries", json=_add_body(wallet))

    def gone(*args, **kwargs):
        raise NotFound("Beneficiary not found")

    monkeypatch.setattr(store, "remove", gone)
    r = client.request("DELETE", "/beneficiaries", json={"ownerAddress": OWNER, "beneAddress": BENE})
    assert r.status_code == 200
    assert r.json() == {"success": True, "deletedCount": 0}
