from datetime import timedelta

from doosr.clock import today


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


async def test_requests_need_backend_token(client):
    response = await client.get("/v1/days", headers={"X-Backend-Token": "wrong"})
    assert response.status_code == 401
    response = await client.get("/v1/days", headers={"X-User-Email": ""})
    assert response.status_code == 401


async def test_allowed_emails_restricts_users(client, monkeypatch):
    from doosr.settings import reset_settings

    monkeypatch.setenv("ALLOWED_EMAILS", "someone@example.com")
    reset_settings()
    response = await client.get("/v1/days")
    assert response.status_code == 403


async def test_open_day_returns_tree_and_fixed_calendar(client):
    await client.patch("/v1/settings", json={"permanent_sections": ["Morning"]})

    response = await client.post("/v1/days/open", json={"date": "2025-03-20"})

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["fixed_calendar"]["formatted"] == "dies Solis, Martius 1, 2025"
    assert body["fixed_calendar"]["ritual"]["name"] == "New Year (Ostara)"
    assert [child["label"] for child in body["tree"]["children"]] == ["Morning"]

    again = await client.get("/v1/days/by-date/2025-03-20")
    assert again.json()["day"]["id"] == body["day"]["id"]
    assert (await client.get("/v1/days/by-date/2025-03-21")).status_code == 404


async def test_item_lifecycle_through_api(client):
    day = (await client.post("/v1/days/open", json={"date": today().isoformat()})).json()["day"]

    created = await client.post(
        "/v1/items", json={"title": "Stretch", "parent_type": "Day", "parent_id": day["id"]}
    )
    assert created.status_code == 200
    item_id = created.json()["id"]

    done = await client.post(f"/v1/items/{item_id}/state", json={"state": "done"})
    assert done.json()["state"] == "done"
    todo = await client.post(f"/v1/items/{item_id}/state", json={"state": "todo"})
    assert todo.json()["state"] == "todo"

    bad = await client.post(f"/v1/items/{item_id}/state", json={"state": "paused"})
    assert bad.status_code == 400
    assert "Invalid item state" in bad.json()["detail"]

    deferred = await client.post(
        f"/v1/items/{item_id}/defer", json={"target_date": (today() + timedelta(days=1)).isoformat()}
    )
    assert deferred.status_code == 200
    assert deferred.json()["item"]["state"] == "deferred"
    assert deferred.json()["new_item"]["title"] == "Stretch"

    undeferred = await client.post(f"/v1/items/{item_id}/undefer")
    assert undeferred.json()["state"] == "todo"

    assert (await client.delete(f"/v1/items/{item_id}")).json() == {"ok": True}
    assert (await client.get(f"/v1/items/{item_id}")).status_code == 404


async def test_empty_title_is_rejected(client):
    response = await client.post("/v1/items", json={"title": "   "})
    assert response.status_code == 400
    assert response.json()["detail"] == "Title cannot be empty"


async def test_missing_fields_return_validation_errors(client):
    response = await client.post("/v1/items", json={})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request"
    assert response.json()["errors"][0]["field"].endswith("title")


async def test_sections_cannot_be_completed_through_api(client):
    section = (await client.post("/v1/items", json={"title": "Evening", "item_type": "section"})).json()
    response = await client.post(f"/v1/items/{section['id']}/state", json={"state": "done"})
    assert response.status_code == 400


async def test_public_list_access(client):
    private = (await client.post("/v1/lists", json={"title": "Secret"})).json()
    assert (await client.get(f"/p/lists/{private['slug']}")).status_code == 404

    public = (
        await client.post("/v1/lists", json={"title": "Party", "list_type": "public_list", "visibility": "read_only"})
    ).json()
    await client.post(f"/v1/lists/{public['id']}/items", json={"title": "Chips"})

    anonymous = await client.get(f"/p/lists/{public['slug']}", headers={"X-Backend-Token": "", "X-User-Email": ""})
    assert anonymous.status_code == 200
    assert anonymous.json()["editable"] is False
    assert [child["label"] for child in anonymous.json()["tree"]["children"]] == ["Chips"]

    refused = await client.post(f"/p/lists/{public['slug']}/items", json={"title": "Dip"})
    assert refused.status_code == 403

    await client.patch(f"/v1/lists/{public['id']}", json={"visibility": "editable"})
    added = await client.post(f"/p/lists/{public['slug']}/items", json={"title": "Dip"})
    assert added.json()["status"] == "created"
    again = await client.post(f"/p/lists/{public['slug']}/items", json={"title": "dip"})
    assert again.json()["status"] == "already_active"


async def test_fixed_calendar_endpoints(client):
    response = await client.get("/v1/fixed-calendar", params={"date": "2026-03-19"})
    assert response.json()["type"] == "year_day"

    month = await client.get("/v1/fixed-calendar/2025/1")
    assert month.json()["month_name"] == "Aprilis"
    assert month.json()["days"][14]["ritual"] == "beltane"
    assert month.json()["days"][14]["gregorian"] == "2025-05-01"
    assert (await client.get("/v1/fixed-calendar/2025/13")).status_code == 404


async def test_invoice_flow(client):
    customer = (await client.post("/v1/accounting/customers", json={"name": "Acme"})).json()
    service = (
        await client.post("/v1/accounting/items", json={"name": "Design", "kind": "service", "unit_price": 5000})
    ).json()
    bracket = (await client.post("/v1/accounting/tax-brackets", json={"name": "Reduced", "percentage": "6"})).json()

    response = await client.post(
        "/v1/accounting/invoices",
        json={
            "customer_id": customer["id"],
            "currency": "USD",
            "issued_at": "2025-04-02",
            "items": [{"accounting_item_id": service["id"], "tax_bracket_id": bracket["id"], "quantity": "3"}],
        },
    )

    assert response.status_code == 200
    invoice = response.json()
    assert invoice["display_number"] == "1/2025"
    assert invoice["total"] == 15900
    assert invoice["total_formatted"] == "USD 159.00"

    sent = await client.post(f"/v1/accounting/invoices/{invoice['id']}/state", json={"state": "sent"})
    assert sent.json()["state"] == "sent"
    back = await client.post(f"/v1/accounting/invoices/{invoice['id']}/state", json={"state": "draft"})
    assert back.status_code == 400

    missing = await client.post(
        "/v1/accounting/invoices", json={"customer_id": "nope", "items": []}
    )
    assert missing.status_code == 404


async def test_journal_protection_over_http(client):
    journal = (await client.post("/v1/journals/open", json={"date": "2025-05-05"})).json()["journal"]

    started = (
        await client.post(
            "/v1/journal-protection/seed",
            json={"password": "long enough", "password_confirmation": "long enough"},
        )
    ).json()
    confirmed = await client.post(
        "/v1/journal-protection/confirm", json={"token": started["token"], "seed_phrase": started["seed_phrase"]}
    )
    assert confirmed.status_code == 200

    locked = await client.post(f"/v1/journals/{journal['id']}/fragments", json={"content": "hidden"})
    assert locked.status_code == 423

    session = (await client.post("/v1/journal-protection/unlock", json={"password": "long enough"})).json()
    headers = {"X-Journal-Session": session["token"]}
    written = await client.post(
        f"/v1/journals/{journal['id']}/fragments", json={"content": "hidden"}, headers=headers
    )
    assert written.json()["encrypted"] is True
    assert written.json()["content"] == "hidden"

    unlocked = (await client.get(f"/v1/journals/{journal['id']}", headers=headers)).json()
    assert unlocked["unlocked"] is True
    assert unlocked["fragments"][0]["content"] == "hidden"

    without_session = (await client.get(f"/v1/journals/{journal['id']}")).json()
    assert without_session["fragments"][0]["locked"] is True
    assert without_session["fragments"][0]["content"] is None


async def test_settings_round_trip(client):
    response = await client.patch(
        "/v1/settings",
        json={
            "permanent_sections": ["Work", "work", "Home"],
            "day_migration_settings": {"items": {"notes": False}},
        },
    )
    body = response.json()
    assert body["permanent_sections"] == ["Work", "Home"]
    assert body["day_migration_settings"]["items"] == {"sections_with_no_active_items": True, "notes": False}
    assert body["day_migration_settings"]["links"] is True


async def test_run_jobs_endpoint(client):
    response = await client.post("/v1/jobs/run")
    assert response.json() == {"processed": 0, "notified_count": 0, "errors": []}
