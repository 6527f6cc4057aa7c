from app.models.enums import ParticipantRole

BASE = "/api/v1/timeline"


def propose(client, auth, startup, agency, **amounts):
    body = {"counterpartyId": agency.participant_id, **(amounts or {"totalAmount": 1_000_000})}
    r = client.post(BASE, json=body, headers=auth(startup))
    assert r.status_code == 201, r.text
    return r.json()


def propose_and_accept(client, auth, startup, agency):
    tl = propose(client, auth, startup, agency)
    r = client.post(f"{BASE}/{tl['id']}/accept", headers=auth(agency))
    assert r.status_code == 200, r.text
    return r.json()


def balance(client, auth, who):
    return client.get("/api/v1/wallet/balance", headers=auth(who)).json()["balance"]


def test_propose_view_and_list(client, auth, startup, agency):
    tl = propose(client, auth, startup, agency)

    assert tl["isAccepted"] == "pending"
    assert [s["amount"] for s in tl["stages"]] == [100_000, 200_000, 200_000, 200_000, 200_000, 100_000]
    assert tl["stages"][0]["label"] == "Pre-Seed"
    assert tl["viewerRole"] == "STARTUP"

    seen = client.get(f"{BASE}/{tl['id']}", headers=auth(agency)).json()
    assert seen["actions"] == ["accept", "reject"]

    listed = client.get(BASE, headers=auth(agency)).json()
    assert listed["count"] == 1


def test_propose_validation(client, auth, startup, agency):
    both = client.post(
        BASE,
        json={"counterpartyId": agency.participant_id, "totalAmount": 10, "stageAmounts": {"ipo": 10}},
        headers=auth(startup),
    )
    assert both.status_code == 422

    missing = client.post(
        BASE,
        json={"counterpartyId": agency.participant_id, "stageAmounts": {"ipo": 10}},
        headers=auth(startup),
    )
    assert missing.status_code == 400
    assert missing.json()["detail"]["error"] == "VALIDATION_ERROR"
    assert missing.json()["detail"]["field"] == "stageAmounts"


def test_outsider_cannot_view(client, auth, startup, agency, make_user):
    tl = propose(client, auth, startup, agency)
    mentor = make_user("mentor-1", ParticipantRole.MENTOR)

    assert client.get(f"{BASE}/{tl['id']}", headers=auth(mentor)).status_code == 403
    assert client.get(f"{BASE}/00000000-0000-0000-0000-000000000000", headers=auth(agency)).status_code == 404


def test_accept_then_decide_again_conflicts(client, auth, startup, agency):
    tl = propose_and_accept(client, auth, startup, agency)
    assert tl["isAccepted"] == "accepted"
    assert tl["activeStage"] == "preSeedFunding"

    again = client.post(f"{BASE}/{tl['id']}/reject", headers=auth(agency))
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "ALREADY_DECIDED"


def test_proposer_cannot_accept(client, auth, startup, agency):
    tl = propose(client, auth, startup, agency)
    r = client.post(f"{BASE}/{tl['id']}/accept", headers=auth(startup))
    assert r.status_code == 403


def test_pay_stage_flow_with_idempotent_replay(client, auth, startup, agency):
    tl = propose_and_accept(client, auth, startup, agency)
    url = f"{BASE}/{tl['id']}/pay"

    first = client.post(url, headers=auth(agency, idem_key="pay-1"))
    assert first.status_code == 200, first.text
    body = first.json()
    assert body["paidStage"] == "preSeedFunding"
    assert body["receipt"]["amount"] == 100_000
    assert body["timeline"]["activeStage"] == "seedFunding"
    assert body["timeline"]["disbursedAmount"] == 100_000

    replay = client.post(url, headers=auth(agency, idem_key="pay-1"))
    assert replay.status_code == 200
    assert replay.headers["Idempotent-Replay"] == "true"
    assert replay.json() == body

    assert balance(client, auth, startup) == 100_000
    assert balance(client, auth, agency) == 10_000_000 - 100_000


def test_pay_requires_idempotency_key_and_agency(client, auth, startup, agency):
    tl = propose_and_accept(client, auth, startup, agency)
    url = f"{BASE}/{tl['id']}/pay"

    assert client.post(url, headers=auth(agency)).status_code == 400
    assert client.post(url, headers=auth(startup, idem_key="s-1")).status_code == 403


def test_pay_before_acceptance_not_eligible(client, auth, startup, agency):
    tl = propose(client, auth, startup, agency)
    r = client.post(f"{BASE}/{tl['id']}/pay", headers=auth(agency, idem_key="early"))

    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "NOT_ELIGIBLE"


def test_pay_with_insufficient_funds_keeps_stage(client, auth, startup, make_user):
    poor = make_user("agency-poor", ParticipantRole.FUNDING_AGENCY, balance=10)
    tl = propose_and_accept(client, auth, startup, poor)

    r = client.post(f"{BASE}/{tl['id']}/pay", headers=auth(poor, idem_key="p-1"))
    assert r.status_code == 402
    assert r.json()["detail"]["error"] == "INSUFFICIENT_FUNDS"

    view = client.get(f"{BASE}/{tl['id']}", headers=auth(poor)).json()
    assert view["activeStage"] == "preSeedFunding"
    assert view["disbursedAmount"] == 0


def test_contingency_form_multipart_flow(client, auth, startup, agency, invoice_dir):
    tl = propose_and_accept(client, auth, startup, agency)

    filed = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "Prototype tooling", "fundingAmount": "50000", "stageOfFunding": "seedFunding"},
        files=[("invoices", ("quote.pdf", b"%PDF-1.4 test", "application/pdf"))],
        headers=auth(startup),
    )
    assert filed.status_code == 201, filed.text
    assert filed.json()["formIndex"] == 0
    invoice = filed.json()["timeline"]["contingencyForms"][0]["invoices"][0]
    assert invoice["url"].startswith("/files/invoices/")
    assert (invoice_dir / invoice["identifier"]).exists()

    forms = client.get(f"{BASE}/{tl['id']}/forms", headers=auth(agency)).json()
    assert forms[0]["isAccepted"] == "pending"
    assert forms[0]["fundingAmount"] == 50_000

    decided = client.post(f"{BASE}/{tl['id']}/forms/accept", json={"formIndex": 0}, headers=auth(agency))
    assert decided.status_code == 200
    assert decided.json()["contingencyForms"][0]["isAccepted"] == "accepted"
    assert "payForms" in decided.json()["actions"]

    twice = client.post(f"{BASE}/{tl['id']}/forms/reject", json={"formIndex": 0}, headers=auth(agency))
    assert twice.status_code == 409

    paid = client.post(f"{BASE}/{tl['id']}/forms/0/pay", headers=auth(agency, idem_key="cf-0"))
    assert paid.status_code == 200, paid.text
    assert paid.json()["paidFormIndex"] == 0
    assert paid.json()["receipt"]["category"] == "contingency_funding"
    assert balance(client, auth, startup) == 50_000


def test_contingency_form_before_acceptance_removes_invoices(client, auth, startup, agency, invoice_dir):
    tl = propose(client, auth, startup, agency)

    r = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "Early", "fundingAmount": "50000", "stageOfFunding": "seedFunding"},
        files=[("invoices", ("quote.png", b"\x89PNG data", "image/png"))],
        headers=auth(startup),
    )
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "NOT_ELIGIBLE"
    assert not invoice_dir.exists() or not any(invoice_dir.iterdir())


def test_contingency_form_rejects_unknown_stage_and_bad_file(client, auth, startup, agency):
    tl = propose_and_accept(client, auth, startup, agency)

    bad_stage = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "x", "fundingAmount": "10", "stageOfFunding": "seriesZ"},
        headers=auth(startup),
    )
    assert bad_stage.status_code == 400
    assert bad_stage.json()["detail"]["field"] == "stageOfFunding"

    bad_file = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "x", "fundingAmount": "10", "stageOfFunding": "ipo"},
        files=[("invoices", ("run.sh", b"echo hi", "text/x-shellscript"))],
        headers=auth(startup),
    )
    assert bad_file.status_code == 400
    assert bad_file.json()["detail"]["field"] == "invoices"


def test_contingency_form_amount_and_description_use_validation_error_shape(
    client, auth, startup, agency, invoice_dir
):
    tl = propose_and_accept(client, auth, startup, agency)

    zero = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "Prototype", "fundingAmount": "0", "stageOfFunding": "seedFunding"},
        files=[("invoices", ("quote.pdf", b"%PDF-1.4", "application/pdf"))],
        headers=auth(startup),
    )
    assert zero.status_code == 400
    assert zero.json()["detail"] == {
        "error": "VALIDATION_ERROR",
        "message": "fundingAmount must be a positive integer.",
        "field": "fundingAmount",
    }
    assert not any(invoice_dir.iterdir())

    blank = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "   ", "fundingAmount": "10", "stageOfFunding": "seedFunding"},
        headers=auth(startup),
    )
    assert blank.status_code == 400
    assert blank.json()["detail"]["error"] == "VALIDATION_ERROR"
    assert blank.json()["detail"]["field"] == "description"


def test_contingency_form_oversized_invoice(client, auth, startup, agency, invoice_dir):
    tl = propose_and_accept(client, auth, startup, agency)

    r = client.post(
        f"{BASE}/{tl['id']}/form",
        data={"description": "Prototype", "fundingAmount": "10", "stageOfFunding": "seedFunding"},
        files=[("invoices", ("big.pdf", b"%" * (1024 * 1024 + 1), "application/pdf"))],
        headers=auth(startup),
    )
    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "Invoice file is too large."
    assert not invoice_dir.exists() or not any(invoice_dir.iterdir())


def test_audit_trail_for_parties(client, auth, startup, agency, make_user):
    tl = propose_and_accept(client, auth, startup, agency)
    client.post(f"{BASE}/{tl['id']}/pay", headers=auth(agency, idem_key="a-1"))

    trail = client.get("/api/v1/audit", params={"subjectId": tl["id"]}, headers=auth(startup))
    assert trail.status_code == 200
    actions = [e["action"] for e in trail.json()["entries"]]
    assert sorted(actions) == ["STAGE_PAID", "TIMELINE_ACCEPTED", "TIMELINE_PROPOSED"]

    mentor = make_user("mentor-1", ParticipantRole.MENTOR)
    denied = client.get("/api/v1/audit", params={"subjectId": tl["id"]}, headers=auth(mentor))
    assert denied.status_code == 403
