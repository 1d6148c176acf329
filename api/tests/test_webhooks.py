import hashlib
import hmac
import json

import httpx
import pytest

from conftest import CUSTOMER_HEADERS, PROVIDER_HEADERS
from ndasign.backends import DropboxSignBackend, MockSignatureBackend
from ndasign.main import app
from ndasign.webhooks import ACK_BODY

API_KEY = "dbs-test-key"


def vendor_api(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/signature_request/create_embedded"):
        return httpx.Response(200, json={"signature_request": {
            "signature_request_id": "hs_req_1",
            "signatures": [
                {"signature_id": "hs_sig_provider", "order": 0, "signer_email_address": "corp@example.com"},
                {"signature_id": "hs_sig_customer", "order": 1, "signer_email_address": "student@example.com"},
            ],
        }})
    if "/embedded/sign_url/" in request.url.path:
        signature_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json={"embedded": {
            "sign_url": f"https://app.hellosign.com/editor/embeddedSign?signature_id={signature_id}",
        }})
    return httpx.Response(404, json={"error": {"error_msg": "Not found"}})


@pytest.fixture
def vendor_client(client):
    app.state.signature_backend = DropboxSignBackend(API_KEY, "client-1", transport=httpx.MockTransport(vendor_api))
    r = client.post("/api/nda/upload", json={"listingId": "L1", "ndaText": "Keep it secret."}, headers=PROVIDER_HEADERS)
    assert r.status_code == 200
    r = client.post("/api/nda/request-signature/T1", headers=PROVIDER_HEADERS)
    assert r.status_code == 200
    return client


def event(event_type, signatures=(), request_id="hs_req_1", key=API_KEY, event_time="1700000000", metadata=None):
    event_hash = hmac.new(key.encode(), (event_time + event_type).encode(), hashlib.sha256).hexdigest()
    return {
        "event": {"event_time": event_time, "event_type": event_type, "event_hash": event_hash},
        "signature_request": {
            "signature_request_id": request_id,
            "metadata": metadata or {},
            "signatures": list(signatures),
        },
    }


def signed(signature_id, email, signed_at=1700000000):
    return {"signature_id": signature_id, "signer_email_address": email, "status_code": "signed", "signed_at": signed_at}


def post_event(client, payload):
    # Dropbox Sign posts the event as a form field named "json"
    return client.post("/api/nda/webhook", data={"json": json.dumps(payload)})


def test_request_carries_embedded_sign_url_for_owner_only(vendor_client):
    r = vendor_client.get("/api/nda/signature-status/T1", headers=PROVIDER_HEADERS)
    assert r.json()["signatureRequest"]["signUrl"].endswith("signature_id=hs_sig_provider")
    r = vendor_client.get("/api/nda/signature-status/T1", headers=CUSTOMER_HEADERS)
    assert r.json()["signatureRequest"]["signUrl"].endswith("signature_id=hs_sig_customer")


def test_signed_event_marks_one_signer(vendor_client, directory):
    r = post_event(vendor_client, event("signature_request_signed", [signed("hs_sig_customer", "student@example.com")]))
    assert r.status_code == 200
    assert r.text == ACK_BODY

    status = vendor_client.get("/api/nda/signature-status/T1", headers=CUSTOMER_HEADERS).json()
    assert status["currentUserSigner"]["status"] == "signed"
    assert status["currentUserSigner"]["signedAt"] == "2023-11-14T22:13:20Z"
    assert status["signatureRequest"]["status"] == "pending"
    assert directory.transactions["T1"]["metadata"]["ndaCustomerSignedAt"] == "2023-11-14T22:13:20Z"


def test_all_signed_event_completes_and_seals(vendor_client, directory, mock_storage, sent_emails):
    r = post_event(vendor_client, event("signature_request_all_signed", [
        signed("hs_sig_provider", "corp@example.com"),
        signed("hs_sig_customer", "student@example.com"),
    ]))
    assert r.status_code == 200

    status = vendor_client.get("/api/nda/signature-status/T1", headers=PROVIDER_HEADERS).json()
    request = status["signatureRequest"]
    assert request["status"] == "completed"
    assert f"signed-ndas/{request['id']}.pdf" in mock_storage
    assert directory.transactions["T1"]["metadata"]["ndaFullySigned"] is True
    assert len(sent_emails) == 2


def test_out_of_order_and_redelivered_events_converge(vendor_client):
    all_signed = event("signature_request_all_signed", [
        signed("hs_sig_provider", "corp@example.com", signed_at=1700000100),
        signed("hs_sig_customer", "student@example.com", signed_at=1700000200),
    ])
    late_signed = event("signature_request_signed", [signed("hs_sig_customer", "student@example.com", signed_at=1700000999)])

    for payload in (all_signed, late_signed, all_signed):
        assert post_event(vendor_client, payload).status_code == 200

    status = vendor_client.get("/api/nda/signature-status/T1", headers=CUSTOMER_HEADERS).json()
    assert status["signatureRequest"]["status"] == "completed"
    # the first report wins; the late event does not overwrite it
    assert status["currentUserSigner"]["signedAt"] == "2023-11-14T22:16:40Z"


def test_in_app_signature_then_vendor_event(vendor_client):
    r = vendor_client.post("/api/nda/sign/T1", json={"agreedToTerms": True}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 200
    first = r.json()["signatureRequest"]["signers"][1]["signedAt"]

    post_event(vendor_client, event("signature_request_signed", [signed("hs_sig_customer", "student@example.com")]))
    status = vendor_client.get("/api/nda/signature-status/T1", headers=CUSTOMER_HEADERS).json()
    assert status["currentUserSigner"]["signedAt"] == first


def test_event_matched_by_transaction_metadata(vendor_client):
    payload = event(
        "signature_request_signed",
        [signed("other", "corp@example.com")],
        request_id="hs_unrelated",
        metadata={"transaction_id": "T1"},
    )
    assert post_event(vendor_client, payload).status_code == 200
    status = vendor_client.get("/api/nda/signature-status/T1", headers=PROVIDER_HEADERS).json()
    assert status["currentUserSigner"]["status"] == "signed"


def test_bad_event_hash_is_rejected(vendor_client):
    payload = event("signature_request_all_signed", [signed("hs_sig_customer", "student@example.com")], key="wrong-key")
    r = post_event(vendor_client, payload)
    assert r.status_code == 401
    status = vendor_client.get("/api/nda/signature-status/T1", headers=CUSTOMER_HEADERS).json()
    assert status["currentUserSigner"]["status"] == "pending"


def test_unknown_request_and_test_events_are_acknowledged(vendor_client):
    r = post_event(vendor_client, event("signature_request_signed", request_id="hs_missing"))
    assert r.status_code == 200 and r.text == ACK_BODY
    r = post_event(vendor_client, event("callback_test"))
    assert r.status_code == 200 and r.text == ACK_BODY
    r = post_event(vendor_client, event("signature_request_viewed"))
    assert r.status_code == 200 and r.text == ACK_BODY


def test_raw_json_body_is_accepted(vendor_client):
    payload = event("signature_request_signed", [signed("hs_sig_provider", "corp@example.com")])
    r = vendor_client.post("/api/nda/webhook", content=json.dumps(payload), headers={"Content-Type": "application/json"})
    assert r.status_code == 200
    status = vendor_client.get("/api/nda/signature-status/T1", headers=PROVIDER_HEADERS).json()
    assert status["currentUserSigner"]["status"] == "signed"


def test_malformed_payload_is_rejected(client):
    r = client.post("/api/nda/webhook", data={"json": "not json"})
    assert r.status_code == 401


def test_in_app_backend_accepts_no_callbacks(client):
    app.state.signature_backend = MockSignatureBackend()
    r = post_event(client, event("callback_test"))
    assert r.status_code == 401


def test_verify_event_hash():
    backend = DropboxSignBackend(API_KEY, "client-1", transport=httpx.MockTransport(vendor_api))
    good = event("signature_request_signed")["event"]
    assert backend.verify_event(good) is True
    assert backend.verify_event({**good, "event_time": "1700000001"}) is False
    assert backend.verify_event({"event_type": "callback_test"}) is False
