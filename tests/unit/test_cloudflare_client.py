"""Unit tests for the Cloudflare API client."""

import httpx

from dnsguard.services.cloudflare import ApiResponse, CloudflareClient
from dnsguard.services.credentials import Credential

ZONE = "zone-1"


class TestApiResponse:
    def test_parses_envelope(self):
        resp = ApiResponse.from_response(
            httpx.Response(200, json={"success": True, "result": [{"id": "r1"}], "errors": []})
        )
        assert resp.success
        assert resp.result == [{"id": "r1"}]
        assert resp.status_code == 200

    def test_first_error_message(self):
        resp = ApiResponse.from_response(
            httpx.Response(400, json={"success": False, "errors": [{"code": 9, "message": "bad ttl"}]})
        )
        assert not resp.success
        assert resp.error_message == "bad ttl"

    def test_default_error_message(self):
        assert ApiResponse(success=False).error_message == "Cloudflare API error"

    def test_non_json_body(self):
        resp = ApiResponse.from_response(httpx.Response(502, text="<html>Bad gateway</html>"))
        assert not resp.success
        assert resp.error_message == "HTTP 502"


class TestCloudflareClient:
    def test_lists_every_page(self, fake_cf, cf_client):
        for i in range(230):
            fake_cf.add(ZONE, type="A", name=f"h{i}.example.com", content="192.0.2.1")

        resp = cf_client.list_records(ZONE)

        assert resp.success
        assert len(resp.result) == 230
        assert [c for c in fake_cf.calls if c[0] == "GET"] == [("GET", f"/zones/{ZONE}/dns_records")] * 3

    def test_listing_failure_is_returned(self, fake_cf, cf_client):
        fake_cf.fail_listing = True
        resp = cf_client.list_records(ZONE)
        assert not resp.success
        assert resp.error_message == "Listing unavailable"

    def test_record_mutations(self, fake_cf, cf_client):
        created = cf_client.create_record(ZONE, {"type": "A", "name": "a.example.com", "content": "192.0.2.1"})
        record_id = created.result["id"]

        assert cf_client.patch_record(ZONE, record_id, {"ttl": 60}).result["ttl"] == 60
        replaced = cf_client.update_record(ZONE, record_id, {"type": "A", "name": "a.example.com", "content": "192.0.2.2"})
        assert "ttl" not in replaced.result
        assert cf_client.delete_record(ZONE, record_id).success
        assert fake_cf.records(ZONE) == []
        assert [m for m, _ in fake_cf.mutations] == ["POST", "PATCH", "PUT", "DELETE"]

    def test_sends_bearer_token(self, fake_cf, cf_client):
        cf_client.list_records(ZONE)
        assert fake_cf.headers[0]["authorization"] == "Bearer test-token"

    def test_sends_global_key_headers(self, fake_cf):
        with fake_cf.client(Credential(email="ops@example.com", key="gk")) as client:
            client.list_records(ZONE)

        sent = fake_cf.headers[0]
        assert sent["x-auth-email"] == "ops@example.com"
        assert sent["x-auth-key"] == "gk"
        assert "authorization" not in sent

    def test_uses_configured_base_url(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"success": True, "result": [], "result_info": {"total_pages": 1}})

        client = CloudflareClient(
            Credential(token="t"),
            base_url="https://api.example.test/v4/",
            transport=httpx.MockTransport(handler),
        )
        client.list_records(ZONE)
        client.close()

        assert seen[0].startswith(f"https://api.example.test/v4/zones/{ZONE}/dns_records?")
