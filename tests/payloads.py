"""
Upstream payload builders and fake providers for httpx.MockTransport
"""

import json
from typing import Dict, List, Optional, Set

import httpx

from shortage_sync.config import ProviderAccount, Settings

REPORTS_URL = "https://reports.test/api/v1"
CATALOG_URL = "https://catalog.test/api/drug"


def make_settings(tmp_path=None, **overrides) -> Settings:
    """Settings pointing at the fake providers, with no pauses or backoff"""
    values = {
        "database_url": "sqlite://",
        "environment": "testing",
        "reports_api_url": REPORTS_URL,
        "reports_accounts": [
            ProviderAccount(email="first@example.com", password="secret-1"),
            ProviderAccount(email="second@example.com", password="secret-2"),
        ],
        "reports_page_size": 2,
        "catalog_api_url": CATALOG_URL,
        "http_retries": 2,
        "http_backoff_seconds": 0,
        "batch_pause_seconds": 0,
        "detail_concurrency": 3,
        "db_batch_size": 2,
        "cache_batch_size": 2,
    }
    if tmp_path is not None:
        values["catalog_cache_dir"] = str(tmp_path / "catalog-cache")
        values["catalog_fingerprint_path"] = str(tmp_path / "catalog-sync-state.json")
    values.update(overrides)
    return Settings(**values)


def report_payload(
    report_id: int,
    din: Optional[str] = "02345678",
    status: str = "active_confirmed",
    updated: str = "2026-10-01T12:00:00Z",
    type_label: str = "shortage",
    **overrides,
) -> dict:
    payload = {
        "id": report_id,
        "din": din,
        "created_date": "2026-09-01T08:00:00Z",
        "updated_date": updated,
        "type": {"id": 1 if type_label == "shortage" else 2, "label": type_label},
        "status": status,
        "company_name": "ACME PHARMA INC",
        "en_drug_brand_name": "ACMEDOL",
        "fr_drug_brand_name": "ACMÉDOL",
        "en_drug_common_name": "acetaminophen",
        "fr_drug_common_name": "acétaminophène",
        "en_ingredients": "ACETAMINOPHEN",
        "fr_ingredients": "ACÉTAMINOPHÈNE",
        "drug_strength": "500MG",
        "drug_dosage_form": "TABLET",
        "drug_dosage_form_fr": "COMPRIMÉ",
        "drug_route": "ORAL",
        "drug_route_fr": "ORALE",
        "drug_package_quantity": "100",
        "atc_number": "N02BE01",
        "atc_description": "PARACETAMOL",
        "shortage_reason": {"en_reason": "Demand increase for the drug.", "fr_reason": "Augmentation de la demande."},
        "tier_3": False,
        "late_submission": False,
        "decision_reversal": False,
        "drug": {
            "din": din,
            "drug_code": 90001,
            "brand_name": "ACMEDOL",
            "brand_name_fr": "ACMÉDOL",
            "current_status": "MARKETED",
            "number_of_ais": "1",
            "company": {"name": "ACME PHARMA INC"},
            "drug_ingredients": [
                {
                    "ingredient": {"en_name": "ACETAMINOPHEN", "fr_name": "ACÉTAMINOPHÈNE"},
                    "strength": "500",
                    "strength_unit": "MG",
                }
            ],
        },
    }
    payload.update(overrides)
    return payload


def listing_item(din: str, drug_code: int, last_update: str = "2026-09-15", brand: str = "BRANDOL") -> dict:
    return {
        "drug_code": drug_code,
        "drug_identification_number": din,
        "brand_name": brand,
        "brand_name_f": None,
        "company_name": "GENERIC LABS",
        "descriptor": "",
        "number_of_ais": "1",
        "ai_group_no": "0112345001",
        "class_name": "Human",
        "last_update_date": last_update,
    }


def details_payloads(drug_code: int) -> dict:
    return {
        "activeingredient": [{"ingredient_name": f"INGREDIENT {drug_code}", "strength": "10", "strength_unit": "MG"}],
        "form": [{"pharmaceutical_form_name": "TABLET"}],
        "route": [{"route_of_administration_name": "ORAL"}],
        "therapeuticclass": [{"tc_atc_number": "C10AA05", "tc_atc": "ATORVASTATIN"}],
        "status": {"status": "MARKETED"},
    }


class FakeCatalogProvider:
    """Catalog provider: listing, HEAD probe and the five detail sub-resources"""

    def __init__(self, listing: List[dict], content_length: Optional[int] = 4096):
        self.listing = listing
        self.content_length = content_length
        self.failing: Dict[str, Set[int]] = {}
        self.requests: List[httpx.Request] = []

    def fail(self, resource: str, drug_code: int) -> None:
        self.failing.setdefault(resource, set()).add(drug_code)

    def detail_calls(self, resource: str = "status") -> List[int]:
        return [
            int(request.url.params["id"])
            for request in self.requests
            if request.method == "GET" and request.url.path.endswith(f"/{resource}/")
        ]

    def listing_calls(self) -> int:
        return sum(
            1 for request in self.requests
            if request.method == "GET" and request.url.path.endswith("/drugproduct/")
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        resource = request.url.path.rstrip("/").rsplit("/", 1)[-1]

        if resource == "drugproduct":
            if request.method == "HEAD":
                if self.content_length is None:
                    return httpx.Response(200)
                return httpx.Response(200, headers={"content-length": str(self.content_length)})
            return httpx.Response(200, json=self.listing)

        drug_code = int(request.url.params["id"])
        if drug_code in self.failing.get(resource, set()):
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json=details_payloads(drug_code)[resource])


class FakeReportsProvider:
    """Reports provider: login, search and per-report detail endpoints"""

    def __init__(self, reports: List[dict], details: Optional[Dict[int, dict]] = None):
        self.reports = reports
        self.details = details or {}
        self.rejected_tokens: Set[str] = set()
        self.requests: List[httpx.Request] = []
        self.logins: List[str] = []
        # Next data requests answered 429 regardless of token
        self.rate_limited_requests = 0

    def search_calls(self) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith("/search")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/login"):
            form = httpx.QueryParams(request.content.decode())
            email = form["email"]
            self.logins.append(email)
            if not form.get("password"):
                return httpx.Response(401)
            return httpx.Response(200, headers={"auth-token": f"token-{email}"})

        token = request.headers.get("auth-token")
        if not token:
            return httpx.Response(401)
        if token in self.rejected_tokens:
            return httpx.Response(429, json={"error": "rate limited"})
        if self.rate_limited_requests > 0:
            self.rate_limited_requests -= 1
            return httpx.Response(429, json={"error": "rate limited"})

        if path.endswith("/search"):
            params = request.url.params
            matches = self.reports
            if "filter_status" in params:
                matches = [report for report in matches if report["status"] == params["filter_status"]]
            matches = sorted(matches, key=lambda report: report["updated_date"], reverse=True)
            offset = int(params.get("offset", 0))
            limit = int(params.get("limit", 100))
            return httpx.Response(
                200,
                content=json.dumps({"data": matches[offset:offset + limit], "total": len(matches)}),
                headers={"content-type": "application/json"},
            )

        report_id = int(path.rstrip("/").rsplit("/", 1)[-1])
        if report_id not in self.details:
            return httpx.Response(404)
        return httpx.Response(200, json=self.details[report_id])
