import unittest
from decimal import Decimal

from fastapi.testclient import TestClient

from expense_tracker.main import create_app
from expense_tracker.tests.support import DatabaseTestCase


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(create_app(self.engine))

    def signup(self, email: str = "owner@example.com") -> dict:
        response = self.client.post("/auth/signup", json={"email": email, "password": "s3cret"})
        self.assertEqual(response.status_code, 200)
        return {"x-user-id": str(response.json()["id"])}


class AuthEndpointTests(ApiTestCase):
    def test_signup_then_login(self) -> None:
        headers = self.signup("Someone@Example.com ")

        response = self.client.post(
            "/auth/login", json={"email": "someone@example.com", "password": "s3cret"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "someone@example.com")
        accounts = self.client.get("/accounts", headers=headers).json()
        self.assertEqual([(a["name"], a["type"]) for a in accounts], [("Default Cash", "CASH")])
        self.assertEqual(Decimal(accounts[0]["balance_estimate"]), Decimal("0"))

    def test_duplicate_signup_conflicts(self) -> None:
        self.signup()

        response = self.client.post(
            "/auth/signup", json={"email": "owner@example.com", "password": "other"}
        )

        self.assertEqual(response.status_code, 409)

    def test_wrong_password_is_unauthorized(self) -> None:
        self.signup()

        response = self.client.post(
            "/auth/login", json={"email": "owner@example.com", "password": "nope"}
        )

        self.assertEqual(response.status_code, 401)

    def test_identity_header_is_required(self) -> None:
        self.assertEqual(self.client.get("/proposals").status_code, 401)
        self.assertEqual(self.client.get("/proposals", headers={"x-user-id": "abc"}).status_code, 400)
        self.assertEqual(self.client.get("/proposals", headers={"x-user-id": "999"}).status_code, 404)


class ProposalFlowTests(ApiTestCase):
    def test_ingest_accept_scenario(self) -> None:
        headers = self.signup()
        account = self.client.post(
            "/accounts",
            json={"name": "A", "type": "CARD", "last4": "1234", "opening_balance": "1000.00"},
            headers=headers,
        ).json()

        ingested = self.client.post(
            "/ingest",
            json={"amount": "500.00", "merchant": "Cafe", "account_hint": "ending 1234"},
            headers=headers,
        )
        self.assertEqual(ingested.status_code, 200)
        self.assertEqual(ingested.json()["display_text"], "Add ₹500.00 for Cafe?")
        proposal_id = ingested.json()["proposal_id"]

        pending = self.client.get("/proposals", headers=headers).json()
        self.assertEqual([p["id"] for p in pending], [proposal_id])

        accepted = self.client.post(f"/proposals/{proposal_id}/accept", headers=headers)
        self.assertEqual(accepted.status_code, 200)
        transaction_id = accepted.json()["transaction_id"]

        entry = self.client.get(f"/transactions/{transaction_id}", headers=headers).json()
        self.assertEqual(Decimal(entry["amount"]), Decimal("500.00"))
        self.assertEqual(entry["type"], "DEBIT")
        self.assertEqual(entry["account_id"], account["id"])

        refreshed = self.client.get(f"/accounts/{account['id']}", headers=headers).json()
        self.assertEqual(Decimal(refreshed["balance_estimate"]), Decimal("500.00"))
        self.assertEqual(self.client.get("/proposals", headers=headers).json(), [])

    def test_repeat_accept_is_conflict(self) -> None:
        headers = self.signup()
        proposal_id = self.client.post("/ingest", json={}, headers=headers).json()["proposal_id"]
        self.client.post(f"/proposals/{proposal_id}/accept", headers=headers)

        response = self.client.post(f"/proposals/{proposal_id}/accept", headers=headers)

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["kind"], "conflict")
        self.assertEqual(body["detail"], "Proposal already handled.")

    def test_foreign_proposal_is_not_found(self) -> None:
        owner = self.signup("owner@example.com")
        intruder = self.signup("intruder@example.com")
        proposal_id = self.client.post(
            "/ingest", json={"amount": "10", "merchant": "Secret"}, headers=owner
        ).json()["proposal_id"]

        response = self.client.post(f"/proposals/{proposal_id}/accept", headers=intruder)
        missing = self.client.post("/proposals/99999/accept", headers=intruder)

        self.assertEqual(response.status_code, 404)
        self.assertNotIn("Secret", response.text)
        self.assertEqual(response.json()["detail"], missing.json()["detail"])

    def test_reject(self) -> None:
        headers = self.signup()
        proposal_id = self.client.post(
            "/ingest", json={"amount": "10"}, headers=headers
        ).json()["proposal_id"]

        response = self.client.post(f"/proposals/{proposal_id}/reject", headers=headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "REJECTED")
        self.assertEqual(
            self.client.post(f"/proposals/{proposal_id}/accept", headers=headers).status_code, 409
        )


class TransactionEndpointTests(ApiTestCase):
    def test_oversized_amounts_are_validation_errors(self) -> None:
        headers = self.signup()

        ingested = self.client.post("/ingest", json={"amount": "1e30"}, headers=headers)
        manual = self.client.post(
            "/transactions", json={"amount": "1e30", "merchant": "Yacht"}, headers=headers
        )

        for response in (ingested, manual):
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["fields"], ["amount"])

    def test_create_without_category_uses_default(self) -> None:
        headers = self.signup()

        response = self.client.post(
            "/transactions", json={"amount": "12.50", "merchant": "Books"}, headers=headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["category_name"], "Uncategorized")
        default_account = self.client.get("/accounts", headers=headers).json()[0]
        self.assertEqual(response.json()["account_id"], default_account["id"])
        refreshed = self.client.get(f"/accounts/{default_account['id']}", headers=headers).json()
        self.assertEqual(Decimal(refreshed["balance_estimate"]), Decimal("-12.50"))

    def test_validation_error_lists_fields(self) -> None:
        headers = self.signup()

        missing = self.client.post("/transactions", json={"amount": "-3"}, headers=headers)
        malformed = self.client.post(
            "/transactions", json={"amount": "abc", "merchant": "x"}, headers=headers
        )

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(sorted(missing.json()["fields"]), ["amount", "merchant"])
        self.assertEqual(malformed.status_code, 400)
        self.assertEqual(malformed.json()["fields"], ["amount"])

    def test_listing_is_paginated(self) -> None:
        headers = self.signup()
        for index in range(3):
            self.client.post(
                "/transactions", json={"amount": "1", "merchant": f"Shop {index}"}, headers=headers
            )

        body = self.client.get("/transactions?page=1&size=2", headers=headers).json()

        self.assertEqual(body["total_items"], 3)
        self.assertEqual(body["total_pages"], 2)
        self.assertEqual([item["merchant"] for item in body["items"]], ["Shop 0"])
        self.assertEqual(
            self.client.get("/transactions?size=1000", headers=headers).status_code, 400
        )

    def test_category_in_use_cannot_be_deleted(self) -> None:
        headers = self.signup()
        category = self.client.post("/categories", json={"name": "Fuel"}, headers=headers).json()
        self.client.post(
            "/transactions",
            json={"amount": "30", "merchant": "Pump", "category_id": category["id"]},
            headers=headers,
        )

        response = self.client.delete(f"/categories/{category['id']}", headers=headers)

        self.assertEqual(response.status_code, 409)

    def test_global_category_is_listed_but_not_editable(self) -> None:
        headers = self.signup()
        listed = self.client.get("/categories", headers=headers).json()
        default = next(c for c in listed if c["name"] == "Uncategorized")

        self.assertTrue(default["is_global"])
        response = self.client.put(
            f"/categories/{default['id']}", json={"name": "Renamed"}, headers=headers
        )
        self.assertEqual(response.status_code, 404)

    def test_account_update_cannot_touch_balance(self) -> None:
        headers = self.signup()
        account = self.client.post(
            "/accounts", json={"name": "Wallet", "opening_balance": "50"}, headers=headers
        ).json()

        updated = self.client.put(
            f"/accounts/{account['id']}",
            json={"name": "Pocket", "opening_balance": "5000"},
            headers=headers,
        ).json()

        self.assertEqual(updated["name"], "Pocket")
        self.assertEqual(Decimal(updated["balance_estimate"]), Decimal("50"))

    def test_deleting_account_detaches_entries(self) -> None:
        headers = self.signup()
        account = self.client.post("/accounts", json={"name": "Wallet"}, headers=headers).json()
        entry = self.client.post(
            "/transactions",
            json={"amount": "5", "merchant": "Snack", "account_id": account["id"]},
            headers=headers,
        ).json()
        self.assertEqual(entry["account_id"], account["id"])

        self.assertEqual(
            self.client.delete(f"/accounts/{account['id']}", headers=headers).status_code, 200
        )

        refreshed = self.client.get(f"/transactions/{entry['id']}", headers=headers).json()
        self.assertIsNone(refreshed["account_id"])


class MissingDefaultCategoryApiTests(ApiTestCase):
    seed_default_category = False

    def test_configuration_error_is_generic_internal_error(self) -> None:
        headers = self.signup()

        response = self.client.post(
            "/transactions", json={"amount": "5", "merchant": "Shop"}, headers=headers
        )

        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertEqual(body["kind"], "configuration")
        self.assertEqual(body["detail"], "An unexpected error occurred.")
        self.assertNotIn("Uncategorized", response.text)


if __name__ == "__main__":
    unittest.main()
