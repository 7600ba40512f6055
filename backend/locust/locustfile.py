"""
Locust Load Test Suite

Run against a server using the sandbox gateway (PAYMENT_GATEWAY=sandbox) and
the same SECRET_KEY as this process, since tokens are minted locally.

Run scenarios:
  locust -f locustfile.py --tags race        # Accept vs cancel on the same booking
  locust -f locustfile.py --tags chat        # Concurrent first access to a conversation
  locust -f locustfile.py --tags edge        # Test bad input
  locust -f locustfile.py                    # All tests
"""

import random
import uuid
from datetime import datetime, timedelta, timezone

import gevent
from locust import HttpUser, between, tag, task

from rankup.core.security import create_access_token

SANDBOX_CARD = "pm_card_visa"


def new_user():
    user_id = f"load_{uuid.uuid4().hex[:12]}"
    token = create_access_token(data={"sub": user_id})
    return user_id, {"Authorization": f"Bearer {token}"}


def checkout_body(mentor_id: str) -> dict:
    date = datetime.now(timezone.utc) + timedelta(hours=random.choice([24, 72, 240]))
    return {
        "mentor_id": mentor_id,
        "session_type": random.choice(["sparring", "tournament"]),
        "date": date.isoformat(),
        "location": "Club Padel Load",
        "price": str(random.choice([30, 35, 40, 45, 55])),
        "payment_method": SANDBOX_CARD,
    }


class RaceUser(HttpUser):
    """
    TEST 1: Mentor accepts while the client cancels.

    Run: locust -f locustfile.py --tags race -u 50 -r 10 --run-time 60s

    Exactly one of the two calls may succeed per booking; the loser gets
    409 (stale_transition / already_terminal / invalid_transition). Verify:
      SELECT status, COUNT(*) FROM bookings GROUP BY status;
    Every booking is either confirmed or cancelled, never both written.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.client_id, self.client_headers = new_user()
        self.mentor_id, self.mentor_headers = new_user()

    def _book(self):
        resp = self.client.post(
            "/api/v1/payments/checkout",
            json=checkout_body(self.mentor_id),
            headers=self.client_headers,
            name="/api/v1/payments/checkout",
        )
        if resp.status_code != 200:
            return None
        return resp.json()["booking"]["id"]

    def _attempt(self, path: str, headers: dict, name: str):
        with self.client.post(path, headers=headers, name=name, catch_response=True) as resp:
            if resp.status_code in (200, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("race")
    @task
    def accept_vs_cancel(self):
        booking_id = self._book()
        if not booking_id:
            return
        gevent.joinall([
            gevent.spawn(
                self._attempt,
                f"/api/v1/bookings/{booking_id}/accept",
                self.mentor_headers,
                "/api/v1/bookings/{id}/accept [race]",
            ),
            gevent.spawn(
                self._attempt,
                f"/api/v1/bookings/{booking_id}/cancel",
                self.client_headers,
                "/api/v1/bookings/{id}/cancel [race]",
            ),
        ])


class ChatUser(HttpUser):
    """
    TEST 2: Both parties open the chat at the same time.

    Run: locust -f locustfile.py --tags chat -u 30 -r 10 --run-time 60s

    Both calls must return the same conversation id. Verify:
      SELECT booking_id, COUNT(*) FROM conversations GROUP BY booking_id HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.client_id, self.client_headers = new_user()
        self.mentor_id, self.mentor_headers = new_user()

    @tag("chat")
    @task
    def concurrent_open(self):
        resp = self.client.post(
            "/api/v1/payments/checkout",
            json=checkout_body(self.mentor_id),
            headers=self.client_headers,
        )
        if resp.status_code != 200:
            return
        booking_id = resp.json()["booking"]["id"]
        self.client.post(f"/api/v1/bookings/{booking_id}/accept", headers=self.mentor_headers,
            name="/api/v1/bookings/{id}/accept")

        body = {"booking_id": booking_id, "participants": [self.client_id, self.mentor_id]}
        results = []

        def open_chat(headers):
            r = self.client.post("/api/v1/conversations/", json=body, headers=headers,
                name="/api/v1/conversations/ [race]")
            if r.status_code == 200:
                results.append(r.json()["id"])

        gevent.joinall([
            gevent.spawn(open_chat, self.client_headers),
            gevent.spawn(open_chat, self.mentor_headers),
        ])
        if len(set(results)) > 1:
            print(f"\n✗ Duplicate conversations for booking {booking_id}: {results}\n")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.user_id, self.headers = new_user()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def self_booking(self):
        with self.client.post("/api/v1/payments/checkout",
            json=checkout_body(self.user_id),
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def past_date(self):
        body = checkout_body(f"mentor_{uuid.uuid4().hex[:8]}")
        body["date"] = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        with self.client.post("/api/v1/payments/checkout", json=body, headers=self.headers,
            catch_response=True) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def declined_card(self):
        body = checkout_body(f"mentor_{uuid.uuid4().hex[:8]}")
        body["payment_method"] = "pm_card_chargeDeclined"
        with self.client.post("/api/v1/payments/checkout", json=body, headers=self.headers,
            catch_response=True) as resp:
            self._expect(resp, [402])

    @tag("edge")
    @task
    def unknown_booking(self):
        with self.client.post(f"/api/v1/bookings/{uuid.uuid4()}/accept", headers=self.headers,
            name="/api/v1/bookings/{id}/accept [missing]", catch_response=True) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/payments/checkout",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.get("/api/v1/bookings/", catch_response=True) as resp:
            self._expect(resp, [401])
