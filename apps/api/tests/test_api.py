"""HTTP contract tests for balance, job, assignment, admin and internal routes."""

from __future__ import annotations

import asyncio
import os
import threading
import unittest

from fastapi.testclient import TestClient
import httpx

from scribeflow.adapters.transcription import MockTranscriptionPipeline, PipelineFatalError
from scribeflow.core.clock import ManualClock
from scribeflow.core.config import get_settings
from scribeflow.main import create_app

CALLBACK_SECRET = "test-callback-secret"
INTERNAL_HEADERS = {"X-Callback-Secret": CALLBACK_SECRET}
CUSTOMER_HEADERS = {"Authorization": "Bearer test:acct-1"}
OTHER_CUSTOMER_HEADERS = {"Authorization": "Bearer test:acct-2:customer"}
ADMIN_HEADERS = {"Authorization": "Bearer test:ops-1:admin"}


class _BlockingPipeline(MockTranscriptionPipeline):
    """Holds every submit until released, like a slow speech-to-text provider."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def submit(self, **kwargs) -> str:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().submit(**kwargs)


class _SettingsEnvCase(unittest.TestCase):
    _env_keys = (
        "SCRIBEFLOW_AUTH_PROVIDER",
        "SCRIBEFLOW_CALLBACK_SECRET",
        "SCRIBEFLOW_PIPELINE_PROVIDER",
        "SCRIBEFLOW_FIREBASE_PROJECT_ID",
        "SCRIBEFLOW_FIREBASE_AUDIENCE",
    )

    def setUp(self) -> None:
        self._old_env = {k: os.environ.get(k) for k in self._env_keys}
        os.environ["SCRIBEFLOW_AUTH_PROVIDER"] = "mock"
        os.environ["SCRIBEFLOW_CALLBACK_SECRET"] = CALLBACK_SECRET
        os.environ["SCRIBEFLOW_PIPELINE_PROVIDER"] = "mock"
        os.environ["SCRIBEFLOW_FIREBASE_PROJECT_ID"] = "test-project"
        os.environ["SCRIBEFLOW_FIREBASE_AUDIENCE"] = "test-audience"
        get_settings.cache_clear()
        self.clock = ManualClock()
        self.pipeline = MockTranscriptionPipeline()
        self.app = create_app(clock=self.clock, pipeline=self.pipeline)
        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        for key, value in self._old_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        get_settings.cache_clear()

    def _top_up(self, account_id: str, amount: str, reference: str = "pay-1"):
        return self.client.post(
            "/api/v1/internal/payments/confirmed",
            headers=INTERNAL_HEADERS,
            json={
                "account_id": account_id,
                "payment_reference": reference,
                "kind": "wallet_topup",
                "amount_confirmed": amount,
            },
        )

    def _submit(self, headers: dict[str, str], tier: str, units: str):
        return self.client.post(
            "/api/v1/jobs",
            headers=headers,
            json={"file_reference": "s3://bucket/call.wav", "requested_units": units, "tier": tier},
        )


class AuthApiTests(_SettingsEnvCase):
    def test_missing_or_invalid_bearer_returns_401(self) -> None:
        missing = self.client.get("/api/v1/balance")
        invalid = self.client.get("/api/v1/balance", headers={"Authorization": "Bearer nope"})
        unknown_role = self.client.get("/api/v1/balance", headers={"Authorization": "Bearer test:acct-1:owner"})

        for response in (missing, invalid, unknown_role):
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json()["code"], "UNAUTHORIZED")

    def test_wrong_role_returns_403(self) -> None:
        transcriber_headers = {"Authorization": "Bearer test:worker-1:transcriber"}

        as_transcriber = self.client.get("/api/v1/balance", headers=transcriber_headers)
        as_customer = self.client.get("/api/v1/admin/jobs", headers=CUSTOMER_HEADERS)
        assignments = self.client.get("/api/v1/assignments", headers=CUSTOMER_HEADERS)

        for response in (as_transcriber, as_customer, assignments):
            self.assertEqual(response.status_code, 403)
            self.assertEqual(response.json()["code"], "FORBIDDEN")

    def test_internal_routes_require_callback_secret(self) -> None:
        missing = self.client.post("/api/v1/internal/pipeline/tick")
        wrong = self.client.post("/api/v1/internal/queue/drain", headers={"X-Callback-Secret": "wrong"})

        for response in (missing, wrong):
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json()["code"], "UNAUTHORIZED")

    def test_correlation_id_header_reaches_processing_errors(self) -> None:
        self._top_up("acct-1", "10.00")
        self.app.state.store.accounts["acct-1"].wallet_balance += 1

        with self.assertLogs("scribeflow.services.ledger", level="CRITICAL"):
            response = self.client.get(
                "/api/v1/admin/accounts/acct-1/reconciliation",
                headers={**ADMIN_HEADERS, "X-Correlation-Id": "corr-drift"},
            )

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "PROCESSING_DELAYED")
        self.assertEqual(response.json()["details"], {"correlation_id": "corr-drift"})


class BalanceApiTests(_SettingsEnvCase):
    def test_purchase_confirmation_is_idempotent(self) -> None:
        first = self._top_up("acct-1", "10.00")
        replay = self._top_up("acct-1", "10.00")

        self.assertEqual(first.status_code, 201)
        self.assertFalse(first.json()["replayed"])
        self.assertEqual(replay.status_code, 200)
        self.assertTrue(replay.json()["replayed"])
        self.assertEqual(replay.json()["ledger_entry_id"], first.json()["ledger_entry_id"])

        balance = self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS)
        self.assertEqual(balance.status_code, 200)
        self.assertEqual(balance.json()["wallet_balance"], "10.00")
        self.assertEqual(len(self.client.get("/api/v1/balance/ledger", headers=CUSTOMER_HEADERS).json()), 1)

    def test_payment_reference_reused_by_another_account_conflicts(self) -> None:
        self._top_up("acct-1", "10.00", reference="pay-shared")

        response = self._top_up("acct-2", "10.00", reference="pay-shared")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "PAYMENT_REFERENCE_CONFLICT")

    def test_package_purchase_without_package_spec_is_422(self) -> None:
        response = self.client.post(
            "/api/v1/internal/payments/confirmed",
            headers=INTERNAL_HEADERS,
            json={"account_id": "acct-1", "payment_reference": "pay-9", "kind": "package", "amount_confirmed": "5"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_quote_reports_plan_or_shortfall(self) -> None:
        self._top_up("acct-1", "10.00")

        enough = self.client.post(
            "/api/v1/balance/quote",
            headers=CUSTOMER_HEADERS,
            json={"tier": "ai", "requested_units": "10"},
        )
        short = self.client.post(
            "/api/v1/balance/quote",
            headers=CUSTOMER_HEADERS,
            json={"tier": "human", "requested_units": "5"},
        )

        self.assertEqual(enough.status_code, 200)
        self.assertTrue(enough.json()["sufficient"])
        self.assertEqual(enough.json()["plan"]["wallet_cost"], "4.00")
        self.assertFalse(short.json()["sufficient"])
        self.assertEqual(short.json()["shortfall"], "2.50")
        self.assertEqual(self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()["wallet_balance"], "10.00")


class JobApiTests(_SettingsEnvCase):
    def test_insufficient_funds_returns_402_and_creates_no_job(self) -> None:
        self._top_up("acct-1", "10.00")

        response = self._submit(CUSTOMER_HEADERS, "human", "5")

        self.assertEqual(response.status_code, 402)
        body = response.json()
        self.assertEqual(body["code"], "INSUFFICIENT_FUNDS")
        self.assertEqual(body["details"]["shortfall"], "2.50")
        self.assertEqual(self.client.get("/api/v1/jobs", headers=CUSTOMER_HEADERS).json(), [])
        self.assertEqual(self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()["wallet_balance"], "10.00")

    def test_invalid_payload_returns_validation_error(self) -> None:
        response = self.client.post(
            "/api/v1/jobs",
            headers=CUSTOMER_HEADERS,
            json={"file_reference": "s3://bucket/call.wav", "requested_units": "0", "tier": "premium"},
        )

        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertEqual(body["code"], "VALIDATION_ERROR")
        self.assertTrue(body["details"]["errors"])

    def test_ai_job_lifecycle_via_pipeline_ticks(self) -> None:
        self._top_up("acct-1", "10.00")

        created = self._submit(CUSTOMER_HEADERS, "ai", "10")
        self.assertEqual(created.status_code, 201)
        job = created.json()
        self.assertEqual(job["status"], "PROCESSING")
        self.assertEqual(job["funding"]["wallet_amount"], "-4.00")

        first = self.client.post("/api/v1/internal/pipeline/tick", headers=INTERNAL_HEADERS)
        second = self.client.post("/api/v1/internal/pipeline/tick", headers=INTERNAL_HEADERS)
        self.assertEqual(first.json()["submitted"], 1)
        self.assertEqual(second.json()["completed"], 1)

        fetched = self.client.get(f"/api/v1/jobs/{job['id']}", headers=CUSTOMER_HEADERS).json()
        self.assertEqual(fetched["status"], "COMPLETED")
        self.assertEqual(fetched["transcript"], "transcript of s3://bucket/call.wav")

        cancel = self.client.post(f"/api/v1/jobs/{job['id']}/cancel", headers=CUSTOMER_HEADERS)
        self.assertEqual(cancel.status_code, 409)
        self.assertEqual(cancel.json()["code"], "FSM_TERMINAL_IMMUTABLE")

    def test_slow_pipeline_tick_does_not_hold_up_debits(self) -> None:
        self._top_up("acct-1", "10.00")
        self.assertEqual(self._submit(CUSTOMER_HEADERS, "ai", "5").status_code, 201)
        pipeline = _BlockingPipeline()
        self.app.state.pipeline = pipeline

        async def tick_while_submitting():
            transport = httpx.ASGITransport(app=self.app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                tick = asyncio.create_task(client.post("/api/v1/internal/pipeline/tick", headers=INTERNAL_HEADERS))
                while not pipeline.entered.is_set() and not tick.done():
                    await asyncio.sleep(0.01)
                created = await client.post(
                    "/api/v1/jobs",
                    headers=CUSTOMER_HEADERS,
                    json={"file_reference": "s3://bucket/second.wav", "requested_units": "5", "tier": "ai"},
                )
                tick_finished_first = tick.done()
                pipeline.release.set()
                return created, tick_finished_first, await tick

        created, tick_finished_first, ticked = asyncio.run(tick_while_submitting())

        self.assertEqual(created.status_code, 201)
        self.assertFalse(tick_finished_first)
        self.assertEqual(ticked.status_code, 200)
        self.assertEqual(ticked.json()["submitted"], 1)
        balance = self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()
        self.assertEqual(balance["wallet_balance"], "6.00")

    def test_cancel_refunds_through_the_ledger(self) -> None:
        self._top_up("acct-1", "10.00")
        job = self._submit(CUSTOMER_HEADERS, "ai", "10").json()

        response = self.client.post(f"/api/v1/jobs/{job['id']}/cancel", headers=CUSTOMER_HEADERS)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "CANCELLED")
        self.assertIsNotNone(response.json()["refund_entry_id"])
        self.assertEqual(self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()["wallet_balance"], "10.00")

    def test_foreign_or_missing_job_is_no_leak_404(self) -> None:
        self._top_up("acct-1", "10.00")
        job = self._submit(CUSTOMER_HEADERS, "ai", "1").json()

        foreign = self.client.get(f"/api/v1/jobs/{job['id']}", headers=OTHER_CUSTOMER_HEADERS)
        foreign_cancel = self.client.post(f"/api/v1/jobs/{job['id']}/cancel", headers=OTHER_CUSTOMER_HEADERS)
        missing = self.client.get("/api/v1/jobs/job-missing", headers=CUSTOMER_HEADERS)

        for response in (foreign, foreign_cancel, missing):
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json(), {"code": "RESOURCE_NOT_FOUND", "message": "Resource not found"})


class HumanWorkflowApiTests(_SettingsEnvCase):
    def test_human_job_is_queued_then_assigned_and_completed(self) -> None:
        self._top_up("acct-1", "20.00")
        job = self._submit(CUSTOMER_HEADERS, "human", "2").json()
        self.assertEqual(job["status"], "PENDING")
        self.assertTrue(job["queued"])

        worker = self.client.post(
            "/api/v1/admin/workers",
            headers=ADMIN_HEADERS,
            json={"worker_id": "worker-1", "name": "Ana", "quality_rating": "4.9"},
        )
        self.assertEqual(worker.status_code, 201)

        worker_headers = {"Authorization": "Bearer test:worker-1:transcriber"}
        assignments = self.client.get("/api/v1/assignments", headers=worker_headers).json()
        self.assertEqual(len(assignments), 1)
        assignment = assignments[0]
        self.assertEqual(assignment["job_id"], job["id"])
        self.assertEqual(assignment["estimated_units"], "8")

        intruder = self.client.post(
            f"/api/v1/assignments/{assignment['id']}/start",
            headers={"Authorization": "Bearer test:worker-2:transcriber"},
        )
        self.assertEqual(intruder.status_code, 404)

        started = self.client.post(f"/api/v1/assignments/{assignment['id']}/start", headers=worker_headers)
        self.assertEqual(started.json()["status"], "in_progress")
        submitted = self.client.post(
            f"/api/v1/assignments/{assignment['id']}/submit",
            headers=worker_headers,
            json={"result": "Verbatim transcript."},
        )
        self.assertEqual(submitted.status_code, 200)
        self.assertEqual(submitted.json()["status"], "completed")

        fetched = self.client.get(f"/api/v1/jobs/{job['id']}", headers=CUSTOMER_HEADERS).json()
        self.assertEqual(fetched["status"], "COMPLETED")
        self.assertEqual(fetched["transcript"], "Verbatim transcript.")

    def test_duplicate_worker_registration_conflicts(self) -> None:
        payload = {"worker_id": "worker-1", "name": "Ana"}
        self.client.post("/api/v1/admin/workers", headers=ADMIN_HEADERS, json=payload)

        response = self.client.post("/api/v1/admin/workers", headers=ADMIN_HEADERS, json=payload)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "WORKER_ALREADY_REGISTERED")


class AdminApiTests(_SettingsEnvCase):
    def test_reconciliation_of_consistent_account(self) -> None:
        self._top_up("acct-1", "10.00")
        self._submit(CUSTOMER_HEADERS, "ai", "5")

        response = self.client.get("/api/v1/admin/accounts/acct-1/reconciliation", headers=ADMIN_HEADERS)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["consistent"])
        self.assertEqual(body["entries_replayed"], 2)
        self.assertEqual(body["wallet_balance"], "8.00")

    def test_adjustment_grants_trial_units(self) -> None:
        response = self.client.post(
            "/api/v1/admin/accounts/acct-1/adjustments",
            headers=ADMIN_HEADERS,
            json={"trial_units_delta": "30", "trial_expires_at": "2026-02-01T00:00:00Z", "reason": "welcome trial"},
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["kind"], "adjustment")
        balance = self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()
        self.assertEqual(balance["trial_units_remaining"], "30")
        self.assertTrue(balance["trial_active"])

    def test_failed_job_refund_flow(self) -> None:
        self._top_up("acct-1", "10.00")
        job = self._submit(CUSTOMER_HEADERS, "ai", "10").json()
        self.pipeline.poll_failures.append(PipelineFatalError("unsupported codec"))
        self.client.post("/api/v1/internal/pipeline/tick", headers=INTERNAL_HEADERS)
        with self.assertLogs("scribeflow.services.pipeline", level="ERROR"):
            self.client.post("/api/v1/internal/pipeline/tick", headers=INTERNAL_HEADERS)

        failed = self.client.get("/api/v1/admin/jobs?status=ERROR", headers=ADMIN_HEADERS).json()
        self.assertEqual([item["id"] for item in failed], [job["id"]])

        refund = self.client.post(
            f"/api/v1/admin/jobs/{job['id']}/refund",
            headers=ADMIN_HEADERS,
            json={"reason": "provider rejected file"},
        )
        self.assertEqual(refund.status_code, 200)
        self.assertIsNotNone(refund.json()["refund_entry_id"])
        self.assertEqual(self.client.get("/api/v1/balance", headers=CUSTOMER_HEADERS).json()["wallet_balance"], "10.00")

        ledger = self.client.get("/api/v1/admin/accounts/acct-1/ledger", headers=ADMIN_HEADERS).json()
        self.assertEqual([entry["kind"] for entry in ledger], ["purchase", "debit", "refund"])


if __name__ == "__main__":
    unittest.main()
