"""
Tests for the processing client and the sequential batch processor.
"""
import json
import time

import httpx
import pytest

from app.core.exceptions import Forbidden, NotFound, ProcessingFailed, ValidationConflict
from app.models.invoice import InvoiceStatus
from app.services.batch import BatchProcessor
from app.services.invoices import InvoiceService
from app.services.processing import ProcessingService


def _processing_service(handler):
    return ProcessingService(base_url="http://processor.test", transport=httpx.MockTransport(handler))


class TestProcessingService:

    async def test_dispatches_invoice_id(self, db, alice, make_uploaded_invoice):
        invoice = await make_uploaded_invoice(alice)
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"status": "COMPLETED"})

        result = await _processing_service(handler).process_pending_invoice(alice, invoice.id, db)

        assert result == {"status": "COMPLETED"}
        assert seen == [("/process", {"invoice_id": invoice.id})]

    async def test_remote_error_surfaces_as_bad_gateway(self, db, alice, make_uploaded_invoice):
        invoice = await make_uploaded_invoice(alice)
        service = _processing_service(lambda request: httpx.Response(500, json={"error": "boom"}))

        with pytest.raises(ProcessingFailed) as exc:
            await service.process_pending_invoice(alice, invoice.id, db)
        assert exc.value.status_code == 502

    async def test_non_json_success_reply_is_empty_result(self, db, alice, make_uploaded_invoice):
        invoice = await make_uploaded_invoice(alice)
        service = _processing_service(lambda request: httpx.Response(202, text="accepted"))

        assert await service.process_pending_invoice(alice, invoice.id, db) == {}

    async def test_unreachable_service_surfaces_as_bad_gateway(self, db, alice, make_uploaded_invoice):
        invoice = await make_uploaded_invoice(alice)

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProcessingFailed):
            await _processing_service(handler).process_pending_invoice(alice, invoice.id, db)

    async def test_guards(self, db, alice, bob, make_uploaded_invoice, manual_invoice_request):
        invoice = await make_uploaded_invoice(alice)
        manual = await InvoiceService().create_manual_invoice(alice, manual_invoice_request(), db)
        service = _processing_service(lambda request: httpx.Response(200, json={}))

        with pytest.raises(Forbidden):
            await service.process_pending_invoice(bob, invoice.id, db)
        with pytest.raises(NotFound):
            await service.process_pending_invoice(alice, 9999, db)
        with pytest.raises(ValidationConflict):
            await service.process_pending_invoice(alice, manual.id, db)


class FakeProcessing:
    def __init__(self, failing_ids=()):
        self.failing_ids = set(failing_ids)
        self.calls = []

    async def dispatch(self, invoice_id):
        self.calls.append(invoice_id)
        if invoice_id in self.failing_ids:
            raise ProcessingFailed("Processing service unavailable")
        return {}


class TestBatchProcessor:

    async def test_processes_every_uploaded_invoice(self, db, alice, make_uploaded_invoice):
        first = await make_uploaded_invoice(alice, "a.pdf")
        second = await make_uploaded_invoice(alice, "b.pdf")
        await make_uploaded_invoice(alice, "done.pdf", status=InvoiceStatus.COMPLETED)
        processing = FakeProcessing()

        summary = await BatchProcessor(processing, delay=0).process_uploaded(alice, db)

        assert sorted(processing.calls) == sorted([first.id, second.id])
        assert summary["total"] == 2
        assert summary["processed"] == 2
        assert summary["failed"] == 0

    async def test_continues_after_failure(self, db, alice, make_uploaded_invoice):
        invoices = [await make_uploaded_invoice(alice, f"scan-{i}.pdf") for i in range(3)]
        broken = invoices[1]
        processing = FakeProcessing(failing_ids=[broken.id])

        summary = await BatchProcessor(processing, delay=0).process_uploaded(alice, db)

        assert len(processing.calls) == 3
        assert summary["processed"] == 2
        assert summary["failed"] == 1
        failures = [r for r in summary["results"] if not r["success"]]
        assert failures == [{"invoice_id": broken.id, "success": False, "error": "Processing service unavailable"}]

    async def test_waits_between_dispatches(self, db, alice, make_uploaded_invoice):
        for i in range(3):
            await make_uploaded_invoice(alice, f"scan-{i}.pdf")

        started = time.monotonic()
        await BatchProcessor(FakeProcessing(), delay=0.05).process_uploaded(alice, db)
        elapsed = time.monotonic() - started

        # Two pauses for three invoices
        assert elapsed >= 0.09

    async def test_ignores_other_users(self, db, alice, bob, make_uploaded_invoice):
        await make_uploaded_invoice(bob, "bobs.pdf")
        processing = FakeProcessing()

        summary = await BatchProcessor(processing, delay=0).process_uploaded(alice, db)

        assert processing.calls == []
        assert summary == {"total": 0, "processed": 0, "failed": 0, "results": []}

    async def test_non_json_reply_does_not_stop_batch(self, db, alice, make_uploaded_invoice):
        for i in range(3):
            await make_uploaded_invoice(alice, f"scan-{i}.pdf")
        calls = []

        def handler(request):
            calls.append(json.loads(request.content)["invoice_id"])
            if len(calls) == 2:
                return httpx.Response(200, text="accepted")
            return httpx.Response(200, json={"status": "PROCESSING_OCR"})

        summary = await BatchProcessor(_processing_service(handler), delay=0).process_uploaded(alice, db)

        assert len(calls) == 3
        assert summary["total"] == 3
        assert summary["processed"] == 3
        assert summary["failed"] == 0

    async def test_unexpected_error_is_recorded_and_batch_continues(self, db, alice, make_uploaded_invoice):
        invoices = [await make_uploaded_invoice(alice, f"scan-{i}.pdf") for i in range(3)]
        broken = invoices[0]

        class CrashingProcessing(FakeProcessing):
            async def dispatch(self, invoice_id):
                self.calls.append(invoice_id)
                if invoice_id == broken.id:
                    raise RuntimeError("connection pool exhausted")
                return {}

        processing = CrashingProcessing()
        summary = await BatchProcessor(processing, delay=0).process_uploaded(alice, db)

        assert len(processing.calls) == 3
        assert summary["processed"] == 2
        assert summary["failed"] == 1
        failures = [r for r in summary["results"] if not r["success"]]
        assert failures == [{"invoice_id": broken.id, "success": False, "error": "connection pool exhausted"}]
