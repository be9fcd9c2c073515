"""
Tests for the batch signature audit script.
"""

import json

from conftest import sign_text
from audit_signatures import audit, audit_record, main
from eigenai.models import Usage
from eigenai.sinks import JsonlVerificationSink
from eigenai.verifier import build_record


def _record(signer, output="Y", signature=None):
    return build_record(
        request_prompt="X",
        response_model="m",
        response_output=output,
        signature=signature or sign_text(signer, "1mX" + output),
        usage=Usage(),
        chain_id="1",
        expected_signer=signer.address,
    )


class TestAudit:
    def test_valid_record(self, signer):
        result = audit_record(_record(signer), signer.address)
        assert result["is_valid"]
        assert result["hashes_match"]

    def test_tampered_output_fails(self, signer):
        record = _record(signer).model_copy(update={"response_output": "Z"})
        result = audit_record(record, signer.address)
        assert not result["signature_valid"]
        assert not result["hashes_match"]
        assert not result["is_valid"]

    def test_results_keep_input_order(self, signer):
        records = [_record(signer, output=str(i)) for i in range(6)]
        results = audit(records, signer.address, concurrency=3)
        assert [r["id"] for r in results] == [r.id for r in records]

    def test_main_writes_report(self, signer, tmp_path):
        log = tmp_path / "verifications.jsonl"
        sink = JsonlVerificationSink(log)
        sink.record(_record(signer))
        sink.record(_record(signer, signature="0x00"))
        out = tmp_path / "out" / "audit.json"

        code = main(["--input", str(log), "--output", str(out), "--signer", signer.address])

        assert code == 1
        report = json.loads(out.read_text())
        assert [r["is_valid"] for r in report] == [True, False]
        assert report[1]["recovered_address"] == "ERROR"
