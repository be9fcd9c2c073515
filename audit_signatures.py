"""
Batch re-verification of stored EigenAI signatures.

Input : a JSONL verification log (as written by JsonlVerificationSink /
        VERIFICATION_LOG) — one record per line.
Output: one result per record, written to output/signature_audit.json, plus a
        summary line.

Each record is re-checked from its stored prompt and output alone: the signed
message is rebuilt, the signer recovered, and the stored keccak hashes
recomputed. Nothing here touches the network.

Usage:
    python audit_signatures.py --input data/verifications.jsonl
    python audit_signatures.py --input data/verifications.jsonl --concurrency 8 --signer 0x...
"""

import os
import json
import logging
import argparse
import concurrent.futures
from pathlib import Path

from dotenv import load_dotenv

from eigenai.config import EXPECTED_SIGNER
from eigenai.models import VerificationRecord
from eigenai.sinks import JsonlVerificationSink
from eigenai.verifier import compute_hash, verify_text

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def audit_record(record: VerificationRecord, expected_signer: str) -> dict:
    """Re-verify one stored record. Never raises; problems land in the result."""
    result = verify_text(
        record.chain_id,
        record.response_model,
        record.request_prompt,
        record.response_output,
        record.signature,
        expected_signer,
    )
    hashes_match = (
        (not record.request_hash or record.request_hash == compute_hash(record.request_prompt))
        and (not record.response_hash or record.response_hash == compute_hash(record.response_output))
    )
    return {
        "id": record.id,
        "created_at": record.created_at.isoformat(),
        "model": record.response_model,
        "is_valid": result.is_valid and hashes_match,
        "signature_valid": result.is_valid,
        "hashes_match": hashes_match,
        "recovered_address": result.recovered_address,
        "expected_signer": expected_signer,
        "stored_status": record.status,
        "error": result.error,
    }


def audit(records, expected_signer: str, concurrency: int = 4) -> list:
    """Audit records on a thread pool, returning results in input order."""
    audited = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        futures = {
            pool.submit(audit_record, record, expected_signer): i
            for i, record in enumerate(records)
        }
        for future in concurrent.futures.as_completed(futures):
            idx = futures[future]
            result = future.result()
            logger.info(
                "  [%4d/%d] %s %s", idx + 1, len(records),
                "VALID  " if result["is_valid"] else "INVALID", result["id"],
            )
            audited.append((idx, result))

    # Restore original order
    audited.sort(key=lambda x: x[0])
    return [r for _, r in audited]


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv=None):
    parser = argparse.ArgumentParser(description="Re-verify EigenAI signatures from a verification log.")
    parser.add_argument("--input",       required=True,        help="Path to the JSONL verification log")
    parser.add_argument("--output",      default="output/signature_audit.json")
    parser.add_argument("--signer",      default=os.getenv("EIGENAI_EXPECTED_SIGNER", EXPECTED_SIGNER),
                        help="Address EigenAI is expected to sign with")
    parser.add_argument("--concurrency", type=int, default=4,
                        help="Parallel verifications")
    args = parser.parse_args(argv)

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(), format="%(message)s")

    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"ERROR: Input file not found: {input_path}")

    records = JsonlVerificationSink(input_path).all()

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Signer      : %s", args.signer)
    logger.info("Records     : %d", len(records))
    logger.info("Concurrency : %d", args.concurrency)
    logger.info("Output      : %s", output_path)
    logger.info("-" * 60)

    results = audit(records, args.signer, args.concurrency)

    with open(output_path, "w") as f:
        json.dump(results, f, indent=2)

    invalid = sum(1 for r in results if not r["is_valid"])
    logger.info("\nDone. %d/%d signatures valid → %s", len(results) - invalid, len(results), output_path)
    if invalid:
        logger.info("  %d invalid — check 'error' / 'recovered_address' in the output file.", invalid)
    return 0 if not invalid else 1


if __name__ == "__main__":
    raise SystemExit(main())
