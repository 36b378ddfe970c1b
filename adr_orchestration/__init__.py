"""
adr_orchestration -- Automated document retrieval orchestration engine.

Turns scheduling rules into jobs and drives each job through the vendor
workflow: credential check, document retrieval request, status polling.
Runs are processed one at a time by a single background worker.

Invariants enforced:
    - At most one non-deleted job per (account, billing period), enforced by
      a partial unique index.
    - At most one execution per (job, request type, UTC day); the ledger row
      is claimed before the vendor is called.
    - A job's retry count never exceeds the configured maximum before the
      job reaches a terminal status.
    - Only one orchestration run is Running at any time.

Layout:
    domain/        pure types, scheduling math, state machine (no I/O)
    models/        ORM models
    services/      one service per pipeline component (flush, never commit)
    runner/        queue, worker, cancellation, run recorder
    orchestrator   DI container wiring the above
"""
