"""
Compliance & Escalation Notification Engine.

Architecture:
    escalation_engine/
    ├── api/             # FastAPI routers (trigger surface, compliance gate)
    ├── auth/            # Bearer tokens, trigger key
    ├── db/              # SQLAlchemy models, engine, query helpers
    ├── middleware/      # Error handling, request context
    ├── escalation/      # Resolver, ledger, channels, scheduler, quorum, gate
    └── services/        # Messaging gateway, feed publisher, periodic jobs

Module Boundaries:
    - Obligations, subjects and fulfillment records are owned by other
      workflows; this package only reads them
    - Alert records are written only by the escalation scheduler
    - The compliance gate reads the same fulfillment records but never
      writes to the alert ledger

Data Flow:
    Trigger → Load config → Resolve targets → Ledger admit → Render
    → Dispatch channels → Ledger record → Run summary

Version: 1.0.0
"""

__version__ = "1.0.0"
