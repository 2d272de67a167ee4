"""
Compliance & Escalation core.

Components:
- schemas: Enums, targets, channel results, run summaries
- settings_store: Runtime escalation configuration (per-key schemas)
- periods: Local calendar periods and deadline checks
- resolver: Outstanding (obligation, subject-or-unit) pairs
- ledger: Per-period dedup and reminder cap, conflict-tolerant recording
- channels: In-app and WhatsApp dispatch, independent per channel
- render: Message templates with admin overrides
- quorum: Approval rate and terminal status of expired proposals
- scheduler: Stateless runs per rule family
- gate: Read-path compliance gate, fail-open
"""
