"""
Escalation Scheduler — one stateless run per rule family.

Pipeline (deadline / persistence):
1. Load the escalation configuration (fresh every run)
2. Resolve outstanding targets for the family's active obligations
3. Admit each pair against the alert ledger
4. Render the message
5. Dispatch to the obligation's channels, per recipient
6. Record the alert if at least one channel reached the target
   (escalation-role copies follow a delivered unit alert)
7. Return a run summary

Pipeline (quorum):
1. Load configuration, find proposals whose vote window closed
2. Compute approval rate, transition voting → approved / rejected
3. Publish approved proposals to the feed, notify the author

A failing pair or proposal is logged and summarized, never raised. Only
a configuration failure or a resolver crash aborts the run.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escalation_engine.db import queries
from escalation_engine.db.models import Proposal, Subject, utcnow
from escalation_engine.escalation.channels import ChannelDispatcher
from escalation_engine.escalation.ledger import AlertLedger
from escalation_engine.escalation.periods import localize
from escalation_engine.escalation.quorum import (
    compute_approval_rate,
    resolve_status,
    stored_rate,
)
from escalation_engine.escalation.render import MessageRenderer
from escalation_engine.escalation.resolver import TargetResolver
from escalation_engine.escalation.schemas import (
    DEFAULT_CHANNELS,
    AdmitReason,
    Channel,
    ChannelResult,
    DeliveryStatus,
    OutstandingTarget,
    PairOutcome,
    ProposalResolution,
    ProposalStatus,
    QuorumSummary,
    RenderedMessage,
    RuleFamily,
    RunSummary,
)
from escalation_engine.escalation.settings_store import (
    EscalationConfig,
    load_escalation_config,
)
from escalation_engine.services.feed_publisher import (
    DatabaseFeedPublisher,
    FeedPublisher,
    FeedPublishRequest,
)

logger = structlog.get_logger(__name__)


def _new_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


class EscalationScheduler:
    """
    Orchestrates escalation runs.

    Stateless between runs: configuration is re-read and every
    checkpoint lives in the database. Overlapping runs are prevented by
    the invoker; concurrent record() calls are settled by the ledger's
    uniqueness constraint.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: ChannelDispatcher,
        resolver: Optional[TargetResolver] = None,
        renderer_factory: type[MessageRenderer] = MessageRenderer,
        feed_publisher: Optional[FeedPublisher] = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._resolver = resolver or TargetResolver()
        self._renderer_factory = renderer_factory
        self._feed_publisher = feed_publisher or DatabaseFeedPublisher()

    # ── Entry points ───────────────────────────────────────────────────

    async def run_deadline_compliance(self, as_of: Optional[datetime] = None) -> RunSummary:
        return await self._run_family(RuleFamily.DEADLINE, as_of)

    async def run_mandatory_reminders(self, as_of: Optional[datetime] = None) -> RunSummary:
        return await self._run_family(RuleFamily.PERSISTENCE, as_of)

    async def run_quorum_resolution(self, as_of: Optional[datetime] = None) -> QuorumSummary:
        run_id = _new_run_id()
        structlog.contextvars.bind_contextvars(run_id=run_id, family="quorum")
        try:
            async with self._session_factory() as session:
                config = await load_escalation_config(session)
                local_now = localize(as_of, config.tz)
                summary = QuorumSummary(
                    run_id=run_id,
                    as_of=local_now.isoformat(),
                    quorum_percentage=config.quorum_percentage,
                )

                proposals = await self._resolver.resolve_expired_proposals(session, local_now)
                # Detached rows survive a per-proposal rollback unexpired.
                session.expunge_all()
                renderer = self._renderer_factory()
                for proposal in proposals:
                    resolution = await self._resolve_proposal(session, proposal, config, renderer)
                    summary.processed += 1
                    summary.details.append(resolution)
                    if resolution.error:
                        summary.errors += 1
                    elif resolution.status == ProposalStatus.APPROVED:
                        summary.approved += 1
                    elif resolution.status == ProposalStatus.REJECTED:
                        summary.rejected += 1
                    else:
                        summary.skipped += 1

            logger.info(
                "quorum_run_completed",
                processed=summary.processed,
                approved=summary.approved,
                rejected=summary.rejected,
                errors=summary.errors,
            )
            return summary
        except Exception as e:
            logger.error("escalation_run_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("run_id", "family")

    # ── Deadline / persistence runs ────────────────────────────────────

    async def _run_family(self, family: RuleFamily, as_of: Optional[datetime]) -> RunSummary:
        run_id = _new_run_id()
        structlog.contextvars.bind_contextvars(run_id=run_id, family=str(family))
        try:
            async with self._session_factory() as session:
                config = await load_escalation_config(session)
                local_now = localize(as_of, config.tz)
                summary = RunSummary(run_id=run_id, family=family, as_of=local_now.isoformat())

                obligations = await queries.get_active_obligations(session, family)
                targets = await self._resolver.resolve(session, obligations, local_now, config)

                supervisors: list[Subject] = []
                if family == RuleFamily.DEADLINE and config.escalation_roles:
                    supervisors = list(
                        await queries.get_subjects_by_roles(session, config.escalation_roles)
                    )
                # Detached rows survive a per-pair rollback unexpired.
                session.expunge_all()

                ledger = AlertLedger(self._session_factory, config)
                renderer = self._renderer_factory()
                for target in targets:
                    outcome = await self._process_target(
                        session, ledger, renderer, target, local_now, config, supervisors
                    )
                    self._accumulate(summary, target, outcome)

            logger.info(
                "escalation_run_completed",
                processed=summary.processed,
                alerted=summary.alerted,
                suppressed=summary.suppressed,
                errors=summary.errors,
            )
            return summary
        except Exception as e:
            logger.error("escalation_run_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("run_id", "family")

    async def _process_target(
        self,
        session: AsyncSession,
        ledger: AlertLedger,
        renderer: MessageRenderer,
        target: OutstandingTarget,
        local_now: datetime,
        config: EscalationConfig,
        supervisors: list[Subject],
    ) -> PairOutcome:
        obligation = target.obligation
        outcome = PairOutcome(
            obligation_id=str(obligation.id),
            obligation_title=obligation.title,
            target_kind=target.kind,
            target_ref=target.ref,
            display_name=target.display_name,
        )

        try:
            reason = await ledger.evaluate(obligation, target, local_now)
            if reason != AdmitReason.ADMITTED:
                outcome.skip_reason = str(reason)
                logger.debug(
                    "pair_suppressed",
                    obligation_id=outcome.obligation_id,
                    target_ref=target.ref,
                    reason=str(reason),
                )
                return outcome
            outcome.admitted = True

            family = RuleFamily(obligation.rule_family)
            requested = obligation.channels or [str(c) for c in DEFAULT_CHANNELS[family]]

            if family == RuleFamily.DEADLINE:
                message = await renderer.deadline_alert(session, target, local_now)
            else:
                message = await renderer.persistence_reminder(session, target)

            deliveries: list[tuple[Subject, dict[Channel, ChannelResult]]] = []
            for subject in target.recipients:
                results = await self._dispatcher.send(session, subject, message, requested, config)
                deliveries.append((subject, results))
        except Exception as e:
            await session.rollback()
            outcome.error = str(e) or type(e).__name__
            logger.error(
                "pair_processing_failed",
                obligation_id=outcome.obligation_id,
                target_ref=target.ref,
                error=outcome.error,
            )
            return outcome

        # In-app rows are durable before the ledger row is written.
        deliveries = await self._commit_in_app(session, outcome, deliveries)

        channels_used = self._tally(outcome, deliveries)
        outcome.delivered = bool(channels_used)

        if not outcome.delivered:
            logger.warning(
                "pair_not_delivered",
                obligation_id=outcome.obligation_id,
                target_ref=target.ref,
                failures=len(outcome.failures),
            )
            return outcome

        if family == RuleFamily.DEADLINE and supervisors:
            await self._escalate(session, renderer, target, local_now, config, supervisors, outcome)

        try:
            outcome.record_outcome = await ledger.record(
                obligation, target, channels_used, outcome.channels, local_now,
                failures=outcome.failures,
            )
        except Exception as e:
            outcome.error = str(e) or type(e).__name__
            logger.error(
                "alert_record_failed",
                obligation_id=outcome.obligation_id,
                target_ref=target.ref,
                error=outcome.error,
            )
        return outcome

    @staticmethod
    async def _commit_in_app(
        session: AsyncSession,
        outcome: PairOutcome,
        deliveries: list[tuple[Subject, dict[Channel, ChannelResult]]],
    ) -> list[tuple[Subject, dict[Channel, ChannelResult]]]:
        """
        Commit the pair's in-app rows.

        If the commit fails the rows are gone: their results are turned into
        failures, while deliveries on other channels still stand.
        """
        try:
            await session.commit()
            return deliveries
        except Exception as e:
            await session.rollback()
            error = str(e) or type(e).__name__
            logger.error(
                "in_app_commit_failed",
                obligation_id=outcome.obligation_id,
                target_ref=outcome.target_ref,
                error=error,
            )
            return [(subject, _revoke_in_app(results, error)) for subject, results in deliveries]

    @staticmethod
    def _tally(
        outcome: PairOutcome,
        deliveries: list[tuple[Subject, dict[Channel, ChannelResult]]],
    ) -> list[Channel]:
        """Fill outcome.channels and outcome.failures; return the channels that delivered."""
        channels_used: list[Channel] = []
        tally: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for subject, results in deliveries:
            for channel, result in results.items():
                tally[str(channel)][str(result.status)] += 1
                if result.status == DeliveryStatus.DELIVERED and channel not in channels_used:
                    channels_used.append(channel)
                if result.status == DeliveryStatus.FAILED:
                    outcome.failures.append(
                        {
                            "subject_id": str(subject.id),
                            "channel": str(channel),
                            "error": result.error,
                        }
                    )
        outcome.channels = {k: dict(v) for k, v in tally.items()}
        return channels_used

    async def _escalate(
        self,
        session: AsyncSession,
        renderer: MessageRenderer,
        target: OutstandingTarget,
        local_now: datetime,
        config: EscalationConfig,
        supervisors: list[Subject],
        outcome: PairOutcome,
    ) -> None:
        """
        In-app copy of a delivered unit alert for subjects in an escalation role.

        Copies are tallied apart from the unit's own channels and never make
        a pair count as delivered.
        """
        member_ids = {s.id for s in target.recipients}
        tally: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        try:
            message = await renderer.deadline_alert(session, target, local_now, escalation=True)
            for supervisor in supervisors:
                if supervisor.id in member_ids:
                    continue
                results = await self._dispatcher.send(
                    session, supervisor, message, [str(Channel.IN_APP)], config
                )
                for channel, result in results.items():
                    tally[str(channel)][str(result.status)] += 1
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                "escalation_copy_failed",
                obligation_id=outcome.obligation_id,
                target_ref=target.ref,
                error=str(e) or type(e).__name__,
            )
            return
        outcome.escalation_channels = {k: dict(v) for k, v in tally.items()}

    @staticmethod
    def _accumulate(summary: RunSummary, target: OutstandingTarget, outcome: PairOutcome) -> None:
        summary.processed += 1
        summary.details.append(outcome)

        if outcome.error:
            key = "errors"
        elif outcome.skip_reason:
            key = "suppressed"
        elif outcome.delivered:
            key = "alerted"
        else:
            key = "undelivered"
        if key != "undelivered":
            setattr(summary, key, getattr(summary, key) + 1)

        buckets = [summary.by_obligation.setdefault(outcome.obligation_title, {})]
        if target.unit_code:
            buckets.append(summary.by_unit.setdefault(target.unit_code, {}))
        for bucket in buckets:
            bucket["processed"] = bucket.get("processed", 0) + 1
            bucket[key] = bucket.get(key, 0) + 1

        for totals, per_pair in (
            (summary.by_channel, outcome.channels),
            (summary.by_escalation, outcome.escalation_channels),
        ):
            for channel, counts in per_pair.items():
                channel_bucket = totals.setdefault(channel, {})
                for status, n in counts.items():
                    channel_bucket[status] = channel_bucket.get(status, 0) + n

    # ── Quorum ─────────────────────────────────────────────────────────

    async def _resolve_proposal(
        self,
        session: AsyncSession,
        proposal: Proposal,
        config: EscalationConfig,
        renderer: MessageRenderer,
    ) -> ProposalResolution:
        rate = compute_approval_rate(proposal.positive_votes, proposal.total_votes)
        status = resolve_status(rate, config.quorum_percentage)
        resolution = ProposalResolution(
            proposal_id=str(proposal.id),
            code=proposal.code,
            title=proposal.title,
            status=status,
            approval_rate=round(rate, 2),
        )

        try:
            changed = await queries.transition_proposal(
                session, proposal.id, str(status), stored_rate(rate), utcnow()
            )
            if not changed:
                await session.rollback()
                resolution.status = ProposalStatus.VOTING
                logger.info("proposal_already_resolved", proposal_id=resolution.proposal_id)
                return resolution

            approved = status == ProposalStatus.APPROVED
            if approved and config.auto_publish_to_feed:
                await self._feed_publisher.publish(
                    session,
                    FeedPublishRequest(
                        title="💡 Ideia Aprovada pela Comunidade",
                        body=f'"{proposal.title}" foi aprovada com {rate:.1f}% dos votos!\n\n{proposal.description}',
                        reference_id=str(proposal.id),
                        created_by=proposal.submitted_by,
                        media_url=(proposal.media_urls or [None])[0],
                    ),
                )
                resolution.published = True

            author = await queries.get_subject(session, proposal.submitted_by)
            if author is not None:
                channels = [str(Channel.IN_APP)]
                if approved and config.notify_whatsapp_on_approval:
                    channels.append(str(Channel.WHATSAPP))
                message: RenderedMessage = await renderer.proposal_resolved(
                    session, proposal, approved, rate, config.quorum_percentage, author.full_name
                )
                results = await self._dispatcher.send(session, author, message, channels, config)
                resolution.notified = {str(c): str(r.status) for c, r in results.items()}
            else:
                logger.warning("proposal_author_missing", proposal_id=resolution.proposal_id)

            await session.commit()
        except Exception as e:
            await session.rollback()
            resolution.error = str(e) or type(e).__name__
            logger.error(
                "proposal_resolution_failed",
                proposal_id=resolution.proposal_id,
                error=resolution.error,
            )
            return resolution

        logger.info(
            "proposal_resolved",
            proposal_id=resolution.proposal_id,
            code=proposal.code,
            status=str(status),
            approval_rate=resolution.approval_rate,
        )
        return resolution


def _revoke_in_app(
    results: dict[Channel, ChannelResult], error: str
) -> dict[Channel, ChannelResult]:
    return {
        channel: (
            ChannelResult.failed(channel, error)
            if channel == Channel.IN_APP and result.status == DeliveryStatus.DELIVERED
            else result
        )
        for channel, result in results.items()
    }
