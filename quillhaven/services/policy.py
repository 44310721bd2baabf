# quillhaven/services/policy.py
import logging
from dataclasses import dataclass
from datetime import timedelta

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.config import Settings, settings
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.session import EndReason, LoginSession
from quillhaven.schemas.security import PolicyReport
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionPolicy:
    max_concurrent_sessions: int = 5
    inactive_session_timeout_days: int = 30
    require_reauthentication_hours: int = 168
    max_distinct_ips: int = 3
    bot_markers: tuple[str, ...] = ("bot", "crawler", "spider")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "SessionPolicy":
        return cls(
            max_concurrent_sessions=config.MAX_CONCURRENT_SESSIONS,
            inactive_session_timeout_days=config.INACTIVE_SESSION_TIMEOUT_DAYS,
            require_reauthentication_hours=config.REQUIRE_REAUTH_HOURS,
        )

    def looks_like_bot(self, user_agent: str | None) -> bool:
        ua = (user_agent or "").lower()
        return any(marker in ua for marker in self.bot_markers)


class SecurityPolicyEngine:
    """
    Aplica las políticas de sesión de un principal. Solo el límite de sesiones
    y la inactividad revocan; el resto queda como violación informativa.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        events: SecurityEventLog,
        policy: SessionPolicy | None = None,
        clock: Clock = utcnow,
        config: Settings = settings,
    ):
        self.registry = registry
        self.events = events
        self.policy = policy or SessionPolicy.from_settings(config)
        self.clock = clock
        self.config = config

    async def _end_all(self, sessions: list[LoginSession], reason: EndReason) -> int:
        ended = 0
        for s in sessions:
            if await self.registry.end(s.token, reason):
                ended += 1
        return ended

    async def enforce(self, principal_id: str) -> PolicyReport:
        """
        Aplica las políticas de sesión del principal. Es idempotente en las
        revocaciones: una segunda corrida no termina nada más, pero las
        violaciones informativas se vuelven a reportar.
        """
        now = self.clock()
        active = await self.registry.list_active(principal_id)
        total = len(active)
        violations: list[str] = []
        actions: list[str] = []
        revoked = 0

        # de la menos reciente a la más reciente
        remaining = sorted(active, key=lambda s: s.last_active_at)

        # 1. límite de sesiones concurrentes
        excess = len(remaining) - self.policy.max_concurrent_sessions
        if excess > 0:
            oldest, remaining = remaining[:excess], remaining[excess:]
            violations.append("too_many_sessions")
            n = await self._end_all(oldest, EndReason.policy_violation_concurrent_limit)
            revoked += n
            actions.append(f"revoked_{n}_oldest_sessions")

        # 2. sesiones inactivas
        stale_cutoff = now - timedelta(days=self.policy.inactive_session_timeout_days)
        stale = [s for s in remaining if s.last_active_at < stale_cutoff]
        if stale:
            violations.append("stale_sessions")
            n = await self._end_all(stale, EndReason.policy_violation_stale)
            revoked += n
            actions.append(f"revoked_{n}_stale_sessions")
            remaining = [s for s in remaining if s not in stale]

        # 3-5: informativas
        ips = {s.ip_address for s in remaining if s.ip_address}
        if len(ips) > self.policy.max_distinct_ips:
            violations.append("multiple_locations")
            actions.append(f"flagged_{len(ips)}_distinct_ip_addresses")

        bots = [s for s in remaining if self.policy.looks_like_bot(s.user_agent)]
        if bots:
            violations.append("suspicious_user_agents")
            actions.append(f"flagged_{len(bots)}_suspicious_user_agents")

        reauth_cutoff = now - timedelta(hours=self.policy.require_reauthentication_hours)
        old = [s for s in remaining if s.created_at < reauth_cutoff]
        if old:
            violations.append("requires_reauthentication")
            actions.append(f"flagged_{len(old)}_sessions_for_reauthentication")

        report = PolicyReport(
            violations=violations,
            actions=actions,
            actions_performed=revoked > 0,
            revoked_sessions=revoked,
            remaining_sessions=total - revoked,
            total_sessions=total,
        )

        if violations:
            logger.info("políticas aplicadas principal=%s violaciones=%s", principal_id, violations)
            await self.events.record(principal_id, SecurityEventKind.SECURITY_POLICY_ENFORCED, {
                "violations": violations,
                "actions": actions,
                "sessions_revoked": revoked,
                "total_sessions": total,
                "remaining_sessions": report.remaining_sessions,
                "security_level": self.config.SECURITY_LEVEL,
            })
            await self.registry.db.commit()
        return report
