# quillhaven/services/detector.py
import logging
from datetime import timedelta

from quillhaven.core.clock import Clock, utcnow
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.schemas.security import SuspiciousLoginResult
from quillhaven.services.events import SecurityEventLog

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(days=7)
HISTORY_LIMIT = 10
RAPID_WINDOW = timedelta(hours=1)
RAPID_THRESHOLD = 5

UNKNOWN = "unknown"


def risk_level(factors: list[str]) -> str:
    if len(factors) >= 2:
        return "high"
    if len(factors) == 1:
        return "medium"
    return "low"


class SuspiciousLoginDetector:
    """
    Heurística contra el historial reciente de `session_created`.
    Sin historial no hay con qué comparar: un primer login nunca es sospechoso.
    """

    def __init__(self, events: SecurityEventLog, clock: Clock = utcnow):
        self.events = events
        self.clock = clock

    async def detect(
        self,
        principal_id: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> SuspiciousLoginResult:
        now = self.clock()
        history = await self.events.recent(
            principal_id, SecurityEventKind.SESSION_CREATED, since=now - LOOKBACK, limit=HISTORY_LIMIT
        )
        if not history:
            return SuspiciousLoginResult(is_suspicious=False, factors=[], risk_level="low")

        ip = ip_address or UNKNOWN
        ua = user_agent or UNKNOWN
        known_ips = {e.details.get("ip_address") for e in history if (e.details or {}).get("ip_address")}
        known_uas = {e.details.get("user_agent") for e in history if (e.details or {}).get("user_agent")}

        factors: list[str] = []
        if known_ips and ip not in known_ips:
            factors.append("new_ip_address")
        if known_uas and ua not in known_uas:
            factors.append("new_user_agent")

        # la ventana de 1h no queda acotada por el límite de 10 del historial
        rapid = await self.events.recent(
            principal_id, SecurityEventKind.SESSION_CREATED, since=now - RAPID_WINDOW
        )
        if len(rapid) > RAPID_THRESHOLD:
            factors.append("rapid_login_attempts")

        result = SuspiciousLoginResult(
            is_suspicious=bool(factors),
            factors=factors,
            risk_level=risk_level(factors),
        )
        if result.is_suspicious:
            logger.warning("login sospechoso principal=%s factores=%s", principal_id, factors)
            await self.events.record(principal_id, SecurityEventKind.SUSPICIOUS_LOGIN, {
                "ip_address": ip,
                "user_agent": ua,
                "factors": factors,
                "risk_level": result.risk_level,
            })
        return result
