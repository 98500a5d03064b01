"""
Stockage en mémoire des sessions de checkout (une par parcours de paiement).
Les vues synchrones FastAPI tournent dans un pool de threads: accès protégé par un verrou.

Une session inactive plus de CHECKOUT_SESSION_TTL_SECONDS est expirée: purge à chaque
ajout, et un get sur une session expirée répond SessionNotFound. Une session dont un
appel est en cours (processing) n'est jamais purgée.
"""
from typing import Callable, Dict, Optional
import logging
import threading
import time

from maroon_backend import config
from maroon_backend.checkout.errors import SessionNotFound
from maroon_backend.checkout.orchestrator import CheckoutSession

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._sessions: Dict[str, CheckoutSession] = {}
        self._expires: Dict[str, float] = {}
        self._ttl = config.CHECKOUT_SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()

    def _touch(self, session_id: str) -> None:
        self._expires[session_id] = self._clock() + self._ttl

    def _expired(self, session_id: str, now: float) -> bool:
        session = self._sessions[session_id]
        return not session.processing and self._expires.get(session_id, now) <= now

    def _pop(self, session_id: str) -> Optional[CheckoutSession]:
        self._expires.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def add(self, session: CheckoutSession) -> CheckoutSession:
        self.sweep()
        with self._lock:
            self._sessions[session.id] = session
            self._touch(session.id)
        return session

    def get(self, session_id: str) -> CheckoutSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and self._expired(session_id, self._clock()):
                self._pop(session_id)
                logger.info("checkout.sessions expired id=%s state=%s", session_id, session.state.value)
                session = None
            if session is not None:
                self._touch(session_id)
        if session is None:
            raise SessionNotFound("Session de paiement introuvable ou expirée")
        return session

    def sweep(self) -> int:
        """Retire les sessions expirées; renvoie leur nombre."""
        with self._lock:
            now = self._clock()
            expired = [sid for sid in self._sessions if self._expired(sid, now)]
            for sid in expired:
                self._pop(sid)
        if expired:
            logger.info("checkout.sessions swept %s expired session(s)", len(expired))
        return len(expired)

    def discard(self, session_id: str) -> Optional[CheckoutSession]:
        with self._lock:
            return self._pop(session_id)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._expires.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


store = SessionStore()
