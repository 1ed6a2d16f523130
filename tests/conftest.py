import os
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Generator, List, Mapping, Optional, Set

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

import database  # noqa: E402
from core.quota_constants import FREE_PROMPT_LIMIT, PAYMENT_STATUS_SUCCEEDED, PREMIUM_CURRENCY, QuotaSettings  # noqa: E402
from services.payment_ledger import LedgerEntry, SqlPaymentLedger  # noqa: E402
from services.profile_store import (  # noqa: E402
    UPDATABLE_PROFILE_FIELDS,
    ProfileState,
    PromptHistoryRecord,
    SqlProfileStore,
)
from services.quota_errors import DuplicatePayment, ProfileNotFound, StoreError  # noqa: E402
from services.quota_policy import QuotaPolicy  # noqa: E402
from services.quota_reconciler import QuotaReconciler  # noqa: E402
from services.user_locks import KeyedLock  # noqa: E402


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = database.build_engine(os.environ["TEST_DATABASE_URL"])
    database.create_schema(test_engine)
    try:
        yield test_engine
    finally:
        database.Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return database.create_session_factory(engine)


@pytest.fixture()
def sql_profile_store(session_factory: sessionmaker[Session]) -> SqlProfileStore:
    return SqlProfileStore(session_factory)


@pytest.fixture()
def sql_ledger(session_factory: sessionmaker[Session]) -> SqlPaymentLedger:
    return SqlPaymentLedger(session_factory)


class InMemoryProfileStore:
    """ProfileStore contract over dicts. ``fail_ops`` names operations that raise StoreError."""

    def __init__(self) -> None:
        self.profiles: Dict[str, ProfileState] = {}
        self.history: List[PromptHistoryRecord] = []
        self.fail_ops: Set[str] = set()
        self.calls: List[str] = []
        self._lock = threading.Lock()
        self._next_history_id = 1

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_ops:
            raise StoreError(f"{operation} failed (injected)", context={"operation": operation})

    def seed(self, user_id: str, **fields: Any) -> ProfileState:
        profile = ProfileState(id=user_id, **fields)
        self.profiles[user_id] = profile
        return profile

    def add_history(self, user_id: str, count: int, *, created_at: Optional[datetime] = None) -> None:
        for _ in range(count):
            self.insert_prompt_history(user_id, "idea", "response", "V0", created_at=created_at)

    def get_profile(self, user_id: str) -> Optional[ProfileState]:
        self._enter("get_profile")
        with self._lock:
            return self.profiles.get(user_id)

    def ensure_profile(self, user_id: str, *, name: Optional[str] = None, email: Optional[str] = None) -> ProfileState:
        self._enter("ensure_profile")
        with self._lock:
            if user_id not in self.profiles:
                self.profiles[user_id] = ProfileState(id=user_id, name=name, email=email)
            return self.profiles[user_id]

    def update_profile(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        self._enter("update_profile")
        unknown = set(fields) - UPDATABLE_PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported profile fields: {sorted(unknown)}")
        with self._lock:
            current = self.profiles.get(user_id)
            if current is None:
                return False
            for key, value in (expected or {}).items():
                if getattr(current, key) != value:
                    return False
            self.profiles[user_id] = replace(current, **dict(fields))
            return True

    def increment_prompt_count(self, user_id: str, by: int = 1) -> int:
        self._enter("increment_prompt_count")
        with self._lock:
            current = self.profiles.get(user_id)
            if current is None:
                raise ProfileNotFound("Profile not found.", context={"userId": user_id})
            updated = replace(current, prompt_count=current.prompt_count + by)
            self.profiles[user_id] = updated
            return updated.prompt_count

    def count_prompt_history(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> int:
        self._enter("count_prompt_history")
        rows = [row for row in self.history if row.user_id == user_id]
        if since is not None:
            rows = [row for row in rows if row.created_at >= since]
        count = len(rows)
        return min(count, limit) if limit else count

    def list_prompt_history(self, user_id: str, *, limit: int = 50, offset: int = 0) -> List[PromptHistoryRecord]:
        self._enter("list_prompt_history")
        rows = sorted(
            (row for row in self.history if row.user_id == user_id),
            key=lambda row: (row.created_at, row.id),
            reverse=True,
        )
        return rows[offset : offset + limit]

    def insert_prompt_history(
        self,
        user_id: str,
        message: str,
        ai_response: str,
        tool_type: str,
        *,
        created_at: Optional[datetime] = None,
    ) -> PromptHistoryRecord:
        self._enter("insert_prompt_history")
        with self._lock:
            record = PromptHistoryRecord(
                id=self._next_history_id,
                user_id=user_id,
                message=message,
                ai_response=ai_response,
                tool_type=tool_type,
                created_at=created_at or datetime.now(timezone.utc),
            )
            self._next_history_id += 1
            self.history.append(record)
            return record


class InMemoryLedger:
    """PaymentLedger contract with a unique payment_intent_id, plus failure injection."""

    def __init__(self) -> None:
        self.entries: Dict[str, LedgerEntry] = {}
        self.fail_ops: Set[str] = set()
        self.fail_times: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _enter(self, operation: str) -> None:
        remaining = self.fail_times.get(operation)
        if remaining:
            self.fail_times[operation] = remaining - 1
            raise StoreError(f"{operation} failed (injected)")
        if operation in self.fail_ops:
            raise StoreError(f"{operation} failed (injected)")

    def has_payment(self, payment_intent_id: str) -> bool:
        self._enter("has_payment")
        with self._lock:
            return payment_intent_id in self.entries

    def record_payment(
        self,
        user_id: str,
        amount: Decimal,
        payment_intent_id: str,
        status: str = PAYMENT_STATUS_SUCCEEDED,
        *,
        source: Optional[str] = None,
        currency: str = PREMIUM_CURRENCY,
    ) -> LedgerEntry:
        self._enter("record_payment")
        with self._lock:
            if payment_intent_id in self.entries:
                raise DuplicatePayment(payment_intent_id)
            entry = LedgerEntry(
                id=len(self.entries) + 1,
                user_id=user_id,
                amount=Decimal(str(amount)),
                currency=currency,
                status=status,
                payment_intent_id=payment_intent_id,
                source=source,
                created_at=datetime.now(timezone.utc),
            )
            self.entries[payment_intent_id] = entry
            return entry

    def list_payments(self, user_id: str) -> List[LedgerEntry]:
        return [entry for entry in self.entries.values() if entry.user_id == user_id]


@pytest.fixture()
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture()
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture()
def quota_settings() -> QuotaSettings:
    return QuotaSettings()


@pytest.fixture()
def policy(quota_settings: QuotaSettings) -> QuotaPolicy:
    return QuotaPolicy(quota_settings)


@pytest.fixture()
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture()
def reconciler(profile_store: InMemoryProfileStore, policy: QuotaPolicy, locks: KeyedLock) -> QuotaReconciler:
    return QuotaReconciler(profile_store, policy=policy, locks=locks)


@pytest.fixture()
def free_user(profile_store: InMemoryProfileStore) -> ProfileState:
    return profile_store.seed("user-free", name="Free User", total_prompts_limit=FREE_PROMPT_LIMIT)


API_JWT_SECRET = "test-supabase-jwt-secret"
STRIPE_WEBHOOK_SECRET = "whsec_api_test"


class StubPromptGenerator:
    """Deterministic stand-in for the LLM service."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    async def generate_tool_prompt(self, idea: str, tool: str) -> str:
        self.calls.append((idea, tool))
        return f"# {tool} build prompt\n\n{idea}"


@pytest.fixture()
def prompt_generator() -> StubPromptGenerator:
    return StubPromptGenerator()


@pytest.fixture()
def api_services(
    engine: Engine,
    sql_profile_store: SqlProfileStore,
    sql_ledger: SqlPaymentLedger,
    prompt_generator: StubPromptGenerator,
) -> "AppServices":
    from services.payments.stripe_payments import StripePaymentsClient
    from services.premium_upgrade import PremiumUpgradeProcessor
    from services.prompt_generation import PromptGenerationService
    from services.session_cache import SessionCache
    from web.deps import AppServices

    policy = QuotaPolicy(QuotaSettings(poll_delay_seconds=0.0))
    locks = KeyedLock()
    reconciler = QuotaReconciler(sql_profile_store, policy=policy, locks=locks)
    cache = SessionCache(reconciler)
    return AppServices(
        profiles=sql_profile_store,
        ledger=sql_ledger,
        reconciler=reconciler,
        cache=cache,
        upgrades=PremiumUpgradeProcessor(sql_profile_store, sql_ledger, policy=policy, locks=locks),
        generation=PromptGenerationService(sql_profile_store, reconciler, prompt_generator, cache=cache),
        stripe=StripePaymentsClient(secret_key="sk_test_api", webhook_secret=STRIPE_WEBHOOK_SECRET),
        engine=engine,
    )


@pytest.fixture()
def api_client(api_services: "AppServices") -> Generator["TestClient", None, None]:
    from fastapi.testclient import TestClient

    from services.auth_tokens import SupabaseTokenVerifier
    from web.main import create_app

    app = create_app(api_services, token_verifier=SupabaseTokenVerifier(API_JWT_SECRET))
    client = TestClient(app)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture()
def auth_headers():
    import jwt

    def _headers(user_id: str, *, email: Optional[str] = None, expires_in: int = 3600) -> Dict[str, str]:
        now = int(datetime.now(timezone.utc).timestamp())
        claims = {
            "sub": user_id,
            "email": email or f"{user_id}@example.com",
            "aud": "authenticated",
            "role": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        }
        token = jwt.encode(claims, API_JWT_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers
