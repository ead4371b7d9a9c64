"""Unit tests for the YNAB category sync engine."""

import asyncio

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from wallet.core.constants import CATEGORY_COLORS, SYNCED_CATEGORY_DESCRIPTION
from wallet.core.exceptions import (
    ConfigError,
    StoreError,
    UpstreamError,
    YnabUnauthorizedError,
)
from wallet.models.category import Category
from wallet.models.ynab import UserYnabSettings, YnabCategory, YnabCategoryGroup, YnabConfig
from wallet.services.secrets import DatabaseSecretStore
from wallet.services.ynab_client import YnabClient
from wallet.services.ynab_sync import YnabSyncService


def _payload(*groups) -> dict:
    return {"data": {"category_groups": list(groups)}}


def _group(group_id, name, categories=(), hidden=False, deleted=False) -> dict:
    return {
        "id": group_id,
        "name": name,
        "hidden": hidden,
        "deleted": deleted,
        "categories": list(categories),
    }


def _category(category_id, name, hidden=False, deleted=False) -> dict:
    return {"id": category_id, "name": name, "hidden": hidden, "deleted": deleted}


HAPPY_PAYLOAD = _payload(
    _group("g1", "Bills", [_category("c1", "Rent"), _category("c2", "Old Rent", hidden=True)]),
    _group("internal:master", "Internal", [_category("c9", "Inflow")]),
)


class FakeYnab:
    """Scripted YNAB endpoint recording every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, dict):
            return httpx.Response(200, json=response)
        return response


@pytest.fixture
def make_service(database, settings, cipher, clock, sleep_calls):
    def _make(handler, **overrides) -> YnabSyncService:
        client = YnabClient(
            settings.ynab_base_url,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        return YnabSyncService(
            database.sessionmaker,
            DatabaseSecretStore(database.sessionmaker),
            client,
            cipher,
            overrides.get("settings", settings),
            clock=clock,
            sleep=sleep_calls,
        )

    return _make


async def _legacy(database, user_id, token="enc:T", budget_id="enc:B", sync_enabled=True):
    async with database.session() as session:
        session.add(
            UserYnabSettings(
                user_id=user_id, token=token, budget_id=budget_id, sync_enabled=sync_enabled
            )
        )
        await session.commit()


async def _configure(database, cipher, user_id, token="T", budget_id="B", has_credentials=True):
    async with database.session() as session:
        session.add(
            YnabConfig(
                user_id=user_id,
                encrypted_api_token=cipher.encrypt(token),
                encrypted_budget_id=cipher.encrypt(budget_id),
                has_credentials=has_credentials,
            )
        )
        await session.commit()


async def _rows(database, model, user_id):
    async with database.session() as session:
        result = await session.execute(select(model).where(model.user_id == user_id))
        return list(result.scalars().all())


async def _get(database, model, key):
    async with database.session() as session:
        return await session.get(model, key)


class TestSyncUser:
    """Happy path and filtering."""

    @pytest.mark.asyncio
    async def test_happy_path(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)

        result = await make_service(fake).sync_user("u3")

        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u3")} == {"g1"}
        assert {c.id for c in await _rows(database, YnabCategory, "u3")} == {"c1"}
        local = await _rows(database, Category, "u3")
        assert [(c.name, c.description) for c in local] == [("Rent", SYNCED_CATEGORY_DESCRIPTION)]
        assert local[0].color in CATEGORY_COLORS
        assert (await _get(database, UserYnabSettings, "u3")).last_synced is not None
        assert (result.groups, result.categories) == (1, 1)
        assert fake.requests[0].headers["Authorization"] == "Bearer T"
        assert fake.requests[0].url.path.endswith("/budgets/B/categories")

    @pytest.mark.asyncio
    async def test_hidden_and_deleted_groups_skipped(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        payload = _payload(
            _group("g1", "Hidden", [_category("c1", "A")], hidden=True),
            _group("g2", "Deleted", [_category("c2", "B")], deleted=True),
            _group("g3", "Live", [_category("c3", "C"), _category("c4", "D", deleted=True)]),
        )

        await make_service(FakeYnab(payload)).sync_user("u3")

        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u3")} == {"g3"}
        assert {c.id for c in await _rows(database, YnabCategory, "u3")} == {"c3"}

    @pytest.mark.asyncio
    async def test_mirror_is_replaced_not_merged(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        first = _payload(_group("g1", "Bills", [_category("c1", "Rent")]))
        second = _payload(_group("g2", "Fun", [_category("c5", "Games")]))
        fake = FakeYnab(first, second)
        service = make_service(fake)

        await service.sync_user("u3")
        await service.sync_user("u3")

        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u3")} == {"g2"}
        assert {c.id for c in await _rows(database, YnabCategory, "u3")} == {"c5"}
        # Local categories accumulate; they are never deleted by a sync.
        assert {c.name for c in await _rows(database, Category, "u3")} == {"Rent", "Games"}

    @pytest.mark.asyncio
    async def test_every_mirrored_category_has_its_group(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        payload = _payload(
            _group("g1", "A", [_category("c1", "x"), _category("c2", "y")]),
            _group("g2", "B", [_category("c3", "z")]),
        )

        await make_service(FakeYnab(payload)).sync_user("u3")

        group_ids = {g.id for g in await _rows(database, YnabCategoryGroup, "u3")}
        assert {c.group_id for c in await _rows(database, YnabCategory, "u3")} <= group_ids

    @pytest.mark.asyncio
    async def test_existing_color_preserved(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        async with database.session() as session:
            session.add(Category(name="Rent", description="mine", user_id="u3", color="#123456"))
            await session.commit()

        await make_service(FakeYnab(HAPPY_PAYLOAD)).sync_user("u3")

        local = await _rows(database, Category, "u3")
        assert len(local) == 1
        assert local[0].color == "#123456"
        assert local[0].description == SYNCED_CATEGORY_DESCRIPTION

    @pytest.mark.asyncio
    async def test_duplicate_names_make_one_local_category(
        self, database, make_user, make_service
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        payload = _payload(
            _group("g1", "A", [_category("c1", "Misc")]),
            _group("g2", "B", [_category("c2", "Misc")]),
        )

        result = await make_service(FakeYnab(payload)).sync_user("u3")

        assert [c.name for c in await _rows(database, Category, "u3")] == ["Misc"]
        assert result.categories == 2
        assert result.local_categories == 1

    @pytest.mark.asyncio
    async def test_other_users_untouched(self, database, make_user, make_service):
        await make_user("u3")
        await make_user("u4")
        await _legacy(database, "u3")
        await _legacy(database, "u4")
        service = make_service(FakeYnab(_payload(_group("g1", "A", [_category("c1", "x")]))))
        await service.sync_user("u4")

        await service.sync_user("u3")

        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u4")} == {"g1"}

    @pytest.mark.asyncio
    async def test_explicit_budget(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)

        await make_service(fake).sync_user_with_budget("u3", "OTHER")

        assert fake.requests[0].url.path.endswith("/budgets/OTHER/categories")


class TestCredentials:
    """Token and budget resolution."""

    @pytest.mark.asyncio
    async def test_ynab_config_wins_over_legacy(self, database, make_user, make_service, cipher):
        await make_user("u3")
        await _legacy(database, "u3", token="enc:LEGACY", budget_id="enc:LEGACY-B")
        await _configure(database, cipher, "u3", token="NEW", budget_id="NEW-B")
        fake = FakeYnab(HAPPY_PAYLOAD)

        await make_service(fake).sync_user("u3")

        assert fake.requests[0].headers["Authorization"] == "Bearer NEW"
        assert fake.requests[0].url.path.endswith("/budgets/NEW-B/categories")
        config = (await _rows(database, YnabConfig, "u3"))[0]
        assert config.last_sync_time is not None

    @pytest.mark.asyncio
    async def test_legacy_used_when_config_has_no_credentials(
        self, database, make_user, make_service, cipher
    ):
        await make_user("u3")
        await _legacy(database, "u3", token="enc:LEGACY")
        await _configure(database, cipher, "u3", token="STALE", has_credentials=False)
        fake = FakeYnab(HAPPY_PAYLOAD)

        await make_service(fake).sync_user("u3")

        assert fake.requests[0].headers["Authorization"] == "Bearer LEGACY"

    @pytest.mark.asyncio
    async def test_no_token_is_config_error(self, database, make_user, make_service):
        await make_user("u3")
        fake = FakeYnab(HAPPY_PAYLOAD)

        with pytest.raises(ConfigError):
            await make_service(fake).sync_user("u3")
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_unauthorized_disables_sync(self, database, make_user, make_service, cipher):
        await make_user("u3")
        await _legacy(database, "u3")
        await _configure(database, cipher, "u3")
        fake = FakeYnab(httpx.Response(401))

        with pytest.raises(YnabUnauthorizedError):
            await make_service(fake).sync_user("u3")

        assert len(fake.requests) == 1
        assert (await _rows(database, YnabConfig, "u3"))[0].has_credentials is False
        assert (await _get(database, UserYnabSettings, "u3")).sync_enabled is False


class TestFailuresAndRetries:
    """Rollback and retry behavior."""

    @pytest.mark.asyncio
    async def test_upstream_failure_leaves_mirror_unchanged(
        self, database, make_user, make_service
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)
        service = make_service(fake)
        await service.sync_user("u3")
        before_groups = {g.id for g in await _rows(database, YnabCategoryGroup, "u3")}
        before_categories = {c.id for c in await _rows(database, YnabCategory, "u3")}
        before_synced = (await _get(database, UserYnabSettings, "u3")).last_synced

        fake.responses = [httpx.Response(500, text="boom")]
        with pytest.raises(UpstreamError):
            await service.sync_user("u3")

        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u3")} == before_groups
        assert {c.id for c in await _rows(database, YnabCategory, "u3")} == before_categories
        assert (await _get(database, UserYnabSettings, "u3")).last_synced == before_synced

    @pytest.mark.asyncio
    async def test_transient_errors_retry_with_linear_backoff(
        self, database, make_user, make_service, settings, sleep_calls
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        slow = settings.model_copy(update={"sync_retry_delay_seconds": 0.5})
        fake = FakeYnab(httpx.Response(502), httpx.Response(503), HAPPY_PAYLOAD)

        await make_service(fake, settings=slow).sync_user("u3")

        assert len(fake.requests) == 3
        assert sleep_calls.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_transient_errors_give_up_after_three_attempts(
        self, database, make_user, make_service
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(httpx.Response(500))

        with pytest.raises(UpstreamError):
            await make_service(fake).sync_user("u3")
        assert len(fake.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(httpx.Response(404))

        with pytest.raises(UpstreamError):
            await make_service(fake).sync_user("u3")
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_failure_inside_transaction_rolls_back(
        self, database, make_user, make_service, monkeypatch
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)
        service = make_service(fake)
        await service.sync_user("u3")
        before_synced = (await _get(database, UserYnabSettings, "u3")).last_synced

        async def broken(*args, **kwargs):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(service, "_upsert_local_categories", broken)
        fake.responses = [_payload(_group("g9", "New", [_category("c9", "New")]))]

        with pytest.raises(StoreError):
            await service.sync_user("u3")

        # The mirror delete and inserts were rolled back with it
        assert {g.id for g in await _rows(database, YnabCategoryGroup, "u3")} == {"g1"}
        assert {c.id for c in await _rows(database, YnabCategory, "u3")} == {"c1"}
        assert (await _get(database, UserYnabSettings, "u3")).last_synced == before_synced

    @pytest.mark.asyncio
    async def test_lock_errors_are_retried_with_linear_backoff(
        self, database, make_user, make_service, settings, sleep_calls
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        slow = settings.model_copy(update={"sync_retry_delay_seconds": 0.5})
        service = make_service(FakeYnab(HAPPY_PAYLOAD), settings=slow)
        original = service._apply
        attempts = []

        async def flaky(user_id, groups):
            attempts.append(user_id)
            if len(attempts) < 3:
                raise StoreError("(sqlite3.OperationalError) database is locked")
            return await original(user_id, groups)

        service._apply = flaky

        result = await service.sync_user("u3")

        assert len(attempts) == 3
        assert sleep_calls.calls == [0.5, 1.0]
        assert result.groups == 1

    @pytest.mark.asyncio
    async def test_other_store_errors_not_retried(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        service = make_service(FakeYnab(HAPPY_PAYLOAD))
        attempts = []

        async def failing(user_id, groups):
            attempts.append(user_id)
            raise StoreError("constraint failed")

        service._apply = failing

        with pytest.raises(StoreError):
            await service.sync_user("u3")
        assert len(attempts) == 1


class TestSingleFlight:
    """Concurrent syncs for one user share one execution."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_coalesce(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        release = asyncio.Event()
        requests = []

        async def handler(request):
            requests.append(request)
            await release.wait()
            return httpx.Response(200, json=HAPPY_PAYLOAD)

        service = make_service(handler)
        first = asyncio.create_task(service.sync_user("u3"))
        second = asyncio.create_task(service.sync_user("u3"))
        while not requests:
            await asyncio.sleep(0.01)

        assert service.is_syncing("u3")
        release.set()
        results = await asyncio.gather(first, second)

        assert results[0] is results[1]
        assert len(requests) == 1
        assert not service.is_syncing("u3")

    @pytest.mark.asyncio
    async def test_same_budget_calls_coalesce(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)
        service = make_service(fake)

        results = await asyncio.gather(
            service.sync_user_with_budget("u3", "B1"),
            service.sync_user_with_budget("u3", "B1"),
        )

        assert results[0] is results[1]
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_other_budget_runs_after_the_current_sync(
        self, database, make_user, make_service
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        release = asyncio.Event()
        requests = []

        async def handler(request):
            requests.append(request)
            await release.wait()
            return httpx.Response(200, json=HAPPY_PAYLOAD)

        service = make_service(handler)
        first = asyncio.create_task(service.sync_user_with_budget("u3", "B1"))
        second = asyncio.create_task(service.sync_user_with_budget("u3", "B2"))
        while not requests:
            await asyncio.sleep(0.01)
        for _ in range(5):
            await asyncio.sleep(0)

        # B2 never overlaps the B1 sync for the same user
        assert len(requests) == 1
        release.set()
        results = await asyncio.gather(first, second)

        assert results[0] is not results[1]
        assert [r.url.path.split("/")[-2] for r in requests] == ["B1", "B2"]

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self, database, make_user, make_service):
        await make_user("u3")
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)
        service = make_service(fake)

        await service.sync_user("u3")
        await service.sync_user("u3")

        assert len(fake.requests) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_shared_sync(
        self, database, make_user, make_service
    ):
        await make_user("u3")
        await _legacy(database, "u3")
        release = asyncio.Event()
        requests = []

        async def handler(request):
            requests.append(request)
            await release.wait()
            return httpx.Response(200, json=HAPPY_PAYLOAD)

        service = make_service(handler)
        impatient = asyncio.create_task(service.sync_user("u3"))
        patient = asyncio.create_task(service.sync_user("u3"))
        while not requests:
            await asyncio.sleep(0.01)

        impatient.cancel()
        release.set()
        result = await patient

        assert impatient.cancelled()
        assert result.categories == 1


class TestSyncAll:
    """Scheduled sweep over every enabled user."""

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self, database, make_user, make_service, cipher):
        for user_id in ("u1", "u2", "u3"):
            await make_user(user_id)
        await _legacy(database, "u1")
        await _legacy(database, "u2", token=None)
        await _configure(database, cipher, "u3")
        # u3 is also enabled in the legacy table; it must be synced once
        await _legacy(database, "u3")
        fake = FakeYnab(HAPPY_PAYLOAD)

        summary = await make_service(fake).sync_all()

        assert summary.attempted == ["u3", "u1", "u2"]
        assert summary.succeeded == ["u3", "u1"]
        assert summary.failed == ["u2"]
        assert len(fake.requests) == 2

    @pytest.mark.asyncio
    async def test_disabled_users_skipped(self, database, make_user, make_service):
        await make_user("u1")
        await _legacy(database, "u1", sync_enabled=False)

        summary = await make_service(FakeYnab(HAPPY_PAYLOAD)).sync_all()

        assert summary.attempted == []
