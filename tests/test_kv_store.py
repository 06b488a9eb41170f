import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from conftest import run
from errors import DependencyUnavailable, NotFoundError
from schemas.catalog import ProductUpdate
from services.admin_service import AdminProductService
from storage.catalog_store import CatalogStore
from storage.kv_store import RedisKeyValueStore


# =============================================================================
# FAKE CLIENT
# =============================================================================

class FakeRedis:
    """Dict-backed client covering the redis.asyncio calls the store makes."""

    def __init__(self):
        self.data = {}
        self.down = False
        self.executes = 0
        # (key, value) pairs another writer lands right before the next EXEC
        self.competing_writes = []

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        return None

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client: FakeRedis):
        self.client = client
        self.queued = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def watch(self, key):
        self.client._check()

    async def get(self, key):
        return await self.client.get(key)

    def multi(self):
        self.queued = []

    def set(self, key, value):
        self.queued.append((key, value))
        return self

    async def execute(self):
        self.client._check()
        self.client.executes += 1
        queued, self.queued = self.queued, []
        if self.client.competing_writes:
            key, value = self.client.competing_writes.pop(0)
            self.client.data[key] = value
            raise WatchError("Watched variable changed.")
        for key, value in queued:
            self.client.data[key] = value
        return [True] * len(queued)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> RedisKeyValueStore:
    return RedisKeyValueStore(fake_redis)


# =============================================================================
# TESTS
# =============================================================================

def test_set_if_absent_uses_nx(store, fake_redis):
    assert run(store.set_json_if_absent("k", {"email": "a@b.c"})) is True
    assert run(store.set_json_if_absent("k", {"email": "other@b.c"})) is False
    assert run(store.get_json("k")) == {"email": "a@b.c"}


def test_update_retries_on_concurrent_write(store, fake_redis):
    run(store.set_json("counter", [1]))
    fake_redis.competing_writes = [("counter", "[1, 2]"), ("counter", "[1, 2, 3]")]
    seen = []

    def append_four(current):
        seen.append(list(current))
        return current + [4]

    assert run(store.update_json("counter", append_four)) == [1, 2, 3, 4]
    assert seen == [[1], [1, 2], [1, 2, 3]]
    assert fake_redis.executes == 3
    assert run(store.get_json("counter")) == [1, 2, 3, 4]


def test_update_gives_up_after_max_retries(store, fake_redis):
    store.MAX_CAS_RETRIES = 3
    run(store.set_json("k", "original"))
    fake_redis.competing_writes = [("k", '"theirs"')] * 5

    with pytest.raises(DependencyUnavailable):
        run(store.update_json("k", lambda current: "mine"))
    assert fake_redis.executes == 3
    assert run(store.get_json("k")) == "theirs"


def test_mutator_errors_abort_the_write(store, fake_redis):
    run(store.set_json("k", [1]))

    def refuse(current):
        raise NotFoundError("Product not found")

    with pytest.raises(NotFoundError):
        run(store.update_json("k", refuse))
    assert fake_redis.executes == 0
    assert run(store.get_json("k")) == [1]


@pytest.mark.parametrize("call", [
    lambda s: s.get_json("k"),
    lambda s: s.set_json("k", 1),
    lambda s: s.set_json_if_absent("k", 1),
    lambda s: s.update_json("k", lambda current: 1),
])
def test_connection_errors_become_dependency_unavailable(store, fake_redis, call):
    fake_redis.down = True
    with pytest.raises(DependencyUnavailable):
        run(call(store))


def test_ping_reports_outage(store, fake_redis):
    assert run(store.ping()) is True
    fake_redis.down = True
    assert run(store.ping()) is False


def test_admin_update_survives_contention(store, fake_redis):
    catalog = CatalogStore(store)
    run(store.set_json("tsf:products", [{"id": "a", "name": "A", "price_cents": 100}]))
    fake_redis.competing_writes = [(
        "tsf:products",
        '[{"id": "a", "name": "A", "price_cents": 100}, {"id": "b", "name": "B", "price_cents": 200}]',
    )]
    admin = AdminProductService(catalog, admin_token="t")

    product = run(admin.update_product(ProductUpdate(id="a", price_cents=150)))

    assert product.price_cents == 150
    stored = run(store.get_json("tsf:products"))
    assert [(p["id"], p["price_cents"]) for p in stored] == [("a", 150), ("b", 200)]
