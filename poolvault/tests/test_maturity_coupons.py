import pytest

from poolvault.coupons import CouponDistributor, HolderRegistry
from poolvault.errors import PolicyViolation, ReasonCode
from poolvault.maturity import MaturityTracker
from poolvault.runtime import codec
from poolvault.runtime.emitter import Emitter
from poolvault.types import TokenMeta


def addr(n):
    return bytes([n]) * 20


@pytest.fixture
def tracker(store, cfg):
    return MaturityTracker(store, config=cfg)


@pytest.fixture
def holders(store, cfg):
    return HolderRegistry(store, config=cfg)


def test_register_and_read_back(tracker):
    tracker.register(TokenMeta("A", maturity_timestamp=100, coupons_remaining=3))
    tracker.register(TokenMeta("B", maturity_timestamp=50))
    assert tracker.token_ids() == ["A", "B"]
    assert tracker.get("A") == TokenMeta("A", 100, 3, False)
    assert tracker.get("C") is None


def test_registry_is_bounded(tracker, cfg):
    for n in range(cfg.max_tokens):
        tracker.register(TokenMeta(f"T{n}", maturity_timestamp=1))
    with pytest.raises(PolicyViolation) as ei:
        tracker.register(TokenMeta("extra", maturity_timestamp=1))
    assert ei.value.code == ReasonCode.CAP_EXCEEDED


def test_sweep_is_monotonic_and_idempotent(tracker):
    tracker.register(TokenMeta("A", maturity_timestamp=100))
    tracker.register(TokenMeta("B", maturity_timestamp=50))
    assert tracker.sweep(49).newly_matured == ()
    assert tracker.sweep(50).newly_matured == ("B",)
    assert tracker.sweep(50).newly_matured == ()
    rep = tracker.sweep(1000)
    assert (rep.scanned, rep.newly_matured) == (2, ("A",))
    assert all(t.is_matured for t in tracker.tokens())


def test_decrement_floors_at_zero(tracker, store):
    tracker.register(TokenMeta("A", maturity_timestamp=1, coupons_remaining=1))
    tracker.register(TokenMeta("B", maturity_timestamp=1, coupons_remaining=0))
    assert tracker.decrement_coupons() == ["A", "B"]
    assert tracker.decrement_coupons(["A"]) == ["A"]
    assert store.get_uint(codec.k_token("A", "couponsRemaining")) == 0
    with pytest.raises(PolicyViolation):
        tracker.decrement_coupons(["missing"])


def test_holder_upsert_and_removal(holders, store):
    holders.set_holder(addr(1), 10)
    holders.set_holder(addr(2), 5)
    holders.set_holder(addr(1), 20)
    assert [(h.address, h.held_units) for h in holders.holders()] == [(addr(1), 20), (addr(2), 5)]
    holders.set_holder(addr(1), 0)
    assert [h.address for h in holders.holders()] == [addr(2)]
    assert store.get(codec.k_holder(addr(1))) == b"0"


def test_holder_registry_full(holders, cfg):
    for n in range(cfg.max_holders):
        holders.set_holder(addr(n + 1), 1)
    with pytest.raises(PolicyViolation) as ei:
        holders.set_holder(addr(0xEE), 1)
    assert ei.value.code == ReasonCode.CAP_EXCEEDED
    holders.set_holder(addr(1), 7)  # existing holders can still be updated


def test_payout_report_and_bookkeeping(store, host, cfg, holders, tracker):
    holders.set_holder(addr(1), 100)
    holders.set_holder(addr(2), 300)
    holders.set_holder(addr(3), 1)
    tracker.register(TokenMeta("A", maturity_timestamp=1, coupons_remaining=2))
    dist = CouponDistributor(store, Emitter(store, host, config=cfg), holders, tracker)

    rep = dist.pay(41, 77, asset="USDC")
    # 41*1/401 floors to zero: that holder gets nothing
    assert rep.recipients == 2
    assert (rep.paid, rep.failed, rep.dust) == (2, (), 1)
    assert rep.tokens == ("A",)
    assert [(p.destination, p.amount, p.asset) for p in host.outbox] == [(addr(1), 10, "USDC"), (addr(2), 30, "USDC")]
    assert store.get_uint(codec.K_COUPON_LAST_TIME) == 77
    assert store.get_uint(codec.k_token("A", "couponsRemaining")) == 1


def test_payout_with_no_holders_consumes_nothing(store, host, cfg, holders, tracker):
    tracker.register(TokenMeta("A", maturity_timestamp=1, coupons_remaining=3))
    dist = CouponDistributor(store, Emitter(store, host, config=cfg), holders, tracker)
    rep = dist.pay(500, 1, asset="native")
    assert (rep.recipients, rep.paid, rep.dust, rep.tokens) == (0, 0, 500, ())
    assert host.outbox == []
    assert store.get(codec.K_COUPON_LAST_POOL) is None
    assert store.get_uint(codec.k_token("A", "couponsRemaining")) == 3


@pytest.mark.parametrize("pool", [0, 1])
def test_empty_payout_keeps_coupons_and_bookkeeping(store, host, cfg, holders, tracker, pool):
    holders.set_holder(addr(1), 100)
    holders.set_holder(addr(2), 100)
    tracker.register(TokenMeta("A", maturity_timestamp=1, coupons_remaining=3))
    dist = CouponDistributor(store, Emitter(store, host, config=cfg), holders, tracker)
    dist.pay(10, 5, asset="native", token_id="A")
    # pool 1 over two equal holders floors every share to zero
    rep = dist.pay(pool, 9, asset="native", token_id="A")
    assert rep.recipients == 0 and rep.tokens == ()
    assert store.get_uint(codec.k_token("A", "couponsRemaining")) == 2
    assert store.get_uint(codec.K_COUPON_LAST_POOL) == 10
    assert store.get_uint(codec.K_COUPON_LAST_TIME) == 5


def test_payout_for_unknown_token_is_rejected(store, host, cfg, holders, tracker):
    dist = CouponDistributor(store, Emitter(store, host, config=cfg), holders, tracker)
    with pytest.raises(PolicyViolation) as ei:
        dist.pay(0, 1, asset="native", token_id="NOPE")
    assert ei.value.code == ReasonCode.BAD_INPUT
