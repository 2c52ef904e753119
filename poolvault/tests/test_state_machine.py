import pytest

from poolvault.dispatcher import EntryDispatcher
from poolvault.errors import ConfigError, PolicyViolation, ReasonCode
from poolvault.runtime import codec
from poolvault.runtime.context import TriggerKind
from poolvault.types import VaultConfig, VaultStatus

PAY = TriggerKind.PAYMENT
INVOKE = TriggerKind.INVOKE
RESULT = TriggerKind.EMISSION_RESULT


def test_successful_raise_settles_once(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    assert send(d, PAY, accounts.alice, 600, at=10).reason == "contribution recorded"
    assert view().status() is VaultStatus.ACTIVE
    send(d, PAY, accounts.bob, 400, at=20)
    assert view().status() is VaultStatus.THRESHOLD_REACHED

    res = send(d, PAY, accounts.carol, 1, at=100)
    assert res.accepted and res.reason == "settled"
    assert [(e.kind, e.destination, e.amount) for e in res.emissions] == [
        ("settlement", accounts.beneficiary, 1000)
    ]
    assert view().status() is VaultStatus.SUCCEEDED
    assert view().settlement_state() == "pending"

    again = send(d, PAY, accounts.carol, 1, at=150)
    assert again.accepted and again.reason == "already finalized"
    assert again.emissions == ()
    assert len(host.outbox) == 1


def test_failed_raise_refunds_each_participant_once(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 400, at=10)
    send(d, PAY, accounts.bob, 300, at=20)

    assert send(d, INVOKE, accounts.carol, at=100, command="finalize").reason == "refunds enabled"
    assert view().status() is VaultStatus.FAILED_REFUNDING

    res = send(d, PAY, accounts.alice, 1, at=110)
    assert res.reason == "refunded"
    assert [(e.kind, e.destination, e.amount) for e in res.emissions] == [("refund", accounts.alice, 400)]

    dup = send(d, PAY, accounts.alice, 1, at=120)
    assert not dup.accepted
    assert dup.code == ReasonCode.ALREADY_REFUNDED

    res = send(d, INVOKE, accounts.bob, at=130, command="refund")
    assert res.emissions[0].amount == 300

    stranger = send(d, PAY, accounts.carol, 1, at=140)
    assert stranger.code == ReasonCode.NO_INVESTMENT
    assert [p.amount for p in host.outbox] == [400, 300]


def test_control_signal_before_deadline_is_a_no_op(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 1000, at=10)
    before = host.raw_state()
    res = send(d, PAY, accounts.bob, 100, at=50)  # at the dust ceiling: a ping
    assert res.accepted and res.reason == "too early"
    assert host.raw_state() == before
    assert view().ledger.total() == 1000


def test_contributions_after_threshold_still_count(make_vault, send, view, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 1000, at=10)
    send(d, PAY, accounts.bob, 200, at=20)
    assert view().status() is VaultStatus.THRESHOLD_REACHED
    res = send(d, PAY, accounts.carol, 1, at=100)
    assert res.emissions[0].amount == 1200


def test_contribution_gating_order(make_vault, send, accounts):
    d = make_vault(target=1000, deadline=100, hard_cap=1500)
    assert send(d, PAY, accounts.alice, 1600, at=10).code == ReasonCode.CAP_EXCEEDED
    assert send(d, PAY, accounts.alice, 1400, at=10).accepted
    assert send(d, PAY, accounts.bob, 101, at=20).code == ReasonCode.CAP_EXCEEDED
    assert send(d, PAY, accounts.bob, 500, at=100).code == ReasonCode.DEADLINE_PASSED
    send(d, PAY, accounts.bob, 1, at=100)
    assert send(d, PAY, accounts.bob, 500, at=100).code == ReasonCode.FUNDRAISING_CLOSED


def test_refund_unavailable_unless_failed(make_vault, send, accounts):
    d = make_vault()
    send(d, PAY, accounts.alice, 500, at=10)
    res = send(d, INVOKE, accounts.alice, at=20, command="refund")
    assert res.code == ReasonCode.REFUNDS_UNAVAILABLE


def test_settlement_rejection_rolls_back(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 1000, at=10)
    before = host.raw_state()

    host.reject_all_emissions = True
    res = send(d, PAY, accounts.bob, 1, at=100)
    assert not res.accepted
    assert res.code == ReasonCode.SETTLEMENT_FAILED
    assert host.raw_state() == before
    assert host.outbox == []
    assert view().status() is VaultStatus.THRESHOLD_REACHED

    host.reject_all_emissions = False
    assert send(d, PAY, accounts.bob, 1, at=101).reason == "settled"


def test_refund_rejection_keeps_participant_refundable(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 400, at=10)
    send(d, PAY, accounts.bob, 1, at=100)

    host.fail_emissions_to = {accounts.alice}
    res = send(d, PAY, accounts.alice, 1, at=110)
    assert res.code == ReasonCode.REFUND_FAILED
    assert not view().ledger.is_refunded(accounts.alice)

    host.fail_emissions_to = set()
    assert send(d, PAY, accounts.alice, 1, at=120).reason == "refunded"
    assert view().ledger.is_refunded(accounts.alice)


def test_write_failure_rolls_back_everything(make_vault, send, host, accounts):
    d = make_vault()
    before = host.raw_state()
    host.fail_writes = {codec.K_TOTAL}
    res = send(d, PAY, accounts.alice, 600, at=10)
    assert res.code == ReasonCode.WRITE_FAILED
    assert host.raw_state() == before
    assert codec.k_invested(accounts.alice) not in host.raw_state()


def test_failed_settlement_confirmation_allows_retry(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 1000, at=10)
    first = send(d, PAY, accounts.bob, 1, at=100).emissions[0]

    res = send(d, RESULT, accounts.admin, emission_id=first.emission_id, success="false")
    assert res.accepted and res.reason == "failed"
    assert view().settlement_state() == "failed"

    retry = send(d, PAY, accounts.bob, 1, at=110)
    assert retry.reason == "settlement re-emitted"
    assert retry.emissions[0].emission_id == first.emission_id + 1
    assert retry.emissions[0].amount == 1000
    assert view().settlement_state() == "pending"

    send(d, RESULT, accounts.admin, emission_id=retry.emissions[0].emission_id, success="true")
    assert view().settlement_state() == "confirmed"
    assert send(d, PAY, accounts.bob, 1, at=120).reason == "already finalized"
    assert [p.emission_id for p in host.outbox] == [1, 2]


def test_stale_settlement_result_is_ignored(make_vault, send, view, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 1000, at=10)
    send(d, PAY, accounts.bob, 1, at=100)
    send(d, RESULT, accounts.admin, emission_id=1, success="false")
    send(d, PAY, accounts.bob, 1, at=110)  # re-emits as id 2
    # a duplicate notice for id 1 changes nothing
    assert send(d, RESULT, accounts.admin, emission_id=1, success="true").reason == "failed"
    assert view().settlement_state() == "pending"


def test_install_validation(host, cfg, accounts):
    d = EntryDispatcher(host, config=cfg)
    cases = [
        (VaultConfig(target_amount=0, deadline=10, beneficiary=accounts.beneficiary), ReasonCode.BAD_INPUT),
        (VaultConfig(target_amount=10, deadline=10, beneficiary=b"\x01"), ReasonCode.NO_BENEFICIARY),
        (VaultConfig(target_amount=10, deadline=10, beneficiary=accounts.beneficiary, hard_cap=5), ReasonCode.BAD_INPUT),
        (VaultConfig(target_amount=10, deadline=10, beneficiary=accounts.beneficiary, token_supply=5), ReasonCode.BAD_INPUT),
    ]
    for vc, code in cases:
        res = d.install(vc)
        assert (res.accepted, res.code) == (False, code)
    assert host.raw_state() == {}


def test_install_only_once(make_vault, accounts):
    d = make_vault()
    res = d.install(VaultConfig(target_amount=5, deadline=5, beneficiary=accounts.beneficiary))
    assert res.code == ReasonCode.ALREADY_CONFIGURED


def test_uninstalled_vault_rejects(host, cfg, send, view, accounts):
    d = EntryDispatcher(host, config=cfg)
    res = send(d, PAY, accounts.alice, 500)
    assert res.code == ReasonCode.NOT_CONFIGURED
    assert res.reason == "vault not installed"
    with pytest.raises(ConfigError):
        view().status()


def test_illegal_transition_is_refused(make_vault, view, host):
    make_vault()
    host.begin()
    try:
        with pytest.raises(PolicyViolation) as ei:
            view()._transition(VaultStatus.ACTIVE)
        assert ei.value.code == ReasonCode.BAD_STATE
    finally:
        host.finish(False)


def test_repeated_finalize_while_refunding_is_a_no_op(make_vault, send, view, host, accounts):
    d = make_vault(target=1000, deadline=100)
    send(d, PAY, accounts.alice, 400, at=10)
    assert send(d, INVOKE, accounts.bob, at=100, command="finalize").reason == "refunds enabled"
    before, outbox = host.raw_state(), list(host.outbox)

    for at in (101, 200):
        res = send(d, INVOKE, accounts.carol, at=at, command="finalize")
        assert res.accepted and res.reason == "already finalized"
        assert res.emissions == ()
    assert host.raw_state() == before
    assert host.outbox == outbox
    assert view().status() is VaultStatus.FAILED_REFUNDING


def test_contributor_beyond_index_capacity_is_refunded(host, cfg, send, view, accounts):
    small = cfg.replace(max_participants=2)
    d = EntryDispatcher(host, config=small)
    d.install(VaultConfig(target_amount=10_000, deadline=100, beneficiary=accounts.beneficiary))
    for who in (accounts.alice, accounts.bob, accounts.carol):
        assert send(d, PAY, who, 500, at=10).reason == "contribution recorded"

    index = codec.decode_set(host.raw_state()[codec.K_CONTRIBUTORS])
    assert accounts.carol not in index
    assert view().ledger.total() == 1500

    assert send(d, INVOKE, accounts.dave, at=100, command="finalize").reason == "refunds enabled"
    res = send(d, INVOKE, accounts.carol, at=110, command="refund")
    assert res.reason == "refunded"
    assert [(e.destination, e.amount) for e in res.emissions] == [(accounts.carol, 500)]
    assert send(d, PAY, accounts.carol, 1, at=120).code == ReasonCode.ALREADY_REFUNDED


def test_full_index_degrades_at_value_cap(host, cfg, send, view, accounts):
    # 4 addresses of 21 encoded bytes fit in 90; the fifth contributor is not indexed
    small = cfg.replace(max_participants=50, max_value_bytes=90)
    assert small.max_participants == 4
    d = EntryDispatcher(host, config=small)
    d.install(VaultConfig(target_amount=10_000, deadline=100, beneficiary=accounts.beneficiary))
    senders = [bytes([n]) * 20 for n in range(1, 7)]
    for who in senders:
        assert send(d, PAY, who, 200, at=10).accepted
    assert view().ledger.total() == 1200
    assert codec.decode_set(host.raw_state()[codec.K_CONTRIBUTORS]) == senders[:4]
