import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from poolvault.cli import app
from poolvault.cli.scenario import ScenarioError, run_scenario

runner = CliRunner()

SCENARIO = """
accounts:
  alice: "0x1111111111111111111111111111111111111111"
  bob: "0x2222222222222222222222222222222222222222"
  fund: "0x9999999999999999999999999999999999999999"
config:
  max_participants: 16
vault:
  target_amount: 1000
  deadline: 100
  beneficiary: fund
steps:
  - {at: 10, kind: PAYMENT, sender: alice, amount: 600}
  - {at: 20, kind: PAYMENT, sender: bob, amount: 400}
  - {at: 30, kind: INVOKE, sender: bob, params: {command: refund}}
  - {at: 100, kind: PAYMENT, sender: bob, amount: 1}
"""


def _write(tmp_path: Path, text: str, name: str = "scenario.yaml") -> Path:
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return p


def test_distribute_json():
    res = runner.invoke(app, ["distribute", "--pool", "41", "-w", "a=100", "-w", "b=300", "--json"])
    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout) == {"pool": 41, "shares": {"a": 10, "b": 30}, "distributed": 40, "dust": 1}


def test_distribute_table():
    res = runner.invoke(app, ["distribute", "--pool", "41", "-w", "a=100", "-w", "b=300"])
    assert res.exit_code == 0
    assert "dust: 1" in res.stdout


@pytest.mark.parametrize("weight", ["a", "a=x", "a=-1", "=3"])
def test_distribute_bad_weight(weight):
    res = runner.invoke(app, ["distribute", "--pool", "10", "-w", weight])
    assert res.exit_code == 2


def test_simulate_json_and_inspect(tmp_path):
    scenario = _write(tmp_path, SCENARIO)
    state = tmp_path / "state.json"
    res = runner.invoke(app, ["simulate", str(scenario), "--json", "--state-out", str(state)])
    assert res.exit_code == 0, res.output
    out = json.loads(res.stdout)

    assert out["install"]["accepted"] is True
    assert [s["accepted"] for s in out["steps"]] == [True, True, False, True]
    assert out["steps"][2]["code_name"] == "REFUNDS_UNAVAILABLE"
    assert out["steps"][0]["sender"] == "alice"
    assert out["outbox"] == [
        {"emission_id": 1, "kind": "settlement", "destination": "99" * 20, "amount": 1000, "asset": "native"}
    ]
    assert out["final"]["status"] == "SUCCEEDED"
    assert out["final"]["total_raised"] == 1000

    res = runner.invoke(app, ["inspect", str(state), "--json"])
    assert res.exit_code == 0, res.output
    summary = json.loads(res.stdout)
    assert summary["status"] == "SUCCEEDED"
    assert summary["settlement_state"] == "pending"
    assert [p["contributed"] for p in summary["participants"]] == [600, 400]
    assert summary["emissions"][0]["state"] == "pending"
    assert summary["pending_emissions"] == [1]


def test_simulate_resumes_from_state(tmp_path):
    first = _write(tmp_path, SCENARIO)
    state = tmp_path / "state.json"
    assert runner.invoke(app, ["simulate", str(first), "--state-out", str(state), "--json"]).exit_code == 0

    follow_up = _write(
        tmp_path,
        """
steps:
  - at: 110
    kind: EMISSION_RESULT
    sender: "0x0000000000000000000000000000000000000001"
    params: {emission_id: 1, success: "true"}
""",
        name="confirm.yaml",
    )
    res = runner.invoke(app, ["simulate", str(follow_up), "--state-in", str(state), "--json"])
    assert res.exit_code == 0, res.output
    out = json.loads(res.stdout)
    assert out["install"] is None
    assert out["steps"][0]["reason"] == "confirmed"
    assert out["final"]["settlement_state"] == "confirmed"
    assert out["final"]["pending_emissions"] == []


def test_simulate_fail_on_reject(tmp_path):
    scenario = _write(tmp_path, SCENARIO)
    res = runner.invoke(app, ["simulate", str(scenario), "--fail-on-reject", "--json"])
    assert res.exit_code == 1


def test_simulate_bad_inputs(tmp_path):
    assert runner.invoke(app, ["simulate", str(tmp_path / "missing.yaml")]).exit_code == 2
    bad = _write(tmp_path, "steps: [1, 2", name="bad.yaml")
    assert runner.invoke(app, ["simulate", str(bad)]).exit_code == 2
    unknown = _write(tmp_path, "config: {nope: 1}\n", name="unknown.yaml")
    assert runner.invoke(app, ["simulate", str(unknown)]).exit_code == 2


def test_inspect_bad_state(tmp_path):
    p = tmp_path / "state.json"
    p.write_text("{not json", encoding="utf-8")
    assert runner.invoke(app, ["inspect", str(p)]).exit_code == 2
    assert runner.invoke(app, ["inspect", str(tmp_path / "none.json")]).exit_code == 2


def test_inspect_empty_state(tmp_path):
    p = tmp_path / "state.json"
    p.write_text(json.dumps({"now": 0, "state": {}, "outbox": []}), encoding="utf-8")
    res = runner.invoke(app, ["inspect", str(p), "--json"])
    assert res.exit_code == 0
    assert json.loads(res.stdout) == {"installed": False, "now": 0}


def test_config_command():
    res = runner.invoke(app, ["config"])
    assert res.exit_code == 0
    data = json.loads(res.stdout)
    assert {"version", "dust_ceiling", "max_participants", "step_limit"} <= set(data)


def test_run_scenario_host_toggles_apply_to_one_step():
    scenario = {
        "accounts": {"alice": "11" * 20, "fund": "99" * 20},
        "vault": {"target_amount": 100, "deadline": 50, "beneficiary": "fund"},
        "steps": [
            {"at": 10, "sender": "alice", "amount": 200},
            {"at": 50, "sender": "alice", "amount": 1, "host": {"reject_all_emissions": True}},
            {"at": 51, "sender": "alice", "amount": 1},
        ],
    }
    run = run_scenario(scenario)
    reasons = [(s.result.accepted, s.result.reason) for s in run["steps"]]
    assert reasons[0] == (True, "contribution recorded")
    assert reasons[1][0] is False
    assert reasons[2] == (True, "settled")
    assert run["host"].reject_all_emissions is False


def test_run_scenario_rejects_time_travel():
    scenario = {"steps": [{"at": 10, "kind": "OTHER"}, {"at": 5, "kind": "OTHER"}]}
    with pytest.raises(ScenarioError):
        run_scenario(scenario)
