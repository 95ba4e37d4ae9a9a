import json

import matplotlib

matplotlib.use("Agg")

import yaml

from ci.verify_bundle import verify_one
from expcore.cli.main import main


def _run(tmp_path, name, argv):
    out = tmp_path / name
    rc = main(argv + ["--out", str(out)])
    assert rc == 0
    return out


def test_significance_bundle(tmp_path):
    out = _run(
        tmp_path,
        "sig",
        ["significance", "--visitors-a", "1000", "--conversions-a", "50", "--visitors-b", "1000", "--conversions-b", "60"],
    )
    assert verify_one(out) == "significance"
    payload = json.loads((out / "results.json").read_text(encoding="utf-8"))
    assert payload["estimates"]["is_significant"] is False
    meta = json.loads((out / "run_meta.json").read_text(encoding="utf-8"))
    assert "func" not in meta["args"]


def test_power_bundle(tmp_path):
    out = _run(tmp_path, "power", ["power", "--mode", "mde", "--baseline", "0.05", "--n", "8000"])
    assert verify_one(out) == "power"


def test_sequential_bundle(tmp_path):
    out = _run(
        tmp_path,
        "seq",
        [
            "sequential",
            "--n-control", "250",
            "--conv-control", "25",
            "--n-treatment", "250",
            "--conv-treatment", "35",
            "--max-n", "2000",
        ],
    )
    assert verify_one(out) == "sequential"
    payload = json.loads((out / "results.json").read_text(encoding="utf-8"))
    assert payload["estimates"]["decision"] == "continue"


def test_simulate_bundle(tmp_path):
    out = _run(tmp_path, "sim", ["simulate", "--runs", "12", "--n-per-variant", "300", "--horizon", "10", "--workers", "2"])
    assert verify_one(out) == "simulate"


def test_design_bundle(tmp_path):
    variants = [
        {"id": "a", "traffic_allocation": 50, "expected_rate": 0.05, "is_control": True},
        {"id": "b", "traffic_allocation": 50, "expected_rate": 0.06},
    ]
    out = _run(tmp_path, "design", ["design", "--variants-json", json.dumps(variants)])
    assert verify_one(out) == "design"


def test_run_config(tmp_path):
    out = tmp_path / "from_yaml"
    cfg = {
        "command": "design",
        "out": str(out),
        "params": {
            "variants": [
                {"id": "a", "traffic_allocation": 34, "expected_rate": 0.05, "is_control": True},
                {"id": "b", "traffic_allocation": 33, "expected_rate": 0.06},
                {"id": "c", "traffic_allocation": 33, "expected_rate": 0.065},
            ],
            "daily-traffic": 5000,
        },
    }
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")

    assert main(["run-config", str(path)]) == 0
    assert verify_one(out) == "design"
    payload = json.loads((out / "results.json").read_text(encoding="utf-8"))
    assert payload["estimates"]["adjusted_alpha"] == 0.025


def test_run_config_errors(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("command: teleport\n", encoding="utf-8")
    assert main(["run-config", str(bad)]) == 2

    missing = tmp_path / "missing.yaml"
    missing.write_text("command: significance\nparams:\n  visitors_a: 10\n", encoding="utf-8")
    assert main(["run-config", str(missing)]) == 2

    assert main(["run-config", str(tmp_path / "nope.yaml")]) == 2


def test_invalid_input_exit_code(tmp_path, capsys):
    rc = main(
        [
            "significance",
            "--visitors-a", "10",
            "--conversions-a", "11",
            "--visitors-b", "10",
            "--conversions-b", "1",
            "--out", str(tmp_path / "x"),
        ]
    )
    assert rc == 2
    assert "[expcore][error]" in capsys.readouterr().err


def test_version(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out.strip()


def test_design_accepts_long_inline_json(tmp_path):
    variants = [
        {
            "id": f"variant_{i}",
            "name": f"Checkout variant number {i}",
            "traffic_allocation": 25,
            "expected_rate": 0.05 + 0.005 * i,
            "is_control": i == 0,
            "description": "Redesigned checkout button",
        }
        for i in range(4)
    ]
    text = json.dumps(variants)
    assert len(text) > 255
    out = _run(tmp_path, "long", ["design", "--variants-json", text])
    assert verify_one(out) == "design"


def test_design_balance_traffic(tmp_path):
    variants = [
        {"id": "a", "traffic_allocation": 10, "expected_rate": 0.05, "is_control": True},
        {"id": "b", "traffic_allocation": 10, "expected_rate": 0.06},
        {"id": "c", "traffic_allocation": 10, "expected_rate": 0.065},
    ]
    assert main(["design", "--variants-json", json.dumps(variants), "--out", str(tmp_path / "unbalanced")]) == 2
    out = _run(tmp_path, "balanced", ["design", "--variants-json", json.dumps(variants), "--balance-traffic"])
    payload = json.loads((out / "results.json").read_text(encoding="utf-8"))
    assert [v["traffic_allocation"] for v in payload["inputs"]["variants"]] == [34, 33, 33]


def test_design_rejects_missing_variants_file(tmp_path, capsys):
    rc = main(["design", "--variants-json", str(tmp_path / "missing.json"), "--out", str(tmp_path / "x")])
    assert rc == 2
    assert "[expcore][error]" in capsys.readouterr().err
